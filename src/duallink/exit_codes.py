"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~duallink.exceptions.DuallinkError` subclass.
External tooling (CI scripts, shell wrappers) can inspect the exit code to
determine the failure class without parsing stderr.

Example::

    $ duallink auth headers
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- no session, or the session could not be refreshed
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""Authentication failed or no authenticated session is available."""

EXIT_SECURITY_FAILURE = 8
"""Dual verification failed: the approval code could not be authenticated."""
