"""Exception hierarchy for duallink.

All exceptions inherit from :class:`DuallinkError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`duallink.exit_codes`.
The top-level error handler in :func:`duallink.app.main` catches
``DuallinkError`` and exits with the appropriate code.

Subclass hierarchy::

    DuallinkError (exit 1)
    +-- InvalidUsageError              (exit 2)
    +-- ConfigError                    (exit 1)
    +-- AuthError                      (exit 3)
        +-- HandshakeInitiationFailed
        +-- ApprovalTimeout
        +-- SecurityVerificationFailed (exit 8)
        +-- ExchangeFailed
        +-- NotAuthenticated
        +-- RefreshFailed

Callers decide what to do from the exception *type*; messages are for
humans only.
"""

from __future__ import annotations

from typing import Optional

from duallink.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_SECURITY_FAILURE,
)


class DuallinkError(Exception):
    """Base exception for all duallink errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`duallink.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(DuallinkError):
    """Raised for invalid CLI arguments or missing required parameters."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(DuallinkError):
    """Raised for configuration problems (missing API URL, invalid JSON, bad credential sources)."""

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(DuallinkError):
    """Base class for authentication failures.

    Network-facing subclasses keep the remote service's diagnostic so it
    can be shown to the user verbatim.

    Args:
        message: Human-readable error description.
        status_code: HTTP status of the failing response, if any.
        detail: Diagnostic message extracted from the server response, if any.
    """

    exit_code = EXIT_AUTH_FAILURE

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class HandshakeInitiationFailed(AuthError):
    """The authorization service rejected or could not receive the login request.

    Recoverable by calling ``login`` again.
    """


class ApprovalTimeout(AuthError):
    """Nobody approved the login request within the polling budget.

    Recoverable by calling ``login`` again. Never retried automatically.
    """


class SecurityVerificationFailed(AuthError):
    """The approval code could not be authenticated.

    Raised when the encrypted code fails AES-GCM authentication or when the
    decrypted code differs from the one the user typed. Treated as a possible
    attack: never retried, and the message never says which check failed
    inside the cipher.
    """

    exit_code = EXIT_SECURITY_FAILURE


class ExchangeFailed(AuthError):
    """The service refused to exchange a verified code for a bearer token."""


class NotAuthenticated(AuthError):
    """No credential is available for an operation that needs one."""


class RefreshFailed(AuthError):
    """Renewing the bearer token failed; the user must log in again."""
