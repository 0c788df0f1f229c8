"""Session authentication for duallink.

This package implements the approval handshake and the lifecycle of the
resulting credential:

- :class:`HandshakeEngine` -- initiate, poll for approval, verify the
  encrypted approval code against the human-supplied one, and exchange it
  for a bearer token.
- :class:`SessionStore` -- durable, owner-only storage of the credential.
- :class:`SessionManager` -- the object applications hold: login,
  complete login, authorization headers with lazy refresh, and logout.
- :func:`capture` -- wrap an operation into an :class:`Ok` / :class:`Err`
  result for callers that prefer values over exceptions.

Typical usage::

    from duallink.auth import SessionManager
    from duallink.config import resolve_settings

    async with SessionManager(resolve_settings()) as session:
        headers = await session.get_authorization_headers()
"""

from duallink.auth.handshake import HandshakeEngine
from duallink.auth.manager import SessionManager
from duallink.auth.outcome import Err, Ok, Outcome, capture
from duallink.auth.session_store import SessionStore

__all__ = [
    "Err",
    "HandshakeEngine",
    "Ok",
    "Outcome",
    "SessionManager",
    "SessionStore",
    "capture",
]
