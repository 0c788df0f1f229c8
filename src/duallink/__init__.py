"""duallink -- dual-verification session authentication for approval-based APIs.

This package implements the client side of a human-in-the-loop login
handshake: the client asks the authorization service for an approval link,
a human approves the request in a browser and reads back a short code, and
the client verifies that code against an encrypted copy sent by the server
before exchanging it for a bearer token.

Typical workflow::

    duallink auth login --username alice --email alice@example.com
    duallink auth status
    duallink auth logout

Modules:
    app: Typer application and CLI entry point.
    auth: Handshake engine, session store, and session manager.
    client: Async HTTP client for the authorization service.
    models: Pydantic models shared across the package.
    config: XDG-aware settings resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
