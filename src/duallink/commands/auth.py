"""Auth commands -- log in, inspect, refresh, and end the session.

Provides the ``duallink auth`` sub-command group. Every command builds a
:class:`~duallink.auth.manager.SessionManager` from the effective settings,
runs one operation on it, and maps failures onto process exit codes.

Typical workflow::

    duallink auth login -u alice -e alice@example.com
    duallink auth status
    duallink auth headers --json
    duallink auth logout
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Coroutine, Optional, TypeVar

import typer

from duallink.auth import Err, SessionManager, capture
from duallink.config import resolve_credential, resolve_settings
from duallink.exceptions import (
    ApprovalTimeout,
    DuallinkError,
    InvalidUsageError,
    SecurityVerificationFailed,
)
from duallink.exit_codes import EXIT_AUTH_FAILURE
from duallink.models import LoginTicket, Settings
from duallink.output import error, info, record, success, suggest

ENV_MANUAL_CODE = "DUALLINK_AUTH_CODE_MANUAL"

T = TypeVar("T")

auth_app = typer.Typer(no_args_is_help=True)


def _settings(ctx: typer.Context) -> Settings:
    obj = ctx.obj or {}
    return resolve_settings(cli_api_url=obj.get("api_url"), cli_session=obj.get("session"))


def _no_input(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("no_input"))


def _run(operation: Coroutine[Any, Any, T]) -> T:
    """Run *operation* to completion, turning duallink errors into exit codes."""
    try:
        return asyncio.run(operation)
    except DuallinkError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None


def _show_ticket(ticket: LoginTicket) -> None:
    info("Open this link and approve the login:")
    info(f"  {ticket.approval_url}")
    if ticket.expires_at:
        info(f"The link expires at {ticket.expires_at}.")
    info("Waiting for approval...")


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    username: Optional[str] = typer.Option(
        None, "--username", "-u", envvar="DUALLINK_USERNAME", help="Account username."
    ),
    email: Optional[str] = typer.Option(
        None, "--email", "-e", envvar="DUALLINK_EMAIL", help="Account email."
    ),
    code_source: Optional[str] = typer.Option(
        None,
        "--code-source",
        help="Where to read the approval code: env:VAR, file:/path, or prompt.",
    ),
) -> None:
    """Log in through browser approval with dual verification.

    Sends a fingerprint of the username and email (never the values
    themselves), prints the approval link, waits until the login is
    approved in the browser, then asks for the code shown on the approval
    page and checks it against the encrypted copy sent by the server.

    Example::

        duallink auth login -u alice -e alice@example.com
        DUALLINK_AUTH_CODE_MANUAL=happy-star duallink auth login --no-input
    """
    no_input = _no_input(ctx)
    if not username or not email:
        if no_input:
            error("--username and --email are required with --no-input.")
            raise typer.Exit(code=2)
        username = username or typer.prompt("Username")
        email = email or typer.prompt("Email")

    async def provide_code(ticket: LoginTicket) -> str:
        if code_source:
            return resolve_credential(code_source, prompt_label="Approval code")
        manual = os.environ.get(ENV_MANUAL_CODE)
        if manual:
            return manual
        if no_input:
            raise InvalidUsageError(
                f"Approval code required: set {ENV_MANUAL_CODE} or pass --code-source."
            )
        return typer.prompt("Code shown on the approval page").strip()

    async def _login() -> Any:
        async with SessionManager(_settings(ctx)) as session:
            return await capture(
                session.authenticate(username, email, provide_code, on_ticket=_show_ticket)
            )

    outcome = _run(_login())
    if isinstance(outcome, Err):
        error(str(outcome.error))
        if isinstance(outcome.error, SecurityVerificationFailed):
            suggest("Do not reuse this approval link. Start over: duallink auth login")
        elif isinstance(outcome.error, ApprovalTimeout):
            suggest("Approve the request in your browser sooner: duallink auth login")
        raise typer.Exit(code=outcome.exit_code)

    success(f"Logged in as user {outcome.value.user_id}.")
    suggest("Check it: duallink auth status")


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the stored session without contacting the server.

    Exits with code 3 when no session is stored.

    Example::

        duallink auth status --json
    """

    async def _status() -> Optional[dict[str, Any]]:
        async with SessionManager(_settings(ctx)) as session:
            credential = session.credential
            if credential is None:
                return None
            return {
                "user_id": credential.user_id,
                "sync_id": credential.sync_id,
                "request_id": credential.request_id,
                "bearer_expiry": credential.bearer_expiry.isoformat(),
            }

    status = _run(_status())
    if status is None:
        info("Not logged in.")
        suggest("Log in: duallink auth login")
        raise typer.Exit(code=EXIT_AUTH_FAILURE)
    record(status)


@auth_app.command("headers")
def auth_headers(
    ctx: typer.Context,
    reveal: bool = typer.Option(
        False, "--reveal", help="Show the token and sync id unmasked. --json never masks."
    ),
) -> None:
    """Print the authorization headers, refreshing the token if it is about to expire.

    Example::

        duallink auth headers --json
        duallink auth headers --reveal
    """

    async def _headers() -> dict[str, str]:
        async with SessionManager(_settings(ctx)) as session:
            return await session.get_authorization_headers()

    record(_run(_headers()), reveal=reveal)


@auth_app.command("refresh")
def auth_refresh(ctx: typer.Context) -> None:
    """Mint a new bearer token from the stored session."""

    async def _refresh() -> str:
        async with SessionManager(_settings(ctx)) as session:
            await session.refresh()
            return session.get_current_user_id()

    user_id = _run(_refresh())
    success(f"Token refreshed for user {user_id}.")


@auth_app.command("logout")
def auth_logout(ctx: typer.Context) -> None:
    """Revoke the session on the server and delete it locally.

    Logging out when no session exists is not an error.
    """

    async def _logout() -> None:
        async with SessionManager(_settings(ctx)) as session:
            await session.logout()

    _run(_logout())
    success("Logged out.")
    suggest("Log in again: duallink auth login")
