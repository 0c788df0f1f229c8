"""Session manager -- the single owner of the authenticated session.

The :class:`SessionManager` is what the rest of an application talks to.
It keeps the current :class:`~duallink.models.Credential` in memory,
persists it through a :class:`~duallink.auth.session_store.SessionStore`,
drives logins through a :class:`~duallink.auth.handshake.HandshakeEngine`,
and refreshes the bearer token lazily when headers are requested close to
expiry.

There is no module-level instance. Create one per application (or per
request-handling context) and pass it to whatever needs authorization::

    async with SessionManager(resolve_settings()) as session:
        ticket = await session.login("alice", "alice@example.com")
        ...
        await session.complete_login(ticket.request_id, code)
        headers = await session.get_authorization_headers()
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, Mapping, Optional

from duallink.auth.handshake import HandshakeEngine
from duallink.auth.session_store import SessionStore
from duallink.client.async_client import AuthServiceClient
from duallink.config import require_api_url
from duallink.exceptions import (
    AuthError,
    ConfigError,
    NotAuthenticated,
    RefreshFailed,
)
from duallink.models import Credential, LoginTicket, PendingHandshake, Settings

logger = logging.getLogger(__name__)

ENV_REQUEST_ID = "DUALLINK_REQUEST_ID"
ENV_AUTH_CODE = "DUALLINK_AUTH_CODE"

CodeProvider = Callable[[LoginTicket], Awaitable[str]]


class SessionManager:
    """Acquire, serve, refresh, and revoke the session credential.

    Args:
        settings: Effective settings. ``api_url`` is only required once a
            network operation runs.
        store: Session persistence. Defaults to a
            :class:`~duallink.auth.session_store.SessionStore` named after
            ``settings.session_name``.
        engine: Handshake engine. Defaults to one backed by an
            :class:`~duallink.client.async_client.AuthServiceClient` that
            the manager owns and closes.
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[SessionStore] = None,
        engine: Optional[HandshakeEngine] = None,
    ) -> None:
        self._settings = settings
        self._store = store or SessionStore(settings.session_name)
        self._engine = engine
        self._client: Optional[AuthServiceClient] = None
        self._credential: Optional[Credential] = None
        self._pending: dict[str, PendingHandshake] = {}
        self._refresh_lock = asyncio.Lock()
        # Bumped whenever the session is replaced or cleared.
        self._generation = 0

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> SessionManager:
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def initialize(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """Load the stored session.

        When nothing is stored and both ``DUALLINK_REQUEST_ID`` and
        ``DUALLINK_AUTH_CODE`` are set, try to resume from them. A rejected
        resume is logged; the manager then simply starts unauthenticated.
        """
        self._credential = self._store.load()
        if self._credential is not None:
            return

        env = os.environ if environ is None else environ
        request_id = env.get(ENV_REQUEST_ID)
        code = env.get(ENV_AUTH_CODE)
        if request_id and code:
            try:
                await self.resume(request_id, code)
            except (AuthError, ConfigError) as exc:
                logger.warning("Could not resume session from environment: %s", exc)

    async def close(self) -> None:
        """Persist the current credential and release the HTTP client."""
        if self._credential is not None:
            self._store.save(self._credential)
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_engine(self) -> HandshakeEngine:
        if self._engine is None:
            self._client = AuthServiceClient(
                require_api_url(self._settings),
                auth_path=self._settings.auth_path,
                timeout=self._settings.timeout,
                max_retries=self._settings.max_retries,
            )
            self._engine = HandshakeEngine(self._client, self._settings)
        return self._engine

    # ------------------------------------------------------------------ #
    # Login
    # ------------------------------------------------------------------ #

    async def login(self, username: str, email: str) -> LoginTicket:
        """Start a login and remember the pending handshake.

        Raises:
            HandshakeInitiationFailed: If the service rejects the request.
            ConfigError: If no API URL is configured.
        """
        pending = await self._get_engine().initiate(username, email)
        self._pending[pending.request_id] = pending
        return LoginTicket(
            request_id=pending.request_id,
            approval_url=pending.approval_url,
            expires_at=pending.expires_at,
        )

    async def await_approval(self, request_id: str) -> None:
        """Block until the pending login *request_id* is approved.

        Optional: :meth:`complete_login` waits by itself when needed. Call
        this first when the user should only be asked for the code once the
        browser approval went through.

        Raises:
            NotAuthenticated: If no login with that id is pending.
            ApprovalTimeout: If approval did not arrive in time. The pending
                login is discarded.
        """
        pending = self._get_pending(request_id)
        if pending.encrypted_code is not None:
            return
        try:
            pending.encrypted_code = await self._get_engine().await_approval(request_id)
        except AuthError:
            self._pending.pop(request_id, None)
            raise

    async def complete_login(self, request_id: str, one_time_code: str) -> None:
        """Verify the human-supplied code and establish the session.

        The pending handshake is consumed whatever the outcome; a failed
        attempt requires a new :meth:`login`.

        Raises:
            NotAuthenticated: If no login with that id is pending.
            ApprovalTimeout: If approval never arrived.
            SecurityVerificationFailed: If the codes do not match.
            ExchangeFailed: If the service refuses the verified code.
        """
        pending = self._get_pending(request_id)
        try:
            await self.await_approval(request_id)
            assert pending.encrypted_code is not None
            credential = await self._get_engine().verify_and_finalize(
                pending.request_id,
                pending.request_key,
                pending.encrypted_code,
                one_time_code,
            )
        finally:
            self._pending.pop(request_id, None)
        self._install(credential)
        logger.info("Logged in as user %s", credential.user_id)

    async def authenticate(
        self,
        username: str,
        email: str,
        code_provider: CodeProvider,
        on_ticket: Optional[Callable[[LoginTicket], None]] = None,
    ) -> Credential:
        """Run the whole login: initiate, wait for approval, ask for the code, verify.

        Args:
            username: Account username (hashed, never sent).
            email: Account email (hashed, never sent).
            code_provider: Awaited after approval to obtain the code the
                human read off the approval page.
            on_ticket: Called right after the login request is created,
                typically to show the approval URL.

        Returns:
            The new credential.
        """
        ticket = await self.login(username, email)
        try:
            if on_ticket is not None:
                on_ticket(ticket)
            await self.await_approval(ticket.request_id)
            code = await code_provider(ticket)
        except BaseException:
            self._pending.pop(ticket.request_id, None)
            raise
        await self.complete_login(ticket.request_id, code)
        assert self._credential is not None
        return self._credential

    async def resume(self, request_id: str, one_time_code: str) -> None:
        """Establish a session from previously verified renewal material.

        Raises:
            ExchangeFailed: If the service no longer accepts the material.
        """
        credential = await self._get_engine().exchange(request_id, one_time_code)
        self._install(credential)
        logger.info("Resumed session for user %s", credential.user_id)

    def _get_pending(self, request_id: str) -> PendingHandshake:
        pending = self._pending.get(request_id)
        if pending is None:
            raise NotAuthenticated(
                f"No login in progress for request '{request_id}'. Start a new login."
            )
        return pending

    def _install(self, credential: Credential) -> None:
        self._credential = credential
        self._generation += 1
        self._store.save(credential)

    # ------------------------------------------------------------------ #
    # Credential access
    # ------------------------------------------------------------------ #

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    def get_user_id(self) -> Optional[str]:
        """Return the cached user id without touching the network."""
        if self._credential is None:
            return None
        return self._credential.user_id

    def get_current_user_id(self) -> str:
        """Return the cached user id.

        Raises:
            NotAuthenticated: If there is no session.
        """
        user_id = self.get_user_id()
        if user_id is None:
            raise NotAuthenticated("Not authenticated. Log in first.")
        return user_id

    async def get_authorization_headers(self) -> dict[str, str]:
        """Return the headers every authorized call must carry.

        Refreshes the bearer token first when it expires within the
        configured skew. Concurrent callers share a single refresh.

        Raises:
            NotAuthenticated: If there is no session.
            RefreshFailed: If a needed refresh failed.
        """
        skew = self._settings.refresh_skew
        if self._require_credential().needs_refresh(skew):
            async with self._refresh_lock:
                # Another caller may have refreshed while we waited.
                if self._require_credential().needs_refresh(skew):
                    await self._refresh_unlocked()

        # A logout may have happened while the refresh was in flight.
        return self._headers(self._require_credential())

    get_auth_headers = get_authorization_headers

    async def refresh(self) -> None:
        """Mint a new bearer token from the stored renewal material.

        On failure the stale credential is kept so :meth:`get_user_id` still
        answers; authorized calls will fail until a new login succeeds. If
        the session is cleared or replaced while the renewal is in flight,
        the renewed token is discarded.

        Raises:
            NotAuthenticated: If there is no session.
            RefreshFailed: If the service refused the renewal.
        """
        async with self._refresh_lock:
            await self._refresh_unlocked()

    async def _refresh_unlocked(self) -> None:
        credential = self._require_credential()
        generation = self._generation

        logger.debug("Refreshing bearer token for user %s", credential.user_id)
        try:
            renewed = await self._get_engine().exchange(
                credential.request_id, credential.one_time_code
            )
        except AuthError as exc:
            logger.error("Token refresh failed: %s", exc)
            raise RefreshFailed(
                f"Token refresh failed, log in again. ({exc})",
                status_code=exc.status_code,
                detail=exc.detail,
            ) from exc

        if generation != self._generation:
            logger.debug("Session changed during refresh; discarding renewed token")
            return
        self._install(renewed)

    def _require_credential(self) -> Credential:
        if self._credential is None:
            raise NotAuthenticated("Not authenticated. Log in first.")
        return self._credential

    @staticmethod
    def _headers(credential: Credential) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.bearer_token}",
            "X-Sync-Id": credential.sync_id,
            "X-User-Id": credential.user_id,
        }

    # ------------------------------------------------------------------ #
    # Logout
    # ------------------------------------------------------------------ #

    def clear_session(self) -> None:
        """Forget the credential in memory and on disk. Safe to call repeatedly.

        A refresh still in flight will not bring the session back.
        """
        self._credential = None
        self._generation += 1
        self._store.erase()

    async def logout(self) -> None:
        """Revoke the session remotely, then clear it locally.

        The remote call is best effort and uses the current headers as-is
        (no refresh). The local session is cleared even if it fails, and
        logging out without a session does nothing.
        """
        credential = self._credential
        if credential is not None:
            try:
                await self._get_engine().revoke(self._headers(credential))
            except (AuthError, ConfigError) as exc:
                logger.warning("Remote logout failed, clearing local session anyway: %s", exc)
        self.clear_session()
