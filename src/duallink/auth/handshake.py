"""The three-step approval handshake with dual-channel verification.

Flow:
    1. :meth:`HandshakeEngine.initiate` -- POST a SHA-512 fingerprint of the
       user's identity to ``/login``. The username and email never leave
       the machine; the request key is derived locally from the same inputs.
    2. :meth:`HandshakeEngine.await_approval` -- poll ``/check`` until a
       human approves the request in a browser. The service then returns
       the approval code encrypted under the request key.
    3. :meth:`HandshakeEngine.verify_and_finalize` -- decrypt the code,
       require it to equal the code the human read off the approval page,
       then exchange it at ``/authenticate`` for a bearer token.

Step 3 is the dual-channel check: an attacker has to control both the
network response and what the human saw in an authenticated browser
session to get a token minted.

See Also:
    :class:`~duallink.auth.manager.SessionManager` -- persists and serves
    the resulting credential.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from duallink.auth.crypto import (
    codes_match,
    compute_sync_id,
    decrypt_approval_code,
    derive_request_key,
    load_or_create_salt,
    make_date_nonce,
    request_fingerprint,
)
from duallink.client.async_client import AuthServiceClient
from duallink.config import get_data_dir
from duallink.exceptions import (
    ApprovalTimeout,
    AuthError,
    SecurityVerificationFailed,
)
from duallink.models import Credential, KeyDerivation, PendingHandshake, Settings

logger = logging.getLogger(__name__)

# Emit a progress line once a minute at the default 5 s interval.
_PROGRESS_EVERY = 12


class HandshakeEngine:
    """Drive one login handshake against the authorization service.

    The engine is stateless between calls; the caller holds the
    :class:`~duallink.models.PendingHandshake` returned by :meth:`initiate`.

    Args:
        client: HTTP client for the authorization service.
        settings: Effective settings (connection name, polling budget,
            key-derivation scheme).
        salt_path: Location of the PBKDF2 salt file. Only used when
            ``settings.key_derivation`` is ``pbkdf2``.
    """

    def __init__(
        self,
        client: AuthServiceClient,
        settings: Settings,
        salt_path: Optional[Path] = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._salt_path = salt_path

    def derive_key(
        self, username: str, email: str, connection_name: str, date_nonce: str
    ) -> bytes:
        """Derive the request key with the configured scheme."""
        if self._settings.key_derivation == KeyDerivation.PBKDF2:
            salt_path = self._salt_path or get_data_dir() / "kdf.salt"
            return derive_request_key(
                username,
                email,
                connection_name,
                date_nonce,
                salt=load_or_create_salt(salt_path),
                iterations=self._settings.pbkdf2_iterations,
            )
        return derive_request_key(username, email, connection_name, date_nonce)

    async def initiate(
        self, username: str, email: str, now: Optional[datetime] = None
    ) -> PendingHandshake:
        """Open a login request and derive its decryption key.

        Args:
            username: Account username. Only hashed, never sent.
            email: Account email. Only hashed, never sent.
            now: Timestamp for the nonce; defaults to the current time.

        Returns:
            A :class:`~duallink.models.PendingHandshake` holding the request
            id, approval URL, and the locally derived key.

        Raises:
            HandshakeInitiationFailed: If the service rejects the request or
                cannot be reached.
        """
        connection_name = self._settings.connection_name
        date_nonce = make_date_nonce(now)
        fingerprint = request_fingerprint(username, email, date_nonce, connection_name)

        response = await self._client.login(date_nonce, connection_name, fingerprint)
        logger.info("Login request %s created", response.request_id)

        return PendingHandshake(
            request_id=response.request_id,
            request_key=self.derive_key(username, email, connection_name, date_nonce),
            approval_url=response.approval_url,
            expires_at=response.expires_at,
        )

    async def await_approval(self, request_id: str) -> str:
        """Poll until the request is approved.

        Waits ``poll_interval`` seconds before each of at most
        ``max_poll_attempts`` checks. Failed checks are logged and retried
        on the next tick.

        Returns:
            The encrypted approval code from the first approving response.

        Raises:
            ApprovalTimeout: If no check reported approval within the budget.
        """
        interval = self._settings.poll_interval
        attempts = self._settings.max_poll_attempts

        for attempt in range(1, attempts + 1):
            await asyncio.sleep(interval)

            try:
                status = await self._client.check(request_id)
            except AuthError as exc:
                logger.debug("Approval check %d/%d failed: %s", attempt, attempts, exc)
            else:
                if status.approved and status.encrypted_auth_token:
                    logger.info("Login request %s approved", request_id)
                    return status.encrypted_auth_token

            if attempt % _PROGRESS_EVERY == 0 and attempt < attempts:
                logger.info("Still waiting for approval of request %s...", request_id)

        raise ApprovalTimeout(
            f"Login request was not approved within {attempts * interval:.0f} seconds. "
            "Start a new login."
        )

    def verify(self, request_key: bytes, encrypted_code: str, human_code: str) -> None:
        """Check the decrypted server code against the code the human typed.

        Raises:
            SecurityVerificationFailed: If decryption fails or the codes differ.
        """
        server_code = decrypt_approval_code(encrypted_code, request_key)
        if not codes_match(server_code, human_code):
            raise SecurityVerificationFailed(
                "The code you entered does not match the code issued for this "
                "login request. Security verification failed."
            )
        logger.info("Approval code verified")

    async def verify_and_finalize(
        self,
        request_id: str,
        request_key: bytes,
        encrypted_code: str,
        human_code: str,
    ) -> Credential:
        """Verify the approval code, then exchange it for a credential.

        Raises:
            SecurityVerificationFailed: If verification fails. No network
                call is made in that case.
            ExchangeFailed: If the service refuses the exchange.
        """
        self.verify(request_key, encrypted_code, human_code)
        return await self.exchange(request_id, human_code)

    async def exchange(self, request_id: str, one_time_code: str) -> Credential:
        """Mint bearer material from a request id and its approval code.

        Used both to finish a handshake and to refresh an existing session.

        Raises:
            ExchangeFailed: If the service refuses the exchange.
        """
        sync_id = compute_sync_id(request_id, one_time_code)
        token = await self._client.authenticate(sync_id)
        expiry = datetime.now(timezone.utc) + timedelta(seconds=token.expires_in)
        logger.debug("Bearer token issued for user %s, expires %s", token.user_id, expiry)

        return Credential(
            request_id=request_id,
            one_time_code=one_time_code,
            user_id=token.user_id,
            bearer_token=token.access_token,
            bearer_expiry=expiry,
            sync_id=sync_id,
        )

    async def revoke(self, headers: dict[str, str]) -> None:
        """Ask the service to revoke the session identified by *headers*.

        Raises:
            AuthError: If the service could not be reached or refused.
        """
        await self._client.logout(headers)
        logger.info("Session revoked")
