"""Asynchronous HTTP client for the authorization service.

This module provides :class:`AuthServiceClient`, a thin wrapper around
:class:`httpx.AsyncClient` that knows the four auth endpoints, maps
failures onto the :mod:`duallink.exceptions` hierarchy, and retries
transport errors and 5xx responses with exponential backoff where the
caller asks for it.

The client only moves bytes. Hashing, key derivation, and verification
happen in :mod:`duallink.auth.handshake`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, TypeVar

import httpx
from pydantic import BaseModel

from duallink.exceptions import (
    AuthError,
    ExchangeFailed,
    HandshakeInitiationFailed,
)
from duallink.models import CheckResponse, LoginResponse, TokenResponse

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def error_detail(response: httpx.Response) -> Optional[str]:
    """Extract the server's diagnostic message from an error response.

    Looks at the JSON body's ``detail``, ``error``, and ``message`` fields in
    that order, then falls back to the first 200 characters of the raw body.
    """
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text[:200] if text else None

    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if value:
                return value if isinstance(value, str) else str(value)
        return None
    if body:
        return str(body)
    return None


class AuthServiceClient:
    """Async client for the ``login``/``check``/``authenticate``/``logout`` endpoints.

    Can be used as an async context manager or closed explicitly with
    :meth:`aclose`. The underlying :class:`httpx.AsyncClient` is created
    on first use.

    Args:
        base_url: Root URL of the authorization service.
        auth_path: Path prefix of the auth endpoints.
        timeout: Per-request timeout in seconds.
        max_retries: Retries for login, authenticate, and logout. Status
            checks never retry; the approval poll loop is their retry.
        transport: Optional custom transport (e.g. :class:`httpx.MockTransport`).

    Example::

        async with AuthServiceClient("https://api.example.com") as client:
            ticket = await client.login(nonce, name, fingerprint)
    """

    def __init__(
        self,
        base_url: str,
        auth_path: str = "/auth",
        timeout: float = 30.0,
        max_retries: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth_path = "/" + auth_path.strip("/") if auth_path.strip("/") else ""
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> AuthServiceClient:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    # ------------------------------------------------------------------ #
    # Endpoints
    # ------------------------------------------------------------------ #

    async def login(
        self, date_nonce: str, connection_name: str, request_hash: str
    ) -> LoginResponse:
        """Start a login request.

        Raises:
            HandshakeInitiationFailed: On transport errors, non-2xx status,
                or a malformed response body.
        """
        return await self._call(
            HandshakeInitiationFailed,
            "Login request",
            "/login",
            {
                "date_nonce": date_nonce,
                "connection_name": connection_name,
                "request_hash": request_hash,
            },
            LoginResponse,
            retries=self._max_retries,
        )

    async def check(self, request_id: str) -> CheckResponse:
        """Ask whether *request_id* has been approved. Single attempt.

        Raises:
            AuthError: On any failure; the approval poller swallows it.
        """
        return await self._call(
            AuthError,
            "Approval check",
            "/check",
            {"request_id": request_id},
            CheckResponse,
        )

    async def authenticate(self, sync_id: str) -> TokenResponse:
        """Exchange a sync id for bearer material.

        Raises:
            ExchangeFailed: On transport errors, non-2xx status, or a
                malformed response body.
        """
        return await self._call(
            ExchangeFailed,
            "Authentication",
            "/authenticate",
            {"sync_id": sync_id},
            TokenResponse,
            retries=self._max_retries,
        )

    async def logout(self, headers: dict[str, str]) -> None:
        """Revoke the session identified by *headers*.

        Raises:
            AuthError: If the service could not be reached or refused.
        """
        await self._call(
            AuthError,
            "Logout",
            "/logout",
            {},
            None,
            headers=headers,
            retries=self._max_retries,
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _call(
        self,
        error_cls: type[AuthError],
        action: str,
        path: str,
        payload: dict[str, Any],
        model: Optional[type[ModelT]],
        headers: Optional[dict[str, str]] = None,
        retries: int = 0,
    ) -> Any:
        """POST *payload* and parse the response into *model*.

        Every failure is raised as *error_cls* carrying the server's
        diagnostic when one is available.
        """
        try:
            response = await self._post(path, payload, headers=headers, retries=retries)
        except httpx.HTTPError as exc:
            raise error_cls(f"{action} failed: {exc}", detail=str(exc) or None) from exc

        if response.is_error:
            detail = error_detail(response)
            message = f"{action} failed (HTTP {response.status_code})"
            if detail:
                message = f"{message}: {detail}"
            raise error_cls(message, status_code=response.status_code, detail=detail)

        if model is None:
            return None
        try:
            return model.model_validate(response.json())
        except ValueError as exc:
            raise error_cls(
                f"{action} failed: unexpected response from server",
                status_code=response.status_code,
            ) from exc

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        headers: Optional[dict[str, str]] = None,
        retries: int = 0,
    ) -> httpx.Response:
        """POST with exponential-backoff retry.

        Retries on 5xx status codes and connection / timeout errors up to
        *retries* times. The delay doubles each attempt: 1 s, 2 s, 4 s, ...
        """
        client = self._ensure_client()
        url = f"{self._auth_path}{path}"

        for attempt in range(retries + 1):
            try:
                response = await client.post(url, json=payload, headers=headers)
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt >= retries:
                    raise
                delay = 2 ** attempt
                logger.debug(
                    "Connection error on %s: %s, retrying in %ss (attempt %d/%d)",
                    url, exc, delay, attempt + 1, retries,
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 500 and attempt < retries:
                delay = 2 ** attempt
                logger.debug(
                    "Server error %d on %s, retrying in %ss (attempt %d/%d)",
                    response.status_code, url, delay, attempt + 1, retries,
                )
                await asyncio.sleep(delay)
                continue

            return response

        raise AssertionError("unreachable")  # pragma: no cover
