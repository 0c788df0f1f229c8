"""Shared test fixtures for duallink.

Provides isolated config environments, output state management, a CLI
runner, and :class:`FakeAuthService`, an in-process stand-in for the
authorization service that plugs into :class:`httpx.MockTransport`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from duallink.auth.crypto import derive_request_key, encrypt_approval_code
from duallink.models import Settings
from duallink.output import OutputFormat, OutputManager, reset_output, set_output


USERNAME = "alice"
EMAIL = "alice@example.com"
API_URL = "https://auth.example.com"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and session files to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    clears all DUALLINK_* environment variables, and changes the working
    directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("duallink.config._is_xdg_platform", lambda: True)

    for var in [
        "DUALLINK_API_URL",
        "DUALLINK_SERVER_NAME",
        "DUALLINK_SESSION",
        "DUALLINK_REQUEST_ID",
        "DUALLINK_AUTH_CODE",
        "DUALLINK_AUTH_CODE_MANUAL",
        "DUALLINK_USERNAME",
        "DUALLINK_EMAIL",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at the fake service with the default polling budget."""
    return Settings(api_url=API_URL)


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Fake authorization service
# ---------------------------------------------------------------------------


class FakeAuthService:
    """Scriptable authorization service for :class:`httpx.MockTransport`.

    Knows the user's identity out of band, like the real service, so it
    can encrypt the approval code under the same request key the client
    derives.

    Attributes:
        calls: ``(endpoint, body, headers)`` for every request received.
        approve_after: The check call (1-based) that first reports approval.
            ``None`` never approves.
        check_failures: Number of initial check calls answered with HTTP 503.
        authenticate_status: Status returned by ``/authenticate``.
        logout_status: Status returned by ``/logout``.
    """

    def __init__(
        self,
        code: str = "happy-star",
        username: str = USERNAME,
        email: str = EMAIL,
        request_id: str = "req-123",
        user_id: str = "user-42",
        expires_in: int = 3600,
        approve_after: Optional[int] = 1,
    ) -> None:
        self.code = code
        self.username = username
        self.email = email
        self.request_id = request_id
        self.user_id = user_id
        self.expires_in = expires_in
        self.approve_after = approve_after
        self.check_failures = 0
        self.authenticate_status = 200
        self.logout_status = 200
        self.encrypted_override: Optional[str] = None
        self.calls: list[tuple[str, dict[str, Any], httpx.Headers]] = []
        self._login: dict[str, Any] = {}
        self._checks = 0
        self._tokens = 0

    def endpoint_calls(self, endpoint: str) -> list[dict[str, Any]]:
        return [body for name, body, _ in self.calls if name == endpoint]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content) if request.content else {}
        self.calls.append((endpoint, body, request.headers))
        handler = getattr(self, f"_on_{endpoint}", None)
        if handler is None:
            return httpx.Response(404, json={"detail": "not found"})
        return handler(body)

    def _on_login(self, body: dict[str, Any]) -> httpx.Response:
        self._login = body
        return httpx.Response(
            200,
            json={
                "request_id": self.request_id,
                "approval_url": f"https://approve.example.com/{self.request_id}",
                "expires_at": "2030-01-01T00:05:00Z",
            },
        )

    def _on_check(self, body: dict[str, Any]) -> httpx.Response:
        self._checks += 1
        if self._checks <= self.check_failures:
            return httpx.Response(503, json={"detail": "try later"})
        if self.approve_after is None or self._checks < self.approve_after:
            return httpx.Response(200, json={"approved": False})
        return httpx.Response(
            200, json={"approved": True, "encrypted_auth_token": self.encrypted_code()}
        )

    def _on_authenticate(self, body: dict[str, Any]) -> httpx.Response:
        if self.authenticate_status != 200:
            return httpx.Response(
                self.authenticate_status, json={"detail": "invalid sync id"}
            )
        self._tokens += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"token-{self._tokens}",
                "expires_in": self.expires_in,
                "user_id": self.user_id,
                "token_type": "bearer",
            },
        )

    def _on_logout(self, body: dict[str, Any]) -> httpx.Response:
        if self.logout_status != 200:
            return httpx.Response(self.logout_status, json={"error": "logout unavailable"})
        return httpx.Response(200, json={"success": True})

    def encrypted_code(self) -> str:
        if self.encrypted_override is not None:
            return self.encrypted_override
        key = derive_request_key(
            self.username,
            self.email,
            self._login["connection_name"],
            self._login["date_nonce"],
        )
        return encrypt_approval_code(self.code, key)


@pytest.fixture
def fake_service() -> FakeAuthService:
    return FakeAuthService()
