"""CLI tests for ``duallink auth``."""

from __future__ import annotations

import functools
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from duallink.app import app
from duallink.auth.crypto import compute_sync_id
from duallink.auth.session_store import SessionStore
from duallink.client.async_client import AuthServiceClient
from duallink.models import Credential

API_URL = "https://auth.example.com"
LOGIN_ARGS = ["auth", "login", "-u", "alice", "-e", "alice@example.com"]


def _credential(expires_in: timedelta = timedelta(hours=1)) -> Credential:
    return Credential(
        request_id="req-123",
        one_time_code="happy-star",
        user_id="user-42",
        bearer_token="token-0",
        bearer_expiry=datetime.now(timezone.utc) + expires_in,
        sync_id=compute_sync_id("req-123", "happy-star"),
    )


@pytest.fixture()
def service(isolated_config: Path, fake_service, monkeypatch: pytest.MonkeyPatch):
    """Point the CLI at the fake service and skip polling delays."""
    monkeypatch.setenv("DUALLINK_API_URL", API_URL)
    monkeypatch.setattr(
        "duallink.auth.manager.AuthServiceClient",
        functools.partial(AuthServiceClient, transport=fake_service.transport()),
    )
    with patch("duallink.auth.handshake.asyncio.sleep", new_callable=AsyncMock):
        yield fake_service


class TestLogin:
    def test_login_with_manual_code(self, cli_runner, service, monkeypatch) -> None:
        monkeypatch.setenv("DUALLINK_AUTH_CODE_MANUAL", "happy-star")

        result = cli_runner.invoke(app, ["--no-color", "--no-input", *LOGIN_ARGS])

        assert result.exit_code == 0, result.output
        assert "https://approve.example.com/req-123" in result.output
        assert "Logged in as user user-42" in result.output
        stored = SessionStore("default").load()
        assert stored is not None
        assert stored.user_id == "user-42"

    def test_login_prompts_for_code(self, cli_runner, service) -> None:
        result = cli_runner.invoke(app, ["--no-color", *LOGIN_ARGS], input="happy-star\n")

        assert result.exit_code == 0, result.output
        assert SessionStore("default").load() is not None

    def test_code_from_file(self, cli_runner, service, isolated_config: Path) -> None:
        code_file = isolated_config / "code.txt"
        code_file.write_text("happy-star\n")

        result = cli_runner.invoke(
            app, ["--no-color", *LOGIN_ARGS, "--code-source", f"file:{code_file}"]
        )

        assert result.exit_code == 0, result.output

    def test_identity_from_environment(self, cli_runner, service, monkeypatch) -> None:
        monkeypatch.setenv("DUALLINK_USERNAME", "alice")
        monkeypatch.setenv("DUALLINK_EMAIL", "alice@example.com")
        monkeypatch.setenv("DUALLINK_AUTH_CODE_MANUAL", "happy-star")

        result = cli_runner.invoke(app, ["--no-color", "--no-input", "auth", "login"])

        assert result.exit_code == 0, result.output

    def test_mismatched_code_exits_with_security_failure(
        self, cli_runner, service, monkeypatch
    ) -> None:
        monkeypatch.setenv("DUALLINK_AUTH_CODE_MANUAL", "Happy-Star")

        result = cli_runner.invoke(app, ["--no-color", "--no-input", *LOGIN_ARGS])

        assert result.exit_code == 8
        assert "Security verification failed" in result.output
        assert service.endpoint_calls("authenticate") == []
        assert SessionStore("default").load() is None

    def test_approval_timeout(self, cli_runner, service, monkeypatch) -> None:
        service.approve_after = None
        monkeypatch.setenv("DUALLINK_AUTH_CODE_MANUAL", "happy-star")

        result = cli_runner.invoke(app, ["--no-color", "--no-input", *LOGIN_ARGS])

        assert result.exit_code == 3
        assert "not approved" in result.output

    def test_no_input_without_identity(self, cli_runner, service) -> None:
        result = cli_runner.invoke(app, ["--no-color", "--no-input", "auth", "login"])
        assert result.exit_code == 2

    def test_no_input_without_code(self, cli_runner, service) -> None:
        result = cli_runner.invoke(app, ["--no-color", "--no-input", *LOGIN_ARGS])
        assert result.exit_code == 2
        assert "DUALLINK_AUTH_CODE_MANUAL" in result.output

    def test_missing_api_url(self, cli_runner, isolated_config, monkeypatch) -> None:
        monkeypatch.setenv("DUALLINK_AUTH_CODE_MANUAL", "happy-star")

        result = cli_runner.invoke(app, ["--no-color", "--no-input", *LOGIN_ARGS])

        assert result.exit_code == 1
        assert "DUALLINK_API_URL" in result.output


class TestStatus:
    def test_not_logged_in(self, cli_runner, isolated_config) -> None:
        result = cli_runner.invoke(app, ["--no-color", "auth", "status"])
        assert result.exit_code == 3
        assert "Not logged in" in result.output

    def test_resume_variables_without_api_url(
        self, cli_runner, isolated_config, monkeypatch
    ) -> None:
        monkeypatch.setenv("DUALLINK_REQUEST_ID", "req-9")
        monkeypatch.setenv("DUALLINK_AUTH_CODE", "calm-moon")

        result = cli_runner.invoke(app, ["--no-color", "auth", "status"])

        assert result.exit_code == 3
        assert "Not logged in" in result.output

    def test_shows_session(self, cli_runner, isolated_config) -> None:
        SessionStore("default").save(_credential())

        result = cli_runner.invoke(app, ["--plain", "auth", "status"])

        assert result.exit_code == 0, result.output
        assert "user_id\tuser-42" in result.output
        assert "token-0" not in result.output

    def test_named_session(self, cli_runner, isolated_config) -> None:
        SessionStore("work").save(_credential())

        assert cli_runner.invoke(app, ["--plain", "auth", "status"]).exit_code == 3
        result = cli_runner.invoke(app, ["--plain", "--session", "work", "auth", "status"])
        assert result.exit_code == 0, result.output


class TestHeaders:
    def test_prints_headers_as_json(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential())

        result = cli_runner.invoke(app, ["--json", "auth", "headers"])

        assert result.exit_code == 0, result.output
        headers = json.loads(result.stdout)
        assert headers["Authorization"] == "Bearer token-0"
        assert headers["X-User-Id"] == "user-42"
        assert service.endpoint_calls("authenticate") == []

    def test_refreshes_when_close_to_expiry(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential(expires_in=timedelta(minutes=2)))

        result = cli_runner.invoke(app, ["--json", "auth", "headers"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["Authorization"] == "Bearer token-1"
        assert SessionStore("default").load().bearer_token == "token-1"

    def test_plain_masks_token(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential())

        result = cli_runner.invoke(app, ["--plain", "auth", "headers"])

        assert result.exit_code == 0, result.output
        assert "Authorization\tBearer ****" in result.stdout
        assert "token-0" not in result.stdout
        assert compute_sync_id("req-123", "happy-star") not in result.stdout
        assert "X-User-Id\tuser-42" in result.stdout

    def test_reveal_shows_token(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential())

        result = cli_runner.invoke(app, ["--plain", "auth", "headers", "--reveal"])

        assert result.exit_code == 0, result.output
        assert "Authorization\tBearer token-0" in result.stdout

    def test_not_logged_in(self, cli_runner, service) -> None:
        result = cli_runner.invoke(app, ["--no-color", "auth", "headers"])
        assert result.exit_code == 3


class TestRefresh:
    def test_refresh(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential())

        result = cli_runner.invoke(app, ["--no-color", "auth", "refresh"])

        assert result.exit_code == 0, result.output
        assert "Token refreshed for user user-42" in result.output
        assert len(service.endpoint_calls("authenticate")) == 1

    def test_refused(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential())
        service.authenticate_status = 401

        result = cli_runner.invoke(app, ["--no-color", "auth", "refresh"])

        assert result.exit_code == 3
        assert "log in again" in result.output


class TestLogout:
    def test_logout(self, cli_runner, service) -> None:
        SessionStore("default").save(_credential())

        result = cli_runner.invoke(app, ["--no-color", "auth", "logout"])

        assert result.exit_code == 0, result.output
        assert len(service.endpoint_calls("logout")) == 1
        assert SessionStore("default").load() is None

    def test_logout_without_session(self, cli_runner, service) -> None:
        result = cli_runner.invoke(app, ["--no-color", "auth", "logout"])

        assert result.exit_code == 0, result.output
        assert service.calls == []
