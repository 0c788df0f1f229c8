"""Tests for the best-effort session store."""

from __future__ import annotations

import json
import os
import stat
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from duallink.auth.session_store import SessionStore
from duallink.models import Credential


def _credential(**kwargs: object) -> Credential:
    defaults: dict[str, object] = {
        "request_id": "req-123",
        "one_time_code": "happy-star",
        "user_id": "user-42",
        "bearer_token": "token-1",
        "bearer_expiry": datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc),
        "sync_id": "ab" * 32,
    }
    defaults.update(kwargs)
    return Credential(**defaults)  # type: ignore[arg-type]


@pytest.fixture()
def store(isolated_config: Path) -> SessionStore:
    return SessionStore("default")


class TestSessionStore:
    def test_load_without_file_returns_none(self, store: SessionStore) -> None:
        assert store.load() is None

    def test_round_trip(self, store: SessionStore) -> None:
        credential = _credential()
        assert store.save(credential) is True
        assert store.load() == credential

    def test_file_lives_in_sessions_dir(self, store: SessionStore, isolated_config: Path) -> None:
        store.save(_credential())
        assert store.path == isolated_config / "data" / "duallink" / "sessions" / "default.json"
        assert store.path.is_file()

    def test_file_is_owner_only(self, store: SessionStore) -> None:
        store.save(_credential())
        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    def test_sessions_are_separate(self, isolated_config: Path) -> None:
        SessionStore("work").save(_credential(user_id="work-user"))
        assert SessionStore("default").load() is None
        loaded = SessionStore("work").load()
        assert loaded is not None
        assert loaded.user_id == "work-user"

    def test_corrupt_file_reads_as_absent(self, store: SessionStore) -> None:
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text("{not json")
        assert store.load() is None

    def test_undecodable_bytes_read_as_absent(self, store: SessionStore) -> None:
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_bytes(b"\xff\xfe\x00garbage")
        assert store.load() is None

    def test_manager_starts_unauthenticated_on_undecodable_file(
        self, store: SessionStore
    ) -> None:
        import asyncio

        from duallink.auth.manager import SessionManager
        from duallink.models import Settings

        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_bytes(b"\xff\xfe\x00garbage")
        manager = SessionManager(Settings(), store=store)

        asyncio.run(manager.initialize(environ={}))

        assert manager.get_user_id() is None

    def test_incomplete_record_reads_as_absent(self, store: SessionStore) -> None:
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(json.dumps({"request_id": "req-123"}))
        assert store.load() is None

    def test_naive_expiry_is_treated_as_utc(self, store: SessionStore) -> None:
        data = _credential().model_dump(mode="json")
        data["bearer_expiry"] = "2030-01-01T12:00:00"
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(json.dumps(data))
        loaded = store.load()
        assert loaded is not None
        assert loaded.bearer_expiry.tzinfo is not None

    def test_save_failure_returns_false(self, store: SessionStore) -> None:
        with patch(
            "duallink.auth.session_store.atomic_write", side_effect=OSError("disk full")
        ):
            assert store.save(_credential()) is False

    def test_erase_removes_file(self, store: SessionStore) -> None:
        store.save(_credential())
        store.erase()
        assert not store.path.exists()
        assert store.load() is None

    def test_erase_is_idempotent(self, store: SessionStore) -> None:
        store.erase()
        store.erase()
        assert store.load() is None

    def test_explicit_path(self, tmp_path: Path) -> None:
        path = tmp_path / "custom" / "session.json"
        store = SessionStore(path=path)
        store.save(_credential())
        assert path.is_file()
        assert store.load() == _credential()

    def test_secrets_not_in_repr(self) -> None:
        text = repr(_credential())
        assert "happy-star" not in text
        assert "token-1" not in text
