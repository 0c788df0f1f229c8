"""Durable storage for the authenticated session.

Stores the session in ``~/.local/share/duallink/sessions/<name>.json``
(XDG) or the platform-equivalent directory. Files are written atomically
via :func:`~duallink.config.atomic_write` with ``0o600`` permissions so
that secrets are never world-readable, even momentarily.

Every operation is best effort. A session that cannot be read is treated
as "no session", and a failed write or delete is logged and otherwise
ignored. The caller's operation never fails because of local storage.

See Also:
    :class:`~duallink.auth.manager.SessionManager` -- owns the store.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from duallink.config import atomic_write, get_data_dir
from duallink.models import Credential

logger = logging.getLogger(__name__)


def _sessions_dir() -> Path:
    """Return the sessions directory, creating it if needed."""
    path = get_data_dir() / "sessions"
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


class SessionStore:
    """Read/write the credential for a single named session.

    Args:
        session_name: Identifier used to derive the file name.
        path: Explicit file location, bypassing the data directory.

    Example::

        store = SessionStore("default")
        store.save(credential)
        assert store.load() == credential
    """

    def __init__(self, session_name: str = "default", path: Optional[Path] = None) -> None:
        self._session_name = session_name
        self._path = path

    @property
    def path(self) -> Path:
        """The filesystem path to this session's file."""
        if self._path is None:
            self._path = _sessions_dir() / f"{self._session_name}.json"
        return self._path

    def load(self) -> Optional[Credential]:
        """Load the stored credential.

        Returns:
            The deserialised :class:`~duallink.models.Credential`, or
            ``None`` if the file is missing, unreadable, or invalid.
        """
        try:
            path = self.path
            if not path.is_file():
                return None
            data = json.loads(path.read_text(encoding="utf-8"))
            credential = Credential.model_validate(data)
        except (OSError, ValueError) as exc:
            # ValueError covers undecodable bytes, bad JSON and schema errors.
            logger.warning("Ignoring unreadable session file: %s", exc)
            return None
        logger.debug("Loaded stored session for user %s", credential.user_id)
        return credential

    def save(self, credential: Credential) -> bool:
        """Persist *credential* atomically with ``0o600`` permissions.

        Returns:
            ``True`` if the file was written, ``False`` if writing failed.
        """
        text = json.dumps(credential.model_dump(mode="json"), indent=2) + "\n"
        try:
            atomic_write(self.path, text, mode=0o600)
        except OSError as exc:
            logger.warning("Failed to save session; it will last until exit: %s", exc)
            return False
        logger.debug("Saved session to %s", self.path)
        return True

    def erase(self) -> None:
        """Delete the stored session. A missing file is not an error."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to remove session file: %s", exc)
            return
        logger.debug("Cleared stored session")
