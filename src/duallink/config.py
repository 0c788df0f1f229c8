"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for duallink:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.duallink/`` on macOS and Windows. See :func:`get_config_dir` and
  :func:`get_data_dir`.
* **Settings** -- A single :class:`~duallink.models.Settings` JSON file
  storing the service URL, polling budget, and refresh skew.
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  environment variables, project-local config, and user config into the
  final effective settings.
* **Credential resolution** -- :func:`resolve_credential` reads values
  such as the username or the approval code from env vars, files, or
  interactive prompts.

All file writes go through :func:`atomic_write` so that a crash never
leaves a half-written file behind.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import sys
import tempfile
from pathlib import Path
from typing import Any, Optional

from duallink.exceptions import ConfigError
from duallink.models import Settings

_APP_NAME = "duallink"
_CONFIG_FILENAME = "config.json"
_PROJECT_CONFIG_FILENAME = "duallink.json"

ENV_API_URL = "DUALLINK_API_URL"
ENV_SERVER_NAME = "DUALLINK_SERVER_NAME"
ENV_SESSION = "DUALLINK_SESSION"


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/duallink/`` (default ``~/.config/duallink/``).
    On macOS/Windows: ``~/.duallink/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_CONFIG_HOME", (".config",))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (sessions, salts, crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/duallink/`` (default ``~/.local/share/duallink/``).
    On macOS/Windows: ``~/.duallink/data/``.

    The directory is created with ``0o700`` permissions because it holds
    session secrets.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so secrets are never readable by others, even momentarily.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- User settings ---


def _settings_path() -> Path:
    """Path to the user settings file."""
    return get_config_dir() / _CONFIG_FILENAME


def _read_json(path: Path, what: str) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, ValueError, OSError) as exc:
        raise ConfigError(f"Invalid {what} at {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {what} at {path}: expected a JSON object")
    return data


def load_settings() -> Settings:
    """Load the user settings from the XDG config directory.

    Returns:
        The deserialised :class:`~duallink.models.Settings`. If the file
        does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = _settings_path()
    if not path.is_file():
        return Settings()
    data = _read_json(path, "config")
    try:
        return Settings.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid config at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    """Persist the user settings atomically to disk.

    Args:
        settings: The settings to save.
    """
    data = settings.model_dump(mode="json")
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


def load_project_config() -> Optional[dict[str, Any]]:
    """Load project-local configuration from ``./duallink.json``.

    Returns:
        The parsed JSON as a dict, or ``None`` if the file does not exist.

    Raises:
        ConfigError: If the file exists but contains invalid JSON.
    """
    path = Path.cwd() / _PROJECT_CONFIG_FILENAME
    if not path.is_file():
        return None
    return _read_json(path, "project config")


# --- Precedence resolution ---


def resolve_settings(
    cli_api_url: Optional[str] = None,
    cli_session: Optional[str] = None,
) -> Settings:
    """Resolve settings with full precedence chain.

    Precedence (high to low):
        1. CLI flags (``cli_api_url``, ``cli_session``)
        2. Environment variables (``DUALLINK_API_URL``,
           ``DUALLINK_SERVER_NAME``, ``DUALLINK_SESSION``)
        3. Project config (``./duallink.json``)
        4. User config (``~/.config/duallink/config.json``)
        5. Defaults

    Returns:
        The effective :class:`~duallink.models.Settings`.

    Raises:
        ConfigError: If any config file is invalid or the merged result
            fails validation.
    """
    data = load_settings().model_dump(mode="json")

    project = load_project_config()
    if project is not None:
        data.update(project)

    env_overrides = {
        "api_url": os.environ.get(ENV_API_URL),
        "server_name": os.environ.get(ENV_SERVER_NAME),
        "session_name": os.environ.get(ENV_SESSION),
    }
    data.update({k: v for k, v in env_overrides.items() if v})

    if cli_api_url is not None:
        data["api_url"] = cli_api_url
    if cli_session is not None:
        data["session_name"] = cli_session

    try:
        return Settings.model_validate(data)
    except ValueError as exc:
        raise ConfigError(f"Invalid settings: {exc}") from exc


def require_api_url(settings: Settings) -> str:
    """Return the configured service URL or explain how to set it.

    Raises:
        ConfigError: If no API URL has been configured anywhere.
    """
    if not settings.api_url:
        raise ConfigError(
            f"{ENV_API_URL} is not set. Point it at your authorization service, "
            "or run: duallink config set api_url <url>"
        )
    return settings.api_url


# --- Credential source resolution ---


def resolve_credential(source: str, prompt_label: str = "Enter value") -> str:
    """Resolve a value from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)

    Args:
        source: The source descriptor string.
        prompt_label: Label shown when prompting.

    Returns:
        The resolved string.

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        file_path = source[5:]
        path = Path(file_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass(f"{prompt_label}: ")

    raise ConfigError(f"Unknown credential source format: {source}")
