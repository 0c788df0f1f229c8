"""Config commands -- view and modify user settings.

Provides the ``duallink config`` sub-command group for reading and
updating the user's settings file (:class:`~duallink.models.Settings`).
Values set here sit below project config, environment variables, and CLI
flags in the precedence chain.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError

from duallink.output import error, info, record, success


config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show(
    effective: bool = typer.Option(
        False, "--effective", help="Show the merged settings after all overrides."
    ),
) -> None:
    """Show current configuration.

    Example::

        duallink config show
        duallink config show --effective --json
    """
    from duallink.config import get_config_dir, load_settings, resolve_settings

    settings = resolve_settings() if effective else load_settings()
    info(f"Config directory: {get_config_dir()}")
    record(settings.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Setting name, e.g. 'api_url'."),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    The value is coerced to the type of the existing field (bool, int,
    float, or str) and the result is validated before saving.

    Example::

        duallink config set api_url https://auth.example.com
        duallink config set poll_interval 2.5
        duallink config set key_derivation pbkdf2
    """
    from duallink.config import load_settings, save_settings
    from duallink.models import Settings

    data = load_settings().model_dump(mode="json")
    if key not in Settings.model_fields:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    annotation = Settings.model_fields[key].annotation
    current = data.get(key)
    coerced: Any
    if isinstance(current, bool):
        coerced = value.lower() in ("true", "1", "yes")
    elif isinstance(current, int) or annotation is int:
        try:
            coerced = int(value)
        except ValueError:
            error(f"Expected integer for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    elif isinstance(current, float) or annotation is float:
        try:
            coerced = float(value)
        except ValueError:
            error(f"Expected number for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    else:
        coerced = value

    data[key] = coerced

    try:
        new_settings = Settings.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_settings(new_settings)
    success(f"Set {key} = {getattr(new_settings, key)}")
