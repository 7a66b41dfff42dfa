"""Config commands -- view and modify login defaults.

Provides the ``loopauth config`` sub-command group for reading, updating,
and resetting the user's configuration file
(:class:`~loopauth.models.LoginConfig`). Settings are persisted in the
loopauth config directory and supply the defaults for ``loopauth login``:
client id, tenant, environment, redirect service, and flow timeouts.
"""

from __future__ import annotations

from typing import Any

import typer
from pydantic import ValidationError

from loopauth.commands import report_error
from loopauth.exceptions import ConfigError
from loopauth.exit_codes import EXIT_INVALID_USAGE
from loopauth.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)

_NULL_VALUES = ("null", "none")


def _coerce(current: Any, value: str) -> Any:
    """Coerce *value* to the type of the field's current value.

    Raises:
        ValueError: If a numeric field gets a non-numeric value.
    """
    if value.lower() in _NULL_VALUES:
        return None
    if isinstance(current, bool):
        return value.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    # Optional fields without a value are validated by the model.
    return value


@config_app.command("show")
def config_show() -> None:
    """Show current configuration.

    Loads the user config from disk and prints the config directory path
    followed by the full configuration.

    Example::

        loopauth config show
        loopauth config show --json
    """
    from loopauth.config import get_config_dir, load_config

    try:
        config = load_config()
    except ConfigError as exc:
        raise typer.Exit(code=report_error(exc)) from None
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'timeouts.code')."
    ),
    value: str = typer.Argument(help="Value to set ('null' clears it)."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is coerced to match the
    existing field's type (bool, int, float, or str). The updated config is
    validated against :class:`~loopauth.models.LoginConfig` before saving.

    Raises:
        typer.Exit: With code 2 if the key path is invalid, the value cannot
            be coerced, or validation fails.

    Example::

        loopauth config set tenant contoso.onmicrosoft.com
        loopauth config set environment AzureChinaCloud
        loopauth config set timeouts.code 120
    """
    from loopauth.config import load_config, save_config
    from loopauth.models import LoginConfig

    try:
        config = load_config()
    except ConfigError as exc:
        raise typer.Exit(code=report_error(exc)) from None
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=EXIT_INVALID_USAGE)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target or isinstance(target[final_key], dict):
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    try:
        coerced = _coerce(target[final_key], value)
    except ValueError:
        error(f"Expected a number for {key}, got: {value}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None
    target[final_key] = coerced

    try:
        new_config = LoginConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=EXIT_INVALID_USAGE) from None

    save_config(new_config)
    success(f"Set {key} = {coerced}")


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to defaults.

    Asks for confirmation unless ``--force`` is active.

    Raises:
        typer.Exit: If the user declines confirmation.

    Example::

        loopauth config reset
        loopauth --force config reset
    """
    from loopauth.config import save_config
    from loopauth.models import LoginConfig

    force = ctx.obj.get("force", False) if ctx.obj else False
    if not force:
        confirmed = typer.confirm("Reset all config to defaults?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    save_config(LoginConfig())
    success("Configuration reset to defaults.")
