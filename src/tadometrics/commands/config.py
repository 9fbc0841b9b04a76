"""Config commands -- view and modify the exporter configuration.

Provides the ``tadometrics config`` sub-command group for reading and
updating the JSON config file (:class:`~tadometrics.models.ExporterConfig`).
The file holds the home id, identity provider endpoints, timing and
credential *sources*; it never holds secrets.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from tadometrics.output import error, format_response, info, success


config_app = typer.Typer(no_args_is_help=True)


def _config_file(ctx: typer.Context) -> Optional[Path]:
    obj = ctx.obj or {}
    path = obj.get("config_file")
    return Path(path).expanduser() if path else None


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Show the effective configuration.

    Prints the configuration after applying environment variables and CLI
    flags, as formatted output (table or JSON, depending on the active
    output mode).

    Example::

        tadometrics config show
        tadometrics --home-id 12345 config show --json
    """
    from tadometrics.commands import resolve_context_config
    from tadometrics.config import config_path

    config = resolve_context_config(ctx)
    info(f"Config file: {_config_file(ctx) or config_path()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("path")
def config_path_command(ctx: typer.Context) -> None:
    """Print the path of the config file."""
    from tadometrics.config import config_path

    typer.echo(str(_config_file(ctx) or config_path()))


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(
        help="Config key (dot notation, e.g., 'output.format')."
    ),
    value: str = typer.Argument(help="Value to set."),
) -> None:
    """Set a configuration value.

    Uses dot notation for nested keys. The value is coerced to match the
    existing field's type (bool, int, float or str) and the updated config
    is validated against :class:`~tadometrics.models.ExporterConfig`
    before saving.

    Args:
        ctx: Typer context carrying the ``--config`` override.
        key: Dot-separated config key path (e.g. ``output.format``).
        value: String value to set. ``none`` clears an optional field.

    Raises:
        typer.Exit: With code 2 if the key path is invalid, the value
            cannot be coerced, or Pydantic validation fails.

    Example::

        tadometrics config set home_id 12345
        tadometrics config set grant password
        tadometrics config set poll_window_seconds 300
    """
    from tadometrics.config import load_config, save_config
    from tadometrics.models import ExporterConfig

    path = _config_file(ctx)
    config = load_config(path)
    data = config.model_dump(mode="json")

    keys = key.split(".")
    target = data
    for k in keys[:-1]:
        if k not in target or not isinstance(target[k], dict):
            error(f"Invalid config key: {key}")
            raise typer.Exit(code=2)
        target = target[k]

    final_key = keys[-1]
    if final_key not in target:
        error(f"Unknown config key: {key}")
        raise typer.Exit(code=2)

    current = target[final_key]
    coerced: object
    if value.lower() == "none":
        coerced = None
    elif isinstance(current, bool):
        coerced = value.lower() in ("true", "1", "yes")
    elif isinstance(current, (int, float)):
        try:
            coerced = type(current)(value)
        except ValueError:
            error(f"Expected {type(current).__name__} for {key}, got: {value}")
            raise typer.Exit(code=2) from None
    else:
        coerced = value

    target[final_key] = coerced

    try:
        new_config = ExporterConfig.model_validate(data)
    except ValidationError as exc:
        error(f"Validation error: {exc}")
        raise typer.Exit(code=2) from None

    save_config(new_config, path)
    success(f"Set {key} = {coerced}")
