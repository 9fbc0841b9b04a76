"""Built-in CLI sub-commands for tadometrics."""

from __future__ import annotations

import typer

from tadometrics.models import ExporterConfig


def resolve_context_config(ctx: typer.Context) -> ExporterConfig:
    """Resolve the effective configuration from the root callback's options.

    Raises:
        ConfigError: If the config file is invalid.
    """
    from tadometrics.config import resolve_config

    obj = ctx.obj or {}
    config = resolve_config(
        cli_config=obj.get("config_file"),
        cli_home_id=obj.get("home_id"),
        cli_state_file=obj.get("state_file"),
    )
    if obj.get("no_input"):
        config.interactive = False
    return config
