"""Typer application and CLI entry point for tadometrics.

This module wires together the top-level Typer application and registers
the built-in commands (``metrics``, ``get``, ``auth``, ``config``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
:class:`~tadometrics.exceptions.TadoMetricsError` subclasses end the
process with their own exit code, so a cron wrapper can tell "authorize
the device code" (8) from "network down" (6). Unhandled exceptions are
written to a crash log under the data directory.

See Also:
    :mod:`tadometrics.config`: Configuration precedence resolution.
    :mod:`tadometrics.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.logging import RichHandler

from tadometrics import __version__
from tadometrics.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE


app = typer.Typer(
    name="tadometrics",
    help="Export tado° thermostat metrics.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"tadometrics {__version__}")
        raise typer.Exit()


def _setup_logging(console: Any, quiet: bool, verbose: bool) -> None:
    """Route library logging through Rich on stderr."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
    home_id: Optional[str] = typer.Option(
        None, "--home-id", help="tado° home id."
    ),
    state_file: Optional[str] = typer.Option(
        None, "--state-file", help="Credential state file path."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
    no_input: bool = typer.Option(
        False,
        "--no-input",
        help="Never wait for browser authorization; exit 8 instead.",
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~tadometrics.output.OutputManager` and
    the log handler from CLI flags, and stores the raw connection options
    in the Typer context so that sub-commands can resolve the effective
    configuration via
    :func:`~tadometrics.commands.resolve_context_config`.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        config_file: Config file override (highest precedence).
        home_id: Home id override.
        state_file: Credential state file override.
        json_output: Force JSON output format.
        plain_output: Force plain-text output format.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output.
        no_input: Fail fast with exit code 8 while a device code waits
            for a human, instead of polling.
    """
    from tadometrics.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)
    _setup_logging(output.stderr_console, quiet, verbose)

    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config_file
    ctx.obj["home_id"] = home_id
    ctx.obj["state_file"] = state_file
    ctx.obj["no_input"] = no_input
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from tadometrics.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def _register_commands() -> None:
    from tadometrics.commands.auth import auth_app
    from tadometrics.commands.config import config_app
    from tadometrics.commands.metrics import get_command, metrics_command

    app.command("metrics")(metrics_command)
    app.command("get")(get_command)
    app.add_typer(auth_app, name="auth", help="Credential management.")
    app.add_typer(config_app, name="config", help="Configuration management.")


_register_commands()


def main() -> None:
    """CLI entry point invoked by the ``tadometrics`` console script.

    Unhandled :class:`~tadometrics.exceptions.TadoMetricsError` instances
    cause a clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except Exception as exc:
        from tadometrics.exceptions import HumanActionRequired, TadoMetricsError
        from tadometrics.output import error, suggest

        if isinstance(exc, HumanActionRequired):
            error(str(exc))
            suggest("Authorize in a browser, then run again.")
            sys.exit(exc.exit_code)
        if isinstance(exc, TadoMetricsError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
