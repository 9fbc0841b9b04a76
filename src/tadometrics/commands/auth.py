"""Auth commands -- manage the persisted tado° credential.

Provides the ``tadometrics auth`` sub-command group. Tokens are normally
obtained on demand by every data command; these commands exist for the
first authorization and for inspecting or discarding the stored state.

Typical workflow::

    tadometrics auth login    # authorize a device code in a browser
    tadometrics auth status   # show token and device code expiry
    tadometrics auth logout   # delete the state file
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer

from tadometrics.commands import resolve_context_config
from tadometrics.output import get_output, info, success, suggest


auth_app = typer.Typer(no_args_is_help=True)


def _expiry(value: Optional[datetime], now: datetime) -> str:
    if value is None:
        return "-"
    label = value.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
    return f"{label} (expired)" if value <= now else label


def _preview(secret: str) -> str:
    if not secret:
        return "-"
    return secret[:8] + "..." if len(secret) > 8 else secret


@auth_app.command("login")
def auth_login(
    ctx: typer.Context,
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Stop polling after this many seconds (default: the poll window).",
    ),
) -> None:
    """Discard stored tokens and authorize again.

    Runs the configured primary grant. For the device-code grant this
    prints a verification URL and user code, then polls until the code is
    authorized in a browser or the poll window closes. An outstanding
    device code is reused rather than replaced.

    Args:
        ctx: Typer context carrying the root options.
        timeout: Optional cap on the polling time in seconds.

    Raises:
        AuthError: If authorization fails, times out or is cancelled.

    Example::

        tadometrics auth login
        tadometrics auth login --timeout 60
    """
    from tadometrics.api import open_tado_client

    config = resolve_context_config(ctx)
    with open_tado_client(config) as client:
        client.token_manager.force_reauthenticate(timeout=timeout)
        state = client.token_manager.status()

    success("Authorized.")
    now = datetime.now(timezone.utc)
    info(f"Access token valid until {_expiry(state.access_token_expires, now)}")
    suggest("Read metrics: tadometrics metrics")


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the persisted credential state.

    Secrets are truncated. Expiry times are shown in local time and
    marked when they have passed.

    Example::

        tadometrics auth status
        tadometrics auth status --json
    """
    from tadometrics.auth.state_store import StateStore

    config = resolve_context_config(ctx)
    assert config.state_file
    store = StateStore(config.state_file)
    state = store.load()
    now = datetime.now(timezone.utc)

    output = get_output()
    headers = ["Field", "Value"]
    rows = [
        ["State File", str(store.path)],
        ["Grant", config.grant],
        ["Access Token", _preview(state.access_token)],
        ["Access Token Expires", _expiry(state.access_token_expires, now)],
        ["Refresh Token", "stored" if state.refresh_token else "-"],
        ["Device Code", _preview(state.device_code)],
        ["Device Code Expires", _expiry(state.device_code_expires, now)],
        ["User Code", state.user_code or "-"],
        ["Verification URL", state.verification_uri_complete or "-"],
    ]
    output.print_table(headers, rows, title="tado° Credential")

    if not state.refresh_token and not state.has_valid_access_token(now):
        suggest("Authorize: tadometrics auth login")


@auth_app.command("logout")
def auth_logout(
    ctx: typer.Context,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete the persisted credential state.

    The next data command starts over with a new device code. Asks for
    confirmation unless ``--force`` is given.

    Example::

        tadometrics auth logout --force
    """
    from tadometrics.auth.state_store import StateStore

    config = resolve_context_config(ctx)
    assert config.state_file
    store = StateStore(config.state_file)
    if not store.path.exists():
        info("No stored credential.")
        return

    if not force:
        confirmed = typer.confirm(f"Delete stored credential at {store.path}?")
        if not confirmed:
            info("Cancelled.")
            raise typer.Exit()

    store.clear()
    success("Stored credential deleted.")
