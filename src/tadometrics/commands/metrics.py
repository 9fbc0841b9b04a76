"""Metrics commands -- read data from the tado° API.

``tadometrics metrics`` prints the aggregated
:class:`~tadometrics.models.HomeMetrics` report (zones, devices, live
temperatures, humidity and heating power) for the configured home.
``tadometrics get <resource>`` prints one raw API resource.

Both commands obtain a token through the
:class:`~tadometrics.auth.TokenManager`, so the first run may print a
device code to authorize in a browser::

    tadometrics --home-id 12345 metrics --json
    tadometrics --home-id 12345 get zone-state --zone 1
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Optional

import typer

from tadometrics.api import TadoClient, open_tado_client
from tadometrics.commands import resolve_context_config
from tadometrics.exit_codes import EXIT_INVALID_USAGE
from tadometrics.output import error, format_response


def _zone(fn: Callable[..., Any]) -> Callable[[TadoClient, Optional[str], Optional[str]], Any]:
    def call(client: TadoClient, zone: Optional[str], device: Optional[str]) -> Any:
        return fn(client, _require(zone, "--zone"))

    return call


def _device(fn: Callable[..., Any]) -> Callable[[TadoClient, Optional[str], Optional[str]], Any]:
    def call(client: TadoClient, zone: Optional[str], device: Optional[str]) -> Any:
        return fn(client, _require(device, "--device"))

    return call


def _plain(fn: Callable[..., Any]) -> Callable[[TadoClient, Optional[str], Optional[str]], Any]:
    def call(client: TadoClient, zone: Optional[str], device: Optional[str]) -> Any:
        return fn(client)

    return call


def _require(value: Optional[str], option: str) -> str:
    if not value:
        error(f"This resource needs {option}.")
        raise typer.Exit(code=EXIT_INVALID_USAGE)
    return value


RESOURCES: dict[str, Callable[[TadoClient, Optional[str], Optional[str]], Any]] = {
    "me": _plain(TadoClient.get_me),
    "home": _plain(TadoClient.get_home),
    "weather": _plain(TadoClient.get_weather),
    "home-state": _plain(TadoClient.get_home_state),
    "devices": _plain(TadoClient.get_devices),
    "installations": _plain(TadoClient.get_installations),
    "users": _plain(TadoClient.get_users),
    "mobile-devices": _plain(TadoClient.get_mobile_devices),
    "mobile-device-settings": _device(TadoClient.get_mobile_device_settings),
    "temperature-offset": _device(TadoClient.get_temperature_offset),
    "zones": _plain(TadoClient.get_zones),
    "zone-states": _plain(TadoClient.get_zone_states),
    "zone-state": _zone(TadoClient.get_zone_state),
    "zone-capabilities": _zone(TadoClient.get_zone_capabilities),
    "zone-early-start": _zone(TadoClient.get_zone_early_start),
    "zone-overlay": _zone(TadoClient.get_zone_overlay),
    "zone-timetable": _zone(TadoClient.get_zone_active_timetable),
    "zone-away": _zone(TadoClient.get_zone_away_configuration),
    "anyone-home": _plain(TadoClient.is_anyone_at_home),
}
"""``get`` resource names mapped to the :class:`TadoClient` getter they call."""


def metrics_command(ctx: typer.Context) -> None:
    """Print the aggregated metrics report of the home.

    Example::

        tadometrics --home-id 12345 metrics --json
    """
    config = resolve_context_config(ctx)
    with open_tado_client(config) as client:
        report = client.get_home_metrics()
    format_response(report.model_dump(mode="json"))


def get_command(
    ctx: typer.Context,
    resource: str = typer.Argument(
        help=f"Resource to read: {', '.join(RESOURCES)}."
    ),
    zone: Optional[str] = typer.Option(None, "--zone", "-z", help="Zone id."),
    device: Optional[str] = typer.Option(
        None, "--device", "-d", help="Device id or serial number."
    ),
) -> None:
    """Print one raw tado° API resource.

    Example::

        tadometrics get zones
        tadometrics get zone-state --zone 1
        tadometrics get temperature-offset --device VA1234567890
    """
    getter = RESOURCES.get(resource)
    if getter is None:
        error(f"Unknown resource: {resource}")
        error(f"Choose one of: {', '.join(RESOURCES)}")
        raise typer.Exit(code=EXIT_INVALID_USAGE)

    config = resolve_context_config(ctx)
    with open_tado_client(config) as client:
        data = getter(client, zone, device)
    if isinstance(data, bool):
        data = {"anyone_at_home": data}
    format_response(data)
