"""Home metrics aggregation.

Joins the ``zones`` listing (names, types, devices) with the live
``zoneStates`` snapshot (temperatures, humidity, heating power) into one
:class:`~tadometrics.models.HomeMetrics` report -- everything a metrics
exporter needs from a home in two API calls.

Missing values get stable defaults so downstream scrapers never see a
hole: heating power ``0``, desired temperature ``0.0``, battery and
mounting state ``"n/a"``.
"""

from __future__ import annotations

from typing import Any

from tadometrics.models import DeviceMetrics, HomeMetrics, ZoneMetrics

NOT_AVAILABLE = "n/a"


def _dig(data: Any, *keys: str, default: Any = None) -> Any:
    """Follow *keys* through nested dicts, returning *default* on any gap."""
    for key in keys:
        if not isinstance(data, dict):
            return default
        data = data.get(key)
        if data is None:
            return default
    return data


def _device_metrics(zone: dict[str, Any], device: dict[str, Any]) -> DeviceMetrics:
    return DeviceMetrics(
        zone_id=zone["id"],
        zone_name=zone.get("name", ""),
        zone_type=zone.get("type", ""),
        device_type=device.get("deviceType"),
        serial_no=device.get("serialNo"),
        short_serial_no=device.get("shortSerialNo"),
        current_fw_version=device.get("currentFwVersion"),
        connection_state=_dig(device, "connectionState", "value"),
        battery_state=device.get("batteryState") or NOT_AVAILABLE,
        mounting_state=_dig(device, "mountingState", "value") or NOT_AVAILABLE,
    )


def _apply_state(zone: ZoneMetrics, state: dict[str, Any]) -> None:
    zone.type = "MANUAL" if state.get("overlayType") == "MANUAL" else "AUTOMATIC"
    zone.power = _dig(state, "setting", "power")
    zone.desired_celsius = _dig(state, "setting", "temperature", "celsius") or 0.0
    zone.link_state = _dig(state, "link", "state")
    zone.celsius = _dig(state, "sensorDataPoints", "insideTemperature", "celsius")
    zone.humidity = _dig(state, "sensorDataPoints", "humidity", "percentage")
    zone.heating_power = (
        _dig(state, "activityDataPoints", "heatingPower", "percentage") or 0
    )


def build_home_metrics(
    zones: list[dict[str, Any]],
    zone_states: dict[str, Any],
) -> HomeMetrics:
    """Aggregate zones and their live states into a metrics report.

    Args:
        zones: The ``GET homes/{id}/zones`` response.
        zone_states: The ``GET homes/{id}/zoneStates`` response, shaped
            ``{"zoneStates": {"<zone id>": {...}}}``.

    Returns:
        A :class:`HomeMetrics` with one entry per zone, in the order zones
        first appear (zones listing first, then any zone only present in
        the states).
    """
    by_id: dict[int, ZoneMetrics] = {}

    for zone in zones:
        devices = [_device_metrics(zone, d) for d in zone.get("devices") or []]
        by_id[int(zone["id"])] = ZoneMetrics(
            id=zone["id"],
            name=zone.get("name", ""),
            zone_type=zone.get("type", ""),
            devices=devices,
        )

    states = zone_states.get("zoneStates") if isinstance(zone_states, dict) else None
    for zone_id, state in (states or {}).items():
        key = int(zone_id)
        zone_metrics = by_id.get(key)
        if zone_metrics is None:
            zone_metrics = by_id[key] = ZoneMetrics(id=key)
        _apply_state(zone_metrics, state or {})

    return HomeMetrics(zones=list(by_id.values()))
