"""Read-only tado° API resource getters.

:class:`TadoClient` is a thin layer over
:class:`~tadometrics.client.executor.AuthorizedRequestExecutor`: each getter
builds one URL under ``https://my.tado.com/api/v2/`` and issues one
bearer-authenticated GET. The client is bound to a default home id; every
home-scoped getter accepts an explicit ``home_id`` to override it.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from typing import Any, Optional

import httpx

from tadometrics.auth.clock import Clock
from tadometrics.auth.token_manager import TokenManager, create_token_manager
from tadometrics.client.executor import AuthorizedRequestExecutor
from tadometrics.exceptions import ConfigError
from tadometrics.metrics import build_home_metrics
from tadometrics.models import ExporterConfig, HomeMetrics


class TadoClient:
    """tado° resource API.

    Args:
        executor: Sends the authenticated requests.
        base_url: API root, ``https://my.tado.com/api/v2/`` by default.
        home_id: Default home for home-scoped getters.
    """

    def __init__(
        self,
        executor: AuthorizedRequestExecutor,
        base_url: str = "https://my.tado.com/api/v2/",
        home_id: Optional[str] = None,
    ) -> None:
        self._executor = executor
        self._base_url = base_url.rstrip("/") + "/"
        self._home_id = home_id

    @property
    def token_manager(self) -> TokenManager:
        return self._executor.token_manager

    def _get(self, path: str) -> Any:
        return self._executor.get(self._base_url + path)

    def _home(self, home_id: Optional[str]) -> str:
        resolved = home_id or self._home_id
        if not resolved:
            raise ConfigError(
                "No home id configured. Pass --home-id, set TADO_HOME_ID, "
                "or run: tadometrics config set home_id <id>"
            )
        return f"homes/{resolved}"

    # --- Account ---

    def get_me(self) -> dict[str, Any]:
        """Return the account, including the homes it can access."""
        return self._get("me")

    # --- Home ---

    def get_home(self, home_id: Optional[str] = None) -> dict[str, Any]:
        return self._get(self._home(home_id))

    def get_weather(self, home_id: Optional[str] = None) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/weather")

    def get_home_state(self, home_id: Optional[str] = None) -> dict[str, Any]:
        """Return the presence state (``HOME`` / ``AWAY``) of the home."""
        return self._get(f"{self._home(home_id)}/state")

    def get_devices(self, home_id: Optional[str] = None) -> list[Any]:
        return self._get(f"{self._home(home_id)}/devices")

    def get_installations(self, home_id: Optional[str] = None) -> list[Any]:
        return self._get(f"{self._home(home_id)}/installations")

    def get_users(self, home_id: Optional[str] = None) -> list[Any]:
        return self._get(f"{self._home(home_id)}/users")

    def get_mobile_devices(self, home_id: Optional[str] = None) -> list[Any]:
        return self._get(f"{self._home(home_id)}/mobileDevices")

    def get_mobile_device_settings(
        self, device_id: str, home_id: Optional[str] = None
    ) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/mobileDevices/{device_id}/settings")

    def get_temperature_offset(
        self, device_id: str, home_id: Optional[str] = None
    ) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/devices/{device_id}/temperatureOffset")

    # --- Zones ---

    def get_zones(self, home_id: Optional[str] = None) -> list[Any]:
        return self._get(f"{self._home(home_id)}/zones")

    def get_zone_states(self, home_id: Optional[str] = None) -> dict[str, Any]:
        """Return the live state of every zone, keyed by zone id."""
        return self._get(f"{self._home(home_id)}/zoneStates")

    def get_zone_state(self, zone_id: str, home_id: Optional[str] = None) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/zones/{zone_id}/state")

    def get_zone_capabilities(
        self, zone_id: str, home_id: Optional[str] = None
    ) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/zones/{zone_id}/capabilities")

    def get_zone_early_start(
        self, zone_id: str, home_id: Optional[str] = None
    ) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/zones/{zone_id}/earlyStart")

    def get_zone_overlay(self, zone_id: str, home_id: Optional[str] = None) -> Any:
        """Return the manual overlay of a zone (empty when none is set)."""
        return self._get(f"{self._home(home_id)}/zones/{zone_id}/overlay")

    def get_zone_active_timetable(
        self, zone_id: str, home_id: Optional[str] = None
    ) -> dict[str, Any]:
        return self._get(f"{self._home(home_id)}/zones/{zone_id}/schedule/activeTimetable")

    def get_zone_away_configuration(
        self, zone_id: str, home_id: Optional[str] = None
    ) -> dict[str, Any]:
        return self._get(
            f"{self._home(home_id)}/zones/{zone_id}/schedule/awayConfiguration"
        )

    # --- Derived ---

    def is_anyone_at_home(self, home_id: Optional[str] = None) -> bool:
        """Return ``True`` if any user's mobile device reports being at home."""
        for user in self.get_users(home_id):
            for device in user.get("mobileDevices") or []:
                location = device.get("location") or {}
                if location.get("atHome"):
                    return True
        return False

    def get_home_metrics(self, home_id: Optional[str] = None) -> HomeMetrics:
        """Return the aggregated zones, devices and live states of a home."""
        zones = self.get_zones(home_id)
        states = self.get_zone_states(home_id)
        return build_home_metrics(zones, states)


@contextlib.contextmanager
def open_tado_client(
    config: ExporterConfig,
    clock: Optional[Clock] = None,
) -> Iterator[TadoClient]:
    """Open an HTTP session and yield a fully wired :class:`TadoClient`.

    The identity provider calls and the resource calls share one
    :class:`httpx.Client`, which is closed when the block exits.

    Args:
        config: The effective configuration from
            :func:`~tadometrics.config.resolve_config`.
        clock: Optional time source for the token manager.

    Example::

        with open_tado_client(config) as client:
            report = client.get_home_metrics()
    """
    with httpx.Client() as http:
        manager = create_token_manager(config, http, clock=clock)
        executor = AuthorizedRequestExecutor(
            manager,
            http,
            timeout=config.request_timeout,
            connect_timeout=config.connect_timeout,
        )
        yield TadoClient(executor, config.api_base_url, config.home_id)
