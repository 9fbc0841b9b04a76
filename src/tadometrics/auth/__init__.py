"""Credential lifecycle for the tado° identity provider.

The main entry points are:

- :class:`TokenManager` -- returns a valid access token, refreshing or
  re-authorizing as needed.
- :func:`create_token_manager` -- factory that wires a :class:`TokenManager`
  from an :class:`~tadometrics.models.ExporterConfig`.
- :class:`StateStore` -- persistent, atomically written credential state.
- :class:`DeviceAuthorizationFlow` -- requests and caches device codes.
- :class:`GrantStrategy` -- abstract base class of the grant types.

Typical usage::

    from tadometrics.auth import create_token_manager

    manager = create_token_manager(config, httpx.Client())
    token = manager.get_valid_access_token()
"""

from tadometrics.auth.base import GrantStrategy
from tadometrics.auth.clock import Clock, SystemClock
from tadometrics.auth.device_flow import DeviceAuthorizationFlow, notify_via_output
from tadometrics.auth.grants import DeviceCodeGrant, PasswordGrant, RefreshGrant
from tadometrics.auth.state_store import StateStore
from tadometrics.auth.token_manager import TokenManager, create_token_manager

__all__ = [
    "Clock",
    "DeviceAuthorizationFlow",
    "DeviceCodeGrant",
    "GrantStrategy",
    "PasswordGrant",
    "RefreshGrant",
    "StateStore",
    "SystemClock",
    "TokenManager",
    "create_token_manager",
    "notify_via_output",
]
