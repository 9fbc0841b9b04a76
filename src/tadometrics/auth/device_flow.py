"""OAuth2 Device Authorization Grant (:rfc:`8628`) -- the device-code half.

For headless exporters (cron jobs, containers) that cannot open a browser.

Flow:
    1. POST ``{client_id, scope=offline_access}`` to ``device_authorize`` to
       obtain ``device_code`` + ``user_code``.
    2. Notify a human: "Go to {verification_uri_complete} before {deadline}
       and enter code {user_code}".
    3. The token manager polls the token endpoint with the device code.

The device code is cached in the credential state and reused until its own
expiry, so a cron job that runs every minute keeps presenting the same
code instead of issuing a fresh one per run.

See Also:
    :class:`~tadometrics.auth.token_manager.TokenManager` for the polling
    half of the flow.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import httpx

from tadometrics.auth.clock import Clock
from tadometrics.auth.state_store import StateStore
from tadometrics.exceptions import FatalAuthError, TransportError
from tadometrics.models import CredentialState, DeviceAuthorization
from tadometrics.output import get_output

logger = logging.getLogger(__name__)

Notifier = Callable[[DeviceAuthorization], None]
"""Callback that surfaces a new device code to a human."""


def notify_via_output(authorization: DeviceAuthorization) -> None:
    """Default :data:`Notifier`: print the verification URL and code to stderr."""
    deadline = authorization.expires_at.astimezone()
    logger.debug(
        "Device code %s must be authorized in a browser before %s",
        authorization.user_code,
        deadline.isoformat(timespec="seconds"),
    )
    output = get_output()
    output.warning("tado° authorization required.")
    output.warning(f"Go to: {authorization.verification_uri_complete}")
    output.warning(f"Enter code: {authorization.user_code}")
    output.warning(f"Before: {deadline:%Y-%m-%d %H:%M:%S %Z}")


class DeviceAuthorizationFlow:
    """Request, cache and retire device codes.

    Args:
        http: The HTTP transport.
        store: Where every state change is persisted.
        clock: Time source.
        url: The ``device_authorize`` endpoint.
        client_id: OAuth2 client identifier.
        scope: Requested scope (``offline_access`` yields a refresh token).
        margin_seconds: Subtracted from the provider's ``expires_in``.
        timeout: Connect and response timeout for the request.
        notifier: Called with every *newly issued* device code.
    """

    def __init__(
        self,
        http: httpx.Client,
        store: StateStore,
        clock: Clock,
        url: str,
        client_id: str,
        scope: str = "offline_access",
        margin_seconds: float = 5,
        timeout: float = 10.0,
        notifier: Notifier = notify_via_output,
    ) -> None:
        self._http = http
        self._store = store
        self._clock = clock
        self._url = url
        self._client_id = client_id
        self._scope = scope
        self._margin = margin_seconds
        self._timeout = timeout
        self._notifier = notifier

    def ensure_device_code(self, state: CredentialState) -> DeviceAuthorization:
        """Return the cached device code, requesting a new one once it has expired.

        A cached, unexpired code is returned without any network call and
        without notifying again. A new code is written into *state*,
        persisted, and handed to the notifier.

        Args:
            state: The live credential state (mutated in place).

        Returns:
            The outstanding :class:`DeviceAuthorization`.

        Raises:
            FatalAuthError: If the provider rejects the request or the reply
                lacks a ``device_code``.
            TransportError: On connection failures and timeouts.
            StateFileError: If the new code cannot be persisted.
        """
        now = self._clock.now()
        if state.has_pending_device_code(now):
            cached = state.device_authorization()
            assert cached is not None  # has_pending_device_code() guarantees this
            return cached

        data = self._request_device_code()
        expires_in = int(data.get("expires_in") or 300)
        interval = int(data.get("interval") or 5)

        state.device_code = str(data["device_code"])
        state.user_code = str(data.get("user_code", ""))
        state.verification_uri_complete = str(
            data.get("verification_uri_complete") or data.get("verification_uri", "")
        )
        state.device_code_retry_interval = max(interval, 1)
        state.device_code_expires = now + timedelta(
            seconds=max(expires_in - self._margin, 0)
        )
        self._store.save(state)
        logger.info("Issued new device code, valid until %s", state.device_code_expires)

        authorization = state.device_authorization()
        assert authorization is not None
        self._notifier(authorization)
        return authorization

    def consume(self, state: CredentialState) -> None:
        """Retire the device code after it has been redeemed, and persist."""
        state.clear_device_code()
        self._store.save(state)

    def _request_device_code(self) -> dict[str, Any]:
        """POST to the device authorization endpoint.

        Returns:
            The parsed JSON response containing ``device_code``,
            ``user_code``, ``verification_uri_complete``, ``interval`` and
            ``expires_in``.
        """
        form = {"client_id": self._client_id, "scope": self._scope}
        try:
            response = self._http.post(
                self._url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            result: Any = response.json()
        except httpx.HTTPStatusError as exc:
            raise FatalAuthError(
                f"Device authorization request failed with status "
                f"{exc.response.status_code}: {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Device authorization request failed: {exc}") from exc
        except ValueError as exc:
            raise FatalAuthError(
                f"Device authorization response is not JSON: {exc}"
            ) from exc

        if not isinstance(result, dict) or not result.get("device_code"):
            raise FatalAuthError("Device authorization response missing 'device_code'")
        return result
