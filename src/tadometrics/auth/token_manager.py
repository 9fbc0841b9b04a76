"""Token acquisition and renewal state machine.

:class:`TokenManager` answers one question -- "give me a valid access
token" -- with as little network traffic and human involvement as
possible::

    Unauthenticated --> Valid --> RefreshPending ----> Valid
                          |            | (rejected)
                          |            v
                          +-----> DeviceAuthPending --> Valid

1. A stored access token that is still valid (expiry minus clock skew) is
   returned with zero network calls.
2. Otherwise a stored refresh token is exchanged. ``invalid_grant`` erases
   the token pair and falls through; any other provider error falls
   through with the stored pair kept for the next run.
3. Otherwise the primary grant runs. For the device-code grant that means
   presenting a device code to a human and polling the token endpoint
   every ``interval`` seconds, at most ``ceil(poll_window / interval)``
   times and never past the wall-clock deadline.

Every state change is persisted through the
:class:`~tadometrics.auth.state_store.StateStore` before the token is
returned.
"""

from __future__ import annotations

import contextlib
import logging
import math
import threading
from collections.abc import Iterator
from datetime import timedelta
from typing import Optional

import httpx

from tadometrics.auth.base import GrantStrategy
from tadometrics.auth.clock import Clock, SystemClock
from tadometrics.auth.device_flow import DeviceAuthorizationFlow, Notifier, notify_via_output
from tadometrics.auth.grants import create_primary_grant, create_refresh_grant
from tadometrics.auth.state_store import StateStore
from tadometrics.exceptions import (
    AuthCancelledError,
    AuthTimeoutError,
    FatalAuthError,
    HumanActionRequired,
)
from tadometrics.models import CredentialState, ExporterConfig, GrantOutcome, TokenGrant

logger = logging.getLogger(__name__)

_SLOW_DOWN_INCREMENT = 5


class TokenManager:
    """Return a currently valid access token, renewing it when needed.

    Args:
        http: The HTTP transport used for identity provider calls.
        store: Persists the credential state.
        refresh_grant: Strategy used while a refresh token is stored.
        primary_grant: Strategy used when no refresh token is usable.
        device_flow: Required when *primary_grant* needs device
            authorization.
        clock: Time source. Defaults to :class:`SystemClock`.
        poll_window: Seconds of device-code polling (default 120).
        margin_seconds: Subtracted from every provider-reported lifetime.
        clock_skew_seconds: Extra leeway when checking access token expiry.
        interactive: When ``False`` a pending device code raises
            :class:`~tadometrics.exceptions.HumanActionRequired` after one
            poll instead of waiting for the human.
        honor_slow_down: When ``True`` a ``slow_down`` reply adds five
            seconds to the polling interval; otherwise it is fatal.
        lock_state: Serialise whole load-decide-save cycles with the
            store's advisory lock.

    Example::

        manager = create_token_manager(config, httpx.Client())
        token = manager.get_valid_access_token()
    """

    def __init__(
        self,
        http: httpx.Client,
        store: StateStore,
        refresh_grant: GrantStrategy,
        primary_grant: GrantStrategy,
        device_flow: Optional[DeviceAuthorizationFlow] = None,
        clock: Optional[Clock] = None,
        poll_window: float = 120,
        margin_seconds: float = 5,
        clock_skew_seconds: float = 5,
        interactive: bool = True,
        honor_slow_down: bool = False,
        lock_state: bool = True,
    ) -> None:
        if primary_grant.needs_device_authorization and device_flow is None:
            raise ValueError(
                f"{primary_grant.grant_type} grant needs a DeviceAuthorizationFlow"
            )
        self._http = http
        self._store = store
        self._refresh_grant = refresh_grant
        self._primary_grant = primary_grant
        self._device_flow = device_flow
        self._clock = clock or SystemClock()
        self._poll_window = poll_window
        self._margin = margin_seconds
        self._skew = clock_skew_seconds
        self._interactive = interactive
        self._honor_slow_down = honor_slow_down
        self._lock_state = lock_state

    @property
    def store(self) -> StateStore:
        return self._store

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def get_valid_access_token(
        self,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Return an access token that will not expire mid-request.

        Args:
            cancel: Setting this event aborts device-code polling.
            timeout: Caps the polling wall-clock time below the configured
                poll window.

        Returns:
            The access token string.

        Raises:
            FatalAuthError: The provider returned a non-retryable error.
            AuthTimeoutError: Nobody authorized the device code in time.
            AuthCancelledError: *cancel* was set during polling.
            HumanActionRequired: Non-interactive mode and the device code is
                still waiting for a human.
            TransportError: An identity provider call failed at the network
                level.
            StateFileError: The new state could not be persisted.
        """
        with self._locked():
            state = self._store.load()
            if state.has_valid_access_token(self._clock.now(), self._skew):
                return state.access_token

            if state.refresh_token:
                token = self._try_refresh(state)
                if token is not None:
                    return token

            return self._acquire(state, cancel, timeout)

    def force_reauthenticate(
        self,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Discard stored tokens and run the primary grant.

        A device code that is still outstanding is reused.
        """
        with self._locked():
            state = self._store.load()
            state.clear_tokens()
            self._store.save(state)
            return self._acquire(state, cancel, timeout)

    def status(self) -> CredentialState:
        """Return a snapshot of the persisted credential state."""
        return self._store.load()

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        if self._lock_state:
            with self._store.lock():
                yield
        else:
            yield

    def _store_grant(self, state: CredentialState, grant: TokenGrant) -> str:
        state.apply_grant(grant, self._clock.now(), self._margin)
        self._store.save(state)
        return state.access_token

    def _try_refresh(self, state: CredentialState) -> Optional[str]:
        """Exchange the refresh token; ``None`` means fall back to the primary grant."""
        result = self._refresh_grant.exchange(self._http, state)
        if result.kind is GrantOutcome.OK:
            assert result.grant is not None
            logger.debug("Access token refreshed")
            return self._store_grant(state, result.grant)

        if result.kind is GrantOutcome.INVALID_GRANT:
            logger.info(
                "Refresh token rejected (invalid_grant); falling back to %s grant",
                self._primary_grant.grant_type,
            )
            state.clear_tokens()
            self._store.save(state)
            return None

        # Not a revocation: the stored pair stays for the next run.
        logger.warning(
            "Token refresh failed (%s); falling back to %s grant",
            result.message,
            self._primary_grant.grant_type,
        )
        return None

    def _acquire(
        self,
        state: CredentialState,
        cancel: Optional[threading.Event],
        timeout: Optional[float],
    ) -> str:
        """Run the primary grant."""
        if self._primary_grant.needs_device_authorization:
            return self._poll_device_code(state, cancel, timeout)

        result = self._primary_grant.exchange(self._http, state)
        if result.kind is GrantOutcome.OK:
            assert result.grant is not None
            return self._store_grant(state, result.grant)
        raise FatalAuthError(
            f"{self._primary_grant.grant_type} grant failed: {result.message}",
            error=result.error,
        )

    def _poll_device_code(
        self,
        state: CredentialState,
        cancel: Optional[threading.Event],
        timeout: Optional[float],
    ) -> str:
        """Poll the token endpoint until the device code is authorized.

        The device code is re-ensured before every poll, so a code that
        expires mid-loop is replaced (and the human notified again).
        """
        assert self._device_flow is not None

        window = self._poll_window if timeout is None else min(self._poll_window, timeout)
        deadline = self._clock.now() + timedelta(seconds=window)

        authorization = self._device_flow.ensure_device_code(state)
        max_attempts = max(math.ceil(self._poll_window / authorization.retry_interval), 1)
        backoff = 0.0

        for attempt in range(1, max_attempts + 1):
            authorization = self._device_flow.ensure_device_code(state)
            interval = authorization.retry_interval + backoff
            result = self._primary_grant.exchange(self._http, state)

            if result.kind is GrantOutcome.OK:
                assert result.grant is not None
                state.apply_grant(result.grant, self._clock.now(), self._margin)
                self._device_flow.consume(state)
                logger.info("Device code authorized after %d attempt(s)", attempt)
                return state.access_token

            if result.kind is GrantOutcome.AUTHORIZATION_PENDING:
                if not self._interactive:
                    raise HumanActionRequired(authorization)
                logger.info(
                    "Still pending user authorization (attempt %d/%d). "
                    "Device code expires at %s",
                    attempt,
                    max_attempts,
                    authorization.expires_at.isoformat(timespec="seconds"),
                )
            elif result.kind is GrantOutcome.SLOW_DOWN and self._honor_slow_down:
                backoff += _SLOW_DOWN_INCREMENT
                interval += _SLOW_DOWN_INCREMENT
                logger.info("Provider asked to slow down; polling every %.0fs", interval)
            else:
                raise FatalAuthError(
                    f"Device code authorization failed: {result.message}",
                    error=result.error,
                )

            if attempt == max_attempts:
                break
            remaining = (deadline - self._clock.now()).total_seconds()
            if remaining <= 0:
                break
            if self._clock.wait(min(interval, remaining), cancel):
                raise AuthCancelledError("Device code polling cancelled")

        raise AuthTimeoutError(
            "Cannot authenticate with device code to obtain refresh and access "
            f"tokens: not authorized within {window:.0f}s. Visit "
            f"{authorization.verification_uri_complete} and enter code "
            f"{authorization.user_code}, then run again."
        )


def create_token_manager(
    config: ExporterConfig,
    http: httpx.Client,
    clock: Optional[Clock] = None,
    notifier: Notifier = notify_via_output,
) -> TokenManager:
    """Create a :class:`TokenManager` wired from the exporter configuration.

    Args:
        config: The effective configuration (``state_file`` must be set,
            see :func:`~tadometrics.config.resolve_config`).
        http: The HTTP transport shared by all identity provider calls.
        clock: Optional time source, defaults to :class:`SystemClock`.
        notifier: Receives newly issued device codes.

    Returns:
        A fully wired :class:`TokenManager`.
    """
    clock = clock or SystemClock()
    assert config.state_file, "resolve_config() always sets state_file"
    store = StateStore(config.state_file, lock_timeout=config.lock_timeout)
    primary = create_primary_grant(config)

    device_flow: Optional[DeviceAuthorizationFlow] = None
    if primary.needs_device_authorization:
        device_flow = DeviceAuthorizationFlow(
            http=http,
            store=store,
            clock=clock,
            url=config.device_authorize_url,
            client_id=config.client_id,
            scope=config.scope,
            margin_seconds=config.expiry_margin_seconds,
            timeout=config.auth_timeout,
            notifier=notifier,
        )

    return TokenManager(
        http=http,
        store=store,
        refresh_grant=create_refresh_grant(config),
        primary_grant=primary,
        device_flow=device_flow,
        clock=clock,
        poll_window=config.poll_window_seconds,
        margin_seconds=config.expiry_margin_seconds,
        clock_skew_seconds=config.clock_skew_seconds,
        interactive=config.interactive,
        honor_slow_down=config.honor_slow_down,
        lock_state=config.lock_state,
    )
