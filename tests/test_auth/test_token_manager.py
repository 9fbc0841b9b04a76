"""Tests for the token acquisition and renewal state machine."""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest

from conftest import (
    DEVICE_AUTHORIZE_PATH,
    TOKEN_PATH,
    FakeClock,
    ScriptedServer,
    device_code_response,
    error_response,
    form_of,
    token_response,
)
from tadometrics.auth.base import GrantStrategy
from tadometrics.auth.grants import DeviceCodeGrant, RefreshGrant
from tadometrics.auth.state_store import StateStore
from tadometrics.auth.token_manager import TokenManager, create_token_manager
from tadometrics.exceptions import (
    AuthCancelledError,
    AuthError,
    AuthTimeoutError,
    FatalAuthError,
    HumanActionRequired,
    TransportError,
)
from tadometrics.models import DEVICE_CODE_GRANT_TYPE, CredentialState, DeviceAuthorization, ExporterConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state.json"


@pytest.fixture
def notified() -> list[DeviceAuthorization]:
    return []


@pytest.fixture
def make_manager(
    server: ScriptedServer,
    clock: FakeClock,
    state_path: Path,
    notified: list[DeviceAuthorization],
):
    def _make(**overrides: Any) -> TokenManager:
        config = ExporterConfig(state_file=str(state_path), **overrides)
        return create_token_manager(
            config, server.client(), clock=clock, notifier=notified.append
        )

    return _make


def _seed(state_path: Path, **fields: Any) -> None:
    StateStore(state_path).save(CredentialState(**fields))


def _load(state_path: Path) -> CredentialState:
    return StateStore(state_path).load()


# ---------------------------------------------------------------------------
# Cached access token
# ---------------------------------------------------------------------------


class TestCachedAccessToken:
    def test_valid_token_needs_no_network(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(
            state_path,
            access_token="cached",
            refresh_token="r",
            access_token_expires=clock.now() + timedelta(seconds=300),
        )
        assert make_manager().get_valid_access_token() == "cached"
        assert server.requests == []

    def test_token_within_clock_skew_is_refreshed(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(
            state_path,
            access_token="old",
            refresh_token="r-old",
            access_token_expires=clock.now() + timedelta(seconds=3),
        )
        server.add(TOKEN_PATH, token_response("new", "r-new", expires_in=600))

        assert make_manager().get_valid_access_token() == "new"
        assert len(server.calls(TOKEN_PATH)) == 1

    def test_expired_token_is_refreshed(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(
            state_path,
            access_token="old",
            refresh_token="r-old",
            access_token_expires=clock.now() - timedelta(seconds=1),
        )
        server.add(TOKEN_PATH, token_response("new", "r-new", expires_in=600))

        assert make_manager().get_valid_access_token() == "new"

        form = form_of(server.calls(TOKEN_PATH)[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "r-old"
        assert form["client_id"] == ExporterConfig().client_id

    def test_refreshed_state_is_persisted_with_margin(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-old")
        server.add(TOKEN_PATH, token_response("new", "r-new", expires_in=600))

        make_manager().get_valid_access_token()

        state = _load(state_path)
        assert state.access_token == "new"
        assert state.refresh_token == "r-new"
        assert state.access_token_expires == clock.now() + timedelta(seconds=595)

    def test_refresh_without_new_refresh_token_keeps_old_one(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-old")
        server.add(TOKEN_PATH, token_response("new", refresh_token=None))

        make_manager().get_valid_access_token()

        assert _load(state_path).refresh_token == "r-old"

    def test_second_call_reuses_refreshed_token(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-old")
        server.add(TOKEN_PATH, token_response("new", "r-new"))
        manager = make_manager()

        assert manager.get_valid_access_token() == "new"
        assert manager.get_valid_access_token() == "new"
        assert len(server.requests) == 1


# ---------------------------------------------------------------------------
# Refresh failures
# ---------------------------------------------------------------------------


class TestRefreshFailure:
    def test_invalid_grant_falls_back_to_device_code(
        self,
        make_manager,
        server: ScriptedServer,
        state_path: Path,
        notified: list[DeviceAuthorization],
    ) -> None:
        _seed(state_path, refresh_token="revoked")
        server.add(TOKEN_PATH, error_response("invalid_grant"), token_response("fresh", "r2"))
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())

        assert make_manager().get_valid_access_token() == "fresh"

        grant_types = [form_of(r)["grant_type"] for r in server.calls(TOKEN_PATH)]
        assert grant_types == ["refresh_token", DEVICE_CODE_GRANT_TYPE]
        assert len(notified) == 1

        state = _load(state_path)
        assert state.refresh_token == "r2"
        assert state.device_code == ""

    def test_other_provider_error_also_falls_back(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r")
        server.add(
            TOKEN_PATH,
            error_response("server_error", status_code=500),
            token_response("fresh"),
        )
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())

        assert make_manager().get_valid_access_token() == "fresh"

    def test_provider_error_keeps_refresh_token(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-good")
        server.add(
            TOKEN_PATH,
            error_response("server_error", status_code=500),
            error_response("authorization_pending"),
        )
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())

        with pytest.raises(HumanActionRequired):
            make_manager(interactive=False).get_valid_access_token()

        state = _load(state_path)
        assert state.refresh_token == "r-good"
        assert state.device_code == "abc"

    def test_outage_keeps_refresh_token(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-good")
        server.add(TOKEN_PATH, httpx.Response(503, text="Service Unavailable"))
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())

        with pytest.raises(FatalAuthError):
            make_manager(interactive=False).get_valid_access_token()

        assert _load(state_path).refresh_token == "r-good"

    def test_refresh_retried_on_next_run_after_outage(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-good")
        server.add(
            TOKEN_PATH,
            httpx.Response(503, text="Service Unavailable"),
            error_response("authorization_pending"),
            token_response("recovered", "r-next"),
        )
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())
        manager = make_manager(interactive=False)

        with pytest.raises(HumanActionRequired):
            manager.get_valid_access_token()
        assert manager.get_valid_access_token() == "recovered"

        forms = [form_of(r) for r in server.calls(TOKEN_PATH)]
        assert forms[-1]["grant_type"] == "refresh_token"
        assert forms[-1]["refresh_token"] == "r-good"

    def test_malformed_refresh_reply_keeps_refresh_token(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r-good")
        server.add(
            TOKEN_PATH,
            httpx.Response(200, json={"access_token": "a", "expires_in": None}),
            error_response("authorization_pending"),
        )
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())

        with pytest.raises(HumanActionRequired):
            make_manager(interactive=False).get_valid_access_token()

        assert _load(state_path).refresh_token == "r-good"

    def test_rejected_refresh_token_is_cleared_from_state(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="revoked")
        server.add(TOKEN_PATH, error_response("invalid_grant"), error_response("access_denied"))
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())

        with pytest.raises(FatalAuthError):
            make_manager().get_valid_access_token()

        assert _load(state_path).refresh_token == ""

    def test_transport_error_propagates(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r")
        server.add(TOKEN_PATH, httpx.ConnectError("connection refused"))

        with pytest.raises(TransportError):
            make_manager().get_valid_access_token()

        assert _load(state_path).refresh_token == "r"


# ---------------------------------------------------------------------------
# Device-code polling
# ---------------------------------------------------------------------------


class TestDeviceCodePolling:
    def test_success_after_pending(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response(device_code="abc"))
        server.add(
            TOKEN_PATH,
            error_response("authorization_pending"),
            error_response("authorization_pending"),
            token_response("granted", "r1"),
        )

        assert make_manager().get_valid_access_token() == "granted"

        assert clock.waits == [5, 5]
        token_calls = server.calls(TOKEN_PATH)
        assert len(token_calls) == 3
        assert all(form_of(r)["device_code"] == "abc" for r in token_calls)
        assert len(server.calls(DEVICE_AUTHORIZE_PATH)) == 1

        state = _load(state_path)
        assert state.access_token == "granted"
        assert state.refresh_token == "r1"
        assert state.device_code == ""
        assert state.device_code_expires is None

    def test_times_out_after_poll_window(
        self, make_manager, server: ScriptedServer, clock: FakeClock
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response(expires_in=300, interval=5))
        server.add(TOKEN_PATH, error_response("authorization_pending"))

        with pytest.raises(AuthTimeoutError, match="XYZ123"):
            make_manager().get_valid_access_token()

        assert len(server.calls(TOKEN_PATH)) == 24
        assert len(server.calls(DEVICE_AUTHORIZE_PATH)) == 1
        assert len(clock.waits) == 23

    def test_timeout_argument_shortens_window(
        self, make_manager, server: ScriptedServer, clock: FakeClock
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response(interval=5))
        server.add(TOKEN_PATH, error_response("authorization_pending"))
        start = clock.now()

        with pytest.raises(AuthTimeoutError):
            make_manager().get_valid_access_token(timeout=20)

        assert len(server.calls(TOKEN_PATH)) == 5
        assert clock.now() - start == timedelta(seconds=20)

    def test_expired_device_code_is_replaced_mid_poll(
        self,
        make_manager,
        server: ScriptedServer,
        notified: list[DeviceAuthorization],
    ) -> None:
        server.add(
            DEVICE_AUTHORIZE_PATH,
            device_code_response(device_code="dc1", expires_in=20),
            device_code_response(device_code="dc2", expires_in=20),
        )
        server.add(
            TOKEN_PATH,
            error_response("authorization_pending"),
            error_response("authorization_pending"),
            error_response("authorization_pending"),
            token_response("granted"),
        )

        assert make_manager().get_valid_access_token() == "granted"

        codes = [form_of(r)["device_code"] for r in server.calls(TOKEN_PATH)]
        assert codes == ["dc1", "dc1", "dc1", "dc2"]
        assert [a.device_code for a in notified] == ["dc1", "dc2"]

    def test_replacement_code_interval_is_used(
        self, make_manager, server: ScriptedServer, clock: FakeClock
    ) -> None:
        server.add(
            DEVICE_AUTHORIZE_PATH,
            device_code_response(device_code="dc1", expires_in=20, interval=5),
            device_code_response(device_code="dc2", expires_in=300, interval=10),
        )
        server.add(
            TOKEN_PATH,
            *[error_response("authorization_pending")] * 4,
            token_response("granted"),
        )

        assert make_manager().get_valid_access_token() == "granted"
        assert clock.waits == [5, 5, 5, 10]

    def test_outstanding_device_code_is_reused(
        self,
        make_manager,
        server: ScriptedServer,
        clock: FakeClock,
        state_path: Path,
        notified: list[DeviceAuthorization],
    ) -> None:
        _seed(
            state_path,
            device_code="cached-code",
            user_code="CACHED",
            device_code_expires=clock.now() + timedelta(seconds=200),
            device_code_retry_interval=5,
        )
        server.add(TOKEN_PATH, token_response("granted"))

        assert make_manager().get_valid_access_token() == "granted"

        assert server.calls(DEVICE_AUTHORIZE_PATH) == []
        assert form_of(server.calls(TOKEN_PATH)[0])["device_code"] == "cached-code"
        assert notified == []

    def test_fatal_error_stops_polling(
        self, make_manager, server: ScriptedServer, clock: FakeClock
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())
        server.add(
            TOKEN_PATH,
            error_response("authorization_pending"),
            error_response("access_denied", description="User denied access"),
        )

        with pytest.raises(FatalAuthError, match="User denied access") as exc_info:
            make_manager().get_valid_access_token()

        assert exc_info.value.error == "access_denied"
        assert len(server.calls(TOKEN_PATH)) == 2
        assert clock.waits == [5]

    def test_expired_token_error_is_fatal(self, make_manager, server: ScriptedServer) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())
        server.add(TOKEN_PATH, error_response("expired_token"))

        with pytest.raises(FatalAuthError):
            make_manager().get_valid_access_token()

    def test_slow_down_is_fatal_by_default(self, make_manager, server: ScriptedServer) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())
        server.add(TOKEN_PATH, error_response("slow_down"))

        with pytest.raises(FatalAuthError) as exc_info:
            make_manager().get_valid_access_token()

        assert exc_info.value.error == "slow_down"

    def test_slow_down_backs_off_when_honored(
        self, make_manager, server: ScriptedServer, clock: FakeClock
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response(interval=5))
        server.add(TOKEN_PATH, error_response("slow_down"), token_response("granted"))

        assert make_manager(honor_slow_down=True).get_valid_access_token() == "granted"
        assert clock.waits == [10]

    def test_cancel_aborts_wait(self, make_manager, server: ScriptedServer) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())
        server.add(TOKEN_PATH, error_response("authorization_pending"))
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(AuthCancelledError) as exc_info:
            make_manager().get_valid_access_token(cancel=cancel)

        assert exc_info.value.exit_code == 130
        assert len(server.calls(TOKEN_PATH)) == 1

    def test_device_authorization_failure_is_fatal(
        self, make_manager, server: ScriptedServer
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, httpx.Response(400, json={"error": "invalid_client"}))

        with pytest.raises(FatalAuthError, match="400"):
            make_manager().get_valid_access_token()

        assert server.calls(TOKEN_PATH) == []


# ---------------------------------------------------------------------------
# Non-interactive mode
# ---------------------------------------------------------------------------


class TestNonInteractive:
    def test_pending_raises_human_action_required(
        self, make_manager, server: ScriptedServer, clock: FakeClock
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response(user_code="ABCD"))
        server.add(TOKEN_PATH, error_response("authorization_pending"))

        with pytest.raises(HumanActionRequired) as exc_info:
            make_manager(interactive=False).get_valid_access_token()

        exc = exc_info.value
        assert not isinstance(exc, AuthError)
        assert exc.exit_code == 8
        assert exc.authorization.user_code == "ABCD"
        assert "user_code=ABCD" in exc.authorization.verification_uri_complete
        assert len(server.calls(TOKEN_PATH)) == 1
        assert clock.waits == []

    def test_next_run_reuses_persisted_device_code(
        self,
        make_manager,
        server: ScriptedServer,
        clock: FakeClock,
        notified: list[DeviceAuthorization],
    ) -> None:
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response(device_code="abc"))
        server.add(
            TOKEN_PATH,
            error_response("authorization_pending"),
            token_response("granted"),
        )

        with pytest.raises(HumanActionRequired):
            make_manager(interactive=False).get_valid_access_token()

        clock.advance(60)
        assert make_manager(interactive=False).get_valid_access_token() == "granted"

        assert len(server.calls(DEVICE_AUTHORIZE_PATH)) == 1
        assert len(notified) == 1


# ---------------------------------------------------------------------------
# Password grant
# ---------------------------------------------------------------------------


class TestPasswordGrant:
    def test_password_grant_obtains_tokens(
        self,
        make_manager,
        server: ScriptedServer,
        state_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("TADO_USERNAME", "me@example.com")
        monkeypatch.setenv("TADO_PASSWORD", "hunter2")
        server.add("/oauth/token", token_response("pw-access", "pw-refresh"))

        manager = make_manager(
            grant="password",
            username_source="env:TADO_USERNAME",
            password_source="env:TADO_PASSWORD",
        )
        assert manager.get_valid_access_token() == "pw-access"

        form = form_of(server.requests[0])
        assert server.requests[0].url.host == "auth.tado.com"
        assert form["grant_type"] == "password"
        assert form["client_id"] == "tado-web-app"
        assert form["username"] == "me@example.com"
        assert form["password"] == "hunter2"
        assert form["scope"] == "home.user"
        assert _load(state_path).refresh_token == "pw-refresh"

    def test_password_grant_refreshes_at_legacy_endpoint(
        self, make_manager, server: ScriptedServer, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="pw-refresh")
        server.add("/oauth/token", token_response("pw-access-2"))

        manager = make_manager(grant="password")
        assert manager.get_valid_access_token() == "pw-access-2"
        assert form_of(server.requests[0])["grant_type"] == "refresh_token"

    def test_rejected_password_is_fatal(
        self, make_manager, server: ScriptedServer, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TADO_USERNAME", "me@example.com")
        monkeypatch.setenv("TADO_PASSWORD", "wrong")
        server.add("/oauth/token", error_response("invalid_grant", description="Bad credentials"))

        manager = make_manager(
            grant="password",
            username_source="env:TADO_USERNAME",
            password_source="env:TADO_PASSWORD",
        )
        with pytest.raises(FatalAuthError, match="Bad credentials"):
            manager.get_valid_access_token()


# ---------------------------------------------------------------------------
# Re-authentication and status
# ---------------------------------------------------------------------------


class TestForceReauthenticate:
    def test_discards_valid_token(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(
            state_path,
            access_token="still-valid",
            refresh_token="r",
            access_token_expires=clock.now() + timedelta(seconds=300),
        )
        server.add(DEVICE_AUTHORIZE_PATH, device_code_response())
        server.add(TOKEN_PATH, token_response("brand-new"))

        assert make_manager().force_reauthenticate() == "brand-new"
        assert form_of(server.calls(TOKEN_PATH)[0])["grant_type"] == DEVICE_CODE_GRANT_TYPE

    def test_status_returns_persisted_state(
        self, make_manager, state_path: Path
    ) -> None:
        _seed(state_path, refresh_token="r", user_code="U1")
        status = make_manager().status()
        assert status.refresh_token == "r"
        assert status.user_code == "U1"


class TestConstruction:
    def test_device_grant_requires_flow(self, tmp_path: Path) -> None:
        grant: GrantStrategy = DeviceCodeGrant("https://example.com/token", "client")
        with pytest.raises(ValueError, match="DeviceAuthorizationFlow"):
            TokenManager(
                http=httpx.Client(),
                store=StateStore(tmp_path / "s.json"),
                refresh_grant=RefreshGrant("https://example.com/token", "client"),
                primary_grant=grant,
            )

    def test_lock_file_is_used(
        self, make_manager, server: ScriptedServer, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(
            state_path,
            access_token="cached",
            access_token_expires=clock.now() + timedelta(seconds=300),
        )
        make_manager().get_valid_access_token()
        assert StateStore(state_path).lock_path.exists()

    def test_lock_can_be_disabled(
        self, make_manager, clock: FakeClock, state_path: Path
    ) -> None:
        _seed(
            state_path,
            access_token="cached",
            access_token_expires=clock.now() + timedelta(seconds=300),
        )
        make_manager(lock_state=False).get_valid_access_token()
        assert not StateStore(state_path).lock_path.exists()
