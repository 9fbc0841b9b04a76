"""Tests for the shared Pydantic models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tadometrics.models import (
    CredentialState,
    ExporterConfig,
    GrantOutcome,
    GrantResult,
    TokenGrant,
)

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestCredentialState:
    def test_defaults_are_empty(self) -> None:
        state = CredentialState()
        assert state.access_token == ""
        assert state.refresh_token == ""
        assert state.access_token_expires is None
        assert state.device_authorization() is None

    def test_naive_timestamps_are_utc(self) -> None:
        state = CredentialState(access_token_expires=datetime(2025, 3, 1, 12, 0, 0))
        assert state.access_token_expires == NOW

    def test_assignment_is_validated(self) -> None:
        state = CredentialState()
        state.device_code_expires = datetime(2025, 3, 1, 12, 0, 0)
        assert state.device_code_expires.tzinfo is not None

    @pytest.mark.parametrize(
        ("offset", "skew", "expected"),
        [
            (60, 5, True),
            (6, 5, True),
            (5, 5, False),
            (3, 5, False),
            (-1, 0, False),
        ],
    )
    def test_access_token_validity(self, offset: int, skew: int, expected: bool) -> None:
        state = CredentialState(
            access_token="a", access_token_expires=NOW + timedelta(seconds=offset)
        )
        assert state.has_valid_access_token(NOW, skew) is expected

    def test_token_without_expiry_is_invalid(self) -> None:
        assert not CredentialState(access_token="a").has_valid_access_token(NOW)

    def test_pending_device_code(self) -> None:
        state = CredentialState(device_code="d", device_code_expires=NOW + timedelta(seconds=1))
        assert state.has_pending_device_code(NOW)
        assert not state.has_pending_device_code(NOW + timedelta(seconds=1))

    def test_apply_grant_subtracts_margin(self) -> None:
        state = CredentialState(refresh_token="old")
        state.apply_grant(TokenGrant(access_token="a", refresh_token="new", expires_in=600), NOW, 5)
        assert state.access_token == "a"
        assert state.refresh_token == "new"
        assert state.access_token_expires == NOW + timedelta(seconds=595)

    def test_apply_grant_never_expires_in_the_past(self) -> None:
        state = CredentialState()
        state.apply_grant(TokenGrant(access_token="a", expires_in=2), NOW, 5)
        assert state.access_token_expires == NOW

    def test_clear_tokens_keeps_device_code(self) -> None:
        state = CredentialState(
            access_token="a", refresh_token="r", device_code="d", access_token_expires=NOW
        )
        state.clear_tokens()
        assert (state.access_token, state.refresh_token) == ("", "")
        assert state.access_token_expires is None
        assert state.device_code == "d"

    def test_device_authorization_defaults_interval(self) -> None:
        state = CredentialState(device_code="d", device_code_expires=NOW)
        authorization = state.device_authorization()
        assert authorization is not None
        assert authorization.retry_interval == 5
        assert authorization.expires_at == NOW


class TestGrantResult:
    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            ("authorization_pending", GrantOutcome.AUTHORIZATION_PENDING),
            ("slow_down", GrantOutcome.SLOW_DOWN),
            ("invalid_grant", GrantOutcome.INVALID_GRANT),
            ("expired_token", GrantOutcome.FATAL),
            ("ok", GrantOutcome.FATAL),
        ],
    )
    def test_from_error(self, error: str, kind: GrantOutcome) -> None:
        result = GrantResult.from_error(error)
        assert result.kind is kind
        assert result.error == error

    def test_message_prefers_description(self) -> None:
        assert GrantResult.from_error("access_denied", "Denied").message == "Denied"
        assert GrantResult.from_error("access_denied").message == "access_denied"

    def test_token_grant_defaults(self) -> None:
        grant = TokenGrant.model_validate({"access_token": "a", "scope": "ignored"})
        assert grant.refresh_token is None
        assert grant.expires_in == 600


class TestExporterConfig:
    def test_defaults(self) -> None:
        config = ExporterConfig()
        assert config.grant == "device_code"
        assert config.client_id == "1bb50063-6b0c-4d11-bd99-387f4a91cc46"
        assert config.poll_window_seconds == 120
        assert config.request_timeout == 5.0
        assert config.connect_timeout == 5.0
        assert config.interactive is True
        assert config.honor_slow_down is False

    def test_endpoints_are_derived(self) -> None:
        config = ExporterConfig(auth_base_url="https://idp.example.com/oauth2")
        assert config.device_authorize_url == "https://idp.example.com/oauth2/device_authorize"
        assert config.token_url == "https://idp.example.com/oauth2/token"

    def test_unknown_grant_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            ExporterConfig(grant="client_credentials")  # type: ignore[arg-type]
