"""Concrete grant strategies and the primary-grant registry.

Three grants produce tokens for the tado° API:

- :class:`RefreshGrant` -- exchanges the stored refresh token. Always tried
  first when a refresh token exists.
- :class:`DeviceCodeGrant` -- redeems the outstanding device code once a
  human has authorized it in a browser (:rfc:`8628`). The default primary
  grant.
- :class:`PasswordGrant` -- the legacy resource-owner password grant on
  ``auth.tado.com``. Selected with ``grant = "password"``.

:func:`create_primary_grant` picks the primary grant from configuration.
"""

from __future__ import annotations

from tadometrics.auth.base import GrantStrategy
from tadometrics.config import resolve_credential
from tadometrics.exceptions import ConfigError
from tadometrics.models import DEVICE_CODE_GRANT_TYPE, CredentialState, ExporterConfig


class RefreshGrant(GrantStrategy):
    """Exchange ``refresh_token`` for a new token pair."""

    @property
    def grant_type(self) -> str:
        return "refresh_token"

    def build_form(self, state: CredentialState) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "refresh_token": state.refresh_token,
        }


class DeviceCodeGrant(GrantStrategy):
    """Redeem the cached device code at the token endpoint."""

    needs_device_authorization = True

    @property
    def grant_type(self) -> str:
        return DEVICE_CODE_GRANT_TYPE

    def build_form(self, state: CredentialState) -> dict[str, str]:
        return {
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "device_code": state.device_code,
        }


class PasswordGrant(GrantStrategy):
    """Resource-owner password grant used by tado°'s legacy web app.

    Username, password and client secret are resolved from credential
    source descriptors at exchange time, never stored in the state file.

    Args:
        token_url: The legacy token endpoint.
        client_id: The legacy client id (``tado-web-app``).
        username_source: Credential source for the account e-mail.
        password_source: Credential source for the account password.
        client_secret_source: Optional credential source for the client
            secret.
        scope: Requested scope.
        timeout: Connect and response timeout.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        username_source: str | None,
        password_source: str | None,
        client_secret_source: str | None = None,
        scope: str = "home.user",
        timeout: float = 10.0,
    ) -> None:
        super().__init__(token_url, client_id, timeout)
        self.username_source = username_source
        self.password_source = password_source
        self.client_secret_source = client_secret_source
        self.scope = scope

    @property
    def grant_type(self) -> str:
        return "password"

    def build_form(self, state: CredentialState) -> dict[str, str]:
        if not self.username_source or not self.password_source:
            raise ConfigError(
                "password grant requires 'username_source' and 'password_source'"
            )
        form = {
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "scope": self.scope,
            "username": resolve_credential(self.username_source),
            "password": resolve_credential(self.password_source),
        }
        if self.client_secret_source:
            form["client_secret"] = resolve_credential(self.client_secret_source)
        return form


def create_refresh_grant(config: ExporterConfig) -> RefreshGrant:
    """Build the refresh grant for the configured identity provider.

    A refresh token is redeemed at the endpoint that issued it, so the
    password grant refreshes against the legacy endpoint.
    """
    if config.grant == "password":
        return RefreshGrant(
            config.password_token_url, config.password_client_id, config.auth_timeout
        )
    return RefreshGrant(config.token_url, config.client_id, config.auth_timeout)


def create_primary_grant(config: ExporterConfig) -> GrantStrategy:
    """Create the grant used when no refresh token is usable.

    Args:
        config: The effective exporter configuration.

    Returns:
        A :class:`DeviceCodeGrant` or :class:`PasswordGrant`.

    Raises:
        ConfigError: If ``config.grant`` names an unknown grant.
    """
    if config.grant == "device_code":
        return DeviceCodeGrant(config.token_url, config.client_id, config.auth_timeout)
    if config.grant == "password":
        return PasswordGrant(
            token_url=config.password_token_url,
            client_id=config.password_client_id,
            username_source=config.username_source,
            password_source=config.password_source,
            client_secret_source=config.client_secret_source,
            scope=config.password_scope,
            timeout=config.auth_timeout,
        )
    raise ConfigError(
        f"Unknown grant '{config.grant}'. Available grants: device_code, password"
    )
