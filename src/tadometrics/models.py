"""Canonical Pydantic models shared across all tadometrics modules.

This is the single source of truth for data shapes in the project. Every
other module imports from here rather than defining its own models. The
models fall into three groups:

**Credential models** -- the persisted token state and the values flowing
through the grant layer:
    :class:`CredentialState`, :class:`DeviceAuthorization`,
    :class:`TokenGrant`, :class:`GrantOutcome`, and :class:`GrantResult`.

**Configuration models** -- serialised as JSON in the user's config
directory:
    :class:`OutputConfig` and :class:`ExporterConfig`.

**Report models** -- produced by :func:`~tadometrics.metrics.build_home_metrics`:
    :class:`DeviceMetrics`, :class:`ZoneMetrics`, and :class:`HomeMetrics`.

All models use Pydantic v2.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
"""``grant_type`` value of the OAuth2 Device Authorization Grant (:rfc:`8628`)."""

TADO_DEVICE_CLIENT_ID = "1bb50063-6b0c-4d11-bd99-387f4a91cc46"
"""Public client id tado° registered for the device-code flow."""


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# --- Credential models ---


class CredentialState(BaseModel):
    """The single persisted credential record for one tado° account.

    Loaded and saved by :class:`~tadometrics.auth.state_store.StateStore`
    and mutated only by the token manager and the device authorization
    flow. Empty strings mean "not obtained"; ``None`` timestamps mean
    "never set". Both expiry timestamps already have the safety margin
    subtracted from the lifetime the provider reported.

    Reading is tolerant: unknown keys are ignored and ``null`` strings
    become empty, so a state file written by an older version still loads.
    """

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    access_token: str = ""
    refresh_token: str = ""
    access_token_expires: Optional[datetime] = None
    device_code: str = ""
    device_code_expires: Optional[datetime] = None
    device_code_retry_interval: Optional[int] = None
    user_code: str = ""
    verification_uri_complete: str = ""

    @field_validator(
        "access_token",
        "refresh_token",
        "device_code",
        "user_code",
        "verification_uri_complete",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("access_token_expires", "device_code_expires")
    @classmethod
    def _normalise_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    def has_valid_access_token(self, now: datetime, skew_seconds: float = 0) -> bool:
        """Return ``True`` if the access token can be used at *now*.

        The token must be set and *now* must lie before the stored expiry
        reduced by *skew_seconds*.
        """
        if not self.access_token or self.access_token_expires is None:
            return False
        return now < self.access_token_expires - timedelta(seconds=skew_seconds)

    def has_pending_device_code(self, now: datetime) -> bool:
        """Return ``True`` if a device code is cached and still redeemable."""
        if not self.device_code or self.device_code_expires is None:
            return False
        return now < self.device_code_expires

    def apply_grant(self, grant: TokenGrant, now: datetime, margin_seconds: float) -> None:
        """Overwrite the token triple from a successful grant in one step.

        A grant that does not carry a new refresh token keeps the previous
        one, so the pair is always replaced together.
        """
        self.access_token = grant.access_token
        self.refresh_token = grant.refresh_token or self.refresh_token
        self.access_token_expires = now + timedelta(
            seconds=max(grant.expires_in - margin_seconds, 0)
        )

    def clear_tokens(self) -> None:
        """Forget the access and refresh tokens."""
        self.access_token = ""
        self.refresh_token = ""
        self.access_token_expires = None

    def clear_device_code(self) -> None:
        """Forget the outstanding device code."""
        self.device_code = ""
        self.device_code_expires = None
        self.device_code_retry_interval = None
        self.user_code = ""
        self.verification_uri_complete = ""

    def device_authorization(self) -> Optional[DeviceAuthorization]:
        """Return the cached device code as a :class:`DeviceAuthorization`, if any."""
        if not self.device_code or self.device_code_expires is None:
            return None
        return DeviceAuthorization(
            device_code=self.device_code,
            user_code=self.user_code,
            verification_uri_complete=self.verification_uri_complete,
            expires_at=self.device_code_expires,
            retry_interval=self.device_code_retry_interval or 5,
        )


class DeviceAuthorization(BaseModel):
    """An outstanding device code and what a human needs to redeem it.

    Returned by
    :meth:`~tadometrics.auth.device_flow.DeviceAuthorizationFlow.ensure_device_code`
    and carried by :class:`~tadometrics.exceptions.HumanActionRequired`.
    """

    device_code: str
    user_code: str = ""
    verification_uri_complete: str = ""
    expires_at: datetime
    retry_interval: int = 5

    @field_validator("expires_at")
    @classmethod
    def _normalise_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)  # type: ignore[return-value]


class TokenGrant(BaseModel):
    """Successful token endpoint response."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 600
    token_type: str = "Bearer"


class GrantOutcome(str, enum.Enum):
    """Classification of a token endpoint reply.

    Only ``OK`` carries a :class:`TokenGrant`. ``AUTHORIZATION_PENDING``
    and ``SLOW_DOWN`` are retryable polling signals, ``INVALID_GRANT``
    means the presented refresh token (or device code) is no longer
    accepted, and ``FATAL`` covers every other provider error.
    """

    OK = "ok"
    AUTHORIZATION_PENDING = "authorization_pending"
    SLOW_DOWN = "slow_down"
    INVALID_GRANT = "invalid_grant"
    FATAL = "fatal"


class GrantResult(BaseModel):
    """Tagged result of one exchange against the token endpoint."""

    kind: GrantOutcome
    grant: Optional[TokenGrant] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @classmethod
    def ok(cls, grant: TokenGrant) -> GrantResult:
        return cls(kind=GrantOutcome.OK, grant=grant)

    @classmethod
    def from_error(cls, error: str, description: Optional[str] = None) -> GrantResult:
        """Build a result from an OAuth2 ``error`` code."""
        try:
            kind = GrantOutcome(error)
        except ValueError:
            kind = GrantOutcome.FATAL
        if kind is GrantOutcome.OK:
            kind = GrantOutcome.FATAL
        return cls(kind=kind, error=error, error_description=description)

    @property
    def message(self) -> str:
        """The provider's description, falling back to the error code."""
        return self.error_description or self.error or self.kind.value


# --- Configuration models ---


class OutputConfig(BaseModel):
    """Default output format preferences stored in :class:`ExporterConfig`."""

    format: str = Field(
        default="auto", description="Output format: auto, json, plain, rich"
    )


class ExporterConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/tadometrics/config.json``.

    Loaded and saved by :func:`~tadometrics.config.load_config` and
    :func:`~tadometrics.config.save_config`. Fields here have the lowest
    precedence and can be overridden by environment variables or CLI
    flags. See :func:`~tadometrics.config.resolve_config` for the full
    precedence chain.

    Secrets are never stored inline: ``*_source`` fields hold credential
    source descriptors (``env:VAR``, ``file:/path``, ``prompt``) resolved
    by :func:`~tadometrics.config.resolve_credential`.
    """

    home_id: Optional[str] = Field(default=None, description="tado° home id")
    state_file: Optional[str] = Field(
        default=None,
        description="Credential state file (default: <data_dir>/state.json)",
    )
    grant: Literal["device_code", "password"] = Field(
        default="device_code",
        description="Grant used when no refresh token is usable",
    )

    # Identity provider
    client_id: str = Field(default=TADO_DEVICE_CLIENT_ID)
    auth_base_url: str = Field(default="https://login.tado.com/oauth2/")
    scope: str = Field(default="offline_access")

    # Legacy password grant
    password_token_url: str = Field(default="https://auth.tado.com/oauth/token")
    password_client_id: str = Field(default="tado-web-app")
    password_scope: str = Field(default="home.user")
    client_secret_source: Optional[str] = None
    username_source: Optional[str] = None
    password_source: Optional[str] = None

    # Resource API
    api_base_url: str = Field(default="https://my.tado.com/api/v2/")

    # Timing
    poll_window_seconds: int = Field(
        default=120, description="How long to poll for browser authorization"
    )
    expiry_margin_seconds: int = Field(
        default=5, description="Subtracted from every provider-reported lifetime"
    )
    clock_skew_seconds: int = Field(
        default=5, description="Extra leeway when checking access token expiry"
    )
    request_timeout: float = Field(default=5.0, description="Response timeout in seconds")
    connect_timeout: float = Field(default=5.0, description="Connect timeout in seconds")
    auth_timeout: float = Field(
        default=10.0, description="Timeout for identity provider calls in seconds"
    )

    # Behaviour
    interactive: bool = Field(
        default=True,
        description="Poll for browser authorization instead of failing fast",
    )
    honor_slow_down: bool = Field(
        default=False,
        description="Back off on 'slow_down' instead of treating it as fatal",
    )
    lock_state: bool = Field(
        default=True, description="Hold an advisory lock on the state file"
    )
    lock_timeout: float = Field(default=180.0, description="Seconds to wait for the lock")

    output: OutputConfig = Field(default_factory=OutputConfig)

    @property
    def device_authorize_url(self) -> str:
        return self.auth_base_url.rstrip("/") + "/device_authorize"

    @property
    def token_url(self) -> str:
        return self.auth_base_url.rstrip("/") + "/token"


# --- Report models ---


class DeviceMetrics(BaseModel):
    """One physical device (thermostat, valve, bridge) inside a zone."""

    zone_id: int
    zone_name: str
    zone_type: str
    device_type: Optional[str] = None
    serial_no: Optional[str] = None
    short_serial_no: Optional[str] = None
    current_fw_version: Optional[str] = None
    connection_state: Optional[bool] = None
    battery_state: str = "n/a"
    mounting_state: str = "n/a"


class ZoneMetrics(BaseModel):
    """Configuration and live state of one zone."""

    id: int
    name: str = ""
    zone_type: str = ""
    devices: list[DeviceMetrics] = Field(default_factory=list)
    type: str = "AUTOMATIC"
    power: Optional[str] = None
    desired_celsius: float = 0.0
    link_state: Optional[str] = None
    celsius: Optional[float] = None
    humidity: Optional[float] = None
    heating_power: float = 0


class HomeMetrics(BaseModel):
    """The aggregated report printed by ``tadometrics metrics``."""

    zones: list[ZoneMetrics] = Field(default_factory=list)
