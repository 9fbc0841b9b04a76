"""Exception hierarchy for tadometrics.

All exceptions inherit from :class:`TadoMetricsError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`tadometrics.exit_codes`. The top-level error handler in
:func:`tadometrics.app.main` catches ``TadoMetricsError`` and exits with the
appropriate code, while unexpected exceptions produce a crash log and exit
with :data:`EXIT_GENERIC_FAILURE`.

Token acquisition signals such as ``authorization_pending`` and
``invalid_grant`` are *not* exceptions; they travel as
:class:`~tadometrics.models.GrantResult` values and never leave the
:class:`~tadometrics.auth.token_manager.TokenManager`.

Subclass hierarchy::

    TadoMetricsError (exit 1)
    +-- ConfigError           (exit 1)
    +-- StateFileError        (exit 1)
    +-- AuthError             (exit 3)
    |   +-- FatalAuthError    (exit 3)
    |   +-- AuthTimeoutError  (exit 3)
    |   +-- AuthCancelledError (exit 130)
    +-- HumanActionRequired   (exit 8)
    +-- ApiError              (exit 5)
    |   +-- UnauthorizedError (exit 3)
    |   +-- NotFoundError     (exit 4)
    +-- ResponseDecodeError   (exit 5)
    +-- TransportError        (exit 6)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tadometrics.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_HUMAN_ACTION,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)

if TYPE_CHECKING:
    from tadometrics.models import DeviceAuthorization


class TadoMetricsError(Exception):
    """Base exception for all tadometrics errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`tadometrics.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(TadoMetricsError):
    """Raised for configuration problems (invalid JSON, bad credential sources, missing home id)."""

    exit_code = EXIT_GENERIC_FAILURE


class StateFileError(TadoMetricsError):
    """Raised when the credential state file cannot be written or locked.

    An *unreadable* state file is never an error: the store starts fresh.
    """

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(TadoMetricsError):
    """Raised when an access token cannot be obtained."""

    exit_code = EXIT_AUTH_FAILURE


class FatalAuthError(AuthError):
    """Raised when the identity provider returns a non-retryable error.

    Args:
        message: Human-readable description.
        error: The OAuth2 ``error`` code returned by the provider, if any.
    """

    def __init__(self, message: str, error: str | None = None):
        super().__init__(message)
        self.error = error


class AuthTimeoutError(AuthError):
    """Raised when device-code polling runs out of attempts or time."""


class AuthCancelledError(AuthError):
    """Raised when the caller cancels a device-code polling wait."""

    exit_code = EXIT_CANCELLED


class HumanActionRequired(TadoMetricsError):
    """A device code is waiting for a human to authorize it in a browser.

    This is deliberately *not* an :class:`AuthError`: nothing has failed,
    the flow is simply blocked on out-of-band action. Integrations can
    catch it to alert an operator instead of retrying.

    Args:
        authorization: The outstanding device authorization (verification
            URL, user code and deadline).
    """

    exit_code = EXIT_HUMAN_ACTION

    def __init__(self, authorization: DeviceAuthorization):
        super().__init__(
            f"Browser authorization required: go to "
            f"{authorization.verification_uri_complete} before "
            f"{authorization.expires_at:%Y-%m-%d %H:%M:%S %Z} and enter "
            f"code {authorization.user_code}"
        )
        self.authorization = authorization


class ApiError(TadoMetricsError):
    """Raised when the tado° API answers with an error status.

    Args:
        message: Human-readable description including the status code.
        status_code: The HTTP status code of the response.
    """

    exit_code = EXIT_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ApiError):
    """Raised when the API rejects the bearer token (HTTP 401 / 403)."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(ApiError):
    """Raised when the API returns HTTP 404 (resource not found)."""

    exit_code = EXIT_NOT_FOUND


class ResponseDecodeError(TadoMetricsError):
    """Raised when a non-empty response body is not valid JSON."""

    exit_code = EXIT_SERVER_ERROR


class TransportError(TadoMetricsError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused)."""

    exit_code = EXIT_CONNECTION_ERROR
