"""Abstract base class for OAuth2 grant strategies.

This module defines the foundation of the grant layer:

- :class:`GrantStrategy` -- the abstract base class every grant type
  (refresh token, device code, resource-owner password) extends.
- :func:`post_token_request` -- the shared token endpoint call that turns
  any reply into a tagged :class:`~tadometrics.models.GrantResult`.

Strategies never raise for provider-level outcomes. ``authorization_pending``,
``invalid_grant`` and friends come back as :class:`GrantResult` values so
that the :class:`~tadometrics.auth.token_manager.TokenManager` decides what
is retryable, what falls back to another grant and what is fatal. Only
network failures raise, as :class:`~tadometrics.exceptions.TransportError`.

See Also:
    :mod:`tadometrics.auth.grants` for the concrete strategies.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import ValidationError

from tadometrics.exceptions import TransportError
from tadometrics.models import CredentialState, GrantOutcome, GrantResult, TokenGrant

logger = logging.getLogger(__name__)


def post_token_request(
    http: httpx.Client,
    url: str,
    form: dict[str, str],
    timeout: float,
) -> GrantResult:
    """POST *form* to a token endpoint and classify the reply.

    The identity provider reports ``authorization_pending`` and
    ``invalid_grant`` with a 4xx status, so classification looks at the
    JSON body rather than the status code.

    Args:
        http: The HTTP transport.
        url: Token endpoint URL.
        form: Form-encoded request body.
        timeout: Connect and response timeout in seconds.

    Returns:
        A :class:`GrantResult`. ``OK`` when the body carries an
        ``access_token``; the provider's ``error`` code when present;
        ``FATAL`` for anything else.

    Raises:
        TransportError: On connection failures and timeouts.
    """
    try:
        response = http.post(
            url,
            data=form,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise TransportError(f"Token request to {url} failed: {exc}") from exc

    try:
        payload: Any = response.json()
    except ValueError:
        payload = None

    if not isinstance(payload, dict):
        return GrantResult(
            kind=GrantOutcome.FATAL,
            error=f"http_{response.status_code}",
            error_description=(
                f"Token endpoint returned HTTP {response.status_code} "
                f"without a JSON object body"
            ),
        )

    if response.is_success and payload.get("access_token"):
        try:
            grant = TokenGrant.model_validate(payload)
        except ValidationError as exc:
            return GrantResult(
                kind=GrantOutcome.FATAL,
                error="invalid_response",
                error_description=f"Token endpoint returned a malformed token: {exc}",
            )
        return GrantResult.ok(grant)

    error = payload.get("error")
    if error:
        logger.debug("Token endpoint replied %s: %s", response.status_code, error)
        return GrantResult.from_error(str(error), payload.get("error_description"))

    return GrantResult(
        kind=GrantOutcome.FATAL,
        error=f"http_{response.status_code}",
        error_description=(
            f"Token endpoint returned HTTP {response.status_code} "
            f"without an access token"
        ),
    )


class GrantStrategy(ABC):
    """Abstract base class for grant strategies.

    Every concrete grant must provide:

    1. A :attr:`grant_type` property returning the OAuth2 ``grant_type``
       form value.
    2. A :meth:`build_form` implementation producing the request body from
       the current :class:`~tadometrics.models.CredentialState`.

    All strategies produce the same :class:`~tadometrics.models.TokenGrant`
    shape, which the token manager writes into the state.

    Args:
        token_url: Token endpoint URL.
        client_id: OAuth2 client identifier.
        timeout: Connect and response timeout for the exchange.
    """

    needs_device_authorization: bool = False
    """Whether a human must authorize a device code before :meth:`exchange` can succeed."""

    def __init__(self, token_url: str, client_id: str, timeout: float = 10.0) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.timeout = timeout

    @property
    @abstractmethod
    def grant_type(self) -> str:
        """Return the OAuth2 ``grant_type`` this strategy sends."""
        ...

    @abstractmethod
    def build_form(self, state: CredentialState) -> dict[str, str]:
        """Return the form body for the token request.

        Raises:
            ConfigError: If a secret the grant needs cannot be resolved.
        """
        ...

    def exchange(self, http: httpx.Client, state: CredentialState) -> GrantResult:
        """Run one token request and return its classified result."""
        form = self.build_form(state)
        logger.debug("Requesting token with grant_type=%s", self.grant_type)
        return post_token_request(http, self.token_url, form, self.timeout)
