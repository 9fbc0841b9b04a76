"""Bearer-authenticated JSON requests against the tado° API.

This module provides :class:`AuthorizedRequestExecutor`, the one place
resource calls leave the process. It wraps an :class:`httpx.Client` and
layers on:

- **Per-request auth** -- the token manager is asked for a valid access
  token immediately before every request. The token is never cached here,
  so a token that expired between two calls is renewed transparently.
- **Fixed short timeouts** -- 5 s to connect, 5 s for the response.
- **Error mapping** -- HTTP error statuses and network failures become
  typed :mod:`tadometrics.exceptions`.
- **Decoding** -- JSON bodies are decoded; an empty body becomes an empty
  list so callers can tell "no content" from "not JSON".
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from tadometrics.auth.token_manager import TokenManager
from tadometrics.client.response import extract_response_data
from tadometrics.exceptions import ApiError, NotFoundError, TransportError, UnauthorizedError

logger = logging.getLogger(__name__)


class AuthorizedRequestExecutor:
    """Send JSON requests carrying ``Authorization: Bearer <token>``.

    Args:
        token_manager: Source of valid access tokens.
        http: The HTTP transport. The executor does not own it.
        timeout: Response (read/write/pool) timeout in seconds.
        connect_timeout: Connect timeout in seconds.

    Example::

        executor = AuthorizedRequestExecutor(manager, httpx.Client())
        me = executor.request("GET", "https://my.tado.com/api/v2/me")
    """

    def __init__(
        self,
        token_manager: TokenManager,
        http: httpx.Client,
        timeout: float = 5.0,
        connect_timeout: float = 5.0,
    ) -> None:
        self._token_manager = token_manager
        self._http = http
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)

    @property
    def token_manager(self) -> TokenManager:
        return self._token_manager

    def request(
        self,
        method: str,
        url: str,
        json_body: Optional[Any] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Send one authenticated request and return the decoded body.

        Args:
            method: HTTP method (GET, POST, PUT, ...).
            url: Absolute URL.
            json_body: Optional JSON-serialisable body.
            params: Optional query parameters.

        Returns:
            The decoded JSON value, or ``[]`` when the body is empty.

        Raises:
            UnauthorizedError: On 401 / 403.
            NotFoundError: On 404.
            ApiError: On any other 4xx / 5xx.
            ResponseDecodeError: If a non-empty body is not JSON.
            TransportError: On connection failures and timeouts.
            AuthError: If no access token can be obtained.
            HumanActionRequired: If a human must authorize a device code.
        """
        token = self._token_manager.get_valid_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        kwargs: dict[str, Any] = {
            "method": method.upper(),
            "url": url,
            "headers": headers,
            "params": params,
            "timeout": self._timeout,
        }
        if json_body is not None:
            kwargs["json"] = json_body

        logger.debug("%s %s", method.upper(), url)
        try:
            response = self._http.request(**kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method.upper()} {url} failed: {exc}") from exc

        self._map_response_error(response)
        return extract_response_data(response)

    def get(self, url: str, **kwargs: Any) -> Any:
        """Send a GET request. See :meth:`request`."""
        return self.request("GET", url, **kwargs)

    def _map_response_error(self, response: httpx.Response) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status_code
        if status < 400:
            return

        try:
            detail = response.json()
            if isinstance(detail, dict):
                errors = detail.get("errors")
                if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                    msg = errors[0].get("title") or errors[0].get("code") or ""
                else:
                    msg = detail.get("message") or detail.get("error") or ""
            else:
                msg = str(detail)
        except ValueError:
            msg = response.text[:200] if response.text else ""

        prefix = f"HTTP {status}"
        full_msg = f"{prefix}: {msg}" if msg else prefix

        if status in (401, 403):
            raise UnauthorizedError(full_msg, status_code=status)
        if status == 404:
            raise NotFoundError(full_msg, status_code=status)
        raise ApiError(full_msg, status_code=status)
