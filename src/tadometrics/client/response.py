"""Response decoding for the tado° API.

The API answers with JSON objects, JSON arrays, or -- for a few endpoints
such as ``identify`` -- an empty body. :func:`extract_response_data`
keeps those three cases apart from a body that is not JSON at all.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from tadometrics.exceptions import ResponseDecodeError


def extract_response_data(response: httpx.Response) -> Any:
    """Decode the body of an HTTP response.

    Args:
        response: The :class:`httpx.Response` to decode.

    Returns:
        A JSON-decoded object (``dict``, ``list``, ...), or an empty
        ``list`` if the body is empty or whitespace only.

    Raises:
        ResponseDecodeError: If the body is non-empty and not valid JSON.
    """
    if not response.content or not response.content.strip():
        return []

    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        snippet = response.text[:200]
        raise ResponseDecodeError(
            f"Response body is not valid JSON: {exc}: {snippet!r}"
        ) from exc
