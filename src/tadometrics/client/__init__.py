"""HTTP client layer for tadometrics.

Provides :class:`AuthorizedRequestExecutor`, which attaches a fresh bearer
token to every outbound JSON request, and :func:`extract_response_data`
for decoding response bodies.
"""

from tadometrics.client.executor import AuthorizedRequestExecutor
from tadometrics.client.response import extract_response_data

__all__ = ["AuthorizedRequestExecutor", "extract_response_data"]
