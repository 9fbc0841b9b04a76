"""Shared test fixtures for tadometrics.

Provides a controllable clock, a scripted in-memory identity provider and
API server for :class:`httpx.MockTransport`, isolated config environments,
and output state management. These fixtures are automatically discovered
by pytest and available to all test modules without explicit imports.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional
from urllib.parse import parse_qsl

import httpx
import pytest
from rich.logging import RichHandler

from tadometrics.auth.clock import Clock
from tadometrics.output import OutputFormat, OutputManager, reset_output, set_output


START = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

DEVICE_AUTHORIZE_PATH = "/oauth2/device_authorize"
TOKEN_PATH = "/oauth2/token"


# ---------------------------------------------------------------------------
# Auto-reset global output and logging state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Reset the global OutputManager and CLI log handlers after every test.

    Both cache references to sys.stdout/sys.stderr at creation time. When
    Typer's CliRunner redirects those streams during a test and the test
    finishes, the cached references become stale ("I/O operation on
    closed file").
    """
    yield
    reset_output()
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock(Clock):
    """Deterministic clock: ``wait`` advances time instead of blocking."""

    def __init__(self, start: datetime = START) -> None:
        self.current = start
        self.waits: list[float] = []

    def now(self) -> datetime:
        return self.current

    def wait(self, seconds: float, cancel: Optional[threading.Event] = None) -> bool:
        if cancel is not None and cancel.is_set():
            return True
        self.waits.append(seconds)
        self.current += timedelta(seconds=seconds)
        return False

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Scripted HTTP server
# ---------------------------------------------------------------------------


class ScriptedServer:
    """Route-based handler for :class:`httpx.MockTransport`.

    Each path holds a queue of responses. Responses are consumed in order;
    the last one repeats forever, so a single ``authorization_pending``
    reply scripts an endless wait. Every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, *responses: Any) -> ScriptedServer:
        self.routes.setdefault(path, []).extend(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(599, json={"error": f"unscripted {request.url.path}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=self.transport())


@pytest.fixture
def server() -> ScriptedServer:
    return ScriptedServer()


def form_of(request: httpx.Request) -> dict[str, str]:
    """Decode a form-encoded request body."""
    return dict(parse_qsl(request.content.decode()))


def token_response(
    access_token: str = "access-1",
    refresh_token: Optional[str] = "refresh-1",
    expires_in: int = 600,
) -> httpx.Response:
    body: dict[str, Any] = {
        "access_token": access_token,
        "token_type": "Bearer",
        "expires_in": expires_in,
    }
    if refresh_token is not None:
        body["refresh_token"] = refresh_token
    return httpx.Response(200, json=body)


def error_response(error: str, status_code: int = 400, description: str = "") -> httpx.Response:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return httpx.Response(status_code, json=body)


def device_code_response(
    device_code: str = "abc",
    user_code: str = "XYZ123",
    expires_in: int = 300,
    interval: int = 5,
) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "device_code": device_code,
            "user_code": user_code,
            "verification_uri": "https://login.tado.com/oauth2/device",
            "verification_uri_complete": (
                f"https://login.tado.com/oauth2/device?user_code={user_code}"
            ),
            "expires_in": expires_in,
            "interval": interval,
        },
    )


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path so
    that tests never touch real user config or credentials, clears all
    TADO_* environment variables, and changes the working directory to
    tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("tadometrics.config._is_xdg_platform", lambda: True)

    for var in [
        "TADO_CONFIG",
        "TADO_HOME_ID",
        "TADO_CLIENT_ID",
        "TADO_STATE_FILE",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> Iterator[OutputManager]:
    """Install a PLAIN-format, quiet, colourless OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()
