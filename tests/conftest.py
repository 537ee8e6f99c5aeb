"""Pytest configuration and fixtures for follow-redirects tests.

This file provides:
- Routes: an in-process route table served through httpx.MockTransport
- EventRecorder: captures every event a RedirectableRequest emits
- FakeSocket / FakeStream: stand-ins for the socket behind an httpx response
- PortReservation / MockServer: subprocess management for the live mock server
- Fixtures: defaults reset, mock pools, live server
"""

from __future__ import annotations

import json
import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest

from follow_redirects.config import reset_defaults
from follow_redirects.pools import close_default_pools
from follow_redirects.request_controller import RedirectableRequest

# Project root for subprocess cwd
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"

Handler = Callable[[httpx.Request], httpx.Response]


def streamed_response(
    status_code: int, body: bytes, headers: dict[str, str] | None = None
) -> httpx.Response:
    """A response whose body stays unread, and the response open, until consumed.

    httpx reads byte content eagerly and marks such responses closed.
    """
    return httpx.Response(status_code, headers=headers, content=iter([body]))


class Routes:
    """Route table for httpx.MockTransport.

    Routes are keyed by (method, path); the host is ignored so one table can
    stand in for several servers. Every request that reaches the transport is
    kept in ``requests``, body read, so tests can inspect each hop.

    Usage:
        routes = Routes()
        routes.redirect("/a", "/b")
        routes.json("/b", {"a": "b"})
        client = routes.client()
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Handler) -> None:
        self._routes[(method.upper(), path)] = handler

    def redirect(
        self,
        path: str,
        location: str,
        status_code: int = 302,
        method: str = "GET",
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return streamed_response(
                status_code,
                f"Found. Redirecting to {location}".encode(),
                {"location": location, "content-type": "text/plain; charset=utf-8"},
            )

        self.add(method, path, handler)

    def json(self, path: str, payload: Any, method: str = "GET") -> None:
        body = json.dumps(payload).encode()
        self.add(
            method, path,
            lambda request: streamed_response(200, body, {"content-type": "application/json"}),
        )

    def echo(self, path: str, method: str = "POST") -> None:
        """Respond with the request body, byte for byte."""
        self.add(method, path, lambda request: streamed_response(200, request.content))

    def echo_headers(self, path: str, method: str = "GET") -> None:
        """Respond with the request headers as JSON (lowercase keys)."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.dumps({k.lower(): v for k, v in request.headers.items()}).encode()
            return streamed_response(200, body, {"content-type": "application/json"})

        self.add(method, path, handler)

    @property
    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        handler = self._routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, text=f"Cannot {request.method} {request.url.path}")
        return handler(request)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self), follow_redirects=False)


class FakeSocket:
    """Records setsockopt calls."""

    def __init__(self) -> None:
        self.options: list[tuple[int, int, int]] = []

    def setsockopt(self, level: int, name: int, value: int) -> None:
        self.options.append((level, name, value))


class FakeStream:
    """Stands in for an httpcore network stream."""

    def __init__(self, sock: Any) -> None:
        self._sock = sock

    def get_extra_info(self, info: str) -> Any:
        return self._sock if info == "socket" else None


class EventRecorder:
    """Subscribes to every facade event and keeps what it sees."""

    def __init__(self, request: RedirectableRequest) -> None:
        self.responses: list[Any] = []
        self.errors: list[BaseException] = []
        self.aborts = 0
        self.sockets: list[Any] = []
        request.on("response", self.responses.append)
        request.on("error", self.errors.append)
        request.on("abort", self._on_abort)
        request.on("socket", self.sockets.append)

    def _on_abort(self) -> None:
        self.aborts += 1

    @property
    def response(self) -> Any:
        assert len(self.responses) == 1, f"expected one response, got {self.responses}"
        return self.responses[0]

    @property
    def error(self) -> BaseException:
        assert len(self.errors) == 1, f"expected one error, got {self.errors}"
        return self.errors[0]


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    Usage:
        reservation = PortReservation()
        server = MockServer(reservation)
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port. Safe to call multiple times."""
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def find_free_port() -> int:
    """Find a port nothing is listening on.

    WARNING: another process may bind it before the caller uses it. Fine for
    "connection refused" tests; use PortReservation for servers.
    """
    with PortReservation() as reservation:
        return reservation.port


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Runs tests/integration/mock_server.py as a uvicorn subprocess."""

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the subprocess: SIGTERM, then SIGKILL after 5s."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable; nothing more to do
            self._process = None

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fixture_reset_defaults() -> Generator[None, None, None]:
    """Every test starts and ends with the built-in defaults."""
    reset_defaults()
    yield
    reset_defaults()


@pytest.fixture
def routes() -> Routes:
    return Routes()


@pytest.fixture
def mock_pool(routes: Routes) -> Generator[httpx.Client, None, None]:
    """httpx.Client whose transport is the ``routes`` table."""
    client = routes.client()
    yield client
    client.close()


@pytest.fixture
def agents(mock_pool: httpx.Client) -> dict[str, httpx.Client]:
    """Pool overrides routing both schemes through ``routes``."""
    return {"http": mock_pool, "https": mock_pool}


@pytest.fixture(scope="session")
def fixture_live_server() -> Generator[MockServer, None, None]:
    """Live FastAPI mock server, started once per session."""
    with MockServer(PortReservation()) as server:
        yield server
    close_default_pools()


@pytest.fixture(scope="session")
def live_server(fixture_live_server: MockServer) -> MockServer:
    """Alias for fixture_live_server."""
    return fixture_live_server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests with unit/integration markers based on their directory.

        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
