"""Tests for the request() / get() / fetch() entry points."""

import httpx
import pytest

from follow_redirects.client import fetch, get, request
from follow_redirects.errors import (
    ConfigError,
    MaxRedirectsExceededError,
    RequestAbortedError,
)
from follow_redirects.models import RequestOptions
from follow_redirects.request_controller import RedirectableRequest, RequestState
from tests.conftest import Routes

BASE = "http://localhost:3600"


class TestRequest:
    """Tests for request() and get()."""

    def test_request_waits_for_end(self, routes: Routes, agents: dict) -> None:
        routes.json("/a", {})
        req = request(f"{BASE}/a", agents=agents)
        assert isinstance(req, RedirectableRequest)
        assert req.state is RequestState.ACCUMULATING
        assert routes.requests == []

    def test_request_accepts_options_model(self, routes: Routes, agents: dict) -> None:
        routes.echo("/a", method="PUT")
        options = RequestOptions(url=f"{BASE}/a", method="PUT", agents=agents)
        req = request(options)
        req.end(b"body")
        assert req.response.read() == b"body"

    def test_invalid_options_raise_config_error(self) -> None:
        with pytest.raises(ConfigError):
            request(f"{BASE}/a", max_redirects="several")

    def test_get_sends_immediately(self, routes: Routes, agents: dict) -> None:
        routes.redirect("/a", "/b")
        routes.json("/b", {"a": "b"})
        received: list = []
        req = get(f"{BASE}/a", received.append, agents=agents, method="POST")

        assert routes.paths == ["/a", "/b"]
        assert routes.requests[0].method == "GET"
        assert received[0].response_url == f"{BASE}/b"
        assert req.state is RequestState.RESPONDED


class TestFetch:
    """Tests for the blocking fetch() helper."""

    def test_returns_terminal_response(self, routes: Routes, agents: dict) -> None:
        routes.redirect("/a", "/b")
        routes.json("/b", {"a": "b"})
        with fetch(f"{BASE}/a", agents=agents, track_redirects=True) as response:
            assert response.status_code == 200
            assert response.response_url == f"{BASE}/b"
            assert [r.status_code for r in response.redirects] == [302, 200]
            response.read()
            assert response.json() == {"a": "b"}

    def test_sends_method_and_content(self, routes: Routes, agents: dict) -> None:
        routes.redirect("/a", "/b", status_code=307, method="POST")
        routes.echo("/b")
        response = fetch(f"{BASE}/a", "post", b"payload", agents=agents)
        assert response.read() == b"payload"
        assert [r.method for r in routes.requests] == ["POST", "POST"]

    def test_raises_emitted_error(self, routes: Routes, agents: dict) -> None:
        routes.redirect("/a", "/b")
        routes.redirect("/b", "/a")
        with pytest.raises(MaxRedirectsExceededError):
            fetch(f"{BASE}/a", agents=agents, max_redirects=3)
        assert len(routes.requests) == 4

    def test_raises_connection_error_unwrapped(self, routes: Routes, agents: dict) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        routes.add("GET", "/a", handler)
        with pytest.raises(httpx.ReadTimeout, match="timed out"):
            fetch(f"{BASE}/a", agents=agents)

    def test_abort_raises_request_aborted(
        self, routes: Routes, agents: dict, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        routes.redirect("/a", "/b")
        routes.json("/b", {})
        created: list[RedirectableRequest] = []
        original_init = RedirectableRequest.__init__

        def capture_init(self: RedirectableRequest, *args, **kwargs) -> None:
            created.append(self)
            original_init(self, *args, **kwargs)

        monkeypatch.setattr(RedirectableRequest, "__init__", capture_init)
        with pytest.raises(RequestAbortedError, match="was aborted"):
            fetch(
                f"{BASE}/a",
                agents=agents,
                before_redirect=lambda next_request, details: created[0].abort(),
            )
        assert routes.paths == ["/a"]
