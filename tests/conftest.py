"""
Shared fixtures: an in-process fake URL shortener served through
:class:`httpx.MockTransport`, so no test touches the network.
"""

import itertools
import threading

import httpx
import pytest
import structlog


class FakeShortener:
    """Minimal stand-in for the service under test.

    * ``POST /api/links``  -> 201 ``{"short_code": ...}``
    * ``GET /<known>``     -> 302 with a ``Location`` header
    * ``GET /<unknown>``   -> 200 HTML page containing ``Link Not Found``
    """

    def __init__(self, *, create_status=201, create_body=None, unreachable=False):
        self.create_status = create_status
        self.create_body = create_body
        self.unreachable = unreachable
        self.links = {}
        self.requests = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append((request.method, request.url.path))
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "POST" and request.url.path == "/api/links":
            if self.create_status != 201:
                return httpx.Response(self.create_status, json={"error": "nope"})
            if self.create_body is not None:
                return httpx.Response(201, content=self.create_body)
            code = f"c{next(self._ids):05d}"
            with self._lock:
                self.links[code] = "https://example.com"
            return httpx.Response(201, json={"short_code": code})

        code = request.url.path.lstrip("/")
        if request.method == "GET" and code in self.links:
            return httpx.Response(302, headers={"location": self.links[code]})
        return httpx.Response(200, text="<h1>Link Not Found</h1>")

    def count(self, method, prefix="/"):
        with self._lock:
            return sum(1 for m, p in self.requests if m == method and p.startswith(prefix))


@pytest.fixture
def make_shortener():
    """Factory for variants (rejecting creates, undecodable bodies, unreachable)."""
    return FakeShortener


@pytest.fixture
def shortener():
    return FakeShortener()


@pytest.fixture
def transport(shortener):
    return httpx.MockTransport(shortener)


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Tests that configure logging bind a captured stream; undo that afterwards."""
    yield
    structlog.reset_defaults()
