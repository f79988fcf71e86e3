"""
Target client tests against the in-process fake shortener.

* Every request lands in ``http_reqs``, ``http_req_duration`` and
  ``http_req_failed``.
* Redirects are not followed.
* Transport errors come back as an exchange, never as an exception.
"""

import time

import httpx
import pytest

from slo_engine.errors import DecodeError
from slo_engine.metrics import MetricSink
from slo_engine.target import TargetClient, decode_short_code

BASE = "http://shortener.test"


def test_create_and_resolve_record_http_metrics(transport):
    """Create and resolve are both timed and counted."""
    sink = MetricSink()
    with TargetClient(BASE, sink, transport=transport) as client:
        created = client.create("https://example.com/a")
        code = decode_short_code(created)
        redirect = client.resolve(code)

    assert created.status == 201
    assert redirect.status == 302
    assert redirect.header("location") == "https://example.com"
    assert not redirect.failed

    snap = sink.snapshot()
    assert snap.counter_value("http_reqs") == 2
    assert snap.trend("http_req_duration").count == 2
    assert snap.rate("http_req_failed").rate == 0.0


def test_not_found_page_body(transport):
    """Unknown codes return the not-found page."""
    with TargetClient(BASE, MetricSink(), transport=transport) as client:
        exchange = client.resolve("INVALIDzzzzzz", name="NotFound")
    assert exchange.status == 200
    assert exchange.body_contains("Link Not Found")


def test_transport_error_is_recorded_as_failed(make_shortener):
    """Connection errors come back as a failed exchange."""
    sink = MetricSink()
    transport = httpx.MockTransport(make_shortener(unreachable=True))
    with TargetClient(BASE, sink, transport=transport) as client:
        exchange = client.create("https://example.com/x")

    assert exchange.response is None
    assert exchange.failed
    assert "ConnectError" in exchange.error
    assert sink.snapshot().rate("http_req_failed").rate == 1.0


def test_server_error_counts_as_failed_request(make_shortener):
    """A 5xx response counts as a failed request."""
    sink = MetricSink()
    transport = httpx.MockTransport(make_shortener(create_status=500))
    with TargetClient(BASE, sink, transport=transport) as client:
        assert client.create("https://example.com/x").failed
    assert sink.snapshot().rate("http_req_failed").failures == 1


def test_decode_short_code_errors(make_shortener):
    """A non-JSON create response raises ``DecodeError``."""
    transport = httpx.MockTransport(make_shortener(create_body=b"not json"))
    with TargetClient(BASE, MetricSink(), transport=transport) as client:
        exchange = client.create("https://example.com/x")
    with pytest.raises(DecodeError):
        decode_short_code(exchange)


def test_trickling_body_hits_the_overall_deadline():
    """A body sent one byte at a time cannot hold the request past ``timeout``."""

    def trickle():
        for _ in range(20):
            time.sleep(0.05)
            yield b"x"

    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=trickle()))
    sink = MetricSink()
    with TargetClient(BASE, sink, timeout=0.2, transport=transport) as client:
        exchange = client.resolve("slow")

    assert exchange.response is None
    assert "ReadTimeout" in exchange.error
    assert exchange.duration_ms < 600
    assert sink.snapshot().rate("http_req_failed").failures == 1


def test_streamed_body_is_readable(transport):
    """Responses read within the deadline keep status, headers and JSON body."""
    with TargetClient(BASE, MetricSink(), transport=transport) as client:
        exchange = client.create("https://example.com/json")
    assert exchange.response.json()["short_code"].startswith("c")
    assert exchange.response.headers["content-type"] == "application/json"
