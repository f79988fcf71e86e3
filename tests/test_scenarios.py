"""
URL-shortener workload tests.

* Setup builds the redirect pool; rejected creates are skipped, an
  unreachable target or an empty pool aborts.
* Each scenario issues the documented request and records its checks.
* The redirect pool never grows while the run is going.
"""

import random

import httpx
import pytest

from slo_engine.errors import SetupError
from slo_engine.metrics import MetricSink
from slo_engine.model import SetupOptions
from slo_engine.scenarios import SharedContext, UrlShortenerScenarios, build_pool, check
from slo_engine.target import TargetClient

BASE = "http://shortener.test"


def _no_sleep(_seconds):
    return None


def test_build_pool_creates_requested_links(shortener, transport):
    """Setup creates the pool and paces between creates."""
    sink = MetricSink()
    pauses = []
    with TargetClient(BASE, sink, transport=transport) as client:
        context = build_pool(client, sink, SetupOptions(pool_size=5, pacing=0.1), sleep=pauses.append)

    assert len(context) == 5
    assert set(context.short_codes) == set(shortener.links)
    assert pauses == [0.1] * 4
    snap = sink.snapshot()
    assert snap.counter_value("created_links") == 5
    assert snap.trend("create_link_duration").count == 5


def test_build_pool_aborts_when_target_unreachable(make_shortener):
    """A transport error during Setup raises ``SetupError``."""
    sink = MetricSink()
    transport = httpx.MockTransport(make_shortener(unreachable=True))
    with TargetClient(BASE, sink, transport=transport) as client:
        with pytest.raises(SetupError):
            build_pool(client, sink, SetupOptions(pool_size=3), sleep=_no_sleep)


def test_build_pool_aborts_when_every_create_is_rejected(make_shortener):
    """Rejected creates are counted; an empty pool aborts."""
    sink = MetricSink()
    transport = httpx.MockTransport(make_shortener(create_status=503))
    with TargetClient(BASE, sink, transport=transport) as client:
        with pytest.raises(SetupError):
            build_pool(client, sink, SetupOptions(pool_size=3), sleep=_no_sleep)
    assert sink.snapshot().counter_value("setup_failures") == 3


def test_empty_pool_allowed_when_none_requested(transport):
    """A pool size of 0 gives an empty context without error."""
    sink = MetricSink()
    with TargetClient(BASE, sink, transport=transport) as client:
        context = build_pool(client, sink, SetupOptions(pool_size=0), sleep=_no_sleep)
    assert len(context) == 0


def test_scenarios_pass_their_checks(shortener, transport):
    """All three scenarios pass against a healthy shortener."""
    sink = MetricSink()
    rng = random.Random(3)
    with TargetClient(BASE, sink, transport=transport) as client:
        context = build_pool(client, sink, SetupOptions(pool_size=2), sleep=_no_sleep)
        scenarios = UrlShortenerScenarios(client, sink)
        created = scenarios.create_link(context, rng)
        redirected = scenarios.follow_redirect(context, rng)
        missing = scenarios.not_found(context, rng)

    assert created.ok and redirected.ok and missing.ok
    assert redirected.checks == {"redirect: status is 302": True, "redirect: has location header": True}
    assert set(missing.checks) == {"404: status is 200 (not found page)", "404: shows error message"}

    # the link created at runtime is not added to the shared pool
    assert len(context) == 2
    assert len(shortener.links) == 3

    snap = sink.snapshot()
    assert snap.counter_value("created_links") == 3
    assert snap.counter_value("successful_redirects") == 1
    assert snap.counter_value("not_found_errors") == 1
    assert snap.rate("checks").rate == 0.0
    assert shortener.count("GET", "/INVALID") == 1


def test_follow_redirect_with_empty_pool_is_skipped(transport):
    """No Setup codes means the redirect scenario is skipped."""
    sink = MetricSink()
    with TargetClient(BASE, sink, transport=transport) as client:
        outcome = UrlShortenerScenarios(client, sink).follow_redirect(SharedContext(), random.Random(1))
    assert outcome.skipped and outcome.ok
    assert sink.snapshot().counter_value("http_reqs") == 0


def test_failed_checks_are_recorded(make_shortener):
    """Failed assertions land in the ``checks`` rate."""
    sink = MetricSink()
    transport = httpx.MockTransport(make_shortener(create_status=500))
    with TargetClient(BASE, sink, transport=transport) as client:
        outcome = UrlShortenerScenarios(client, sink).create_link(SharedContext(), random.Random(1))
    assert not outcome.ok
    assert outcome.checks == {"create: status is 201": False, "create: has short code": False}
    assert sink.snapshot().rate("checks").failures == 2


def test_check_helper_and_unknown_scenario(transport):
    """``check`` reports all-passed; unknown scenario names are refused."""
    sink = MetricSink()
    assert check(sink, {"a": True, "b": False}) is False
    with TargetClient(BASE, sink, transport=transport) as client:
        with pytest.raises(ValueError):
            UrlShortenerScenarios(client, sink).build({"bogus": 1.0})
