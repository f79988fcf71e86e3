"""
URL-shortener workload: scenario bodies, Setup pool and Teardown summary.

Available scenarios (weights come from :attr:`RunConfig.scenarios`):
* **create_link**     - POST a random URL, expect 201 and a short code.
* **follow_redirect** - GET a Setup-time short code, expect 302 + Location.
* **not_found**       - GET an invalid code, expect the not-found page.

Short codes created while the run is going are discarded: the redirect pool
is the one built by Setup and never grows.
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from slo_engine.dispatcher import Outcome, Scenario
from slo_engine.errors import DecodeError, SetupError
from slo_engine.metrics import MetricSink, MetricsSnapshot
from slo_engine.model import SetupOptions
from slo_engine.target import Exchange, TargetClient, decode_short_code

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class SharedContext:
    """Identifiers created by Setup; read-only for the whole run."""

    short_codes: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.short_codes)

    def pick(self, rng: random.Random) -> Optional[str]:
        if not self.short_codes:
            return None
        return self.short_codes[rng.randrange(len(self.short_codes))]


# Helper functions

def check(sink: MetricSink, results: Mapping[str, bool]) -> bool:
    """Record each named assertion into the ``checks`` rate; never raises."""
    rate = sink.rate("checks")
    for ok in results.values():
        rate.add(ok)
    return all(results.values())


def _token(rng: random.Random, length: int) -> str:
    return "".join(rng.choice(_BASE36) for _ in range(length))


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _has_short_code(exchange: Exchange, field: str) -> bool:
    try:
        decode_short_code(exchange, field)
    except DecodeError:
        return False
    return True


# Scenario bodies

class UrlShortenerScenarios:
    """Scenario functions bound to one client and one sink."""

    def __init__(self, client: TargetClient, sink: MetricSink) -> None:
        self.client = client
        self.sink = sink
        self.options = client.options

    def create_link(self, context: SharedContext, rng: random.Random) -> Outcome:
        url = f"https://example.com/random/{_token(rng, 8)}?timestamp={_timestamp_ms()}"
        exchange = self.client.create(url)
        self.sink.trend("create_link_duration").add(exchange.duration_ms)

        created = exchange.status == self.options.created_status
        results = {
            f"create: status is {self.options.created_status}": created,
            "create: has short code": _has_short_code(exchange, self.options.short_code_field),
        }
        ok = check(self.sink, results)
        if created:
            self.sink.counter("created_links").add(1)
        return Outcome("create_link", ok, exchange.duration_ms, results, exchange.error)

    def follow_redirect(self, context: SharedContext, rng: random.Random) -> Outcome:
        code = context.pick(rng)
        if code is None:
            return Outcome("follow_redirect", ok=True, skipped=True)

        exchange = self.client.resolve(code, name="Redirect")
        self.sink.trend("redirect_duration").add(exchange.duration_ms)

        redirected = exchange.status == self.options.redirect_status
        results = {
            f"redirect: status is {self.options.redirect_status}": redirected,
            "redirect: has location header": exchange.header("location") is not None,
        }
        ok = check(self.sink, results)
        if redirected:
            self.sink.counter("successful_redirects").add(1)
        return Outcome("follow_redirect", ok, exchange.duration_ms, results, exchange.error)

    def not_found(self, context: SharedContext, rng: random.Random) -> Outcome:
        code = f"{self.options.invalid_prefix}{_token(rng, 6)}"
        exchange = self.client.resolve(code, name="NotFound")
        self.sink.trend("not_found_duration").add(exchange.duration_ms)

        marker = exchange.body_contains(self.options.not_found_marker)
        status = self.options.not_found_status
        results = {
            f"404: status is {status} (not found page)": exchange.status == status,
            "404: shows error message": marker,
        }
        ok = check(self.sink, results)
        if marker:
            self.sink.counter("not_found_errors").add(1)
        return Outcome("not_found", ok, exchange.duration_ms, results, exchange.error)

    def registry(self) -> Dict[str, Callable[[SharedContext, random.Random], Outcome]]:
        return {
            "create_link": self.create_link,
            "follow_redirect": self.follow_redirect,
            "not_found": self.not_found,
        }

    def build(self, weights: Mapping[str, float]) -> List[Scenario]:
        """Return dispatcher scenarios for *weights*; unknown names are rejected."""
        known = self.registry()
        unknown = sorted(set(weights) - set(known))
        if unknown:
            raise ValueError(f"unknown scenarios {unknown}; known: {sorted(known)}")
        return [Scenario(name, weight, known[name]) for name, weight in weights.items()]


# Setup / Teardown

def build_pool(
    client: TargetClient,
    sink: MetricSink,
    options: SetupOptions,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> SharedContext:
    """Create ``options.pool_size`` links and return them as the shared context.

    A transport failure means the target cannot be reached and aborts the run
    at once. Rejected or undecodable creates are logged and skipped; an empty
    pool (when one was requested) aborts as well.
    """
    logger.info("setup_started", pool_size=options.pool_size)
    codes: List[str] = []
    for i in range(options.pool_size):
        url = (
            f"https://example.com/{options.url_prefix}-{i}"
            f"?test=slo-engine&iteration={i}&timestamp={_timestamp_ms()}"
        )
        exchange = client.create(url)
        sink.trend("create_link_duration").add(exchange.duration_ms)

        if exchange.response is None:
            raise SetupError(f"target unreachable during setup: {exchange.error}")

        if exchange.status != client.options.created_status:
            sink.counter("setup_failures").add(1)
            logger.warning("setup_create_rejected", iteration=i, status=exchange.status)
        else:
            try:
                code = decode_short_code(exchange, client.options.short_code_field)
            except DecodeError as exc:
                sink.counter("setup_failures").add(1)
                logger.warning("setup_decode_failed", iteration=i, error=str(exc))
            else:
                codes.append(code)
                sink.counter("created_links").add(1)
                logger.debug("short_code_created", short_code=code)

        if options.pacing and i < options.pool_size - 1:
            sleep(options.pacing)

    if options.pool_size and not codes:
        raise SetupError(f"setup created none of the {options.pool_size} requested links")

    logger.info("setup_complete", created=len(codes))
    return SharedContext(short_codes=tuple(codes))


def log_teardown(context: SharedContext, snapshot: MetricsSnapshot) -> None:
    """Teardown hook: summarise what the run created and resolved."""
    logger.info(
        "load_test_complete",
        setup_short_codes=len(context),
        created_links=snapshot.counter_value("created_links"),
        successful_redirects=snapshot.counter_value("successful_redirects"),
        not_found_errors=snapshot.counter_value("not_found_errors"),
    )
