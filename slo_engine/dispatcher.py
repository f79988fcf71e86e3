"""
Weighted scenario dispatcher.

Each worker iteration draws one uniform number in ``[0, 1)`` from the
worker's private RNG; the scenario whose cumulative-weight interval contains
the draw is executed. A failing or crashing scenario is turned into a failed
:class:`Outcome` and recorded, it never propagates to the worker loop.
"""

from __future__ import annotations

import math
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

import structlog

from slo_engine.metrics import MetricSink

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Outcome:
    """Result of one scenario execution."""

    scenario: str
    ok: bool
    duration_ms: float = 0.0
    checks: Mapping[str, bool] = field(default_factory=dict)
    error: Optional[str] = None
    skipped: bool = False


ScenarioFn = Callable[[Any, random.Random], Outcome]


@dataclass(frozen=True)
class Scenario:
    name: str
    weight: float
    run: ScenarioFn


class ScenarioDispatcher:
    """Select and run one scenario per call."""

    def __init__(self, scenarios: Sequence[Scenario], sink: MetricSink) -> None:
        if not scenarios:
            raise ValueError("at least one scenario is required")
        names = [s.name for s in scenarios]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate scenario names in {names}")
        if any(s.weight < 0 for s in scenarios):
            raise ValueError("scenario weights must be non-negative")
        total = sum(s.weight for s in scenarios)
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"scenario weights must sum to 1.0, got {total:.6f}")

        self.scenarios: tuple[Scenario, ...] = tuple(scenarios)
        self.sink = sink
        bounds = []
        acc = 0.0
        for s in self.scenarios:
            acc += s.weight
            bounds.append(acc)
        self._bounds: tuple[float, ...] = tuple(bounds)
        # Draws beyond the rounded total fall to the last scenario that can be picked
        self._fallback = max(i for i, s in enumerate(self.scenarios) if s.weight > 0)

    def select(self, draw: float) -> Scenario:
        """Return the scenario whose ``[lo, hi)`` interval contains *draw*."""
        if not 0.0 <= draw < 1.0:
            raise ValueError(f"draw must be within [0, 1), got {draw!r}")
        for scenario, upper in zip(self.scenarios, self._bounds):
            if draw < upper and scenario.weight > 0:
                return scenario
        return self.scenarios[self._fallback]

    def select_and_run(self, context: Any, rng: random.Random) -> Outcome:
        scenario = self.select(rng.random())
        started = time.perf_counter()
        try:
            outcome = scenario.run(context, rng)
        except Exception as exc:
            logger.warning("scenario_crashed", scenario=scenario.name, error=repr(exc))
            self.sink.counter("iteration_errors").add(1)
            outcome = Outcome(
                scenario=scenario.name,
                ok=False,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=repr(exc),
            )

        self.sink.counter("iterations").add(1)
        self.sink.trend("iteration_duration").add((time.perf_counter() - started) * 1000)
        self.sink.rate("iteration_failed").add(outcome.ok)
        if not outcome.ok:
            failed = [name for name, ok in outcome.checks.items() if not ok]
            logger.debug(
                "iteration_failed",
                scenario=outcome.scenario,
                failed_checks=failed,
                error=outcome.error,
            )
        return outcome
