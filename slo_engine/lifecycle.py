"""
Lifecycle coordinator: Setup once, many workers, Teardown once.

State machine::

    Idle -> Setup -> Running -> Draining -> Teardown -> Done
                 \\-> Aborted  (Setup failure, nothing else runs)

* Setup builds the shared context; any exception aborts the run before a
  single worker is spawned and is re-raised as :class:`SetupError`.
* Running hands the context to the :class:`RampController`; thresholds are
  evaluated every ``evaluation_interval`` seconds and sampled into a series.
* Teardown runs exactly once after every worker exited, whatever the
  iterations did. Its failure is reported, it never hides the verdict.
"""

from __future__ import annotations

import math
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import structlog

from slo_engine.dispatcher import ScenarioDispatcher
from slo_engine.errors import SetupError
from slo_engine.evaluator import ThresholdEvaluator, Verdict, combine
from slo_engine.metrics import MetricSink, MetricsSnapshot
from slo_engine.model import RampProfile
from slo_engine.ramp import RampController, RampResult
from slo_engine.report import RunReport, SeriesPoint

logger = structlog.get_logger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    SETUP = "setup"
    RUNNING = "running"
    DRAINING = "draining"
    TEARDOWN = "teardown"
    DONE = "done"
    ABORTED = "aborted"


_TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.SETUP}),
    Phase.SETUP: frozenset({Phase.RUNNING, Phase.ABORTED}),
    Phase.RUNNING: frozenset({Phase.DRAINING, Phase.ABORTED}),
    Phase.DRAINING: frozenset({Phase.TEARDOWN, Phase.ABORTED}),
    Phase.TEARDOWN: frozenset({Phase.DONE, Phase.ABORTED}),
    Phase.DONE: frozenset(),
    Phase.ABORTED: frozenset(),
}

SetupFn = Callable[[], Any]
TeardownFn = Callable[[Any, MetricsSnapshot], None]


class LifecycleCoordinator:
    """Own the run from Setup to the final verdict."""

    def __init__(
        self,
        *,
        profile: RampProfile,
        setup: SetupFn,
        dispatcher: ScenarioDispatcher,
        ramp: RampController,
        evaluator: ThresholdEvaluator,
        sink: MetricSink,
        teardown: Optional[TeardownFn] = None,
        evaluation_interval: float = 1.0,
        progress_interval: float = 10.0,
        name: str = "run",
    ) -> None:
        self.profile = profile
        self.dispatcher = dispatcher
        self.ramp = ramp
        self.evaluator = evaluator
        self.sink = sink
        self.name = name
        self.evaluation_interval = evaluation_interval
        self.progress_interval = progress_interval
        self.series: List[SeriesPoint] = []
        self.history: List[Tuple[Phase, datetime]] = []
        self._setup = setup
        self._teardown = teardown
        self._cancel = threading.Event()
        self._phase = Phase.IDLE
        self._phase_lock = threading.Lock()
        self._last_eval = -math.inf
        self._last_progress = 0.0

    # State helpers

    @property
    def phase(self) -> Phase:
        return self._phase

    def _enter(self, phase: Phase) -> None:
        with self._phase_lock:
            if phase not in _TRANSITIONS[self._phase]:
                raise RuntimeError(f"illegal transition {self._phase.value} -> {phase.value}")
            self._phase = phase
            self.history.append((phase, datetime.now(timezone.utc)))
        logger.info("phase_changed", run=self.name, phase=phase.value)

    def cancel(self) -> None:
        """Stop spawning, drain the workers and go on to Teardown."""
        self._cancel.set()

    # Running-phase observer

    def _on_tick(self, elapsed: float, target: int, live: int) -> None:
        if elapsed - self._last_eval < self.evaluation_interval:
            return
        self._last_eval = elapsed

        snapshot = self.sink.snapshot()
        results = self.evaluator.evaluate(snapshot)
        failing = sum(1 for r in results if r.verdict is Verdict.FAIL)
        trend = snapshot.trend("http_req_duration")
        p95 = trend.quantile(0.95) if trend is not None and trend.count else None
        point = SeriesPoint(
            elapsed=elapsed,
            target=target,
            live=live,
            http_reqs=snapshot.counter_value("http_reqs"),
            p95_ms=p95,
            failing_rules=failing,
        )
        self.series.append(point)

        if elapsed - self._last_progress >= self.progress_interval:
            self._last_progress = elapsed
            logger.info(
                "ramp_progress",
                elapsed_s=round(elapsed, 1),
                target=target,
                live=live,
                http_reqs=point.http_reqs,
                p95_ms=round(p95, 2) if p95 is not None else None,
                failing_rules=failing,
            )

    # Public API

    def run(self) -> RunReport:
        """Execute the whole lifecycle once and return the report.

        Raises :class:`SetupError` when Setup fails; the run is then
        ``Aborted`` and neither workers nor Teardown run.
        """
        if self._phase is not Phase.IDLE:
            raise RuntimeError("a coordinator can only run once")
        started_at = datetime.now(timezone.utc)

        self._enter(Phase.SETUP)
        try:
            context = self._setup()
        except Exception as exc:
            self._enter(Phase.ABORTED)
            logger.error("setup_failed", run=self.name, error=str(exc))
            if isinstance(exc, SetupError):
                raise
            raise SetupError(str(exc)) from exc

        self._enter(Phase.RUNNING)
        self.ramp.add_observer(self._on_tick)
        result: RampResult = self.ramp.run(
            self.profile,
            self.dispatcher.select_and_run,
            context,
            self._cancel,
            on_drain=lambda: self._enter(Phase.DRAINING),
        )

        self._enter(Phase.TEARDOWN)
        teardown_error: Optional[str] = None
        if self._teardown is not None:
            try:
                self._teardown(context, self.sink.snapshot())
            except Exception as exc:
                teardown_error = repr(exc)
                logger.exception("teardown_failed", run=self.name)

        snapshot = self.sink.snapshot()
        results = self.evaluator.evaluate(snapshot)
        verdict = combine(results)
        self._enter(Phase.DONE)

        report = RunReport(
            name=self.name,
            phase=self._phase.value,
            verdict=verdict,
            results=results,
            snapshot=snapshot,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            pool_size=len(context) if hasattr(context, "__len__") else 0,
            incomplete=result.incomplete,
            cancelled=result.cancelled,
            peak_live=result.peak_live,
            teardown_error=teardown_error,
            series=list(self.series),
        )
        logger.info(
            "run_finished",
            run=self.name,
            verdict=verdict.value,
            incomplete=result.incomplete,
            cancelled=result.cancelled,
            spawned=result.spawned,
            spawn_failures=result.spawn_failures,
        )
        return report
