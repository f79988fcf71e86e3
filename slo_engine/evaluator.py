"""
Threshold evaluator for the SLO engine.

Features
--------
* Evaluates declarative :class:`~slo_engine.model.ThresholdRule` objects
  against a :class:`~slo_engine.metrics.MetricsSnapshot`:
  - **Trend** rules: ``p(N)``, ``avg``, ``min``, ``max``, ``med``.
  - **Rate** rules: ``failures / (failures + successes)``.
  - ``count`` works on every kind: a counter's value, a rate's number of
    samples or a trend's number of values.
* Rules without observations are **Indeterminate**, except ``count`` rules,
  which observe 0 and therefore fail ``count>0``.
* A rule aimed at a metric of the wrong kind (``p(95)`` on a counter,
  ``rate`` on a trend) **fails** with the mismatch as its reason.
* The final verdict fails iff at least one rule fails.

Evaluation has no side effects; it can run any number of times during or
after a run and yields identical results for the same snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from slo_engine.metrics import MetricSink, MetricsSnapshot, RateView, TrendView
from slo_engine.model import Aggregate, ThresholdRule


class Verdict(str, Enum):
    """Possible evaluation results."""

    PASS = "pass"
    FAIL = "fail"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class RuleResult:
    rule: ThresholdRule
    verdict: Verdict
    observed: Optional[float] = None
    reason: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.verdict is not Verdict.FAIL

    def as_dict(self) -> dict:
        return {
            "metric": self.rule.metric,
            "threshold": self.rule.expression,
            "verdict": self.verdict.value,
            "observed": self.observed,
            "reason": self.reason,
        }


# Helper functions

def _as_snapshot(source: Union[MetricSink, MetricsSnapshot]) -> MetricsSnapshot:
    return source.snapshot() if isinstance(source, MetricSink) else source


def observe(rule: ThresholdRule, snapshot: MetricsSnapshot) -> Optional[float]:
    """Return the value *rule* compares against, ``None`` when unobserved."""
    if rule.aggregate is Aggregate.COUNT:
        view = snapshot.get(rule.metric)
        if isinstance(view, RateView):
            return float(view.total)
        if isinstance(view, TrendView):
            return float(view.count)
        return float(snapshot.counter_value(rule.metric))

    if rule.aggregate is Aggregate.RATE:
        view = snapshot.rate(rule.metric)
        return view.rate if view is not None else None

    trend = snapshot.trend(rule.metric)
    if trend is None or trend.count == 0:
        return None
    match rule.aggregate:
        case Aggregate.PERCENTILE:
            assert rule.percentile is not None
            return trend.quantile(rule.percentile / 100.0)
        case Aggregate.MED:
            return trend.quantile(0.5)
        case Aggregate.AVG:
            return trend.mean
        case Aggregate.MIN:
            return trend.minimum
        case Aggregate.MAX:
            return trend.maximum
    return None  # unsupported combination


def kind_mismatch(rule: ThresholdRule, snapshot: MetricsSnapshot) -> Optional[str]:
    """Describe why *rule* cannot apply to the recorded metric, if it cannot."""
    view = snapshot.get(rule.metric)
    if view is None or rule.aggregate is Aggregate.COUNT or view.kind is rule.kind:
        return None
    return (
        f"{rule.metric} is a {view.kind.value} metric, "
        f"{rule.expression!r} needs a {rule.kind.value}"
    )


def evaluate_rule(rule: ThresholdRule, snapshot: MetricsSnapshot) -> RuleResult:
    mismatch = kind_mismatch(rule, snapshot)
    if mismatch is not None:
        return RuleResult(rule=rule, verdict=Verdict.FAIL, reason=mismatch)
    observed = observe(rule, snapshot)
    if observed is None:
        return RuleResult(rule=rule, verdict=Verdict.INDETERMINATE)
    verdict = Verdict.PASS if rule.holds(observed) else Verdict.FAIL
    return RuleResult(rule=rule, verdict=verdict, observed=observed)


def combine(results: Iterable[RuleResult]) -> Verdict:
    """Logical AND over rule results; indeterminate rules do not fail the run."""
    return Verdict.FAIL if any(r.verdict is Verdict.FAIL for r in results) else Verdict.PASS


# Public API

class ThresholdEvaluator:
    """Evaluate a fixed rule set against metric snapshots."""

    def __init__(self, rules: Iterable[ThresholdRule]) -> None:
        self.rules: tuple[ThresholdRule, ...] = tuple(rules)

    def evaluate(self, source: Union[MetricSink, MetricsSnapshot]) -> List[RuleResult]:
        snapshot = _as_snapshot(source)
        return [evaluate_rule(rule, snapshot) for rule in self.rules]

    def final_verdict(self, source: Union[MetricSink, MetricsSnapshot]) -> Verdict:
        return combine(self.evaluate(source))
