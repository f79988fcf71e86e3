"""
Run report: summary, per-threshold breakdown and time series.

* :class:`RunReport` is what :meth:`LifecycleCoordinator.run` returns.
* :func:`render_text` produces the console summary.
* :func:`write_summary` stores the report as one JSON document and
  :func:`write_series` appends the sampled series as JSON lines.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from slo_engine.evaluator import RuleResult, Verdict
from slo_engine.metrics import CounterView, MetricsSnapshot, RateView, TrendView


@dataclass(frozen=True)
class SeriesPoint:
    elapsed: float
    target: int
    live: int
    http_reqs: float
    p95_ms: Optional[float]
    failing_rules: int

    def as_dict(self) -> dict:
        return {
            "elapsed_s": round(self.elapsed, 3),
            "target": self.target,
            "live": self.live,
            "http_reqs": self.http_reqs,
            "http_req_duration_p95_ms": self.p95_ms,
            "failing_rules": self.failing_rules,
        }


@dataclass
class RunReport:
    name: str
    phase: str
    verdict: Verdict
    results: List[RuleResult]
    snapshot: MetricsSnapshot
    started_at: datetime
    finished_at: datetime
    pool_size: int = 0
    incomplete: bool = False
    cancelled: bool = False
    peak_live: int = 0
    teardown_error: Optional[str] = None
    series: List[SeriesPoint] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS

    @property
    def duration_s(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def counts(self) -> Dict[str, float]:
        """Created / redirected / not-found totals."""
        snap = self.snapshot
        return {
            "created_links": snap.counter_value("created_links"),
            "successful_redirects": snap.counter_value("successful_redirects"),
            "not_found_errors": snap.counter_value("not_found_errors"),
        }

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "phase": self.phase,
            "verdict": self.verdict.value,
            "incomplete": self.incomplete,
            "cancelled": self.cancelled,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_s": round(self.duration_s, 3),
            "pool_size": self.pool_size,
            "peak_live": self.peak_live,
            "teardown_error": self.teardown_error,
            "counts": self.counts(),
            "thresholds": [r.as_dict() for r in self.results],
            "metrics": metrics_summary(self.snapshot),
        }


# Helper functions

def _round(value: Optional[float]) -> Optional[float]:
    return round(value, 3) if value is not None else None


def metrics_summary(snapshot: MetricsSnapshot) -> Dict[str, Dict[str, Any]]:
    """Flatten a snapshot into JSON-serialisable per-metric dicts."""
    out: Dict[str, Dict[str, Any]] = {}
    for name in sorted(snapshot.metrics):
        view = snapshot.metrics[name]
        if isinstance(view, CounterView):
            out[name] = {"type": "counter", "count": view.value}
        elif isinstance(view, RateView):
            out[name] = {
                "type": "rate",
                "rate": _round(view.rate),
                "failures": view.failures,
                "successes": view.successes,
            }
        elif isinstance(view, TrendView):
            out[name] = {
                "type": "trend",
                "count": view.count,
                "avg": _round(view.mean),
                "min": _round(view.minimum),
                "med": _round(view.quantile(0.5)),
                "p90": _round(view.quantile(0.90)),
                "p95": _round(view.quantile(0.95)),
                "p99": _round(view.quantile(0.99)),
                "max": _round(view.maximum),
            }
    return out


def _fmt(value: Any) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def render_text(report: RunReport) -> str:
    """Human-readable summary, one block per section."""
    line = "=" * 60
    out = [
        line,
        f"  {report.name}: {'PASS' if report.passed else 'FAIL'}"
        + ("  (incomplete)" if report.incomplete else "")
        + ("  (cancelled)" if report.cancelled else ""),
        line,
        f"  Duration:         {report.duration_s:.1f}s",
        f"  Peak workers:     {report.peak_live}",
        f"  Setup pool:       {report.pool_size}",
    ]
    for key, value in report.counts().items():
        out.append(f"  {key + ':':<18}{_fmt(value)}")

    out += ["", "  Metrics:"]
    for name, data in metrics_summary(report.snapshot).items():
        if data["type"] == "trend":
            out.append(
                f"    {name:<24} avg={_fmt(data['avg'])} min={_fmt(data['min'])} "
                f"med={_fmt(data['med'])} p95={_fmt(data['p95'])} "
                f"p99={_fmt(data['p99'])} max={_fmt(data['max'])} n={data['count']}"
            )
        elif data["type"] == "rate":
            rate = data["rate"]
            shown = f"{rate * 100:.2f}%" if rate is not None else "-"
            out.append(
                f"    {name:<24} {shown} failed ({_fmt(data['failures'])} of "
                f"{_fmt(data['failures'] + data['successes'])})"
            )
        else:
            out.append(f"    {name:<24} {_fmt(data['count'])}")

    out += ["", "  Thresholds:"]
    if not report.results:
        out.append("    (none)")
    for r in report.results:
        mark = {Verdict.PASS: "PASS", Verdict.FAIL: "FAIL"}.get(r.verdict, "N/A ")
        detail = r.reason if r.reason else f"observed={_fmt(r.observed)}"
        out.append(f"    [{mark}] {r.rule}  ({detail})")

    if report.teardown_error:
        out += ["", f"  Teardown error: {report.teardown_error}"]
    out.append(line)
    return "\n".join(out)


def write_summary(path: str | Path, report: RunReport) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report.as_dict(), indent=2, default=str), encoding="utf-8")
    return path


def write_series(path: str | Path, series: List[SeriesPoint]) -> Path:
    """Append one JSON object per sampled point."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8", buffering=1) as fh:
        for point in series:
            fh.write(json.dumps(point.as_dict(), separators=(",", ":")) + "\n")
    return path
