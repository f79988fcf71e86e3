"""
Run report tests: JSON summary, JSON-lines series and console text.

Timestamps are frozen with *freezegun* so the summary is reproducible.
"""

import json
from datetime import datetime, timedelta, timezone

from freezegun import freeze_time

from slo_engine.evaluator import ThresholdEvaluator, Verdict
from slo_engine.metrics import MetricSink
from slo_engine.model import ThresholdRule
from slo_engine.report import RunReport, SeriesPoint, metrics_summary, render_text, write_series, write_summary


def _report(now):
    sink = MetricSink()
    for v in (5.0, 10.0, 15.0):
        sink.trend("http_req_duration").add(v)
    sink.rate("http_req_failed").add(True)
    sink.counter("created_links").add(2)
    snap = sink.snapshot()
    rules = [
        ThresholdRule.parse("http_req_duration", "p(95)<500"),
        ThresholdRule.parse("redirect_duration", "p(95)<500"),
    ]
    results = ThresholdEvaluator(rules).evaluate(snap)
    return RunReport(
        name="unit",
        phase="done",
        verdict=Verdict.PASS,
        results=results,
        snapshot=snap,
        started_at=now,
        finished_at=now + timedelta(seconds=90),
        pool_size=5,
        peak_live=3,
        series=[SeriesPoint(1.0, 3, 3, 10, 12.5, 0)],
    )


def test_summary_json(tmp_path):
    """The JSON summary carries frozen timestamps, counts and verdicts."""
    with freeze_time("2025-01-02T03:04:05Z"):
        report = _report(datetime.now(timezone.utc))
        path = write_summary(tmp_path / "out" / "summary.json", report)

    data = json.loads(path.read_text())
    assert data["started_at"] == "2025-01-02T03:04:05+00:00"
    assert data["duration_s"] == 90.0
    assert data["verdict"] == "pass"
    assert data["counts"] == {"created_links": 2, "successful_redirects": 0, "not_found_errors": 0}
    assert [t["verdict"] for t in data["thresholds"]] == ["pass", "indeterminate"]
    assert data["metrics"]["http_req_duration"]["max"] == 15.0
    assert data["metrics"]["http_req_failed"]["rate"] == 0.0


def test_series_is_appended_as_json_lines(tmp_path):
    """Series points are appended one JSON object per line."""
    path = tmp_path / "series.jsonl"
    points = [SeriesPoint(0.5, 1, 1, 3, None, 0), SeriesPoint(1.0, 2, 2, 9, 4.2, 1)]
    write_series(path, points[:1])
    write_series(path, points[1:])

    rows = [json.loads(line) for line in path.read_text().splitlines()]
    assert [r["target"] for r in rows] == [1, 2]
    assert rows[0]["http_req_duration_p95_ms"] is None
    assert rows[1]["failing_rules"] == 1


def test_render_text_lists_thresholds():
    """The console summary marks each rule PASS, FAIL or N/A."""
    report = _report(datetime(2025, 1, 1, tzinfo=timezone.utc))
    text = render_text(report)
    assert "unit: PASS" in text
    assert "[PASS] http_req_duration: p(95)<500" in text
    assert "[N/A ] redirect_duration: p(95)<500" in text
    assert "Setup pool:       5" in text


def test_metrics_summary_kinds():
    """Each metric is summarised under its own kind."""
    summary = metrics_summary(_report(datetime(2025, 1, 1, tzinfo=timezone.utc)).snapshot)
    assert {name: data["type"] for name, data in summary.items()} == {
        "created_links": "counter",
        "http_req_duration": "trend",
        "http_req_failed": "rate",
    }
