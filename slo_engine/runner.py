"""
Wiring for a URL-shortener run.

``RunConfig`` → sink, target client, scenarios, dispatcher, ramp controller,
threshold evaluator → :class:`LifecycleCoordinator`.
"""

from __future__ import annotations

from typing import Optional

import httpx

from slo_engine.dispatcher import ScenarioDispatcher
from slo_engine.errors import ConfigError
from slo_engine.evaluator import ThresholdEvaluator
from slo_engine.lifecycle import LifecycleCoordinator
from slo_engine.metrics import MetricSink
from slo_engine.model import RunConfig
from slo_engine.ramp import RampController
from slo_engine.report import RunReport
from slo_engine.scenarios import UrlShortenerScenarios, build_pool, log_teardown
from slo_engine.target import TargetClient


def build_coordinator(
    config: RunConfig, client: TargetClient, sink: MetricSink
) -> LifecycleCoordinator:
    try:
        scenarios = UrlShortenerScenarios(client, sink).build(config.scenarios)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    ramp = RampController(
        sink,
        think_time=config.think_time,
        tick=config.tick,
        seed=config.seed,
        drain_timeout=config.request_timeout + 1.0,
    )
    return LifecycleCoordinator(
        profile=config.profile,
        setup=lambda: build_pool(client, sink, config.setup),
        dispatcher=ScenarioDispatcher(scenarios, sink),
        ramp=ramp,
        evaluator=ThresholdEvaluator(config.rules()),
        sink=sink,
        teardown=log_teardown,
        evaluation_interval=config.evaluation_interval,
        name=config.name,
    )


def execute(
    config: RunConfig,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    sink: Optional[MetricSink] = None,
) -> RunReport:
    """Run *config* end to end and return the report (``SetupError`` propagates)."""
    sink = sink if sink is not None else MetricSink()
    with TargetClient(
        config.base_url,
        sink,
        options=config.target,
        timeout=config.request_timeout,
        max_connections=config.max_connections,
        transport=transport,
    ) as client:
        return build_coordinator(config, client, sink).run()
