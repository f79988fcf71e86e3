"""
Core data-model classes for the SLO engine.

Includes:
* **Stage**, **RampProfile**: the concurrency curve a run follows.
* **ThresholdRule**: one declarative pass/fail rule, parsed from k6-style
  expressions such as ``p(95)<500``, ``rate<0.01`` or ``count>0``.
* **ThinkTime**, **SetupOptions**, **TargetOptions**, **RunConfig**: the
  declarative configuration loaded before Setup.
* Helper for human-readable durations (``"500ms"``, ``"2m"``, ``"1m30s"``).

All models are frozen; configuration is never mutated once a run starts.
"""

from __future__ import annotations

import math
import random
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from slo_engine.errors import ConfigError
from slo_engine.metrics import MetricKind


# Helper functions

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: object) -> float:
    """Return *value* in seconds; numbers are taken as seconds already."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    try:
        return float(text)
    except ValueError:
        pass
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration {value!r}")
    return sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)


_EXPRESSION = re.compile(
    r"^\s*(?:p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\)|(?P<agg>avg|min|max|med|rate|count))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*"
    r"(?P<limit>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)\s*$"
)


# Enums

class Interpolation(str, Enum):
    LINEAR = "linear"
    STEP = "step"


class Aggregate(str, Enum):
    PERCENTILE = "p"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    MED = "med"
    RATE = "rate"
    COUNT = "count"


class Comparison(str, Enum):
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "=="
    NE = "!="


# Core model classes

class Stage(BaseModel):
    """One ``(duration, target)`` segment of a ramp profile."""

    model_config = ConfigDict(frozen=True)

    duration: float  # seconds
    target: int = Field(ge=0)
    hold: bool = False  # plateau: keep ``target`` for the whole stage

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, v: object) -> float:
        seconds = parse_duration(v)
        if not seconds > 0:
            raise ValueError("stage duration must be positive")
        return seconds


class RampProfile(BaseModel):
    """Ordered stages describing desired concurrency over elapsed time."""

    model_config = ConfigDict(frozen=True)

    stages: Tuple[Stage, ...] = Field(min_length=1)
    start_target: int = Field(0, ge=0)
    interpolation: Interpolation = Interpolation.LINEAR

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.stages)

    def stage_index_at(self, elapsed: float) -> Optional[int]:
        """Index of the stage active at *elapsed*, ``None`` once the profile ended."""
        start = 0.0
        for i, stage in enumerate(self.stages):
            if elapsed < start + stage.duration:
                return i
            start += stage.duration
        return None

    def desired_at(self, elapsed: float) -> float:
        """Un-rounded concurrency wanted at *elapsed* seconds."""
        if elapsed <= 0:
            first = self.stages[0]
            step = first.hold or self.interpolation is Interpolation.STEP
            return float(first.target if step else self.start_target)

        previous = float(self.start_target)
        start = 0.0
        for stage in self.stages:
            if elapsed < start + stage.duration:
                if stage.hold or self.interpolation is Interpolation.STEP:
                    return float(stage.target)
                fraction = (elapsed - start) / stage.duration
                return previous + (stage.target - previous) * fraction
            previous = float(stage.target)
            start += stage.duration
        return previous

    def target_at(self, elapsed: float) -> int:
        """Desired concurrency at *elapsed*, rounded half-up."""
        return int(math.floor(self.desired_at(elapsed) + 0.5))


class ThresholdRule(BaseModel):
    """``<aggregate> <op> <limit>`` over one named metric."""

    model_config = ConfigDict(frozen=True)

    metric: str
    expression: str
    aggregate: Aggregate
    percentile: Optional[float] = None  # 0..100, only for ``p(N)``
    operator: Comparison
    limit: float

    @classmethod
    def parse(cls, metric: str, expression: str) -> "ThresholdRule":
        m = _EXPRESSION.match(expression)
        if m is None:
            raise ConfigError(f"invalid threshold {expression!r} for metric {metric!r}")
        pct = m.group("pct")
        if pct is not None:
            percentile = float(pct)
            if not 0.0 <= percentile <= 100.0:
                raise ConfigError(f"percentile out of range in {expression!r}")
            aggregate = Aggregate.PERCENTILE
        else:
            percentile = None
            aggregate = Aggregate(m.group("agg"))
        return cls(
            metric=metric,
            expression=expression.strip(),
            aggregate=aggregate,
            percentile=percentile,
            operator=Comparison(m.group("op")),
            limit=float(m.group("limit")),
        )

    @property
    def kind(self) -> MetricKind:
        match self.aggregate:
            case Aggregate.COUNT:
                return MetricKind.COUNTER
            case Aggregate.RATE:
                return MetricKind.RATE
        return MetricKind.TREND

    def holds(self, observed: float) -> bool:
        match self.operator:
            case Comparison.LT:
                return observed < self.limit
            case Comparison.LE:
                return observed <= self.limit
            case Comparison.GT:
                return observed > self.limit
            case Comparison.GE:
                return observed >= self.limit
            case Comparison.EQ:
                return observed == self.limit
            case Comparison.NE:
                return observed != self.limit
        return False  # unsupported operator

    def __str__(self) -> str:
        return f"{self.metric}: {self.expression}"


class ThinkTime(BaseModel):
    """Uniform pause between two iterations of one worker (seconds)."""

    model_config = ConfigDict(frozen=True)

    min: float = Field(0.0, ge=0)
    max: float = Field(0.0, ge=0)

    @model_validator(mode="after")
    def _ordered(self) -> "ThinkTime":
        if self.max < self.min:
            raise ValueError("think_time.max must be >= think_time.min")
        return self

    def draw(self, rng: random.Random) -> float:
        if self.max == 0:
            return 0.0
        return rng.uniform(self.min, self.max)


class SetupOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    pool_size: int = Field(20, ge=0)
    pacing: float = Field(0.1, ge=0)  # pause between two Setup creates
    url_prefix: str = "page"


class TargetOptions(BaseModel):
    """Routes and documented responses of the service under test."""

    model_config = ConfigDict(frozen=True)

    create_path: str = "/api/links"
    short_code_field: str = "short_code"
    created_status: int = 201
    redirect_status: int = 302
    not_found_status: int = 200
    not_found_marker: str = "Link Not Found"
    invalid_prefix: str = "INVALID"


# Also the set of scenario names a run configuration may weight
DEFAULT_SCENARIOS: Dict[str, float] = {
    "create_link": 0.20,
    "follow_redirect": 0.75,
    "not_found": 0.05,
}


class RunConfig(BaseModel):
    """Everything one run needs, loaded before Setup."""

    model_config = ConfigDict(frozen=True)

    name: str = "custom"
    description: str = ""
    base_url: str = "http://localhost:4000"
    stages: List[Stage] = Field(min_length=1)
    start_target: int = Field(0, ge=0)
    interpolation: Interpolation = Interpolation.LINEAR
    thresholds: Dict[str, List[str]] = {}
    scenarios: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SCENARIOS))
    think_time: ThinkTime = ThinkTime()
    setup: SetupOptions = SetupOptions()
    target: TargetOptions = TargetOptions()
    request_timeout: float = Field(10.0, gt=0)
    max_connections: Optional[int] = Field(None, ge=1)
    tick: float = Field(0.1, gt=0)
    evaluation_interval: float = Field(1.0, gt=0)
    seed: Optional[int] = None

    @model_validator(mode="after")
    def _check(self) -> "RunConfig":
        if not self.scenarios:
            raise ValueError("at least one scenario weight is required")
        unknown = sorted(set(self.scenarios) - set(DEFAULT_SCENARIOS))
        if unknown:
            raise ValueError(f"unknown scenarios {unknown}; known: {sorted(DEFAULT_SCENARIOS)}")
        if any(w < 0 for w in self.scenarios.values()):
            raise ValueError("scenario weights must be non-negative")
        total = sum(self.scenarios.values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"scenario weights must sum to 1.0, got {total:.6f}")
        self.rules()  # fail early on bad expressions
        return self

    @property
    def profile(self) -> RampProfile:
        return RampProfile(
            stages=tuple(self.stages),
            start_target=self.start_target,
            interpolation=self.interpolation,
        )

    def rules(self) -> List[ThresholdRule]:
        return [
            ThresholdRule.parse(metric, expr)
            for metric, exprs in self.thresholds.items()
            for expr in exprs
        ]
