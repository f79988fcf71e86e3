"""
Concurrency-safe metric primitives for the SLO engine.

Includes:
* **Counter**: monotonic sum, ``add(n)`` with ``n >= 0``.
* **Trend**: bounded-memory distribution of non-negative values with
  quantile queries (logarithmic buckets, relative error bounded by
  ``relative_accuracy``; min and max are tracked exactly).
* **Rate**: a pair of counters (failures, successes) whose ratio is the
  failure rate.
* **MetricSink**: name → metric registry and immutable snapshots.

Every metric owns its own lock, so writers on unrelated metrics never
contend. The sink's registry lock is only taken when a metric is created.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple, Union

# Values at or below this are counted in the zero bucket
_MIN_INDEXABLE = 1e-9


class MetricKind(str, Enum):
    COUNTER = "counter"
    TREND = "trend"
    RATE = "rate"


# Helper functions

def _check_fraction(p: float) -> None:
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"quantile must be within [0, 1], got {p!r}")


def _quantile(
    p: float,
    *,
    count: int,
    zero_count: int,
    bins: Tuple[Tuple[int, int], ...],
    gamma: float,
    minimum: float,
    maximum: float,
) -> float:
    """Walk the sorted buckets up to rank ``p * (count - 1)``."""
    if p == 0.0:
        return minimum
    if p == 1.0:
        return maximum

    rank = p * (count - 1)
    seen = zero_count
    if rank < seen:
        return max(minimum, 0.0)
    for key, n in bins:
        seen += n
        if rank < seen:
            value = 2.0 * gamma**key / (gamma + 1.0)
            return min(max(value, minimum), maximum)
    return maximum


# Snapshot views

@dataclass(frozen=True)
class CounterView:
    name: str
    value: float
    kind: MetricKind = MetricKind.COUNTER


@dataclass(frozen=True)
class RateView:
    name: str
    failures: float
    successes: float
    kind: MetricKind = MetricKind.RATE

    @property
    def total(self) -> float:
        return self.failures + self.successes

    @property
    def rate(self) -> Optional[float]:
        """Failure ratio, ``None`` when nothing was recorded."""
        if self.total == 0:
            return None
        return self.failures / self.total


@dataclass(frozen=True)
class TrendView:
    name: str
    count: int
    total: float
    minimum: Optional[float]
    maximum: Optional[float]
    zero_count: int
    bins: Tuple[Tuple[int, int], ...]
    gamma: float
    kind: MetricKind = MetricKind.TREND

    @property
    def mean(self) -> Optional[float]:
        return self.total / self.count if self.count else None

    def quantile(self, p: float) -> Optional[float]:
        """Return the *p*-quantile, or ``None`` for an empty trend."""
        _check_fraction(p)
        if not self.count:
            return None
        assert self.minimum is not None and self.maximum is not None
        return _quantile(
            p,
            count=self.count,
            zero_count=self.zero_count,
            bins=self.bins,
            gamma=self.gamma,
            minimum=self.minimum,
            maximum=self.maximum,
        )


MetricView = Union[CounterView, TrendView, RateView]


# Live metrics

class Counter:
    """Monotonically non-decreasing sum."""

    kind = MetricKind.COUNTER

    def __init__(self, name: str) -> None:
        self.name = name
        self._value: float = 0
        self._lock = threading.Lock()

    def add(self, n: float = 1) -> None:
        if n < 0:
            raise ValueError(f"counter {self.name!r} cannot decrease (got {n!r})")
        with self._lock:
            self._value += n

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def view(self) -> CounterView:
        return CounterView(name=self.name, value=self.value)


class Rate:
    """Failure/success pair backed by two :class:`Counter` objects."""

    kind = MetricKind.RATE

    def __init__(self, name: str) -> None:
        self.name = name
        self.failures = Counter(f"{name}.failures")
        self.successes = Counter(f"{name}.successes")
        self._lock = threading.Lock()

    def add(self, ok: bool) -> None:
        # The pair lock keeps snapshots of both halves consistent.
        with self._lock:
            (self.successes if ok else self.failures).add(1)

    @property
    def rate(self) -> Optional[float]:
        return self.view().rate

    def view(self) -> RateView:
        with self._lock:
            return RateView(
                name=self.name,
                failures=self.failures.value,
                successes=self.successes.value,
            )


class Trend:
    """Streaming distribution with bounded memory.

    Values are folded into logarithmic buckets of ratio
    ``gamma = (1 + a) / (1 - a)`` where *a* is ``relative_accuracy``. A
    quantile reported from bucket *k* is ``2 * gamma**k / (gamma + 1)``,
    which is within *a* (relative) of every value stored in that bucket.
    When more than ``max_bins`` buckets are in use the lowest ones are merged,
    so the bound only holds for quantiles above the collapsed range.
    """

    kind = MetricKind.TREND

    def __init__(
        self,
        name: str,
        *,
        relative_accuracy: float = 0.01,
        max_bins: int = 2048,
    ) -> None:
        if not 0.0 < relative_accuracy < 1.0:
            raise ValueError("relative_accuracy must be within (0, 1)")
        if max_bins < 1:
            raise ValueError("max_bins must be positive")
        self.name = name
        self.relative_accuracy = relative_accuracy
        self.max_bins = max_bins
        self.gamma = (1.0 + relative_accuracy) / (1.0 - relative_accuracy)
        self._log_gamma = math.log(self.gamma)
        self._bins: Dict[int, int] = {}
        self._zero_count = 0
        self._count = 0
        self._total = 0.0
        self._min: Optional[float] = None
        self._max: Optional[float] = None
        self._lock = threading.Lock()

    def _key(self, value: float) -> int:
        return math.ceil(math.log(value) / self._log_gamma)

    def add(self, value: float) -> None:
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"trend {self.name!r} only accepts finite non-negative values")
        key = self._key(value) if value > _MIN_INDEXABLE else None
        with self._lock:
            self._count += 1
            self._total += value
            if self._min is None or value < self._min:
                self._min = value
            if self._max is None or value > self._max:
                self._max = value
            if key is None:
                self._zero_count += 1
                return
            self._bins[key] = self._bins.get(key, 0) + 1
            if len(self._bins) > self.max_bins:
                self._collapse_lowest()

    def _collapse_lowest(self) -> None:
        lowest = min(self._bins)
        n = self._bins.pop(lowest)
        nxt = min(self._bins)
        self._bins[nxt] += n

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def quantile(self, p: float) -> Optional[float]:
        return self.view().quantile(p)

    def view(self) -> TrendView:
        with self._lock:
            return TrendView(
                name=self.name,
                count=self._count,
                total=self._total,
                minimum=self._min,
                maximum=self._max,
                zero_count=self._zero_count,
                bins=tuple(sorted(self._bins.items())),
                gamma=self.gamma,
            )


Metric = Union[Counter, Trend, Rate]


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable view of every metric at (roughly) one moment."""

    metrics: Mapping[str, MetricView] = field(default_factory=dict)
    taken_at: float = 0.0

    def get(self, name: str) -> Optional[MetricView]:
        return self.metrics.get(name)

    def counter_value(self, name: str) -> float:
        view = self.metrics.get(name)
        return view.value if isinstance(view, CounterView) else 0

    def trend(self, name: str) -> Optional[TrendView]:
        view = self.metrics.get(name)
        return view if isinstance(view, TrendView) else None

    def rate(self, name: str) -> Optional[RateView]:
        view = self.metrics.get(name)
        return view if isinstance(view, RateView) else None


class MetricSink:
    """Registry of named metrics shared by every worker of a run."""

    def __init__(self, *, relative_accuracy: float = 0.01, max_bins: int = 2048) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = threading.Lock()
        self._trend_opts = {"relative_accuracy": relative_accuracy, "max_bins": max_bins}

    def _get_or_create(self, name: str, cls: type) -> Metric:
        metric = self._metrics.get(name)
        if metric is None:
            with self._lock:
                metric = self._metrics.get(name)
                if metric is None:
                    metric = cls(name, **self._trend_opts) if cls is Trend else cls(name)
                    self._metrics[name] = metric
        if not isinstance(metric, cls):
            raise TypeError(
                f"metric {name!r} is a {metric.kind.value}, not a {cls.kind.value}"
            )
        return metric

    def counter(self, name: str) -> Counter:
        return self._get_or_create(name, Counter)  # type: ignore[return-value]

    def trend(self, name: str) -> Trend:
        return self._get_or_create(name, Trend)  # type: ignore[return-value]

    def rate(self, name: str) -> Rate:
        return self._get_or_create(name, Rate)  # type: ignore[return-value]

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._metrics)

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            items = list(self._metrics.items())
        views = {name: metric.view() for name, metric in items}
        return MetricsSnapshot(metrics=MappingProxyType(views), taken_at=time.monotonic())
