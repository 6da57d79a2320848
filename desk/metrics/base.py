"""Counter and distribution primitives held by the metrics registry."""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Dict, Iterable, Iterator, Mapping, Tuple

LabelValues = Tuple[str, ...]


class Metric:
    """Base for series keyed by the values of a fixed set of labels."""

    kind = "metric"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._lock = Lock()

    def _label_key(self, labels: Mapping[str, str] | None = None) -> LabelValues:
        given = dict(labels or {})
        if set(given) != set(self.label_names):
            raise ValueError(
                f"{self.kind} '{self.name}' expects labels {list(self.label_names)}, got {sorted(given)}"
            )
        return tuple(str(given[label]) for label in self.label_names)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError


class CounterMetric(Metric):
    """Monotonic counter."""

    kind = "counter"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._totals: Dict[LabelValues, float] = {}

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        if amount < 0:
            raise ValueError(f"counter '{self.name}' cannot decrease")
        key = self._label_key(labels)
        with self._lock:
            self._totals[key] = self._totals.get(key, 0.0) + amount

    def value(self, labels: Mapping[str, str] | None = None) -> float:
        key = self._label_key(labels)
        with self._lock:
            return self._totals.get(key, 0.0)

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: {"value": total} for key, total in self._totals.items()}

    def reset(self) -> None:
        with self._lock:
            self._totals = {}


@dataclass
class DistributionStats:
    count: int = 0
    total: float = 0.0
    low: float = float("inf")
    high: float = float("-inf")

    def add(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.low = min(self.low, value)
        self.high = max(self.high, value)

    def as_dict(self) -> Mapping[str, float]:
        if not self.count:
            return {"count": 0.0, "sum": 0.0, "min": 0.0, "max": 0.0, "avg": 0.0}
        return {
            "count": float(self.count),
            "sum": self.total,
            "min": self.low,
            "max": self.high,
            "avg": self.total / self.count,
        }


class DistributionMetric(Metric):
    """Count, sum and bounds of observed durations."""

    kind = "distribution"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        super().__init__(name, description=description, label_names=label_names)
        self._series: Dict[LabelValues, DistributionStats] = {}

    def observe(self, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._series.setdefault(key, DistributionStats()).add(value)

    def count(self, labels: Mapping[str, str] | None = None) -> int:
        key = self._label_key(labels)
        with self._lock:
            series = self._series.get(key)
        return series.count if series is not None else 0

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: series.as_dict() for key, series in self._series.items()}

    def reset(self) -> None:
        with self._lock:
            self._series = {}


@contextmanager
def track_duration(metric: DistributionMetric, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
    """Observe the seconds spent inside the block, whether or not it raises."""

    started = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - started, labels=labels)
