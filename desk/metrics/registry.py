"""Process wide registry of named metrics."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterable, Iterator, Mapping, Tuple, Type, TypeVar

from .base import CounterMetric, DistributionMetric, Metric, track_duration

_M = TypeVar("_M", bound=Metric)


class MetricsRegistry:
    """Look up metrics by name, creating them on first use."""

    def __init__(self) -> None:
        self._metrics: Dict[str, Metric] = {}
        self._lock = Lock()

    def _lookup(
        self, cls: Type[_M], name: str, description: str, label_names: Iterable[str] | None
    ) -> _M:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = cls(name, description=description, label_names=label_names)
                self._metrics[name] = metric
        if not isinstance(metric, cls):
            raise TypeError(f"'{name}' is registered as a {metric.kind}, not a {cls.kind}")
        return metric

    def counter(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> CounterMetric:
        return self._lookup(CounterMetric, name, description, label_names)

    def distribution(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> DistributionMetric:
        return self._lookup(DistributionMetric, name, description, label_names)

    def snapshot(self) -> Dict[str, Mapping[Tuple[str, ...], Mapping[str, float]]]:
        with self._lock:
            metrics = list(self._metrics.values())
        return {metric.name: metric.snapshot() for metric in metrics}

    def reset(self) -> None:
        with self._lock:
            metrics = list(self._metrics.values())
        for metric in metrics:
            metric.reset()

    @contextmanager
    def time_distribution(self, name: str, *, labels: Mapping[str, str] | None = None) -> Iterator[None]:
        with track_duration(self.distribution(name), labels=labels):
            yield
