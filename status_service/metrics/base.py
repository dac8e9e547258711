"""Counter and distribution metrics keyed by label values."""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from time import perf_counter
from typing import Generic, Iterable, Iterator, Mapping, Tuple, TypeVar

LabelValues = Tuple[str, ...]
_S = TypeVar("_S")


class Metric(ABC, Generic[_S]):
    """A named metric holding one series per label combination."""

    kind = "untyped"

    def __init__(
        self, name: str, *, description: str = "", label_names: Iterable[str] | None = None
    ) -> None:
        self.name = name
        self.description = description
        self.label_names: Tuple[str, ...] = tuple(label_names or ())
        self._series: dict[LabelValues, _S] = {}
        self._lock = Lock()

    def _label_key(self, labels: Mapping[str, object] | None) -> LabelValues:
        labels = labels or {}
        unexpected = set(labels) - set(self.label_names)
        if unexpected:
            raise ValueError(f"Metric '{self.name}' does not accept labels {sorted(unexpected)}")
        missing = [label for label in self.label_names if label not in labels]
        if missing:
            raise ValueError(f"Metric '{self.name}' requires labels {missing}")
        return tuple(str(labels[label]) for label in self.label_names)

    def _series_for(self, key: LabelValues) -> _S:
        # caller holds self._lock
        series = self._series.get(key)
        if series is None:
            series = self._series[key] = self._new_series()
        return series

    @abstractmethod
    def _new_series(self) -> _S:
        ...

    @abstractmethod
    def _sample(self, series: _S) -> Mapping[str, float]:
        ...

    def snapshot(self) -> Mapping[LabelValues, Mapping[str, float]]:
        with self._lock:
            return {key: self._sample(series) for key, series in self._series.items()}


@dataclass(slots=True)
class _Count:
    value: float = 0.0


class CounterMetric(Metric[_Count]):
    """Monotonic counter."""

    kind = "counter"

    def _new_series(self) -> _Count:
        return _Count()

    def _sample(self, series: _Count) -> Mapping[str, float]:
        return {"value": series.value}

    def inc(self, amount: float = 1.0, *, labels: Mapping[str, object] | None = None) -> None:
        if amount < 0:
            raise ValueError("Counters can only increase")
        key = self._label_key(labels)
        with self._lock:
            self._series_for(key).value += amount

    def value(self, *, labels: Mapping[str, object] | None = None) -> float:
        key = self._label_key(labels)
        with self._lock:
            series = self._series.get(key)
            return series.value if series is not None else 0.0


@dataclass(slots=True)
class DistributionStats:
    """Running count, sum and extremes of observed values."""

    count: int = 0
    total: float = 0.0
    min: float | None = None
    max: float | None = None

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)


class DistributionMetric(Metric[DistributionStats]):
    """Summary of observed values such as request durations."""

    kind = "summary"

    def _new_series(self) -> DistributionStats:
        return DistributionStats()

    def _sample(self, series: DistributionStats) -> Mapping[str, float]:
        return {
            "count": float(series.count),
            "sum": series.total,
            "min": series.min or 0.0,
            "max": series.max or 0.0,
            "avg": series.total / series.count if series.count else 0.0,
        }

    def observe(self, value: float, *, labels: Mapping[str, object] | None = None) -> None:
        key = self._label_key(labels)
        with self._lock:
            self._series_for(key).observe(value)


@contextmanager
def track_duration(metric: DistributionMetric, *, labels: Mapping[str, object] | None = None) -> Iterator[None]:
    """Observe the wall-clock duration of the managed block in seconds."""

    start = perf_counter()
    try:
        yield
    finally:
        metric.observe(perf_counter() - start, labels=labels)
