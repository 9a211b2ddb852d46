"""In-process platform adapters.

Useful for local runs, demos, and tests: they record every call so the
traffic and scaling history of a rollout can be inspected afterwards, and
can be told to fail to exercise retry paths.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from rollout_sre.adapters import AnalysisWindow, MetricReading
from rollout_sre.errors import ApplyFailureError, ProviderUnavailableError


class InMemoryTrafficRouter:
    """Keeps the active traffic split in memory.

    ``history`` holds every split that was actually applied, in order.
    """

    def __init__(self, initial: Optional[Dict[str, int]] = None) -> None:
        self._lock = threading.Lock()
        self._weights: Dict[str, int] = dict(initial or {})
        self.history: List[Dict[str, int]] = []
        self.calls = 0
        self._failures_left = 0

    def fail_next(self, count: int = 1) -> None:
        """Make the next *count* calls raise ``ApplyFailureError``."""
        with self._lock:
            self._failures_left = count

    def set_weights(self, weights: Dict[str, int]) -> None:
        if sum(weights.values()) != 100:
            raise ValueError(f"weights must sum to 100, got {weights}")
        with self._lock:
            self.calls += 1
            if self._failures_left > 0:
                self._failures_left -= 1
                raise ApplyFailureError("traffic router unavailable")
            if weights == self._weights:
                return
            self._weights = dict(weights)
            self.history.append(dict(weights))

    @property
    def weights(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._weights)


class InMemoryWorkloadManager:
    """Tracks replica counts per version.

    With ``auto_ready`` every scaled replica is immediately ready; otherwise
    readiness is driven by ``set_ready``.
    """

    def __init__(self, auto_ready: bool = True) -> None:
        self._lock = threading.Lock()
        self.auto_ready = auto_ready
        self._desired: Dict[str, int] = {}
        self._ready: Dict[str, int] = {}
        self.history: List[Tuple[str, int]] = []
        self._failures_left = 0

    def fail_next(self, count: int = 1) -> None:
        with self._lock:
            self._failures_left = count

    def set_replicas(self, version: str, count: int) -> None:
        with self._lock:
            if self._failures_left > 0:
                self._failures_left -= 1
                raise ApplyFailureError("workload manager unavailable", version=version)
            self._desired[version] = count
            self.history.append((version, count))
            if self.auto_ready:
                self._ready[version] = count
            else:
                self._ready[version] = min(self._ready.get(version, 0), count)

    def get_ready_replicas(self, version: str) -> int:
        with self._lock:
            return self._ready.get(version, 0)

    def set_ready(self, version: str, count: int) -> None:
        with self._lock:
            self._ready[version] = count

    def replicas(self, version: str) -> int:
        with self._lock:
            return self._desired.get(version, 0)


@dataclass
class _Script:
    readings: List[MetricReading] = field(default_factory=list)
    default: Optional[MetricReading] = None


class ScriptedMetricsProvider:
    """Serves metric readings from a script.

    Readings set with ``set`` are returned on every query; readings queued
    with ``queue`` are served once each, in order, before falling back to the
    ``set`` value. A callable can compute readings from the window instead.
    """

    def __init__(
        self,
        source: Optional[Callable[[str, str, AnalysisWindow], MetricReading]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._scripts: Dict[Tuple[str, str], _Script] = {}
        self._source = source
        self.queries: List[Tuple[str, str, AnalysisWindow]] = []
        self.unavailable = False

    def set(self, version: str, metric: str, value: float, sample_count: int = 1000) -> None:
        with self._lock:
            self._script(version, metric).default = MetricReading(value, sample_count)

    def queue(self, version: str, metric: str, value: float, sample_count: int = 1000) -> None:
        with self._lock:
            self._script(version, metric).readings.append(MetricReading(value, sample_count))

    def set_healthy(self, version: str, sample_count: int = 1000) -> None:
        """Zero errors and fast responses for *version*."""
        self.set(version, "error_rate", 0.0, sample_count)
        self.set(version, "latency_p99_ms", 50.0, sample_count)

    def _script(self, version: str, metric: str) -> _Script:
        return self._scripts.setdefault((version, metric), _Script())

    def query(self, version: str, metric: str, window: AnalysisWindow) -> MetricReading:
        with self._lock:
            self.queries.append((version, metric, window))
            if self.unavailable:
                raise ProviderUnavailableError("metrics backend unreachable", metric=metric)
            script = self._scripts.get((version, metric))
            if script is not None:
                if script.readings:
                    return script.readings.pop(0)
                if script.default is not None:
                    return script.default
        if self._source is not None:
            return self._source(version, metric, window)
        return MetricReading(0.0, 0)
