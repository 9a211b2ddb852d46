"""Interfaces to the workload platform.

The controller never talks to an orchestrator directly. It goes through
three collaborators, each of which may block:

* ``WorkloadManager`` scales replica counts and reports readiness.
* ``TrafficRouter`` splits live traffic between versions by weight.
* ``MetricsProvider`` answers health queries for a version over a window.

Implementations signal transient trouble by raising ``ApplyFailureError``
(workload/router) or ``ProviderUnavailableError`` (metrics).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class AnalysisWindow:
    """Time range (epoch seconds) a metrics query covers."""

    start: float
    end: float

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.end - self.start)


@dataclass(frozen=True)
class MetricReading:
    """Observed value of a metric and how many samples back it."""

    value: float
    sample_count: int


@runtime_checkable
class WorkloadManager(Protocol):
    def set_replicas(self, version: str, count: int) -> None:
        """Scale *version* to *count* replicas."""
        ...

    def get_ready_replicas(self, version: str) -> int:
        """Return how many replicas of *version* are ready."""
        ...


@runtime_checkable
class TrafficRouter(Protocol):
    def set_weights(self, weights: dict[str, int]) -> None:
        """Apply a traffic split. Returns once the router confirms it is active."""
        ...


@runtime_checkable
class MetricsProvider(Protocol):
    def query(self, version: str, metric: str, window: AnalysisWindow) -> MetricReading:
        ...


__all__ = [
    "AnalysisWindow",
    "MetricReading",
    "MetricsProvider",
    "TrafficRouter",
    "WorkloadManager",
]
