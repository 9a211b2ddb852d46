"""Analysis Engine: turns Metrics Provider readings into a step verdict."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rollout_sre.delivery.state import Verdict
from rollout_sre.errors import ProviderUnavailableError

if TYPE_CHECKING:
    from rollout_sre.adapters import AnalysisWindow, MetricsProvider
    from rollout_sre.delivery.spec import AnalysisConfig, MetricCheck

logger = logging.getLogger(__name__)


@dataclass
class MetricResult:
    """Outcome of a single metric check."""

    metric: str
    threshold: float
    comparison: str
    min_samples: int
    value: float | None = None
    sample_count: int = 0
    passed: bool | None = None  # None = not enough data to judge
    error: str = ""

    @property
    def sufficient(self) -> bool:
        return self.passed is not None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "metric": self.metric,
            "threshold": self.threshold,
            "comparison": self.comparison,
            "value": self.value,
            "sample_count": self.sample_count,
            "min_samples": self.min_samples,
            "passed": self.passed,
        }
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class AnalysisResult:
    """Verdict plus the per-metric evidence behind it."""

    verdict: Verdict
    version: str
    window_start: float
    window_end: float
    metrics: list[MetricResult] = field(default_factory=list)

    @property
    def failed_metrics(self) -> list[str]:
        return [m.metric for m in self.metrics if m.passed is False]

    @property
    def insufficient_metrics(self) -> list[str]:
        return [m.metric for m in self.metrics if m.passed is None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "version": self.version,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "metrics": [m.to_dict() for m in self.metrics],
        }


def combine(results: list[MetricResult]) -> Verdict:
    """Reduce metric results to one verdict.

    A violation backed by enough samples fails the analysis even when other
    metrics lack data. No results at all is never a pass.
    """
    if any(r.passed is False for r in results):
        return Verdict.FAIL
    if not results or any(r.passed is None for r in results):
        return Verdict.INCONCLUSIVE
    return Verdict.PASS


class AnalysisEngine:
    """Evaluates a version's health against analysis thresholds.

    Stateless apart from the provider it queries; the caller records the
    verdict.
    """

    def __init__(self, provider: MetricsProvider) -> None:
        self._provider = provider

    def evaluate(
        self,
        version: str,
        window: AnalysisWindow,
        config: AnalysisConfig,
    ) -> AnalysisResult:
        results = [self._check(version, window, config, check) for check in config.checks()]
        verdict = combine(results)
        logger.debug(
            "Analysis of %s over %.0fs: %s", version, window.duration_seconds, verdict.value
        )
        return AnalysisResult(
            verdict=verdict,
            version=version,
            window_start=window.start,
            window_end=window.end,
            metrics=results,
        )

    def _check(
        self,
        version: str,
        window: AnalysisWindow,
        config: AnalysisConfig,
        check: MetricCheck,
    ) -> MetricResult:
        result = MetricResult(
            metric=check.metric,
            threshold=check.threshold,
            comparison=check.comparison.value,
            min_samples=config.min_samples_for(check),
        )
        try:
            reading = self._provider.query(version, check.metric, window)
        except (ProviderUnavailableError, OSError) as exc:
            logger.warning("Metrics provider unavailable for %s/%s: %s", version, check.metric, exc)
            result.error = str(exc) or exc.__class__.__name__
            return result

        result.value = reading.value
        result.sample_count = reading.sample_count
        if reading.sample_count < result.min_samples:
            return result
        result.passed = check.evaluate(reading.value)
        return result
