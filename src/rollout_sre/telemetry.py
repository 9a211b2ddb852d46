"""OpenTelemetry metric instruments for the rollout controller.

Instruments are created from whatever ``MeterProvider`` is configured
(OTLP, Prometheus, console...). Without one, the API's no-op meter is used.
"""

from __future__ import annotations

from dataclasses import dataclass

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

# ---------------------------------------------------------------------------
# Metric name constants
# ---------------------------------------------------------------------------

METRIC_TRANSITIONS = "rollout.transitions"
METRIC_APPLY_FAILURES = "rollout.apply_failures"
METRIC_ANALYSIS_VERDICTS = "rollout.analysis.verdicts"
METRIC_RECONCILE_DURATION = "rollout.reconcile.duration"
METRIC_CANDIDATE_WEIGHT = "rollout.candidate.weight"
METRIC_HALTED = "rollout.halted"

# Attribute keys
ROLLOUT_ID = "rollout.id"
ROLLOUT_SERVICE = "rollout.service"
ROLLOUT_PHASE = "rollout.phase"
ROLLOUT_STRATEGY = "rollout.strategy"
ANALYSIS_VERDICT = "analysis.verdict"


@dataclass
class RolloutMetrics:
    """Collection of metric instruments used by the controller."""

    transitions: Counter
    apply_failures: Counter
    analysis_verdicts: Counter
    reconcile_duration: Histogram
    candidate_weight: Histogram
    halted: Counter


def create_rollout_metrics(meter: Meter | None = None) -> RolloutMetrics:
    """Create all controller instruments from a single meter.

    Args:
        meter: OpenTelemetry ``Meter``. Defaults to the global meter named
            ``rollout_sre``.
    """
    if meter is None:
        meter = metrics.get_meter("rollout_sre", version="0.1.0")

    return RolloutMetrics(
        transitions=meter.create_counter(
            name=METRIC_TRANSITIONS,
            description="Rollout phase transitions committed",
            unit="1",
        ),
        apply_failures=meter.create_counter(
            name=METRIC_APPLY_FAILURES,
            description="Failed Traffic Router / Workload Manager calls",
            unit="1",
        ),
        analysis_verdicts=meter.create_counter(
            name=METRIC_ANALYSIS_VERDICTS,
            description="Analysis verdicts recorded, by verdict",
            unit="1",
        ),
        reconcile_duration=meter.create_histogram(
            name=METRIC_RECONCILE_DURATION,
            description="Wall time of one rollout reconciliation",
            unit="ms",
        ),
        candidate_weight=meter.create_histogram(
            name=METRIC_CANDIDATE_WEIGHT,
            description="Candidate traffic weight applied to the router",
            unit="%",
        ),
        halted=meter.create_counter(
            name=METRIC_HALTED,
            description="Rollouts halted on a fatal error",
            unit="1",
        ),
    )
