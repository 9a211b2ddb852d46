"""Rollout specs: declarative, version-controlled rollout definitions in YAML.

A ``RolloutSpec`` is validated once at submission and is immutable from then
on. Use :func:`load_spec` to turn untrusted input into a spec; it raises
``InvalidSpecError`` instead of pydantic's ``ValidationError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from rollout_sre.errors import InvalidSpecError

METRIC_ERROR_RATE = "error_rate"
METRIC_LATENCY_P99 = "latency_p99_ms"

DEFAULT_BAKE_SECONDS = 300.0


class Strategy(str, Enum):
    """Rollout strategy types."""

    CANARY = "canary"
    BLUE_GREEN = "blue_green"


class PromotionMode(str, Enum):
    """Whether the rollout advances on its own or waits at every gate."""

    AUTOMATIC = "automatic"
    MANUAL_GATE = "manual_gate"


class RollbackPolicy(str, Enum):
    """What happens when analysis fails."""

    AUTO_ON_FAILURE = "auto_on_failure"
    HOLD_FOR_OPERATOR = "hold_for_operator"


class ComparisonOp(str, Enum):
    """Comparison operator for metric thresholds."""

    LTE = "lte"  # error rate <= max
    GTE = "gte"  # success rate >= min
    LT = "lt"
    GT = "gt"


class MetricCheck(BaseModel):
    """A single metric the candidate must satisfy."""

    model_config = ConfigDict(frozen=True)

    metric: str = Field(..., min_length=1, description="Metric name passed to the provider")
    threshold: float
    comparison: ComparisonOp = ComparisonOp.LTE
    min_samples: int | None = Field(
        default=None,
        ge=1,
        description="Overrides the analysis-wide minimum sample count",
    )

    def evaluate(self, value: float) -> bool:
        """Check if an observed value satisfies this threshold."""
        if self.comparison == ComparisonOp.LTE:
            return value <= self.threshold
        if self.comparison == ComparisonOp.GTE:
            return value >= self.threshold
        if self.comparison == ComparisonOp.LT:
            return value < self.threshold
        return value > self.threshold


class AnalysisConfig(BaseModel):
    """Thresholds and retry budget for step analysis.

    ``max_error_rate`` and ``max_p99_latency_ms`` become ``lte`` checks on
    the ``error_rate`` and ``latency_p99_ms`` metrics; set either to ``None``
    to drop it. ``metrics`` adds custom checks.
    """

    model_config = ConfigDict(frozen=True)

    max_error_rate: float | None = Field(default=0.05, ge=0.0, le=1.0)
    max_p99_latency_ms: float | None = Field(default=500.0, gt=0)
    min_sample_count: int = Field(default=100, ge=1)
    metrics: list[MetricCheck] = Field(default_factory=list)
    retry_interval_seconds: float = Field(default=30.0, ge=0)
    max_inconclusive_retries: int = Field(default=5, ge=0)

    def checks(self) -> list[MetricCheck]:
        """All checks the Analysis Engine runs, built-ins first."""
        checks: list[MetricCheck] = []
        if self.max_error_rate is not None:
            checks.append(MetricCheck(metric=METRIC_ERROR_RATE, threshold=self.max_error_rate))
        if self.max_p99_latency_ms is not None:
            checks.append(
                MetricCheck(metric=METRIC_LATENCY_P99, threshold=self.max_p99_latency_ms)
            )
        checks.extend(self.metrics)
        return checks

    def min_samples_for(self, check: MetricCheck) -> int:
        return check.min_samples if check.min_samples is not None else self.min_sample_count


class RolloutStep(BaseModel):
    """One element of a canary progression."""

    model_config = ConfigDict(frozen=True)

    weight: int = Field(..., ge=0, le=100, description="Candidate traffic weight (percent)")
    pause_duration_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Minimum dwell before analysis is trusted",
    )
    required_analysis: bool = True
    name: str = ""


class RolloutSpec(BaseModel):
    """Validated, immutable rollout definition.

    Blue/green specs may omit ``steps``; they then get a single implicit
    cutover step at weight 100 with a five minute bake.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Service being rolled out")
    description: str = ""
    strategy: Strategy = Strategy.CANARY
    replicas: int = Field(default=1, ge=1, description="Full replica count of the service")
    min_ready_replicas: int = Field(default=1, ge=1, description="Platform minimum")
    steps: list[RolloutStep] = Field(default_factory=list)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    promotion_mode: PromotionMode = PromotionMode.AUTOMATIC
    rollback_policy: RollbackPolicy = RollbackPolicy.AUTO_ON_FAILURE
    readiness_timeout_seconds: float = Field(default=300.0, gt=0)
    labels: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_steps(self) -> RolloutSpec:
        if self.min_ready_replicas > self.replicas:
            raise ValueError(
                f"min_ready_replicas ({self.min_ready_replicas}) exceeds replicas ({self.replicas})"
            )

        if self.strategy == Strategy.CANARY:
            if not self.steps:
                raise ValueError("canary strategy requires at least one step")
            previous = 0
            for index, step in enumerate(self.steps):
                if step.weight < previous:
                    raise ValueError(
                        f"canary step {index} weight {step.weight} is lower than "
                        f"the previous step weight {previous}"
                    )
                previous = step.weight
        else:
            if len(self.steps) > 1:
                raise ValueError(
                    "blue_green strategy allows at most one cutover step, "
                    f"got {len(self.steps)}"
                )
            if self.steps and self.steps[0].weight != 100:
                raise ValueError(
                    f"blue_green cutover step must use weight 100, got {self.steps[0].weight}"
                )

        if not self.analysis.checks() and any(s.required_analysis for s in self.effective_steps):
            raise ValueError("steps require analysis but no metric checks are configured")
        return self

    @property
    def effective_steps(self) -> list[RolloutStep]:
        """Steps the state machine walks through."""
        if self.strategy == Strategy.BLUE_GREEN and not self.steps:
            return [
                RolloutStep(weight=100, pause_duration_seconds=DEFAULT_BAKE_SECONDS, name="cutover")
            ]
        return list(self.steps)

    @property
    def weight_sequence(self) -> list[int]:
        """Candidate weights applied over a successful rollout."""
        weights = [s.weight for s in self.effective_steps]
        if not weights or weights[-1] != 100:
            weights.append(100)
        return weights

    @property
    def is_blue_green(self) -> bool:
        return self.strategy == Strategy.BLUE_GREEN

    @classmethod
    def from_yaml(cls, path: str | Path) -> RolloutSpec:
        """Load a rollout spec from a YAML file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise InvalidSpecError(f"Cannot parse {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise InvalidSpecError(f"{path} does not contain a rollout spec mapping")
        return load_spec(data)

    def to_yaml(self, path: str | Path) -> None:
        """Save this spec to a YAML file."""
        path = Path(path)
        data = self.model_dump(mode="json")
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def load_spec(data: Mapping[str, Any] | RolloutSpec) -> RolloutSpec:
    """Validate *data* into a ``RolloutSpec``.

    Raises:
        InvalidSpecError: listing every validation problem found.
    """
    if isinstance(data, RolloutSpec):
        return data
    try:
        return RolloutSpec.model_validate(dict(data))
    except ValidationError as exc:
        errors = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err["loc"])
            errors.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        raise InvalidSpecError("Invalid rollout spec: " + "; ".join(errors), errors) from exc
