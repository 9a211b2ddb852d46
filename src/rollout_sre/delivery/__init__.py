"""Progressive Delivery — canary and blue/green rollouts with automated analysis."""

from rollout_sre.delivery.analysis import AnalysisEngine, AnalysisResult, MetricResult
from rollout_sre.delivery.controller import RolloutController
from rollout_sre.delivery.machine import RolloutStateMachine
from rollout_sre.delivery.spec import (
    AnalysisConfig,
    MetricCheck,
    PromotionMode,
    RollbackPolicy,
    RolloutSpec,
    RolloutStep,
    Strategy,
    load_spec,
)
from rollout_sre.delivery.state import Phase, RolloutState, Verdict, VersionStatus
from rollout_sre.delivery.store import (
    InMemoryRolloutStore,
    RolloutRecord,
    RolloutStore,
    SQLiteRolloutStore,
)

__all__ = [
    "AnalysisConfig",
    "AnalysisEngine",
    "AnalysisResult",
    "InMemoryRolloutStore",
    "MetricCheck",
    "MetricResult",
    "Phase",
    "PromotionMode",
    "RollbackPolicy",
    "RolloutController",
    "RolloutRecord",
    "RolloutSpec",
    "RolloutState",
    "RolloutStateMachine",
    "RolloutStep",
    "RolloutStore",
    "SQLiteRolloutStore",
    "Strategy",
    "Verdict",
    "VersionStatus",
    "load_spec",
]
