"""Rollout state: the mutable record the controller owns for each rollout."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Phase(str, Enum):
    """Lifecycle phase of a rollout."""

    INITIALIZING = "initializing"
    PROGRESSING = "progressing"
    ANALYZING = "analyzing"
    PAUSED = "paused"
    PROMOTING = "promoting"
    SUCCEEDED = "succeeded"
    ABORTING = "aborting"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (Phase.SUCCEEDED, Phase.ROLLED_BACK)


class PauseReason(str, Enum):
    """Why a rollout is waiting for an operator."""

    MANUAL_GATE = "manual_gate"
    ANALYSIS_FAILED = "analysis_failed"


class Verdict(str, Enum):
    """Analysis Engine judgment for a health window."""

    PASS = "pass"
    FAIL = "fail"
    INCONCLUSIVE = "inconclusive"


class VersionStatus(BaseModel):
    """One of the two versions taking part in a rollout.

    ``desired_replicas`` is the last count successfully applied to the
    Workload Manager. Traffic weight lives on the rollout state.
    """

    name: str
    desired_replicas: int = Field(default=0, ge=0)
    ready_replicas: int = Field(default=0, ge=0)


class AnalysisRecord(BaseModel):
    """A verdict recorded during the rollout."""

    verdict: Verdict
    timestamp: float = Field(default_factory=time.time)
    step_index: int = 0
    attempt: int = 1
    details: dict[str, Any] = Field(default_factory=dict)


class RolloutEvent(BaseModel):
    """An event during a rollout (step start, analysis, rollback, promote...)."""

    event_type: str
    timestamp: float = Field(default_factory=time.time)
    step_index: int = -1
    details: dict[str, Any] = Field(default_factory=dict)


class RolloutState(BaseModel):
    """Mutable record of one rollout.

    Instances are treated as values: the state machine returns updated
    copies and the controller commits them once their targets are applied.
    """

    rollout_id: str
    phase: Phase = Phase.INITIALIZING
    current_step_index: int = 0
    stable_version: VersionStatus
    candidate_version: VersionStatus
    candidate_weight: int = Field(default=0, ge=0, le=100)
    analysis_history: list[AnalysisRecord] = Field(default_factory=list)
    events: list[RolloutEvent] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    last_transition_time: float = Field(default_factory=time.time)
    step_started_at: float | None = None
    next_analysis_at: float | None = None
    inconclusive_count: int = 0
    pause_reason: PauseReason | None = None
    resume_requested: bool = False
    abort_reason: str = ""
    apply_failures: int = 0
    next_apply_at: float = 0.0
    message: str = ""

    @property
    def current_weights(self) -> dict[str, int]:
        """Traffic split by version name; always sums to 100."""
        return {
            self.stable_version.name: 100 - self.candidate_weight,
            self.candidate_version.name: self.candidate_weight,
        }

    @property
    def desired_replicas(self) -> dict[str, int]:
        return {
            self.stable_version.name: self.stable_version.desired_replicas,
            self.candidate_version.name: self.candidate_version.desired_replicas,
        }

    @property
    def is_terminal(self) -> bool:
        return self.phase.is_terminal

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        data["current_weights"] = self.current_weights
        data["stable_version"]["weight"] = 100 - self.candidate_weight
        data["candidate_version"]["weight"] = self.candidate_weight
        return data
