"""Rollout state machine.

Pure decision logic: given the current ``RolloutState``, its spec and the
latest observations, compute the next state. Nothing here blocks or talks to
the platform; the controller applies the targets carried by the returned
state (candidate weight and desired replica counts) and only then commits it.

Phases::

    Initializing -> Progressing -> Analyzing -> (Paused) -> Promoting -> Succeeded
    any non-terminal phase -> Aborting -> RolledBack
"""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Optional

from rollout_sre.adapters import AnalysisWindow
from rollout_sre.delivery.spec import PromotionMode, RollbackPolicy, RolloutSpec
from rollout_sre.delivery.state import (
    AnalysisRecord,
    PauseReason,
    Phase,
    RolloutEvent,
    RolloutState,
    Verdict,
)
from rollout_sre.errors import InvalidTransitionError

if TYPE_CHECKING:
    from rollout_sre.delivery.analysis import AnalysisResult

_Handler = Callable[..., Optional[RolloutState]]


def candidate_replicas(spec: RolloutSpec, weight: int) -> int:
    """Replicas the candidate needs to serve *weight* percent of traffic."""
    if weight <= 0:
        return spec.min_ready_replicas
    return max(spec.min_ready_replicas, math.ceil(spec.replicas * weight / 100))


class RolloutStateMachine:
    """Decides rollout transitions.

    Every method returns a new ``RolloutState`` (or ``None`` when nothing
    changes); input states are never mutated.
    """

    def __init__(self) -> None:
        self._handlers: dict[Phase, _Handler] = {
            Phase.INITIALIZING: self._initializing,
            Phase.PROGRESSING: self._progressing,
            Phase.ANALYZING: self._analyzing,
            Phase.PAUSED: self._paused,
            Phase.PROMOTING: self._promoting,
            Phase.ABORTING: self._aborting,
        }

    # -- Observations the controller must gather --

    def needs_readiness(self, state: RolloutState, spec: RolloutSpec) -> bool:
        """True when the next decision depends on candidate readiness."""
        if state.phase == Phase.INITIALIZING:
            return state.candidate_version.desired_replicas >= spec.min_ready_replicas
        return (
            spec.is_blue_green
            and state.phase == Phase.PROGRESSING
            and state.candidate_weight == 0
        )

    def analysis_due(self, state: RolloutState, now: float) -> bool:
        return (
            state.phase == Phase.ANALYZING
            and state.next_analysis_at is not None
            and now >= state.next_analysis_at
        )

    def analysis_window(self, state: RolloutState, now: float) -> AnalysisWindow:
        """Window since the current step's traffic was applied."""
        start = state.step_started_at
        if start is None:
            start = state.last_transition_time
        return AnalysisWindow(start=start, end=now)

    # -- External signals --

    def abort(self, state: RolloutState, reason: str, now: float) -> RolloutState:
        """Move any non-terminal rollout into Aborting."""
        if state.is_terminal:
            raise InvalidTransitionError(state.rollout_id, state.phase.value, "abort")
        if state.phase == Phase.ABORTING:
            return state
        return self._begin_abort(state, now, reason or "aborted by operator")

    def resume(self, state: RolloutState) -> RolloutState:
        """Flag a paused rollout for resumption on its next reconciliation."""
        if state.phase != Phase.PAUSED:
            raise InvalidTransitionError(state.rollout_id, state.phase.value, "resume")
        return state.model_copy(update={"resume_requested": True})

    # -- Transitions --

    def next(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready_replicas: int | None = None,
        analysis: AnalysisResult | None = None,
    ) -> RolloutState | None:
        """Compute the next state, or ``None`` if the rollout must wait."""
        handler = self._handlers.get(state.phase)
        if handler is None:
            return None
        return handler(state, spec, now, ready_replicas, analysis)

    def _initializing(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready: int | None,
        analysis: AnalysisResult | None,
    ) -> RolloutState | None:
        candidate = state.candidate_version
        minimum = spec.min_ready_replicas
        if candidate.desired_replicas < minimum:
            return self._enter(
                state,
                Phase.INITIALIZING,
                now,
                "candidate_registered",
                {"version": candidate.name, "replicas": minimum},
                candidate_version=candidate.model_copy(update={"desired_replicas": minimum}),
                message=f"waiting for {candidate.name} to become ready",
            )

        if ready is not None and ready >= minimum:
            candidate = candidate.model_copy(update={"ready_replicas": ready})
            if spec.is_blue_green:
                return self._enter(
                    state,
                    Phase.PROGRESSING,
                    now,
                    "candidate_scaled",
                    {"version": candidate.name, "replicas": spec.replicas},
                    candidate_version=candidate.model_copy(
                        update={"desired_replicas": spec.replicas}
                    ),
                    current_step_index=0,
                    step_started_at=None,
                    message=f"scaling {candidate.name} to {spec.replicas} replicas",
                )
            return self._start_step(
                state.model_copy(update={"candidate_version": candidate}), spec, 0, now
            )

        if self._readiness_expired(state, spec, now):
            return self._begin_abort(
                state,
                now,
                f"{candidate.name} not ready ({ready or 0}/{minimum}) "
                f"after {spec.readiness_timeout_seconds:.0f}s",
            )
        return None

    def _progressing(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready: int | None,
        analysis: AnalysisResult | None,
    ) -> RolloutState | None:
        if spec.is_blue_green and state.candidate_weight == 0:
            # Candidate must be fully scaled before the cutover.
            candidate = state.candidate_version
            if ready is not None and ready >= spec.replicas:
                candidate = candidate.model_copy(update={"ready_replicas": ready})
                ready_state = state.model_copy(update={"candidate_version": candidate})
                return self._advance(ready_state, spec, now)
            if self._readiness_expired(state, spec, now):
                return self._begin_abort(
                    state,
                    now,
                    f"{candidate.name} not fully ready ({ready or 0}/{spec.replicas}) "
                    f"after {spec.readiness_timeout_seconds:.0f}s",
                )
            return None

        step = spec.effective_steps[state.current_step_index]
        started = state.step_started_at
        if started is None:
            started = state.last_transition_time
        if now - started < step.pause_duration_seconds:
            return None

        if step.required_analysis:
            return self._enter(
                state,
                Phase.ANALYZING,
                now,
                "analysis_started",
                {"weight": state.candidate_weight},
                next_analysis_at=now,
                inconclusive_count=0,
                message=f"analyzing {state.candidate_version.name} at weight {state.candidate_weight}",
            )
        return self._advance(state, spec, now)

    def _analyzing(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready: int | None,
        analysis: AnalysisResult | None,
    ) -> RolloutState | None:
        if analysis is None:
            return None

        attempt = state.inconclusive_count + 1
        record = AnalysisRecord(
            verdict=analysis.verdict,
            timestamp=now,
            step_index=state.current_step_index,
            attempt=attempt,
            details=analysis.to_dict(),
        )
        recorded = state.model_copy(
            update={"analysis_history": [*state.analysis_history, record]}
        )

        if analysis.verdict == Verdict.PASS:
            return self._advance(recorded, spec, now)
        if analysis.verdict == Verdict.FAIL:
            return self._fail(
                recorded, spec, now, "analysis failed: " + ", ".join(analysis.failed_metrics)
            )

        if attempt > spec.analysis.max_inconclusive_retries:
            return self._fail(
                recorded, spec, now, f"analysis inconclusive after {attempt} attempts"
            )
        return self._update(
            recorded,
            now,
            "analysis_inconclusive",
            {"attempt": attempt, "insufficient": analysis.insufficient_metrics},
            inconclusive_count=attempt,
            next_analysis_at=now + spec.analysis.retry_interval_seconds,
        )

    def _paused(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready: int | None,
        analysis: AnalysisResult | None,
    ) -> RolloutState | None:
        if not state.resume_requested:
            return None
        resumed = state.model_copy(update={"resume_requested": False, "pause_reason": None})
        if state.pause_reason == PauseReason.ANALYSIS_FAILED:
            return self._enter(
                resumed,
                Phase.ANALYZING,
                now,
                "analysis_resumed",
                {},
                next_analysis_at=now,
                inconclusive_count=0,
                message="re-running analysis after operator resume",
            )
        return self._do_advance(resumed, spec, now)

    def _promoting(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready: int | None,
        analysis: AnalysisResult | None,
    ) -> RolloutState | None:
        previous = state.stable_version
        promoted = state.candidate_version
        return self._enter(
            state,
            Phase.SUCCEEDED,
            now,
            "promoted",
            {"stable": promoted.name, "retired": previous.name},
            stable_version=promoted.model_copy(update={"desired_replicas": spec.replicas}),
            candidate_version=previous.model_copy(
                update={"desired_replicas": 0, "ready_replicas": 0}
            ),
            candidate_weight=0,
            message=f"{promoted.name} promoted to stable",
        )

    def _aborting(
        self,
        state: RolloutState,
        spec: RolloutSpec,
        now: float,
        ready: int | None,
        analysis: AnalysisResult | None,
    ) -> RolloutState | None:
        candidate = state.candidate_version
        return self._enter(
            state,
            Phase.ROLLED_BACK,
            now,
            "rolled_back",
            {"reason": state.abort_reason},
            candidate_weight=0,
            candidate_version=candidate.model_copy(
                update={"desired_replicas": 0, "ready_replicas": 0}
            ),
            message=f"rolled back to {state.stable_version.name}: {state.abort_reason}",
        )

    # -- Helpers --

    def _advance(self, state: RolloutState, spec: RolloutSpec, now: float) -> RolloutState:
        if spec.promotion_mode == PromotionMode.MANUAL_GATE:
            return self._enter(
                state,
                Phase.PAUSED,
                now,
                "awaiting_promotion",
                {"weight": state.candidate_weight},
                pause_reason=PauseReason.MANUAL_GATE,
                next_analysis_at=None,
                message="waiting for manual promotion",
            )
        return self._do_advance(state, spec, now)

    def _do_advance(self, state: RolloutState, spec: RolloutSpec, now: float) -> RolloutState:
        if spec.is_blue_green and state.candidate_weight == 0:
            return self._enter(
                state,
                Phase.PROGRESSING,
                now,
                "traffic_switched",
                {"weight": 100},
                candidate_weight=100,
                step_started_at=now,
                next_analysis_at=None,
                inconclusive_count=0,
                message=f"all traffic on {state.candidate_version.name}, baking",
            )

        if state.current_step_index >= len(spec.effective_steps) - 1:
            return self._enter(
                state,
                Phase.PROMOTING,
                now,
                "promotion_started",
                {},
                next_analysis_at=None,
                message=f"promoting {state.candidate_version.name}",
            )
        return self._start_step(state, spec, state.current_step_index + 1, now)

    def _start_step(
        self, state: RolloutState, spec: RolloutSpec, index: int, now: float
    ) -> RolloutState:
        steps = spec.effective_steps
        step = steps[index]
        candidate = state.candidate_version.model_copy(
            update={"desired_replicas": candidate_replicas(spec, step.weight)}
        )
        return self._enter(
            state,
            Phase.PROGRESSING,
            now,
            "step_started",
            {"weight": step.weight, "name": step.name},
            current_step_index=index,
            candidate_weight=step.weight,
            candidate_version=candidate,
            step_started_at=now,
            next_analysis_at=None,
            inconclusive_count=0,
            message=f"step {index + 1}/{len(steps)} at weight {step.weight}",
        )

    def _fail(
        self, state: RolloutState, spec: RolloutSpec, now: float, reason: str
    ) -> RolloutState:
        if spec.rollback_policy == RollbackPolicy.HOLD_FOR_OPERATOR:
            return self._enter(
                state,
                Phase.PAUSED,
                now,
                "held_for_operator",
                {"reason": reason},
                pause_reason=PauseReason.ANALYSIS_FAILED,
                next_analysis_at=None,
                message=reason,
            )
        return self._begin_abort(state, now, reason)

    def _begin_abort(self, state: RolloutState, now: float, reason: str) -> RolloutState:
        return self._enter(
            state,
            Phase.ABORTING,
            now,
            "abort_started",
            {"reason": reason, "from_phase": state.phase.value},
            abort_reason=reason,
            pause_reason=None,
            resume_requested=False,
            next_analysis_at=None,
            message=reason,
        )

    def _readiness_expired(self, state: RolloutState, spec: RolloutSpec, now: float) -> bool:
        return now - state.last_transition_time >= spec.readiness_timeout_seconds

    def _enter(
        self,
        state: RolloutState,
        phase: Phase,
        now: float,
        event_type: str,
        details: dict[str, Any],
        **update: Any,
    ) -> RolloutState:
        """Transition into *phase*, stamping the transition time."""
        update["phase"] = phase
        update["last_transition_time"] = now
        return self._update(state, now, event_type, details, **update)

    def _update(
        self,
        state: RolloutState,
        now: float,
        event_type: str,
        details: dict[str, Any],
        **update: Any,
    ) -> RolloutState:
        event = RolloutEvent(
            event_type=event_type,
            timestamp=now,
            step_index=update.get("current_step_index", state.current_step_index),
            details=details,
        )
        update["events"] = [*state.events, event]
        return state.model_copy(update=update)
