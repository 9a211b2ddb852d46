"""Rollout controller — drives rollouts on a fixed tick.

Each tick loads every active rollout and reconciles it:

1. consume a pending abort signal (abort always wins),
2. gather the observations the state machine needs (candidate readiness,
   an analysis verdict when one is due),
3. ask the state machine for the next state,
4. apply the changed targets (scale-ups, then traffic weights, then
   scale-downs) through the Workload Manager and Traffic Router,
5. persist the new state.

Steps 2-5 repeat within one reconciliation while transitions are immediately
possible, so an abort reaches ``RolledBack`` without waiting a tick. A
failed apply leaves the committed state (and its phase) untouched and is
retried with capped exponential backoff.

Rollouts are reconciled concurrently on a bounded thread pool; a
per-rollout lock keeps at most one reconciliation in flight per rollout.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import TYPE_CHECKING, Any

from rollout_sre.alerts import Alert, AlertManager, AlertSeverity
from rollout_sre.config import ControllerConfig
from rollout_sre.delivery.analysis import AnalysisEngine
from rollout_sre.delivery.machine import RolloutStateMachine
from rollout_sre.delivery.spec import RolloutSpec, load_spec
from rollout_sre.delivery.state import (
    PauseReason,
    Phase,
    RolloutEvent,
    RolloutState,
    VersionStatus,
)
from rollout_sre.delivery.store import (
    InMemoryRolloutStore,
    RolloutRecord,
    RolloutStore,
    SQLiteRolloutStore,
)
from rollout_sre.errors import (
    ApplyFailureError,
    InvalidSpecError,
    InvalidTransitionError,
    PersistenceError,
    RolloutNotFoundError,
)
from rollout_sre.telemetry import (
    ANALYSIS_VERDICT,
    ROLLOUT_ID,
    ROLLOUT_PHASE,
    ROLLOUT_SERVICE,
    ROLLOUT_STRATEGY,
    create_rollout_metrics,
)

if TYPE_CHECKING:
    from opentelemetry.metrics import Meter

    from rollout_sre.adapters import MetricsProvider, TrafficRouter, WorkloadManager

logger = logging.getLogger(__name__)


class RolloutController:
    """Owns every rollout's state and drives it to a terminal phase.

    Usage:
        controller = RolloutController(workload, router, metrics_provider)
        rollout_id = controller.start_rollout(spec, "web-v1", "web-v2")
        controller.start()          # background tick loop
        ...
        controller.stop()
    """

    def __init__(
        self,
        workload: WorkloadManager,
        router: TrafficRouter,
        metrics_provider: MetricsProvider,
        store: RolloutStore | None = None,
        config: ControllerConfig | None = None,
        alerts: AlertManager | None = None,
        meter: Meter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ControllerConfig()
        if store is None:
            if self.config.store_path:
                store = SQLiteRolloutStore(self.config.store_path)
            else:
                store = InMemoryRolloutStore()
        self._store = store
        self._workload = workload
        self._router = router
        self._engine = AnalysisEngine(metrics_provider)
        self._machine = RolloutStateMachine()
        self._alerts = alerts
        self._metrics = create_rollout_metrics(meter)
        self._clock = clock

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._start_lock = threading.Lock()
        self._signals_lock = threading.Lock()
        self._abort_signals: dict[str, str] = {}
        self._halted: dict[str, str] = {}

        self._executor: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def store(self) -> RolloutStore:
        return self._store

    @property
    def halted(self) -> dict[str, str]:
        """Rollouts halted on a fatal error, with the reason."""
        return dict(self._halted)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start_rollout(
        self,
        spec: RolloutSpec | Mapping[str, Any],
        stable_version: str,
        candidate_version: str,
    ) -> str:
        """Register a new rollout and return its id.

        Raises:
            InvalidSpecError: the spec or version pair is invalid.
            InvalidTransitionError: the service already has an active rollout.
        """
        spec = load_spec(spec)
        if not stable_version or not candidate_version:
            raise InvalidSpecError("stable and candidate versions are required")
        if stable_version == candidate_version:
            raise InvalidSpecError(
                f"candidate version '{candidate_version}' is already the stable version"
            )

        with self._start_lock:
            existing = self._store.active_for_service(spec.name)
            if existing is not None:
                phase = self._store.load(existing).state.phase.value
                raise InvalidTransitionError(existing, phase, "replace")

            now = self._clock()
            rollout_id = uuid.uuid4().hex[:12]
            state = RolloutState(
                rollout_id=rollout_id,
                stable_version=VersionStatus(
                    name=stable_version,
                    desired_replicas=spec.replicas,
                    ready_replicas=spec.replicas,
                ),
                candidate_version=VersionStatus(name=candidate_version),
                created_at=now,
                last_transition_time=now,
                events=[
                    RolloutEvent(
                        event_type="rollout_created",
                        timestamp=now,
                        step_index=0,
                        details={
                            "strategy": spec.strategy.value,
                            "stable": stable_version,
                            "candidate": candidate_version,
                        },
                    )
                ],
                message="rollout created",
            )
            self._save(spec, state)

        logger.info(
            "Started %s rollout %s for %s: %s -> %s",
            spec.strategy.value,
            rollout_id,
            spec.name,
            stable_version,
            candidate_version,
        )
        return rollout_id

    def get_rollout_state(self, rollout_id: str) -> RolloutState:
        """Return the current state (archived rollouts included).

        Raises:
            RolloutNotFoundError: unknown id.
        """
        return self._store.load(rollout_id).state

    def get_record(self, rollout_id: str) -> RolloutRecord:
        return self._store.load(rollout_id)

    def list_rollouts(self, active_only: bool = False) -> list[RolloutRecord]:
        """All readable rollout records, oldest first."""
        ids = self._store.active_ids() if active_only else self._store.all_ids()
        records: list[RolloutRecord] = []
        for rollout_id in ids:
            try:
                records.append(self._store.load(rollout_id))
            except PersistenceError as exc:
                logger.warning("Skipping unreadable rollout %s: %s", rollout_id, exc)
        return records

    def resume(self, rollout_id: str) -> RolloutState | None:
        """Resume a paused rollout.

        Raises:
            RolloutNotFoundError: unknown id.
            InvalidTransitionError: the rollout is not paused.
        """
        with self._lock_for(rollout_id):
            record = self._store.load(rollout_id)
            state = self._machine.resume(record.state)
            self._save(record.spec, state)
        logger.info("Resume requested for rollout %s", rollout_id)
        return self.reconcile(rollout_id)

    def abort(self, rollout_id: str, reason: str = "") -> RolloutState | None:
        """Abort a rollout and restore all traffic to the stable version.

        The signal pre-empts any in-flight reconciliation of this rollout.

        Raises:
            RolloutNotFoundError: unknown id.
            InvalidTransitionError: the rollout already finished.
        """
        state = self._store.load(rollout_id).state
        if state.is_terminal:
            raise InvalidTransitionError(rollout_id, state.phase.value, "abort")
        with self._signals_lock:
            self._abort_signals[rollout_id] = reason or "aborted by operator"
        # An explicit abort retries a rollout halted mid-flight.
        self._halted.pop(rollout_id, None)
        logger.info("Abort requested for rollout %s: %s", rollout_id, reason or "operator")
        return self.reconcile(rollout_id)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def tick(self) -> dict[str, RolloutState | None]:
        """Reconcile every active rollout once. Returns the resulting states."""
        ids = [rid for rid in self._store.active_ids() if rid not in self._halted]
        if not ids:
            return {}
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.max_concurrency,
                thread_name_prefix="rollout",
            )
        futures = {self._executor.submit(self._try_reconcile, rid): rid for rid in ids}
        results: dict[str, RolloutState | None] = {}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
        return results

    def start(self) -> None:
        """Run the tick loop on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="rollout-controller", daemon=True)
        self._thread.start()
        logger.info("Controller started (tick every %.1fs)", self.config.tick_interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the tick loop and wait for in-flight reconciliations."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("Controller stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        interval = self.config.tick_interval_seconds
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception:
                # Store unreachable; try again next tick.
                logger.exception("Controller tick failed")
            self._stop_event.wait(max(0.0, interval - (time.monotonic() - started)))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, rollout_id: str) -> RolloutState | None:
        """Reconcile one rollout now, waiting for any in-flight reconciliation."""
        with self._lock_for(rollout_id):
            return self._guarded_reconcile(rollout_id)

    def _try_reconcile(self, rollout_id: str) -> RolloutState | None:
        lock = self._lock_for(rollout_id)
        if not lock.acquire(blocking=False):
            logger.debug("Rollout %s is busy; skipping this tick", rollout_id)
            return None
        try:
            return self._guarded_reconcile(rollout_id)
        finally:
            lock.release()

    def _guarded_reconcile(self, rollout_id: str) -> RolloutState | None:
        if rollout_id in self._halted:
            return None
        started = time.perf_counter()
        try:
            return self._reconcile_locked(rollout_id)
        except RolloutNotFoundError:
            raise
        except Exception as exc:
            # PersistenceError or a bug: stop this rollout, keep the others going.
            self._halt(rollout_id, exc)
            return None
        finally:
            self._metrics.reconcile_duration.record((time.perf_counter() - started) * 1000)

    def _reconcile_locked(self, rollout_id: str) -> RolloutState:
        record = self._store.load(rollout_id)
        spec, state = record.spec, record.state
        if state.is_terminal:
            with self._signals_lock:
                self._abort_signals.pop(rollout_id, None)
            if not record.archived:
                self._save(spec, state)
            return state

        now = self._clock()
        state = self._consume_abort_signal(rollout_id, spec, state, now)
        if now < state.next_apply_at:
            return state

        for _ in range(self.config.max_transitions_per_tick):
            ready = self._observe_readiness(state, spec)
            analysis = None
            if self._machine.analysis_due(state, now):
                window = self._machine.analysis_window(state, now)
                analysis = self._engine.evaluate(state.candidate_version.name, window, spec.analysis)
                self._metrics.analysis_verdicts.add(
                    1, {ROLLOUT_SERVICE: spec.name, ANALYSIS_VERDICT: analysis.verdict.value}
                )

            new_state = self._machine.next(state, spec, now, ready, analysis)
            if new_state is None:
                break

            aborted = self._consume_abort_signal(rollout_id, spec, state, now)
            if aborted is not state:
                state = aborted
                continue

            try:
                self._apply(state, new_state)
            except ApplyFailureError as exc:
                state = self._record_apply_failure(spec, state, exc, now)
                break

            previous = state
            state = new_state.model_copy(update={"apply_failures": 0, "next_apply_at": 0.0})
            self._save(spec, state)
            self._on_committed(spec, previous, state)
            if state.is_terminal:
                break
        return state

    def _consume_abort_signal(
        self, rollout_id: str, spec: RolloutSpec, state: RolloutState, now: float
    ) -> RolloutState:
        with self._signals_lock:
            reason = self._abort_signals.pop(rollout_id, None)
        if reason is None or state.phase == Phase.ABORTING:
            return state
        aborting = self._machine.abort(state, reason, now)
        # Bypass any apply backoff: restoring stable traffic cannot wait.
        aborting = aborting.model_copy(update={"next_apply_at": 0.0})
        self._save(spec, aborting)
        self._on_committed(spec, state, aborting)
        return aborting

    def _observe_readiness(self, state: RolloutState, spec: RolloutSpec) -> int | None:
        if not self._machine.needs_readiness(state, spec):
            return None
        version = state.candidate_version.name
        try:
            return self._workload.get_ready_replicas(version)
        except Exception as exc:
            logger.warning("Readiness check for %s failed: %s", version, exc)
            return None

    def _apply(self, old: RolloutState, new: RolloutState) -> None:
        """Push target changes to the platform: scale up, shift traffic, scale down."""
        # Every platform error is retryable; only store errors halt a rollout.
        old_replicas = old.desired_replicas
        new_replicas = new.desired_replicas

        for version, count in new_replicas.items():
            if count > old_replicas.get(version, 0):
                self._set_replicas(new.rollout_id, version, count)

        weights = new.current_weights
        if weights != old.current_weights:
            try:
                self._router.set_weights(dict(weights))
            except ApplyFailureError:
                raise
            except Exception as exc:
                raise ApplyFailureError(str(exc), rollout_id=new.rollout_id) from exc
            logger.info("Rollout %s traffic: %s", new.rollout_id, weights)
            self._metrics.candidate_weight.record(new.candidate_weight)

        for version, count in new_replicas.items():
            if count < old_replicas.get(version, 0):
                self._set_replicas(new.rollout_id, version, count)

    def _set_replicas(self, rollout_id: str, version: str, count: int) -> None:
        try:
            self._workload.set_replicas(version, count)
        except ApplyFailureError:
            raise
        except Exception as exc:
            raise ApplyFailureError(str(exc), version=version, rollout_id=rollout_id) from exc
        logger.debug("Rollout %s scaled %s to %d", rollout_id, version, count)

    def _record_apply_failure(
        self, spec: RolloutSpec, state: RolloutState, exc: ApplyFailureError, now: float
    ) -> RolloutState:
        failures = state.apply_failures + 1
        delay = self.config.backoff_delay(failures)
        logger.warning(
            "Apply failed for rollout %s in %s (attempt %d), retrying in %.1fs: %s",
            state.rollout_id,
            state.phase.value,
            failures,
            delay,
            exc,
        )
        self._metrics.apply_failures.add(
            1, {ROLLOUT_SERVICE: spec.name, ROLLOUT_PHASE: state.phase.value}
        )
        failed = state.model_copy(
            update={
                "apply_failures": failures,
                "next_apply_at": now + delay,
                "message": f"apply failed: {exc}",
            }
        )
        self._save(spec, failed)
        return failed

    def _on_committed(self, spec: RolloutSpec, old: RolloutState, new: RolloutState) -> None:
        if new.phase == old.phase:
            return
        logger.info(
            "Rollout %s (%s): %s -> %s%s",
            new.rollout_id,
            spec.name,
            old.phase.value,
            new.phase.value,
            f" ({new.message})" if new.message else "",
        )
        self._metrics.transitions.add(
            1,
            {
                ROLLOUT_SERVICE: spec.name,
                ROLLOUT_STRATEGY: spec.strategy.value,
                ROLLOUT_PHASE: new.phase.value,
            },
        )

        if new.phase == Phase.ROLLED_BACK:
            self._alert(
                spec,
                new,
                "Rollout rolled back",
                f"{new.candidate_version.name} rolled back: {new.abort_reason}",
                AlertSeverity.WARNING,
            )
        elif new.phase == Phase.SUCCEEDED:
            self._alert(
                spec,
                new,
                "Rollout succeeded",
                f"{new.stable_version.name} is now stable",
                AlertSeverity.INFO,
            )
        elif new.phase == Phase.PAUSED and new.pause_reason == PauseReason.ANALYSIS_FAILED:
            self._alert(
                spec,
                new,
                "Rollout held for operator",
                new.message,
                AlertSeverity.WARNING,
            )

    def _halt(self, rollout_id: str, exc: BaseException) -> None:
        self._halted[rollout_id] = str(exc)
        logger.exception("Halting rollout %s: %s", rollout_id, exc)
        self._metrics.halted.add(1, {ROLLOUT_ID: rollout_id})
        if self._alerts is not None:
            self._alerts.send(
                Alert(
                    title="Rollout halted",
                    message=f"Reconciliation of {rollout_id} stopped: {exc}",
                    severity=AlertSeverity.CRITICAL,
                    rollout_id=rollout_id,
                    metadata={"error_type": type(exc).__name__},
                )
            )

    def _alert(
        self,
        spec: RolloutSpec,
        state: RolloutState,
        title: str,
        message: str,
        severity: AlertSeverity,
    ) -> None:
        if self._alerts is None:
            return
        self._alerts.send(
            Alert(
                title=title,
                message=message,
                severity=severity,
                rollout_id=state.rollout_id,
                service=spec.name,
                metadata={"phase": state.phase.value, "weights": state.current_weights},
            )
        )

    def _save(self, spec: RolloutSpec, state: RolloutState) -> None:
        self._store.save(RolloutRecord(spec=spec, state=state, archived=state.is_terminal))

    def _lock_for(self, rollout_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(rollout_id)
            if lock is None:
                lock = self._locks[rollout_id] = threading.Lock()
            return lock
