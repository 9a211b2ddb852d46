"""Error kinds raised by the rollout controller."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of rollout errors."""

    INVALID_SPEC = "InvalidSpec"
    APPLY_FAILURE = "ApplyFailure"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    INVALID_TRANSITION = "InvalidTransition"
    NOT_FOUND = "NotFound"
    PERSISTENCE = "Persistence"


class RolloutError(Exception):
    """Base class for all rollout errors."""

    kind: ErrorKind = ErrorKind.INVALID_SPEC

    def __init__(self, message: str, rollout_id: str = "") -> None:
        self.rollout_id = rollout_id
        super().__init__(message)


class InvalidSpecError(RolloutError, ValueError):
    """Rollout spec rejected at submission. Never retried."""

    kind = ErrorKind.INVALID_SPEC

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        self.errors = errors or [message]
        super().__init__(message)


class ApplyFailureError(RolloutError):
    """Traffic Router or Workload Manager call failed (transient)."""

    kind = ErrorKind.APPLY_FAILURE

    def __init__(self, message: str, version: str = "", rollout_id: str = "") -> None:
        self.version = version
        super().__init__(message, rollout_id=rollout_id)


class ProviderUnavailableError(RolloutError):
    """Metrics Provider could not be reached."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE

    def __init__(self, message: str, metric: str = "") -> None:
        self.metric = metric
        super().__init__(message)


class InvalidTransitionError(RolloutError):
    """Operation not allowed from the rollout's current phase."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, rollout_id: str, phase: str, operation: str) -> None:
        self.phase = phase
        self.operation = operation
        super().__init__(
            f"Cannot {operation} rollout '{rollout_id}' in phase '{phase}'",
            rollout_id=rollout_id,
        )


class RolloutNotFoundError(RolloutError, KeyError):
    """Unknown rollout id."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, rollout_id: str) -> None:
        super().__init__(f"Rollout '{rollout_id}' not found", rollout_id=rollout_id)

    def __str__(self) -> str:
        return str(self.args[0])


class PersistenceError(RolloutError):
    """Stored rollout record is unreadable. Halts that rollout only."""

    kind = ErrorKind.PERSISTENCE
