"""Controller configuration, loadable from YAML."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field


class ControllerConfig(BaseModel):
    """Settings for the controller loop.

    Example ``controller.yaml``::

        tick_interval_seconds: 10
        max_concurrency: 8
        store_path: /var/lib/rollout-sre/rollouts.db
    """

    tick_interval_seconds: float = Field(default=10.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1, description="Rollouts reconciled in parallel")
    apply_backoff_base_seconds: float = Field(default=1.0, ge=0)
    apply_backoff_max_seconds: float = Field(default=60.0, ge=0)
    max_transitions_per_tick: int = Field(
        default=8,
        ge=1,
        description="Transitions one reconciliation may chain before yielding",
    )
    store_path: str | None = Field(
        default=None,
        description="SQLite database path; in-memory store when unset",
    )

    def backoff_delay(self, failures: int) -> float:
        """Delay before retrying after *failures* consecutive apply failures."""
        if failures <= 0:
            return 0.0
        delay = self.apply_backoff_base_seconds * (2 ** (failures - 1))
        return min(delay, self.apply_backoff_max_seconds)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ControllerConfig:
        """Load controller settings from a YAML file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def to_yaml(self, path: str | Path) -> None:
        path = Path(path)
        data = self.model_dump(mode="json", exclude_none=True)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
