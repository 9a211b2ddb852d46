"""Pydantic request/response models for the rollout REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class RolloutCreateRequest(BaseModel):
    """Start a rollout of *candidate_version* over *stable_version*."""

    spec: dict[str, Any] = Field(..., description="Rollout spec, as in the YAML form")
    stable_version: str = Field(..., min_length=1)
    candidate_version: str = Field(..., min_length=1)


class AbortRequest(BaseModel):
    """Abort a rollout."""

    reason: str = ""


class RolloutListResponse(BaseModel):
    """A page of rollout records."""

    rollouts: list[dict[str, Any]] = Field(default_factory=list)
    count: int = 0
