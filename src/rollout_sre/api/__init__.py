"""
REST API for rollout-sre.

Requires the ``api`` extra (``pip install rollout-sre[api]``).

Endpoints:
    GET  /health                            — Service health check
    POST /api/v1/rollouts                   — Start a rollout
    GET  /api/v1/rollouts                   — List rollouts
    GET  /api/v1/rollouts/{id}              — Rollout state and history
    POST /api/v1/rollouts/{id}/resume       — Resume a paused rollout
    POST /api/v1/rollouts/{id}/abort        — Abort and roll back

Usage:
    from rollout_sre.api import create_app

    app = create_app(controller, run_loop=True)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

    from rollout_sre.delivery.controller import RolloutController


def create_app(controller: RolloutController, run_loop: bool = False) -> FastAPI:
    """Create the FastAPI application (requires ``rollout-sre[api]`` extra)."""
    from rollout_sre.api.server import create_app as _factory

    return _factory(controller, run_loop=run_loop)


__all__ = ["create_app"]
