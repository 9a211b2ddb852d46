"""FastAPI REST API over a ``RolloutController``.

Run with::

    from rollout_sre.api import create_app
    app = create_app(controller, run_loop=True)
    uvicorn.run(app)
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request

from rollout_sre.api.models import AbortRequest, RolloutCreateRequest, RolloutListResponse
from rollout_sre.delivery.controller import RolloutController
from rollout_sre.errors import (
    InvalidSpecError,
    InvalidTransitionError,
    RolloutError,
    RolloutNotFoundError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

router = APIRouter()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    app.state.start_time = time.time()
    controller: RolloutController = app.state.controller
    if app.state.run_loop:
        controller.start()
    try:
        yield
    finally:
        if app.state.run_loop:
            controller.stop()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(controller: RolloutController, run_loop: bool = False) -> FastAPI:
    """Create the API application.

    Args:
        controller: Controller the endpoints operate on.
        run_loop: Start the controller's tick loop with the app and stop it
            on shutdown.
    """
    application = FastAPI(
        title="Rollout SRE API",
        description="Automated canary and blue/green delivery",
        version="0.1.0",
        lifespan=_lifespan,
    )
    application.state.controller = controller
    application.state.run_loop = run_loop
    application.state.start_time = time.time()
    application.include_router(router)
    return application


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _controller(request: Request) -> RolloutController:
    return request.app.state.controller


def _http_error(exc: RolloutError) -> HTTPException:
    if isinstance(exc, RolloutNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InvalidSpecError):
        return HTTPException(status_code=422, detail={"message": str(exc), "errors": exc.errors})
    return HTTPException(status_code=500, detail=str(exc))


# =========================================================================
# Health
# =========================================================================


@router.get("/health", tags=["health"])
def health_check(request: Request) -> dict[str, Any]:
    """Service health check."""
    controller = _controller(request)
    return {
        "status": "ok",
        "uptime_seconds": round(time.time() - request.app.state.start_time, 1),
        "controller_running": controller.running,
        "halted_rollouts": sorted(controller.halted),
    }


# =========================================================================
# Delivery endpoints
# =========================================================================


@router.post("/api/v1/rollouts", tags=["delivery"], status_code=201)
def create_rollout(
    body: RolloutCreateRequest,
    controller: RolloutController = Depends(_controller),
) -> dict[str, Any]:
    """Start a rollout."""
    try:
        rollout_id = controller.start_rollout(
            body.spec, body.stable_version, body.candidate_version
        )
        return controller.get_record(rollout_id).to_dict()
    except RolloutError as exc:
        raise _http_error(exc) from exc


@router.get("/api/v1/rollouts", tags=["delivery"])
def list_rollouts(
    active_only: bool = Query(False, description="Only rollouts still in progress"),
    phase: str | None = Query(None, description="Filter by phase"),
    controller: RolloutController = Depends(_controller),
) -> RolloutListResponse:
    """List rollouts, oldest first."""
    records = controller.list_rollouts(active_only=active_only)
    if phase:
        records = [r for r in records if r.state.phase.value == phase]
    return RolloutListResponse(rollouts=[r.to_dict() for r in records], count=len(records))


@router.get("/api/v1/rollouts/{rollout_id}", tags=["delivery"])
def get_rollout(
    rollout_id: str,
    controller: RolloutController = Depends(_controller),
) -> dict[str, Any]:
    """Get rollout state and progress."""
    try:
        return controller.get_record(rollout_id).to_dict()
    except RolloutError as exc:
        raise _http_error(exc) from exc


@router.post("/api/v1/rollouts/{rollout_id}/resume", tags=["delivery"])
def resume_rollout(
    rollout_id: str,
    controller: RolloutController = Depends(_controller),
) -> dict[str, Any]:
    """Resume a paused rollout."""
    try:
        controller.resume(rollout_id)
        return controller.get_record(rollout_id).to_dict()
    except RolloutError as exc:
        raise _http_error(exc) from exc


@router.post("/api/v1/rollouts/{rollout_id}/abort", tags=["delivery"])
def abort_rollout(
    rollout_id: str,
    body: AbortRequest | None = None,
    controller: RolloutController = Depends(_controller),
) -> dict[str, Any]:
    """Abort a rollout and return all traffic to the stable version."""
    reason = body.reason if body is not None else ""
    try:
        controller.abort(rollout_id, reason)
        return controller.get_record(rollout_id).to_dict()
    except RolloutError as exc:
        raise _http_error(exc) from exc
