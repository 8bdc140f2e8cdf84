"""Orchestrator control routes.

Provides endpoints for:
- Starting, stopping and force-stopping the sync orchestrator
- Resetting the consecutive-error counter after an automatic stop
- Triggering a one-off sync outside the schedule
- Status, upcoming run times and health for the dashboard
- Toggling the global auto-posting kill-switch
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from scheduler import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orchestrator", tags=["orchestrator"])

MAX_UPCOMING_RUNS = 50


class ControlResponse(BaseModel):
    """Result of a lifecycle control action."""

    action: str
    running: bool
    consecutive_errors: int


class PostingGateRequest(BaseModel):
    """Request to change the global auto-posting switch."""

    enabled: bool


class PostingGateResponse(BaseModel):
    """Current global auto-posting switch value."""

    enabled: bool


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Resolve the orchestrator created by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


def _control_response(action: str, orchestrator: SyncOrchestrator) -> ControlResponse:
    return ControlResponse(
        action=action,
        running=orchestrator.running,
        consecutive_errors=orchestrator.consecutive_errors,
    )


@router.post("/start", response_model=ControlResponse)
async def start_orchestrator(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Start both periodic tasks, restarting them if already running."""
    orchestrator.start()
    return _control_response("start", orchestrator)


@router.post("/stop", response_model=ControlResponse)
async def stop_orchestrator(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Stop both periodic tasks."""
    orchestrator.stop()
    return _control_response("stop", orchestrator)


@router.post("/force-stop", response_model=ControlResponse)
async def force_stop_orchestrator(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Stop unconditionally and persist the disabled state."""
    orchestrator.force_stop()
    return _control_response("force_stop", orchestrator)


@router.post("/reset-errors", response_model=ControlResponse)
async def reset_error_counter(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Clear the consecutive-error counter. Does not restart tasks."""
    orchestrator.reset_error_counter()
    return _control_response("reset_errors", orchestrator)


@router.post("/trigger")
async def trigger_manual_sync(
    force: bool = Query(default=False, description="Run even while stopped"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Run sales then registration sync once, outside the schedule.

    Failures are reported in the body with ``success: false`` rather than
    as an error status. A stopped orchestrator does nothing unless
    ``force`` is set.
    """
    result = await orchestrator.trigger_manual_sync(force=force)
    return result.to_dict()


@router.get("/status")
async def get_status(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Get orchestrator status and last run statistics."""
    return orchestrator.get_status().to_dict()


@router.get("/upcoming")
async def get_upcoming_runs(
    count: int = Query(default=5, ge=1, le=MAX_UPCOMING_RUNS),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> dict[str, list[str]]:
    """Get the next fire times for each task."""
    return orchestrator.get_upcoming_runs(count).to_dict()


@router.get("/health")
async def get_health(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Report health; 503 when stopped or tripped."""
    healthy = orchestrator.is_healthy()
    body = {
        "healthy": healthy,
        "running": orchestrator.running,
        "consecutive_errors": orchestrator.consecutive_errors,
        "max_consecutive_errors": orchestrator.max_consecutive_errors,
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@router.get("/posting-gate", response_model=PostingGateResponse)
async def get_posting_gate(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Get the global auto-posting switch."""
    return PostingGateResponse(
        enabled=orchestrator.posting_gate.is_auto_posting_enabled()
    )


@router.post("/posting-gate", response_model=PostingGateResponse)
async def set_posting_gate(
    request: PostingGateRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Enable or disable automated posting system-wide."""
    orchestrator.posting_gate.set_enabled(request.enabled)
    logger.info(f"Posting gate set to {request.enabled} via API")
    return PostingGateResponse(
        enabled=orchestrator.posting_gate.is_auto_posting_enabled()
    )
