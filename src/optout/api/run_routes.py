"""Opt-out run endpoints.

* ``POST /runs``: start a run over a list of brokers
* ``POST /runs/continue``: resume a run waiting for the user
* ``POST /runs/cancel``: cancel the active run
* ``GET /runs/status``: status of the most recent run

Progress is streamed over ``/ws/events``; these endpoints never block on a run.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from optout.api.deps import get_service
from optout.api.errors import http_error
from optout.exceptions import OptOutError
from optout.models.run import ActionRequired, BrokerOutcome, ContinueResponse
from optout.models.states import RunStatus
from optout.service import OptOutService

logger = logging.getLogger(__name__)

run_router = APIRouter(prefix="/runs", tags=["runs"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------


class StartRunRequest(BaseModel):
    """Body for ``POST /runs``."""

    broker_ids: list[str] = Field(..., min_length=1)
    playbook_selections: dict[str, str] | None = Field(
        None,
        description="broker_id → 'best', 'local:<id>' or a catalog playbook id. Omit to use 'best' everywhere.",
    )


class StartRunResponse(BaseModel):
    run_id: str
    status: RunStatus


class ContinueRequest(BaseModel):
    """Body for ``POST /runs/continue``; an empty body means plain continue."""

    response: ContinueResponse | None = None


class RunStatusResponse(BaseModel):
    run_id: str | None = None
    status: RunStatus
    pending_action: ActionRequired | None = None
    outcomes: list[BrokerOutcome] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@run_router.post("", response_model=StartRunResponse, status_code=202)
async def start_run(req: StartRunRequest, service: OptOutService = Depends(get_service)) -> StartRunResponse:
    """Start an opt-out run. Returns as soon as the run is scheduled."""
    try:
        run_id = await service.start_opt_out_run(req.broker_ids, req.playbook_selections)
    except OptOutError as exc:
        raise http_error(exc) from exc
    return StartRunResponse(run_id=run_id, status=await service.get_run_status())


@run_router.post("/continue", response_model=RunStatusResponse)
async def continue_run(
    req: ContinueRequest | None = None,
    service: OptOutService = Depends(get_service),
) -> RunStatusResponse:
    """Deliver the user's response to the waiting run."""
    try:
        await service.continue_opt_out(req.response if req else None)
    except OptOutError as exc:
        raise http_error(exc) from exc
    return _status(service)


@run_router.post("/cancel", response_model=RunStatusResponse)
async def cancel_run(service: OptOutService = Depends(get_service)) -> RunStatusResponse:
    """Cancel the active run."""
    try:
        await service.cancel_opt_out()
    except OptOutError as exc:
        raise http_error(exc) from exc
    return _status(service)


@run_router.get("/status", response_model=RunStatusResponse)
def run_status(service: OptOutService = Depends(get_service)) -> RunStatusResponse:
    return _status(service)


def _status(service: OptOutService) -> RunStatusResponse:
    run = service.runs.current_run
    if run is None:
        return RunStatusResponse(status=RunStatus.IDLE)
    return RunStatusResponse(
        run_id=run.run_id,
        status=run.status,
        pending_action=run.pending_action,
        outcomes=list(run.outcomes),
    )
