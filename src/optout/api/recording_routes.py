"""Action recorder endpoints.

* ``POST /recording/start``: open a browser and start recording
* ``GET /recording/actions``: actions captured so far
* ``POST /recording/captcha``: mark a CAPTCHA step
* ``POST /recording/user-prompt``: mark a manual step
* ``POST /recording/stop``: stop and return the log with its draft steps
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from optout.api.deps import get_service
from optout.api.errors import http_error
from optout.exceptions import OptOutError
from optout.models.playbook import PlaybookStep
from optout.models.recording import RecordedAction
from optout.recording.converter import actions_to_steps
from optout.service import OptOutService

logger = logging.getLogger(__name__)

recording_router = APIRouter(prefix="/recording", tags=["recording"])


class StartRecordingRequest(BaseModel):
    broker_id: str
    broker_name: str = ""
    url: str = Field(..., description="Opt-out page to open.")


class RecordingResponse(BaseModel):
    """Recorded actions plus the playbook steps they convert to."""

    actions: list[RecordedAction]
    steps: list[PlaybookStep]


@recording_router.post("/start", status_code=201)
async def start_recording(
    req: StartRecordingRequest,
    service: OptOutService = Depends(get_service),
) -> dict[str, str]:
    try:
        await service.start_recording(req.broker_id, req.broker_name, req.url)
    except OptOutError as exc:
        raise http_error(exc) from exc
    return {"status": "recording", "broker_id": req.broker_id}


@recording_router.get("/actions", response_model=RecordingResponse)
async def recorded_actions(service: OptOutService = Depends(get_service)) -> RecordingResponse:
    try:
        actions = await service.get_recorded_actions()
    except OptOutError as exc:
        raise http_error(exc) from exc
    return RecordingResponse(actions=actions, steps=actions_to_steps(actions))


@recording_router.post("/captcha", status_code=204)
async def mark_captcha(service: OptOutService = Depends(get_service)) -> None:
    try:
        await service.mark_captcha_step()
    except OptOutError as exc:
        raise http_error(exc) from exc


@recording_router.post("/user-prompt", status_code=204)
async def mark_user_prompt(service: OptOutService = Depends(get_service)) -> None:
    try:
        await service.mark_user_prompt_step()
    except OptOutError as exc:
        raise http_error(exc) from exc


@recording_router.post("/stop", response_model=RecordingResponse)
async def stop_recording(service: OptOutService = Depends(get_service)) -> RecordingResponse:
    """Stop recording. The browser is closed before this returns."""
    try:
        actions = await service.stop_recording()
    except OptOutError as exc:
        raise http_error(exc) from exc
    logger.info("Recording stopped via API (%d actions)", len(actions))
    return RecordingResponse(actions=actions, steps=actions_to_steps(actions))
