"""Playbook endpoints.

Provides REST endpoints for local drafts and validation:

* ``GET /playbooks/local``: list local drafts
* ``GET /playbooks/local/{playbook_id}``: get one draft
* ``PUT /playbooks/local/{playbook_id}``: create or replace a draft (validated)
* ``DELETE /playbooks/local/{playbook_id}``: delete a draft
* ``POST /playbooks/validate``: validate raw steps without saving
* ``GET /playbooks/community/{broker_id}``: verified catalog playbooks for a broker
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from optout.api.deps import get_service
from optout.api.errors import http_error
from optout.exceptions import OptOutError, PlaybookValidationError
from optout.models.playbook import LocalPlaybook, PlaybookStep, PlaybookSummary
from optout.playbook.validation import validate_payload
from optout.service import OptOutService

logger = logging.getLogger(__name__)

playbook_router = APIRouter(prefix="/playbooks", tags=["playbooks"])


# ---------------------------------------------------------------------------
# Request / Response models
# ---------------------------------------------------------------------------


class ValidateRequest(BaseModel):
    """Raw steps to validate; parse errors are reported as problems."""

    steps: list[dict[str, Any]] = Field(default_factory=list)


class ValidateResponse(BaseModel):
    valid: bool
    problems: list[str] = Field(default_factory=list)
    steps: list[PlaybookStep] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Local drafts
# ---------------------------------------------------------------------------


@playbook_router.get("/local", response_model=list[LocalPlaybook])
def list_local(service: OptOutService = Depends(get_service)) -> list[LocalPlaybook]:
    try:
        return service.local_store.get_all()
    except OptOutError as exc:
        raise http_error(exc) from exc


@playbook_router.get("/local/{playbook_id}", response_model=LocalPlaybook)
def get_local(playbook_id: str, service: OptOutService = Depends(get_service)) -> LocalPlaybook:
    try:
        playbook = service.local_store.get(playbook_id)
    except OptOutError as exc:
        raise http_error(exc) from exc
    if playbook is None:
        raise HTTPException(status_code=404, detail=f"Local playbook '{playbook_id}' not found")
    return playbook


@playbook_router.put("/local/{playbook_id}", response_model=LocalPlaybook)
def put_local(
    playbook_id: str,
    playbook: LocalPlaybook,
    service: OptOutService = Depends(get_service),
) -> LocalPlaybook:
    """Save a draft. Nothing is written if its steps fail validation."""
    if playbook.id != playbook_id:
        raise HTTPException(
            status_code=400,
            detail=f"Body id '{playbook.id}' does not match path id '{playbook_id}'",
        )
    try:
        return service.local_store.upsert(playbook)
    except OptOutError as exc:
        raise http_error(exc) from exc


@playbook_router.delete("/local/{playbook_id}", status_code=204)
def delete_local(playbook_id: str, service: OptOutService = Depends(get_service)) -> None:
    try:
        removed = service.local_store.delete(playbook_id)
    except OptOutError as exc:
        raise http_error(exc) from exc
    if not removed:
        raise HTTPException(status_code=404, detail=f"Local playbook '{playbook_id}' not found")


# ---------------------------------------------------------------------------
# Validation and catalog
# ---------------------------------------------------------------------------


@playbook_router.post("/validate", response_model=ValidateResponse)
def validate(req: ValidateRequest) -> ValidateResponse:
    """Run the full step validator and return every problem found."""
    try:
        steps = validate_payload(req.steps)
    except PlaybookValidationError as exc:
        return ValidateResponse(valid=False, problems=exc.problems)
    return ValidateResponse(valid=True, steps=steps)


@playbook_router.get("/community/{broker_id}", response_model=list[PlaybookSummary])
async def list_community(broker_id: str, service: OptOutService = Depends(get_service)) -> list[PlaybookSummary]:
    """List catalog playbooks for a broker whose signatures verify."""
    if service.catalog is None:
        raise HTTPException(status_code=503, detail="Playbook catalog is not configured")
    try:
        return await service.catalog.fetch_playbooks(broker_id)
    except OptOutError as exc:
        raise http_error(exc) from exc
