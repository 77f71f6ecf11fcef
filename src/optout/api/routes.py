"""General API routes: health, Chrome detection and the broker registry."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from optout.api.deps import get_service
from optout.api.errors import http_error
from optout.exceptions import OptOutError
from optout.models.broker import Broker
from optout.service import OptOutService

router = APIRouter()


class ChromeStatusResponse(BaseModel):
    installed: bool


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/chrome", response_model=ChromeStatusResponse)
async def chrome_status(service: OptOutService = Depends(get_service)) -> ChromeStatusResponse:
    """Report whether a Chrome binary is installed."""
    return ChromeStatusResponse(installed=await service.check_chrome_installed())


@router.get("/brokers", response_model=list[Broker])
def list_brokers(service: OptOutService = Depends(get_service)) -> list[Broker]:
    """Return the broker registry."""
    try:
        return service.list_brokers()
    except OptOutError as exc:
        raise http_error(exc) from exc
