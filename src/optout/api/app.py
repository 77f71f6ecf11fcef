"""FastAPI app for optout: REST commands plus a WebSocket event stream."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from optout.api.playbook_routes import playbook_router
from optout.api.recording_routes import recording_router
from optout.api.routes import router
from optout.api.run_routes import run_router
from optout.api.ws_routes import ws_router
from optout.service import OptOutService
from optout.settings import get_settings

try:
    from importlib.metadata import version

    VERSION = version("optout")
except Exception:
    VERSION = "0.0.0"


def create_app(service: OptOutService | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        service: Engine facade to serve. Built from settings when omitted.
    """
    settings = get_settings()
    if service is None:
        service = OptOutService.from_settings(settings)

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        yield
        await application.state.service.aclose()

    application = FastAPI(
        title="Opt-Outta",
        description="Playbook-driven data broker opt-out automation.",
        version=VERSION,
        lifespan=lifespan,
    )
    application.state.service = service

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    application.include_router(run_router)
    application.include_router(recording_router)
    application.include_router(playbook_router)
    application.include_router(ws_router)
    return application
