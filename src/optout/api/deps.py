"""Request-scoped access to the shared ``OptOutService``."""

from __future__ import annotations

from fastapi import Request

from optout.service import OptOutService


def get_service(request: Request) -> OptOutService:
    """Return the service the app was created with."""
    return request.app.state.service
