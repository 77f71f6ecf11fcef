"""WebSocket endpoint for live run and recording events.

* ``/ws/events``: read-only stream of every ``EventBus`` event (progress,
  completion, recording start/stop, errors). The client first receives a
  snapshot of the current run, then live events.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from optout.monitoring.event_bus import Event, EventSink
from optout.service import OptOutService

logger = logging.getLogger(__name__)

ws_router = APIRouter(tags=["websocket"])

KEEPALIVE_SEC = 30.0


# ---------------------------------------------------------------------------
# WebSocket sink: bridges events to a single WebSocket connection
# ---------------------------------------------------------------------------


class WebSocketSink(EventSink):
    """Forwards events to a WebSocket client."""

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._closed = False

    async def handle_event(self, event: Event) -> None:
        """Send event JSON to the WebSocket client."""
        if self._closed:
            return
        try:
            await self._ws.send_text(event.to_jsonl())
        except Exception:
            self._closed = True

    @property
    def closed(self) -> bool:
        """Whether the WebSocket connection has been closed."""
        return self._closed


def _snapshot(service: OptOutService) -> dict:
    run = service.runs.current_run
    if run is None:
        return {"run_id": None, "status": service.runs.status().value, "recording": service.recorder.active}
    return {
        "run_id": run.run_id,
        "status": run.status.value,
        "pending_action": run.pending_action.model_dump(mode="json") if run.pending_action else None,
        "recording": service.recorder.active,
    }


@ws_router.websocket("/ws/events")
async def ws_events(websocket: WebSocket) -> None:
    """Stream engine events to a WebSocket client until it disconnects."""
    await websocket.accept()

    service: OptOutService = websocket.app.state.service
    await websocket.send_json({"type": "snapshot", "data": _snapshot(service)})

    sink = WebSocketSink(websocket)
    service.bus.add_sink(sink)

    try:
        while True:
            try:
                msg = await asyncio.wait_for(websocket.receive_text(), timeout=KEEPALIVE_SEC)
                if msg == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                try:
                    await websocket.send_json({"type": "keepalive"})
                except Exception:
                    break
    except WebSocketDisconnect:
        pass
    finally:
        service.bus.remove_sink(sink)
        logger.debug("Event stream client disconnected")
