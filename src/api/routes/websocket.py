"""
WebSocket endpoint — broadcasts the per-vessel view to all connected clients.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.timeline.status_classifier import VesselView

router = APIRouter(tags=["websocket"])
logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections and broadcasts playback updates."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info("WebSocket connected (%d total)", len(self.active_connections))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        logger.info("WebSocket disconnected (%d total)", len(self.active_connections))

    async def broadcast(self, message: dict[str, Any]) -> None:
        """Send JSON message to all connected clients."""
        if not self.active_connections:
            return

        data = json.dumps(message)
        disconnected = []
        for conn in self.active_connections:
            try:
                await conn.send_text(data)
            except Exception:
                logger.debug("Dropping WebSocket after failed send", exc_info=True)
                disconnected.append(conn)

        for conn in disconnected:
            self.disconnect(conn)

    @property
    def count(self) -> int:
        return len(self.active_connections)


# Singleton connection manager
manager = ConnectionManager()


def get_manager() -> ConnectionManager:
    return manager


@router.websocket("/api/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for playback updates.

    Clients receive a message on each playback tick:
    {
        "type": "view",
        "playback": {"query_time": "2025-09-04T08:40:00.000000Z", "playing": true, ...},
        "status_counts": {"sailing": 12, "completed": 3},
        "vessels": [
            {"vessel_id": "17", "name": "Alma", "status": "sailing", "latest_position": {...}, ...},
            ...
        ]
    }
    """
    await manager.connect(websocket)
    try:
        while True:
            data = await websocket.receive_text()
            # Clients can send {"type": "ping"} as a keepalive
            try:
                msg = json.loads(data)
                if msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
            except (json.JSONDecodeError, AttributeError):
                pass
    except WebSocketDisconnect:
        manager.disconnect(websocket)


def build_view_message(views: list[VesselView], playback_status: dict) -> dict:
    return {
        "type": "view",
        "playback": playback_status,
        "status_counts": dict(Counter(v.status.value for v in views)),
        "vessels": [v.to_dict() for v in views],
    }


async def broadcast_view(views: list[VesselView]) -> None:
    """
    Callback for PlaybackController — broadcasts the view to all WebSocket clients.
    Called once per playback tick.
    """
    if not manager.count:
        return

    from src.api.main import app_state
    controller = app_state.get("playback")
    status = controller.status() if controller is not None else {}
    await manager.broadcast(build_view_message(views, status))
