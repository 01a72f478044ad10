"""
Playback control endpoints — play/pause/speed/seek.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from src.api.models import PlaybackStatus

router = APIRouter(prefix="/api/playback", tags=["playback"])


def _get_controller():
    from src.api.main import app_state
    return app_state["playback"]


@router.get("/status", response_model=PlaybackStatus)
async def playback_status():
    """Get current playback cursor and range."""
    return PlaybackStatus(**_get_controller().status())


@router.post("/play", response_model=PlaybackStatus)
async def play():
    """Start playback (rewinds when the cursor is at the end)."""
    controller = _get_controller()
    if not controller.controls_enabled:
        raise HTTPException(status_code=409, detail="No playable time range loaded")
    controller.play()
    return PlaybackStatus(**controller.status())


@router.post("/pause", response_model=PlaybackStatus)
async def pause():
    """Pause playback."""
    controller = _get_controller()
    controller.pause()
    return PlaybackStatus(**controller.status())


@router.post("/speed", response_model=PlaybackStatus)
async def set_speed(speed: float = Query(..., gt=0)):
    """Set playback speed multiplier (clamped to the configured bounds)."""
    controller = _get_controller()
    controller.set_speed(speed)
    return PlaybackStatus(**controller.status())


@router.post("/seek", response_model=PlaybackStatus)
async def seek(fraction: float = Query(..., description="Position in the range; clamped to [0, 1]")):
    """Jump to a normalized position in the playback range."""
    controller = _get_controller()
    controller.seek(fraction)
    return PlaybackStatus(**controller.status())
