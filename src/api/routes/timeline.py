"""
Timeline frame endpoints — range queries and the committed cursor.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from src.api.models import FrameCursorResponse, FrameListResponse, TimelineFrameResponse
from src.utils.timeutils import format_iso, to_utc

router = APIRouter(prefix="/api/timeline", tags=["timeline"])
logger = logging.getLogger(__name__)


def _get_frame_store():
    from src.api.main import app_state
    return app_state["frame_store"]


def _parse_time(value: Optional[str], name: str):
    if value is None:
        return None
    try:
        return to_utc(value)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {e}")


@router.get("/frames", response_model=FrameListResponse)
async def list_frames(
    start_index: int = Query(0, ge=0),
    end_index: Optional[int] = Query(None, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=5000),
):
    """Frames by index range (inclusive), ascending."""
    if end_index is not None and end_index < start_index:
        raise HTTPException(status_code=400, detail="end_index must be >= start_index")
    frames = _get_frame_store().frames_by_index(start_index, end_index, limit)
    return FrameListResponse(count=len(frames), frames=[f.to_dict() for f in frames])


@router.get("/frames/range", response_model=FrameListResponse)
async def frames_in_range(
    start: Optional[str] = Query(None, description="ISO start time (inclusive)"),
    end: Optional[str] = Query(None, description="ISO end time (inclusive)"),
):
    """Frames whose timestamp lies in [start, end], ascending."""
    t_start = _parse_time(start, "start")
    t_end = _parse_time(end, "end")
    if t_start is not None and t_end is not None and t_end < t_start:
        raise HTTPException(status_code=400, detail="end must not precede start")
    frames = _get_frame_store().frames_between(t_start, t_end)
    return FrameListResponse(count=len(frames), frames=[f.to_dict() for f in frames])


@router.get("/frames/at", response_model=TimelineFrameResponse)
async def frame_at(time: str = Query(..., description="ISO timestamp")):
    """Latest frame at or before the given time."""
    frame = _get_frame_store().frame_at(_parse_time(time, "time"))
    if frame is None:
        raise HTTPException(status_code=404, detail=f"No frame at or before {time}")
    return TimelineFrameResponse(**frame.to_dict())


@router.get("/cursor", response_model=FrameCursorResponse)
async def cursor():
    """Index and timestamp of the last committed frame."""
    store = _get_frame_store()
    last = store.last_cursor()
    if last is None:
        return FrameCursorResponse(frame_count=0)
    return FrameCursorResponse(
        frame_count=store.count(),
        frame_index=last.frame_index,
        frame_timestamp=format_iso(last.frame_timestamp),
    )
