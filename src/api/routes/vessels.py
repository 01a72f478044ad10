"""
Vessel endpoints — classified per-vessel view at a query time.
"""

from __future__ import annotations

from collections import Counter
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from src.api.models import FleetViewResponse, VesselSummary
from src.utils.timeutils import format_iso, to_utc

router = APIRouter(prefix="/api/vessels", tags=["vessels"])


def _get_controller():
    from src.api.main import app_state
    return app_state["playback"]


@router.get("/view", response_model=FleetViewResponse)
async def vessel_view(time: Optional[str] = Query(None, description="ISO query time; defaults to the playback cursor")):
    """Status, visible history and latest position of every vessel."""
    controller = _get_controller()
    if time is not None:
        try:
            query_time = to_utc(time)
        except (TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid time: {e}")
    else:
        query_time = controller.query_time or controller.time_range.end

    views = controller.view(query_time)
    counts = Counter(v.status.value for v in views)
    return FleetViewResponse(
        query_time=format_iso(query_time),
        status_counts=dict(counts),
        vessels=[v.to_dict() for v in views],
    )


@router.get("", response_model=List[VesselSummary])
async def list_vessels():
    """Known vessels with their feed identity and active flag."""
    from src.api.main import app_state
    return [VesselSummary(**v) for v in app_state["position_store"].vessel_summaries()]
