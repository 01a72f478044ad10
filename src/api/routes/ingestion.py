"""
Ingestion endpoints — pull the vessel feed, run the synthesizer, inspect runs.

Feed fetches, synthesis and store reads block, so they run in worker threads;
the playback controller is only touched from the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query

from src.api.database import get_synthesis_runs
from src.api.frame_store import ConcurrentSynthesisError, FrameStoreError
from src.api.ingestion import FeedUnavailableError
from src.api.models import IngestionRunResponse, SynthesisRunLogEntry, SynthesisRunResponse
from src.api.synthesis_service import SynthesisInProgressError

router = APIRouter(prefix="/api/ingestion", tags=["ingestion"])
logger = logging.getLogger(__name__)


async def _synthesize() -> dict:
    from src.api.main import app_state, read_playback_inputs, reload_playback
    try:
        result = await asyncio.to_thread(app_state["synthesis_service"].run)
    except (SynthesisInProgressError, ConcurrentSynthesisError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except FrameStoreError as e:
        logger.exception("Frame commit failed")
        raise HTTPException(status_code=500, detail=str(e))
    reload_playback(await asyncio.to_thread(read_playback_inputs))
    return result


@router.post("/run", response_model=IngestionRunResponse)
async def run_ingestion():
    """Fetch the upstream feed, store new pings and append timeline frames."""
    from src.api.main import app_state
    try:
        ingestion = await asyncio.to_thread(app_state["ingestion_service"].run)
    except FeedUnavailableError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return IngestionRunResponse(ingestion=ingestion, synthesis=await _synthesize())


@router.post("/synthesize", response_model=SynthesisRunResponse)
async def run_synthesis():
    """Run the synthesizer over already-stored pings."""
    return SynthesisRunResponse(**await _synthesize())


@router.get("/status")
async def ingestion_status():
    """Return ingestion counters and whether a synthesizer run is active."""
    from src.api.main import app_state
    status = app_state["ingestion_service"].get_status()
    status["synthesis_running"] = app_state["synthesis_service"].running
    return status


@router.get("/runs", response_model=List[SynthesisRunLogEntry])
async def synthesis_runs(limit: int = Query(50, ge=1, le=500), offset: int = Query(0, ge=0)):
    """Recent synthesizer runs, newest first."""
    from src.api.main import app_state
    return get_synthesis_runs(app_state["session_factory"], limit=limit, offset=offset)
