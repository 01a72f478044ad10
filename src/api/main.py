"""
FastAPI Application — Flotilla Timeline Backend.

Serves REST API + WebSocket for the vessel timeline dashboard.
In production mode, also serves the built frontend static files.
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.database import init_db
from src.api.frame_store import FrameStore
from src.api.ingestion import IngestionService
from src.api.models import HealthResponse
from src.api.position_store import PositionStore
from src.api.synthesis_service import SynthesisService
from src.timeline.overrides import OverrideTable
from src.timeline.playback import PlaybackController
from src.timeline.status_classifier import StatusClassifier
from src.timeline.synthesizer import FrameSynthesizer
from src.utils.config_loader import APIConfig, Config

logger = logging.getLogger(__name__)

# Global app state (accessed by route modules)
app_state: dict = {}


def _config_dir() -> Path:
    return Path(os.environ.get("CONFIG_DIR", "config"))


def read_playback_inputs() -> tuple[dict, dict]:
    """Pings and display names for the playback controller. Blocking DB read."""
    store: PositionStore = app_state["position_store"]
    names = {key: meta.name for key, meta in store.vessel_meta().items() if meta.name}
    return store.pings_by_vessel(), names


def reload_playback(inputs: tuple[dict, dict] | None = None) -> None:
    """Reload the playback controller, reading the position store unless inputs are given."""
    pings, names = inputs if inputs is not None else read_playback_inputs()
    controller: PlaybackController = app_state["playback"]
    controller.load(pings, names)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open stores and start services on startup, clean up on shutdown."""
    from dotenv import load_dotenv
    load_dotenv()

    t0 = time.perf_counter()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    config = Config(_config_dir()).load_all()
    app_state["config"] = config

    # DATABASE_URL env var takes precedence over api.yaml
    session_factory = init_db(os.environ.get("DATABASE_URL") or config.api.database_url)
    app_state["session_factory"] = session_factory

    position_store = PositionStore(session_factory, batch_size=config.feed.position_batch_size)
    frame_store = FrameStore(session_factory, chunk_size=config.synthesizer.frame_insert_chunk)
    app_state["position_store"] = position_store
    app_state["frame_store"] = frame_store

    app_state["ingestion_service"] = IngestionService(position_store, config.feed)
    app_state["synthesis_service"] = SynthesisService(
        frame_store,
        position_store,
        FrameSynthesizer(config.synthesizer),
        session_factory=session_factory,
    )

    overrides = OverrideTable.load(config.overrides_path)
    logger.info("Loaded %d telemetry overrides from %s", len(overrides), config.overrides_path)
    classifier = StatusClassifier(config.classifier, overrides)

    controller = PlaybackController(config.playback, classifier)
    app_state["playback"] = controller
    reload_playback()

    # Register WebSocket broadcast callback
    from src.api.routes.websocket import broadcast_view
    controller.on_tick(broadcast_view)

    # Synthesize at startup only when explicitly enabled; POST /api/ingestion/run otherwise
    if os.environ.get("SYNTHESIZE_ON_STARTUP", "false").lower() == "true":
        result = app_state["synthesis_service"].run()
        logger.info("Startup synthesis (%s): %d frames", result["mode"], result["frames_written"])

    elapsed = time.perf_counter() - t0
    logger.info("Backend ready in %.2fs — %d vessels, %d frames",
                elapsed, len(controller.vessel_ids), frame_store.count())

    yield

    # Shutdown
    await controller.stop()
    logger.info("Backend shut down")


app = FastAPI(
    title="Flotilla Timeline API",
    description="Vessel timeline synthesis, status classification and playback",
    version="0.1.0",
    lifespan=lifespan,
)

_api_config: APIConfig = Config(_config_dir()).load_config("api.yaml", APIConfig)
if _api_config.enable_cors:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_api_config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Register routes
from src.api.routes.timeline import router as timeline_router
from src.api.routes.playback import router as playback_router
from src.api.routes.vessels import router as vessels_router
from src.api.routes.ingestion import router as ingestion_router
from src.api.routes.websocket import router as ws_router

app.include_router(timeline_router)
app.include_router(playback_router)
app.include_router(vessels_router)
app.include_router(ingestion_router)
app.include_router(ws_router)


@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    controller = app_state.get("playback")
    frame_store = app_state.get("frame_store")
    return {
        "status": "ok",
        "vessels_loaded": len(controller.vessel_ids) if controller else 0,
        "frame_count": frame_store.count() if frame_store else 0,
        "playback_enabled": controller.controls_enabled if controller else False,
    }
