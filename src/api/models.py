"""
Pydantic response schemas for the flotilla timeline API.
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class StatusEnum(str, Enum):
    PREPARING = "preparing"
    ACTIVE = "active"
    SAILING = "sailing"
    COMPLETED = "completed"
    NO_DATA = "no-data"


class PingModel(BaseModel):
    vessel_id: str
    lat: float
    lon: float
    timestamp: str
    speed_kmh: Optional[float] = None
    speed_knots: Optional[float] = None
    course: Optional[float] = None


class VesselSnapshotModel(BaseModel):
    vessel_id: str
    name: str
    lat: float
    lon: float
    course: Optional[float] = None
    origin: Optional[str] = None


class TimelineFrameResponse(BaseModel):
    frame_index: int
    frame_timestamp: str
    vessel_snapshots: List[VesselSnapshotModel] = []


class FrameListResponse(BaseModel):
    count: int
    frames: List[TimelineFrameResponse] = []


class FrameCursorResponse(BaseModel):
    frame_count: int
    frame_index: Optional[int] = None
    frame_timestamp: Optional[str] = None


class PlaybackStatus(BaseModel):
    query_time: Optional[str] = None
    playing: bool
    playback_speed: float
    dragging: bool
    range_start: str
    range_end: str
    controls_enabled: bool
    progress: float


class VesselViewResponse(BaseModel):
    vessel_id: str
    name: str
    status: StatusEnum
    is_spawning: bool = False
    latest_position: Optional[PingModel] = None
    visible_pings: List[PingModel] = []


class FleetViewResponse(BaseModel):
    query_time: str
    status_counts: dict[str, int] = {}
    vessels: List[VesselViewResponse] = []


class SynthesisRunResponse(BaseModel):
    mode: str
    frames_written: int
    skipped_vessels: List[str] = []
    candidate_timestamps: int = 0
    last_frame_index: Optional[int] = None
    last_frame_timestamp: Optional[str] = None


class IngestionResultResponse(BaseModel):
    vessels: int
    pings_inserted: int
    skipped_vessels: List[str] = []
    deactivated: int = 0


class IngestionRunResponse(BaseModel):
    ingestion: IngestionResultResponse
    synthesis: SynthesisRunResponse


class SynthesisRunLogEntry(BaseModel):
    id: int
    mode: str
    status: str
    frames_written: int
    skipped_vessels: int
    error: Optional[str] = None
    timestamp: str


class VesselSummary(BaseModel):
    feed_id: str
    name: str
    mmsi: Optional[str] = None
    origin: Optional[str] = None
    vessel_type: Optional[str] = None
    status: str
    updated_at: str


class HealthResponse(BaseModel):
    status: str
    vessels_loaded: int
    frame_count: int
    playback_enabled: bool
