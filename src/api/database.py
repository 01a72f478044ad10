"""
Database layer — PostgreSQL in production, SQLite fallback for local dev.

Reads DATABASE_URL from environment. Falls back to local SQLite when unset.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Float, Integer, String, Text, UniqueConstraint, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

logger = logging.getLogger(__name__)

DB_PATH = Path("data/timeline.db")


class Base(DeclarativeBase):
    pass


class Vessel(Base):
    __tablename__ = "vessels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    mmsi = Column(String, nullable=True)
    origin = Column(String, nullable=True)
    vessel_type = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active")  # "active" | "inactive"
    updated_at = Column(String, nullable=False)  # ISO format


class VesselPosition(Base):
    __tablename__ = "vessel_positions"
    __table_args__ = (UniqueConstraint("vessel_key", "timestamp_utc", name="uq_position_vessel_time"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    vessel_key = Column(String, index=True, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed_kmh = Column(Float, nullable=True)
    speed_knots = Column(Float, nullable=True)
    course = Column(Float, nullable=True)
    timestamp_utc = Column(String, index=True, nullable=False)  # fixed-width ISO


class TimelineFrameRow(Base):
    __tablename__ = "timeline_frames"

    id = Column(Integer, primary_key=True, autoincrement=True)
    frame_index = Column(Integer, unique=True, index=True, nullable=False)
    frame_timestamp = Column(String, unique=True, index=True, nullable=False)  # fixed-width ISO
    vessels_json = Column(Text, nullable=False)
    created_at = Column(Float, nullable=False)  # Unix timestamp


class VesselSnapshotRow(Base):
    __tablename__ = "vessel_snapshots"

    vessel_key = Column(String, primary_key=True)
    snapshot_json = Column(Text, nullable=False)
    updated_at = Column(Float, nullable=False)


class SynthesisRunLog(Base):
    __tablename__ = "synthesis_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mode = Column(String, nullable=False)  # "rebuild" | "incremental" | "noop"
    status = Column(String, nullable=False)  # "ok" | "failed"
    frames_written = Column(Integer, nullable=False, default=0)
    skipped_vessels = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    timestamp = Column(String, nullable=False)


# Engine and session
_engine = None
_SessionLocal = None


def resolve_database_url(database_url: Optional[str] = None) -> str:
    """Explicit URL, else DATABASE_URL, else the local SQLite file."""
    url = database_url or os.environ.get("DATABASE_URL")
    if url:
        # Hosted Postgres often hands out postgres:// but SQLAlchemy requires postgresql://
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        elif url.startswith("sqlite:///") and ":memory:" not in url:
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        return url
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DB_PATH}"


def init_db(database_url: Optional[str] = None) -> sessionmaker:
    """Initialize the database, creating tables if needed.

    Uses DATABASE_URL env var for PostgreSQL when set.
    Falls back to local SQLite otherwise.

    Returns:
        The session factory bound to the new engine.
    """
    global _engine, _SessionLocal

    url = resolve_database_url(database_url)
    if url.startswith("sqlite"):
        _engine = create_engine(url, echo=False)
        logger.info("Database initialized at %s (SQLite)", url)
    else:
        _engine = create_engine(url, echo=False, pool_pre_ping=True)
        logger.info("Database initialized with PostgreSQL")

    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine)
    return _SessionLocal


def log_synthesis_run(
    session_factory: sessionmaker,
    mode: str,
    status: str,
    frames_written: int = 0,
    skipped_vessels: int = 0,
    error: str | None = None,
) -> None:
    """Record the outcome of a synthesizer run."""
    session = session_factory()
    entry = SynthesisRunLog(
        mode=mode,
        status=status,
        frames_written=frames_written,
        skipped_vessels=skipped_vessels,
        error=error,
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%S"),
    )
    session.add(entry)
    session.commit()
    session.close()


def get_synthesis_runs(session_factory: sessionmaker, limit: int = 50, offset: int = 0) -> list[dict]:
    """Get recent synthesizer runs, newest first."""
    session = session_factory()
    runs = (
        session.query(SynthesisRunLog)
        .order_by(SynthesisRunLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    result = [
        {
            "id": r.id,
            "mode": r.mode,
            "status": r.status,
            "frames_written": r.frames_written,
            "skipped_vessels": r.skipped_vessels,
            "error": r.error,
            "timestamp": r.timestamp,
        }
        for r in runs
    ]
    session.close()
    return result
