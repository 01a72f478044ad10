"""
FrameStore — persisted timeline frames addressable by index and timestamp.

Writes are a single compare-and-append transaction: the last committed
cursor is re-read inside the transaction and must match the cursor the
plan was built from. Frames and the last-known snapshot map are committed
together, so a failed run leaves the previous frame set untouched.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.api.database import TimelineFrameRow, VesselSnapshotRow
from src.timeline.synthesizer import SynthesisPlan
from src.timeline.types import FrameCursor, TimelineFrame, VesselSnapshot
from src.utils.timeutils import format_iso, to_utc

logger = logging.getLogger(__name__)


class FrameStoreError(RuntimeError):
    """A frame store read or write failed; nothing was committed."""


class ConcurrentSynthesisError(FrameStoreError):
    """Another run committed frames after this plan was computed."""


def _chunks(rows: list[dict], size: int) -> Iterator[list[dict]]:
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


class FrameStore:
    """Append-only timeline frame collection backed by SQLAlchemy."""

    def __init__(self, session_factory: sessionmaker, chunk_size: int = 200):
        self._session_factory = session_factory
        self.chunk_size = chunk_size

    # ------------------------------------------------------------- reading

    @staticmethod
    def _row_to_frame(row: TimelineFrameRow) -> TimelineFrame:
        snapshots = tuple(VesselSnapshot.from_dict(v) for v in json.loads(row.vessels_json))
        return TimelineFrame(row.frame_index, to_utc(row.frame_timestamp), snapshots)

    @staticmethod
    def _cursor(session: Session) -> Optional[FrameCursor]:
        row = (
            session.query(TimelineFrameRow.frame_index, TimelineFrameRow.frame_timestamp)
            .order_by(TimelineFrameRow.frame_index.desc())
            .first()
        )
        if row is None:
            return None
        return FrameCursor(row[0], to_utc(row[1]))

    def last_cursor(self) -> Optional[FrameCursor]:
        """Index and timestamp of the last committed frame, or None if empty."""
        session = self._session_factory()
        try:
            return self._cursor(session)
        finally:
            session.close()

    def load_snapshots(self) -> dict[str, VesselSnapshot]:
        """
        Last-known snapshot map persisted by the previous run.

        Falls back to the vessels of the last committed frame when the map
        table is empty (e.g. frames written by an older deployment).
        """
        session = self._session_factory()
        try:
            rows = session.query(VesselSnapshotRow).all()
            if rows:
                return {r.vessel_key: VesselSnapshot.from_dict(json.loads(r.snapshot_json)) for r in rows}

            last = session.query(TimelineFrameRow).order_by(TimelineFrameRow.frame_index.desc()).first()
            if last is None:
                return {}
            return {s.vessel_id: s for s in self._row_to_frame(last).vessel_snapshots}
        finally:
            session.close()

    def count(self) -> int:
        session = self._session_factory()
        try:
            return session.query(TimelineFrameRow).count()
        finally:
            session.close()

    def frames_by_index(
        self,
        start_index: int = 0,
        end_index: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[TimelineFrame]:
        """Frames with ``start_index <= frame_index <= end_index``, ascending."""
        session = self._session_factory()
        try:
            query = session.query(TimelineFrameRow).filter(TimelineFrameRow.frame_index >= start_index)
            if end_index is not None:
                query = query.filter(TimelineFrameRow.frame_index <= end_index)
            query = query.order_by(TimelineFrameRow.frame_index.asc())
            if limit is not None:
                query = query.limit(limit)
            return [self._row_to_frame(r) for r in query.all()]
        finally:
            session.close()

    def frames_between(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[TimelineFrame]:
        """Frames with timestamps in ``[start, end]``, ascending."""
        session = self._session_factory()
        try:
            query = session.query(TimelineFrameRow)
            if start is not None:
                query = query.filter(TimelineFrameRow.frame_timestamp >= format_iso(start))
            if end is not None:
                query = query.filter(TimelineFrameRow.frame_timestamp <= format_iso(end))
            rows = query.order_by(TimelineFrameRow.frame_timestamp.asc()).all()
            return [self._row_to_frame(r) for r in rows]
        finally:
            session.close()

    def frame_at(self, t: datetime) -> Optional[TimelineFrame]:
        """Latest frame at or before ``t``."""
        session = self._session_factory()
        try:
            row = (
                session.query(TimelineFrameRow)
                .filter(TimelineFrameRow.frame_timestamp <= format_iso(t))
                .order_by(TimelineFrameRow.frame_timestamp.desc())
                .first()
            )
            return self._row_to_frame(row) if row is not None else None
        finally:
            session.close()

    # ------------------------------------------------------------- writing

    def commit(self, plan: SynthesisPlan) -> int:
        """
        Atomically append (or, on rebuild, replace) frames and the snapshot map.

        Returns:
            Number of frames written (0 for a no-op plan; nothing is touched)

        Raises:
            ConcurrentSynthesisError: the committed cursor moved since planning
            FrameStoreError: the database rejected the write
        """
        if plan.is_noop:
            return 0

        session = self._session_factory()
        try:
            current = self._cursor(session)
            if current != plan.base_cursor:
                raise ConcurrentSynthesisError(
                    f"Frame cursor moved from {plan.base_cursor} to {current}; rerun synthesis"
                )

            if plan.rebuild:
                cleared = session.query(TimelineFrameRow).delete()
                logger.info("Rebuild: cleared %d existing frames", cleared)

            now = time.time()
            rows = [
                {
                    "frame_index": f.frame_index,
                    "frame_timestamp": format_iso(f.frame_timestamp),
                    "vessels_json": json.dumps([s.to_dict() for s in f.vessel_snapshots]),
                    "created_at": now,
                }
                for f in plan.frames
            ]
            for chunk in _chunks(rows, self.chunk_size):
                session.execute(insert(TimelineFrameRow), chunk)

            # The plan carries the full map, so replace rather than merge
            session.query(VesselSnapshotRow).delete()
            snapshot_rows = [
                {"vessel_key": key, "snapshot_json": json.dumps(s.to_dict()), "updated_at": now}
                for key, s in plan.snapshots.items()
            ]
            for chunk in _chunks(snapshot_rows, self.chunk_size):
                session.execute(insert(VesselSnapshotRow), chunk)

            session.commit()
        except ConcurrentSynthesisError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            raise FrameStoreError(f"Failed to commit {len(plan.frames)} frames: {e}") from e
        finally:
            session.close()

        logger.info(
            "Committed %d frames (indices %d-%d)",
            len(plan.frames), plan.frames[0].frame_index, plan.frames[-1].frame_index,
        )
        return len(plan.frames)
