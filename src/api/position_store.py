"""
PositionStore — append-only per-vessel ping history.

Vessel identity rows are upserted on every ingest; pings are inserted only
when their (vessel, timestamp) pair is not already stored, so re-ingesting
an overlapping feed history is harmless.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import insert, true
from sqlalchemy.orm import Session, sessionmaker

from src.api.database import Vessel, VesselPosition
from src.timeline.synthesizer import VesselMeta
from src.timeline.types import Ping
from src.utils.timeutils import format_iso, to_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VesselRecord:
    """Identity of a vessel as reported by the upstream feed."""
    feed_id: str
    name: str
    mmsi: Optional[str] = None
    origin: Optional[str] = None
    vessel_type: Optional[str] = None


class PositionStore:
    """SQLAlchemy-backed vessel and ping storage."""

    def __init__(self, session_factory: sessionmaker, batch_size: int = 100):
        self._session_factory = session_factory
        self.batch_size = batch_size

    # ------------------------------------------------------------- writing

    @staticmethod
    def _upsert_vessel(session: Session, record: VesselRecord, now_iso: str) -> None:
        vessel = session.query(Vessel).filter_by(feed_id=record.feed_id).first()
        if vessel is None:
            vessel = Vessel(feed_id=record.feed_id)
            session.add(vessel)
        vessel.name = record.name
        vessel.mmsi = record.mmsi
        vessel.origin = record.origin
        vessel.vessel_type = record.vessel_type
        vessel.status = "active"
        vessel.updated_at = now_iso

    def _append_pings(self, session: Session, vessel_key: str, pings: Iterable[Ping]) -> int:
        existing = {
            row[0]
            for row in session.query(VesselPosition.timestamp_utc).filter_by(vessel_key=vessel_key)
        }
        rows: list[dict] = []
        for ping in pings:
            ts = format_iso(ping.timestamp)
            if ts in existing:
                continue
            existing.add(ts)
            rows.append({
                "vessel_key": vessel_key,
                "latitude": ping.lat,
                "longitude": ping.lon,
                "speed_kmh": ping.speed_kmh,
                "speed_knots": ping.speed_knots,
                "course": ping.course,
                "timestamp_utc": ts,
            })

        for i in range(0, len(rows), self.batch_size):
            session.execute(insert(VesselPosition), rows[i:i + self.batch_size])
        return len(rows)

    def store_group(self, group: list[tuple[VesselRecord, list[Ping]]]) -> int:
        """
        Upsert a group of vessels and append their new pings in one transaction.

        Returns:
            Number of pings inserted
        """
        session = self._session_factory()
        now_iso = time.strftime("%Y-%m-%dT%H:%M:%S")
        try:
            inserted = 0
            for record, pings in group:
                self._upsert_vessel(session, record, now_iso)
                inserted += self._append_pings(session, record.feed_id, pings)
            session.commit()
            return inserted
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def deactivate_missing(self, active_keys: set[str]) -> int:
        """Mark vessels absent from the latest feed as inactive. Pings are kept."""
        session = self._session_factory()
        try:
            stale = (
                session.query(Vessel)
                .filter(Vessel.status == "active")
                .filter(Vessel.feed_id.notin_(active_keys) if active_keys else true())
                .all()
            )
            for vessel in stale:
                vessel.status = "inactive"
                vessel.updated_at = time.strftime("%Y-%m-%dT%H:%M:%S")
            session.commit()
        finally:
            session.close()
        if stale:
            logger.info("Deactivated %d vessels missing from the feed", len(stale))
        return len(stale)

    # ------------------------------------------------------------- reading

    def pings_by_vessel(self, after: Optional[datetime] = None) -> dict[str, list[Ping]]:
        """All stored pings grouped by vessel, ascending; optionally only after a cutover."""
        session = self._session_factory()
        try:
            query = session.query(VesselPosition)
            if after is not None:
                query = query.filter(VesselPosition.timestamp_utc > format_iso(after))
            rows = query.order_by(VesselPosition.vessel_key, VesselPosition.timestamp_utc).all()

            grouped: dict[str, list[Ping]] = {}
            for r in rows:
                grouped.setdefault(r.vessel_key, []).append(
                    Ping(
                        vessel_id=r.vessel_key,
                        lat=r.latitude,
                        lon=r.longitude,
                        timestamp=to_utc(r.timestamp_utc),
                        speed_kmh=r.speed_kmh,
                        speed_knots=r.speed_knots,
                        course=r.course,
                    )
                )
            return grouped
        finally:
            session.close()

    def vessel_meta(self) -> dict[str, VesselMeta]:
        session = self._session_factory()
        try:
            return {v.feed_id: VesselMeta(name=v.name, origin=v.origin) for v in session.query(Vessel).all()}
        finally:
            session.close()

    def vessel_summaries(self) -> list[dict]:
        session = self._session_factory()
        try:
            return [
                {
                    "feed_id": v.feed_id,
                    "name": v.name,
                    "mmsi": v.mmsi,
                    "origin": v.origin,
                    "vessel_type": v.vessel_type,
                    "status": v.status,
                    "updated_at": v.updated_at,
                }
                for v in session.query(Vessel).order_by(Vessel.name).all()
            ]
        finally:
            session.close()
