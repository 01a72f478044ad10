"""
Domain types for the timeline pipeline.

Classes:
    StatusLabel: Derived operational status of a vessel at a point in time
    Ping: A single timestamped position report
    VesselSnapshot: A vessel's position as recorded inside a timeline frame
    TimelineFrame: A synthesized snapshot of all known vessels
    FrameCursor: Index/timestamp of the last committed frame
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from src.utils.timeutils import format_iso, to_utc

_TIMESTAMP_KEYS = ("timestamp", "timestamp_utc", "t")
_LAT_KEYS = ("lat", "latitude")
_LON_KEYS = ("lon", "lng", "longitude")


class StatusLabel(str, Enum):
    """Operational status derived from ping history. Never persisted."""
    PREPARING = "preparing"
    ACTIVE = "active"
    SAILING = "sailing"
    COMPLETED = "completed"
    NO_DATA = "no-data"


def _first_present(payload: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def _coordinate(value: Any, name: str, limit: float) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f"Missing {name}")
    if isinstance(value, bool):
        raise TypeError(f"Invalid {name}: {value!r}")
    coord = float(value)
    if not math.isfinite(coord) or abs(coord) > limit:
        raise ValueError(f"{name} out of range: {coord}")
    return coord


def _optional_float(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class Ping:
    """
    A single position report for one vessel.

    Attributes:
        vessel_id: Stable vessel key
        lat: Latitude (degrees)
        lon: Longitude (degrees)
        timestamp: Report time (aware UTC)
        speed_kmh: Speed over ground in km/h, if reported
        speed_knots: Speed over ground in knots, if reported
        course: Course over ground in degrees, if reported
    """
    vessel_id: str
    lat: float
    lon: float
    timestamp: datetime
    speed_kmh: Optional[float] = None
    speed_knots: Optional[float] = None
    course: Optional[float] = None

    @classmethod
    def from_payload(cls, vessel_id: str, payload: Mapping[str, Any]) -> "Ping":
        """
        Build a Ping from a feed/position mapping.

        Accepts ``timestamp``/``timestamp_utc``/``t``, ``lat``/``latitude`` and
        ``lon``/``lng``/``longitude`` keys.

        Raises:
            ValueError, TypeError: if position or timestamp are unusable
        """
        if not isinstance(payload, Mapping):
            raise TypeError(f"Position payload must be a mapping, got {type(payload).__name__}")

        raw_ts = _first_present(payload, _TIMESTAMP_KEYS)
        if raw_ts is None:
            raise ValueError("Missing timestamp")

        return cls(
            vessel_id=str(payload.get("vessel_id") or vessel_id),
            lat=_coordinate(_first_present(payload, _LAT_KEYS), "latitude", 90.0),
            lon=_coordinate(_first_present(payload, _LON_KEYS), "longitude", 180.0),
            timestamp=to_utc(raw_ts),
            speed_kmh=_optional_float(payload.get("speed_kmh")),
            speed_knots=_optional_float(payload.get("speed_knots")),
            course=_optional_float(payload.get("course")),
        )

    def moved_to(self, lat: float, lon: float, timestamp: Optional[datetime] = None) -> "Ping":
        """Copy of this ping at a different position (and optionally time)."""
        return replace(self, lat=lat, lon=lon, timestamp=timestamp or self.timestamp)

    def to_dict(self) -> dict:
        return {
            "vessel_id": self.vessel_id,
            "lat": self.lat,
            "lon": self.lon,
            "speed_kmh": self.speed_kmh,
            "speed_knots": self.speed_knots,
            "course": self.course,
            "timestamp": format_iso(self.timestamp),
        }


def coerce_ping(value: Any, vessel_id: str = "") -> Ping:
    """
    Return ``value`` as a Ping, parsing mappings with ``Ping.from_payload``.

    Ping instances built by hand may carry naive or string timestamps; those
    are normalized to aware UTC like parsed payloads.
    """
    if isinstance(value, Ping):
        ts = value.timestamp
        if isinstance(ts, datetime) and ts.tzinfo is timezone.utc:
            return value
        return replace(value, timestamp=to_utc(ts))
    return Ping.from_payload(vessel_id, value)


@dataclass(frozen=True)
class VesselSnapshot:
    """A vessel's position inside a frame: observed or carried forward."""
    vessel_id: str
    name: str
    lat: float
    lon: float
    course: Optional[float] = None
    origin: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "vessel_id": self.vessel_id,
            "name": self.name,
            "lat": self.lat,
            "lon": self.lon,
            "course": self.course,
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VesselSnapshot":
        return cls(
            vessel_id=str(data["vessel_id"]),
            name=str(data.get("name") or data["vessel_id"]),
            lat=float(data["lat"]),
            lon=float(data["lon"]),
            course=_optional_float(data.get("course")),
            origin=data.get("origin"),
        )


@dataclass(frozen=True)
class TimelineFrame:
    """One synthesized point on the playback timeline."""
    frame_index: int
    frame_timestamp: datetime
    vessel_snapshots: tuple[VesselSnapshot, ...] = field(default_factory=tuple)

    @property
    def vessel_ids(self) -> set[str]:
        return {s.vessel_id for s in self.vessel_snapshots}

    def to_dict(self) -> dict:
        return {
            "frame_index": self.frame_index,
            "frame_timestamp": format_iso(self.frame_timestamp),
            "vessel_snapshots": [s.to_dict() for s in self.vessel_snapshots],
        }


@dataclass(frozen=True)
class FrameCursor:
    """Position of the last committed frame; the cutover for incremental runs."""
    frame_index: int
    frame_timestamp: datetime
