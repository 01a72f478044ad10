"""
Vessel Status Classification.

Derives a vessel's operational status at an arbitrary query time from its
ping history, and the position history a viewer should see at that time.

Rules (evaluated in order):
    - no pings                         -> no-data
    - query_time before first ping     -> preparing
    - query_time after last ping       -> completed if the last ping is within
                                          the arrival radius of the destination,
                                          sailing otherwise
    - otherwise                        -> active (position = latest ping at or
                                          before query_time)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence

from src.timeline.overrides import OverrideTable
from src.timeline.types import Ping, StatusLabel, coerce_ping
from src.utils.config_loader import ClassifierConfig
from src.utils.geo import DISTANCE_METHODS, equirectangular_km
from src.utils.logging_config import get_logger
from src.utils.timeutils import format_iso, to_utc

logger = get_logger("playback.classifier")

# Gaza coastline, the mission destination
DEFAULT_DESTINATION = (31.3547, 34.3088)
DEFAULT_PROXIMITY_RADIUS_KM = 50.0

DistanceFn = Callable[[float, float, float, float], float]


def normalize_pings(pings: Iterable[Any], vessel_id: str = "") -> list[Ping]:
    """Coerce and sort pings by timestamp. Raises on malformed entries."""
    return sorted((coerce_ping(p, vessel_id) for p in pings), key=lambda p: p.timestamp)


def classify(
    pings: Iterable[Any],
    query_time: Any,
    destination_point: Sequence[float] = DEFAULT_DESTINATION,
    proximity_radius: float = DEFAULT_PROXIMITY_RADIUS_KM,
    distance: DistanceFn = equirectangular_km,
) -> StatusLabel:
    """
    Classify a vessel's status at ``query_time``.

    Pure and deterministic: reads no clock and never raises. Input that
    cannot be interpreted yields ``StatusLabel.NO_DATA``.

    Args:
        pings: Ping objects or mappings with timestamp/lat/lon keys
        query_time: Point in time to classify at
        destination_point: (lat, lon) of the mission destination
        proximity_radius: Arrival radius in km
        distance: Distance function (lat1, lon1, lat2, lon2) -> km

    Example:
        >>> classify([], "2025-09-01T10:00Z")
        <StatusLabel.NO_DATA: 'no-data'>
    """
    try:
        ordered = normalize_pings(pings)
        t = to_utc(query_time)
        dest_lat, dest_lon = float(destination_point[0]), float(destination_point[1])
        radius = float(proximity_radius)
    except (TypeError, ValueError, IndexError, KeyError) as e:
        logger.debug(f"Unclassifiable input: {e}")
        return StatusLabel.NO_DATA

    if not ordered:
        return StatusLabel.NO_DATA

    first, last = ordered[0], ordered[-1]
    if t < first.timestamp:
        return StatusLabel.PREPARING

    if t > last.timestamp:
        try:
            km = distance(last.lat, last.lon, dest_lat, dest_lon)
        except (TypeError, ValueError) as e:
            logger.debug(f"Distance computation failed: {e}")
            return StatusLabel.NO_DATA
        return StatusLabel.COMPLETED if km <= radius else StatusLabel.SAILING

    return StatusLabel.ACTIVE


def visible_pings(pings: Sequence[Ping], query_time: datetime) -> list[Ping]:
    """Pings at or before ``query_time`` (``pings`` must already be sorted)."""
    return [p for p in pings if p.timestamp <= query_time]


def visible_position(pings: Sequence[Ping], query_time: datetime) -> Optional[Ping]:
    """Latest ping at or before ``query_time``; never interpolated or future."""
    visible = visible_pings(pings, query_time)
    return visible[-1] if visible else None


@dataclass
class VesselView:
    """Derived per-vessel state at one query time, consumed by rendering."""
    vessel_id: str
    name: str
    status: StatusLabel
    visible_pings: list[Ping] = field(default_factory=list)
    latest_position: Optional[Ping] = None
    is_spawning: bool = False

    def to_dict(self) -> dict:
        latest = self.latest_position
        return {
            "vessel_id": self.vessel_id,
            "name": self.name,
            "status": self.status.value,
            "visible_pings": [p.to_dict() for p in self.visible_pings],
            "latest_position": latest.to_dict() if latest else None,
            "is_spawning": self.is_spawning,
            "timestamp": format_iso(latest.timestamp) if latest else None,
        }


class StatusClassifier:
    """
    Configured classifier with the override post-filter.

    Wraps ``classify`` with the destination/radius from ``ClassifierConfig``
    and builds the per-vessel view the playback controller emits each tick.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        overrides: Optional[OverrideTable] = None,
    ):
        self.config = config or ClassifierConfig()
        self.overrides = overrides or OverrideTable()
        self._distance = DISTANCE_METHODS[self.config.distance_method]

    @property
    def destination(self) -> tuple[float, float]:
        return (self.config.destination_lat, self.config.destination_lon)

    def classify(self, pings: Iterable[Any], query_time: Any) -> StatusLabel:
        return classify(
            pings,
            query_time,
            destination_point=self.destination,
            proximity_radius=self.config.proximity_radius_km,
            distance=self._distance,
        )

    def describe(
        self,
        vessel_id: str,
        pings: Iterable[Any],
        query_time: datetime,
        name: Optional[str] = None,
    ) -> VesselView:
        """Status, visible history, latest position and spawn flag for one vessel."""
        name = name or vessel_id
        query_time = to_utc(query_time)
        try:
            ordered = normalize_pings(pings, vessel_id)
        except (TypeError, ValueError) as e:
            logger.warning(f"Vessel {vessel_id} has malformed pings: {e}")
            return VesselView(vessel_id, name, StatusLabel.NO_DATA)

        status = self.classify(ordered, query_time)
        if status in (StatusLabel.NO_DATA, StatusLabel.PREPARING):
            return VesselView(vessel_id, name, status)

        visible = visible_pings(ordered, query_time)
        visible = self.overrides.apply((vessel_id, name), visible, query_time)

        spawn_window = timedelta(minutes=self.config.spawn_window_minutes)
        is_spawning = status is StatusLabel.ACTIVE and abs(query_time - ordered[0].timestamp) <= spawn_window

        return VesselView(
            vessel_id=vessel_id,
            name=name,
            status=status,
            visible_pings=visible,
            latest_position=visible[-1] if visible else None,
            is_spawning=is_spawning,
        )
