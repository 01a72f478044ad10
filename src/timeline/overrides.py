"""
Declarative corrections for known-bad telemetry segments.

Each override names a vessel (by id or display name), a time window and a
replacement position. Overrides are applied as a post-filter over the pings
a viewer would see, so adding a correction is a data change in
``config/overrides.yaml`` rather than a code change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import yaml

from src.timeline.types import Ping
from src.utils.logging_config import get_logger
from src.utils.timeutils import to_utc

logger = get_logger("playback.overrides")


@dataclass(frozen=True)
class TelemetryOverride:
    """
    Replacement position for one vessel over ``[window_start, window_end)``.

    Attributes:
        vessel_key: Vessel id or display name the correction applies to
        window_start: Start of the bad segment (inclusive)
        window_end: End of the bad segment (exclusive)
        lat: Replacement latitude
        lon: Replacement longitude
        discard_before: Pings strictly older than this are dropped entirely
        note: Free-text provenance
    """
    vessel_key: str
    window_start: datetime
    window_end: datetime
    lat: float
    lon: float
    discard_before: Optional[datetime] = None
    note: str = ""

    def covers(self, t: datetime) -> bool:
        return self.window_start <= t < self.window_end

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TelemetryOverride":
        window_start = to_utc(record["window_start"])
        window_end = to_utc(record["window_end"])
        if window_end <= window_start:
            raise ValueError(f"Override window for {record['vessel_key']} is empty")
        discard = record.get("discard_before")
        return cls(
            vessel_key=str(record["vessel_key"]),
            window_start=window_start,
            window_end=window_end,
            lat=float(record["lat"]),
            lon=float(record["lon"]),
            discard_before=to_utc(discard) if discard is not None else None,
            note=str(record.get("note", "")),
        )


class OverrideTable:
    """Lookup of telemetry overrides keyed by vessel id or name."""

    def __init__(self, overrides: Iterable[TelemetryOverride] = ()):
        self._by_vessel: dict[str, list[TelemetryOverride]] = {}
        for override in overrides:
            self._by_vessel.setdefault(override.vessel_key, []).append(override)
        for entries in self._by_vessel.values():
            entries.sort(key=lambda o: o.window_start)

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_vessel.values())

    def for_vessel(self, keys: Union[str, Sequence[Optional[str]]]) -> list[TelemetryOverride]:
        if isinstance(keys, str):
            keys = (keys,)
        found: list[TelemetryOverride] = []
        for key in dict.fromkeys(k for k in keys if k):
            found.extend(self._by_vessel.get(key, []))
        return found

    def apply(
        self,
        keys: Union[str, Sequence[Optional[str]]],
        pings: Sequence[Ping],
        query_time: datetime,
    ) -> list[Ping]:
        """
        Apply matching overrides to a vessel's visible pings.

        If ``query_time`` falls inside an override window the visible history
        collapses to a single replacement ping stamped at ``query_time``;
        otherwise pings inside the window are moved to the replacement position.
        """
        result = list(pings)
        for override in self.for_vessel(keys):
            if override.discard_before is not None:
                result = [p for p in result if p.timestamp >= override.discard_before]

            if override.covers(query_time):
                template = result[-1] if result else (pings[-1] if pings else None)
                if template is None:
                    continue
                result = [template.moved_to(override.lat, override.lon, query_time)]
            else:
                result = [
                    p.moved_to(override.lat, override.lon) if override.covers(p.timestamp) else p
                    for p in result
                ]
        return result

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "OverrideTable":
        return cls(TelemetryOverride.from_record(r) for r in records)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "OverrideTable":
        """Load ``overrides:`` entries from a YAML file; a missing file is an empty table."""
        path = Path(path)
        if not path.exists():
            logger.info(f"No override table at {path}")
            return cls()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        table = cls.from_records(data.get("overrides") or [])
        logger.info(f"Loaded {len(table)} telemetry overrides from {path}")
        return table
