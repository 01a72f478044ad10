"""
Timeline Frame Synthesis.

Turns irregular per-vessel ping streams into an ordered, gapless sequence of
timeline frames for scrubbing and playback. The synthesizer is pure: it
receives the last committed cursor and the last-known snapshot map, and
returns a plan that the caller commits atomically.

Classes:
    VesselMeta: Display metadata carried into snapshots
    SynthesisPlan: Frames and snapshot map produced by one run
    FrameSynthesizer: Adaptive sampling + forward-fill frame builder
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional

import numpy as np

from src.timeline.types import FrameCursor, Ping, TimelineFrame, VesselSnapshot, coerce_ping
from src.utils.config_loader import SynthesizerConfig
from src.utils.logging_config import get_logger
from src.utils.timeutils import to_epoch_us, to_utc

logger = get_logger("synthesizer.frames")


@dataclass(frozen=True)
class VesselMeta:
    """Display metadata copied into every snapshot of a vessel."""
    name: Optional[str] = None
    origin: Optional[str] = None


@dataclass
class SynthesisPlan:
    """
    Output of one synthesizer run.

    Attributes:
        frames: New frames, ascending by index and timestamp
        snapshots: Updated last-known snapshot map (full map, not a delta)
        rebuild: True if the frame set must be replaced rather than extended
        base_cursor: Cursor the plan was computed against
        skipped_vessels: Vessel keys whose payload was malformed
    """
    frames: list[TimelineFrame]
    snapshots: dict[str, VesselSnapshot]
    rebuild: bool
    base_cursor: Optional[FrameCursor]
    skipped_vessels: list[str] = field(default_factory=list)
    candidate_count: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.frames

    @property
    def last_cursor(self) -> Optional[FrameCursor]:
        if not self.frames:
            return self.base_cursor
        last = self.frames[-1]
        return FrameCursor(last.frame_index, last.frame_timestamp)


class _VesselSeries:
    """Sorted, de-duplicated pings of one vessel with a searchable time axis."""

    def __init__(self, vessel_id: str, pings: list[Ping]):
        by_time: dict[datetime, Ping] = {}
        for ping in pings:
            by_time[ping.timestamp] = ping  # later duplicates win
        self.vessel_id = vessel_id
        self.pings = [by_time[t] for t in sorted(by_time)]
        self.times_us = np.array([to_epoch_us(p.timestamp) for p in self.pings], dtype=np.int64)

    @property
    def timestamps(self) -> list[datetime]:
        return [p.timestamp for p in self.pings]

    def nearest(self, target: datetime, tolerance_us: int) -> Optional[Ping]:
        """
        Ping closest to ``target`` within ±tolerance.

        An exact match always wins; between two equally distant pings the
        earlier one is chosen.
        """
        if len(self.pings) == 0:
            return None

        target_us = to_epoch_us(target)
        idx = int(np.searchsorted(self.times_us, target_us, side="left"))

        if idx < len(self.pings) and self.times_us[idx] == target_us:
            return self.pings[idx]

        best: Optional[int] = None
        best_delta: Optional[int] = None
        for candidate in (idx - 1, idx):  # earlier first so ties keep it
            if 0 <= candidate < len(self.pings):
                delta = abs(int(self.times_us[candidate]) - target_us)
                if best_delta is None or delta < best_delta:
                    best, best_delta = candidate, delta

        if best is None or best_delta > tolerance_us:
            return None
        return self.pings[best]


class FrameSynthesizer:
    """
    Builds timeline frames from new pings.

    First run (no cursor) rebuilds the full timeline from index 0. Later runs
    only consider pings strictly after the last committed frame timestamp and
    continue the index sequence.

    Example:
        >>> synth = FrameSynthesizer()
        >>> plan = synth.synthesize(pings_by_vessel, cursor=None, snapshots={}, now=now)
        >>> store.commit(plan)
    """

    def __init__(self, config: Optional[SynthesizerConfig] = None):
        self.config = config or SynthesizerConfig()

    @property
    def recent_window(self) -> timedelta:
        return timedelta(hours=self.config.recent_window_hours)

    @property
    def match_tolerance(self) -> timedelta:
        return timedelta(minutes=self.config.match_tolerance_minutes)

    def spacing_for(self, t: datetime, now: datetime) -> timedelta:
        """Minimum spacing between kept frames around ``t``: denser near ``now``."""
        if now - t < self.recent_window:
            return timedelta(minutes=self.config.recent_spacing_minutes)
        return timedelta(minutes=self.config.old_spacing_minutes)

    def select_frame_times(
        self,
        timestamps: Iterable[datetime],
        now: datetime,
        cutover: Optional[datetime] = None,
    ) -> list[datetime]:
        """
        Thin candidate timestamps with adaptive spacing.

        A candidate is kept if it lies at least the spacing past the previously
        kept one (the cutover counts as kept). The latest candidate is always kept.
        """
        ordered = sorted(set(timestamps))
        if not ordered:
            return []

        kept: list[datetime] = []
        last_kept = cutover
        for t in ordered:
            if last_kept is None or t - last_kept >= self.spacing_for(t, now):
                kept.append(t)
                last_kept = t

        if not kept or kept[-1] != ordered[-1]:
            kept.append(ordered[-1])
        return kept

    @staticmethod
    def anchor_sparse_vessels(kept: list[datetime], series: Mapping[str, _VesselSeries]) -> list[datetime]:
        """Add first/last raw timestamps of vessels that have none in ``kept``."""
        kept_set = set(kept)
        for vessel_id, s in series.items():
            raw = s.timestamps
            if not raw or kept_set.intersection(raw):
                continue
            kept_set.add(raw[0])
            kept_set.add(raw[-1])
            logger.debug(f"Anchored sparse vessel {vessel_id} at {raw[0]} and {raw[-1]}")
        return sorted(kept_set)

    def _normalize(
        self,
        pings_by_vessel: Mapping[str, Iterable[Any]],
        cutover: Optional[datetime],
        skipped: list[str],
    ) -> dict[str, _VesselSeries]:
        series: dict[str, _VesselSeries] = {}
        for vessel_id in sorted(pings_by_vessel):
            key = str(vessel_id)
            try:
                pings = [coerce_ping(p, key) for p in pings_by_vessel[vessel_id]]
            except (ValueError, TypeError) as e:
                logger.warning(f"Skipping vessel {key}: malformed position payload ({e})")
                skipped.append(key)
                continue

            if cutover is not None:
                pings = [p for p in pings if p.timestamp > cutover]
            if pings:
                series[key] = _VesselSeries(key, pings)
        return series

    def synthesize(
        self,
        pings_by_vessel: Mapping[str, Iterable[Any]],
        cursor: Optional[FrameCursor],
        snapshots: Mapping[str, VesselSnapshot],
        now: datetime,
        vessel_meta: Optional[Mapping[str, VesselMeta]] = None,
    ) -> SynthesisPlan:
        """
        Compute the frames to append (or the full timeline on first run).

        Args:
            pings_by_vessel: Vessel key -> pings (Ping objects or raw mappings)
            cursor: Last committed frame, or None for a full rebuild
            snapshots: Last-known snapshot map from the previous run
            now: Reference time for adaptive spacing
            vessel_meta: Optional name/origin per vessel key

        Returns:
            SynthesisPlan; ``is_noop`` when there is nothing new
        """
        now = to_utc(now)
        rebuild = cursor is None
        cutover = None if rebuild else cursor.frame_timestamp
        vessel_meta = vessel_meta or {}
        skipped: list[str] = []

        # A rebuild regenerates every frame, so prior carried state is discarded
        state: dict[str, VesselSnapshot] = {} if rebuild else dict(snapshots)

        series = self._normalize(pings_by_vessel, cutover, skipped)
        if not series:
            logger.info(f"No new pings since {cutover or 'start'}; nothing to synthesize")
            return SynthesisPlan([], state, rebuild, cursor, skipped)

        candidates = {t for s in series.values() for t in s.timestamps}
        kept = self.select_frame_times(candidates, now, cutover)
        if rebuild:
            kept = self.anchor_sparse_vessels(kept, series)

        tolerance_us = self.match_tolerance // timedelta(microseconds=1)
        vessel_ids = sorted(set(series) | set(state))
        next_index = 0 if rebuild else cursor.frame_index + 1
        frames: list[TimelineFrame] = []

        for frame_time in kept:
            vessels: list[VesselSnapshot] = []
            for vessel_id in vessel_ids:
                s = series.get(vessel_id)
                ping = s.nearest(frame_time, tolerance_us) if s is not None else None

                if ping is not None:
                    snapshot = self._snapshot_from_ping(
                        vessel_id, ping, vessel_meta.get(vessel_id), state.get(vessel_id)
                    )
                    state[vessel_id] = snapshot
                    vessels.append(snapshot)
                elif vessel_id in state:
                    vessels.append(state[vessel_id])

            if not vessels:
                continue
            frames.append(TimelineFrame(next_index, frame_time, tuple(vessels)))
            next_index += 1

        logger.info(
            f"{'Rebuild' if rebuild else 'Incremental'} synthesis: "
            f"{len(candidates)} candidate timestamps -> {len(frames)} frames "
            f"for {len(vessel_ids)} vessels ({len(skipped)} skipped)"
        )
        return SynthesisPlan(frames, state, rebuild, cursor, skipped, candidate_count=len(candidates))

    @staticmethod
    def _snapshot_from_ping(
        vessel_id: str,
        ping: Ping,
        meta: Optional[VesselMeta],
        previous: Optional[VesselSnapshot],
    ) -> VesselSnapshot:
        name = (meta.name if meta else None) or (previous.name if previous else None) or vessel_id
        origin = (meta.origin if meta else None) or (previous.origin if previous else None)
        return VesselSnapshot(
            vessel_id=vessel_id,
            name=name,
            lat=ping.lat,
            lon=ping.lon,
            course=ping.course,
            origin=origin,
        )
