"""
PlaybackController — time cursor for replaying vessel movement.

Owns the query time shown by the dashboard and drives play/pause/seek.
Playback runs as an asyncio background task that advances the cursor by a
fixed fraction of the data range per tick and notifies registered callbacks
with the derived per-vessel view. Seeking or closing cancels the pending
tick synchronously.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Coroutine, Iterable, Mapping, Optional

from src.timeline.status_classifier import StatusClassifier, VesselView, normalize_pings
from src.timeline.types import Ping
from src.utils.config_loader import PlaybackConfig
from src.utils.logging_config import get_logger
from src.utils.timeutils import format_iso, to_utc

logger = get_logger("playback.controller")

TickCallback = Callable[[list[VesselView]], Coroutine[Any, Any, None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TimeRange:
    start: datetime
    end: datetime

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def clamp(self, t: datetime) -> datetime:
        return max(self.start, min(t, self.end))


class PlaybackController:
    """
    Playback state for one timeline.

    State:
        query_time: Current cursor (None until data is loaded)
        playing: Whether the tick task is advancing the cursor
        playback_speed: Multiplier on the per-tick step
        dragging: Whether a scrub drag is in progress

    A tick advances ``query_time`` by ``range_length / step_count * speed``
    and stops, clamped to the range end, once the end is reached.
    """

    def __init__(
        self,
        config: Optional[PlaybackConfig] = None,
        classifier: Optional[StatusClassifier] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.config = config or PlaybackConfig()
        self.classifier = classifier or StatusClassifier()
        self._clock = clock

        self.query_time: Optional[datetime] = None
        self.playing: bool = False
        self.playback_speed: float = self.config.default_speed
        self.dragging: bool = False

        self.time_range: TimeRange = self._placeholder_range()
        self.controls_enabled: bool = False

        self._pings: dict[str, list[Ping]] = {}
        self._names: dict[str, str] = {}

        self._task: Optional[asyncio.Task] = None
        self._generation: int = 0
        self._callbacks: list[TickCallback] = []

    # ------------------------------------------------------------------ data

    def load(
        self,
        pings_by_vessel: Mapping[str, Iterable[Any]],
        names: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Replace the vessel data and recompute the playback range."""
        pings: dict[str, list[Ping]] = {}
        for vessel_id, raw in pings_by_vessel.items():
            try:
                pings[str(vessel_id)] = normalize_pings(raw, str(vessel_id))
            except (TypeError, ValueError) as e:
                logger.warning(f"Dropping vessel {vessel_id} from playback: {e}")
        self._pings = pings
        self._names = dict(names or {})

        self.time_range, self.controls_enabled = self._compute_range()

        if not self.controls_enabled:
            self._cancel_pending()
            self.playing = False
            logger.info("Degenerate time range; playback controls disabled")
            return

        if self.query_time is None:
            # Start "live" at the freshest data rather than the range start
            self.query_time = self.time_range.end
            logger.info(f"Playback initialized at {format_iso(self.query_time)}")
        else:
            self.query_time = self.time_range.clamp(self.query_time)

    def _placeholder_range(self) -> TimeRange:
        now = to_utc(self._clock())
        return TimeRange(now - timedelta(hours=self.config.placeholder_hours), now)

    def _compute_range(self) -> tuple[TimeRange, bool]:
        times = [p.timestamp for pings in self._pings.values() for p in pings]
        if not times:
            return self._placeholder_range(), False

        earliest, latest = min(times), max(times)
        start = earliest
        floor = self.config.timeline_start_floor
        if floor is not None and to_utc(floor) > start:
            start = to_utc(floor)
        end = latest
        if end <= start:
            return self._placeholder_range(), False

        min_length = timedelta(minutes=self.config.min_range_minutes)
        if end - start < min_length:
            center = start + (end - start) / 2
            start, end = center - min_length / 2, center + min_length / 2

        return TimeRange(start, end), True

    @property
    def vessel_ids(self) -> list[str]:
        return sorted(self._pings)

    @property
    def progress(self) -> float:
        """Fraction of the range covered by the cursor, in [0, 1]."""
        if self.query_time is None or not self.controls_enabled:
            return 0.0
        length = self.time_range.length.total_seconds()
        elapsed = (self.query_time - self.time_range.start).total_seconds()
        return max(0.0, min(1.0, elapsed / length))

    @property
    def step(self) -> timedelta:
        return self.time_range.length / self.config.step_count * self.playback_speed

    # -------------------------------------------------------------- controls

    def on_tick(self, callback: TickCallback) -> None:
        """Register an async callback to be called with the view after each tick."""
        self._callbacks.append(callback)

    def play(self) -> None:
        """Start playback; rewinds to the range start when already at the end."""
        if self.playing or not self.controls_enabled:
            return
        if self.query_time is None or self.query_time >= self.time_range.end:
            self.query_time = self.time_range.start

        self.playing = True
        self._generation += 1
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: the caller advances with tick()
            logger.debug("No running loop; playback advances via tick()")
        else:
            self._task = asyncio.create_task(self._run(self._generation))
        logger.info(f"Playback started at {format_iso(self.query_time)}, speed {self.playback_speed:.1f}x")

    def pause(self) -> None:
        """Pause playback."""
        self._cancel_pending()
        self.playing = False
        logger.info("Playback paused")

    def seek(self, fraction: float) -> Optional[datetime]:
        """
        Jump to a normalized position in the range.

        ``fraction`` is clamped to [0, 1]. Any active play is cancelled first.
        """
        self._cancel_pending()
        self.playing = False
        if not self.controls_enabled:
            return self.query_time

        f = max(0.0, min(1.0, float(fraction)))
        self.query_time = self.time_range.start + self.time_range.length * f
        logger.debug(f"Seeked to {format_iso(self.query_time)} ({f:.3f})")
        return self.query_time

    def begin_drag(self, fraction: Optional[float] = None) -> None:
        self.dragging = True
        if fraction is None:
            self.pause()
        else:
            self.seek(fraction)

    def drag_to(self, fraction: float) -> Optional[datetime]:
        return self.seek(fraction)

    def end_drag(self) -> None:
        self.dragging = False

    def set_speed(self, speed: float) -> None:
        """Set the playback speed multiplier."""
        self.playback_speed = max(self.config.min_speed, min(self.config.max_speed, float(speed)))
        logger.info(f"Playback speed set to {self.playback_speed:.1f}x")

    def tick(self) -> bool:
        """
        Advance the cursor by one step.

        Returns:
            True while playback should continue
        """
        if not self.playing or self.query_time is None:
            return False

        next_time = self.query_time + self.step
        if next_time >= self.time_range.end:
            self.query_time = self.time_range.end
            self.playing = False
            self._generation += 1
            logger.info("Playback reached end of range")
        else:
            self.query_time = next_time
        return self.playing

    def close(self) -> None:
        """Tear down: cancel any pending tick synchronously."""
        self._cancel_pending()
        self.playing = False

    async def stop(self) -> None:
        """Close and wait for the tick task to finish."""
        task = self._task
        self.close()
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _cancel_pending(self) -> None:
        # Bumping the generation invalidates a task that already woke up
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, generation: int) -> None:
        """Tick loop: advance the cursor and notify callbacks."""
        interval = self.config.tick_interval_seconds
        while self.playing and generation == self._generation:
            await asyncio.sleep(interval)
            if not self.playing or generation != self._generation:
                break

            self.tick()
            view = self.view()
            for cb in self._callbacks:
                try:
                    await cb(view)
                except Exception:
                    logger.exception("Error in playback tick callback")

    # ------------------------------------------------------------------ view

    def view(self, query_time: Optional[Any] = None) -> list[VesselView]:
        """Per-vessel derived state at ``query_time`` (default: the cursor)."""
        if query_time is not None:
            t = to_utc(query_time)
        else:
            t = self.query_time or self.time_range.end
        return [
            self.classifier.describe(vid, self._pings[vid], t, self._names.get(vid))
            for vid in self.vessel_ids
        ]

    def status(self) -> dict:
        return {
            "query_time": format_iso(self.query_time) if self.query_time else None,
            "playing": self.playing,
            "playback_speed": self.playback_speed,
            "dragging": self.dragging,
            "range_start": format_iso(self.time_range.start),
            "range_end": format_iso(self.time_range.end),
            "controls_enabled": self.controls_enabled,
            "progress": self.progress,
        }
