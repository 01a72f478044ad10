"""
SynthesisService — runs the frame synthesizer against the position and frame stores.

One run at a time per process; cross-process races are caught by the frame
store's compare-and-append commit.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from src.api.database import log_synthesis_run
from src.api.frame_store import FrameStore, FrameStoreError
from src.api.position_store import PositionStore
from src.timeline.synthesizer import FrameSynthesizer
from src.utils.logging_config import get_logger
from src.utils.timeutils import format_iso, to_utc

logger = get_logger("synthesizer.service")


class SynthesisInProgressError(RuntimeError):
    """Another synthesizer run is already executing in this process."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SynthesisService:
    """Reads new pings, plans frames and commits them atomically."""

    def __init__(
        self,
        frame_store: FrameStore,
        position_store: PositionStore,
        synthesizer: Optional[FrameSynthesizer] = None,
        session_factory: Optional[sessionmaker] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._frames = frame_store
        self._positions = position_store
        self._synthesizer = synthesizer or FrameSynthesizer()
        self._session_factory = session_factory
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run(self, now: Optional[datetime] = None) -> dict:
        """
        Execute one synthesizer run.

        The first run (empty frame store) rebuilds from the full history;
        later runs only read pings newer than the last committed frame.

        Raises:
            SynthesisInProgressError: a run is already executing
            ConcurrentSynthesisError: another process committed first
            FrameStoreError: the commit failed; nothing was written
        """
        if not self._lock.acquire(blocking=False):
            raise SynthesisInProgressError("A synthesizer run is already in progress")

        t0 = time.perf_counter()
        mode = "incremental"
        try:
            now = to_utc(now) if now is not None else to_utc(self._clock())
            cursor = self._frames.last_cursor()
            mode = "rebuild" if cursor is None else "incremental"
            snapshots = {} if cursor is None else self._frames.load_snapshots()
            after = None if cursor is None else cursor.frame_timestamp

            pings = self._positions.pings_by_vessel(after=after)
            plan = self._synthesizer.synthesize(
                pings, cursor, snapshots, now, vessel_meta=self._positions.vessel_meta()
            )
            if plan.is_noop:
                mode = "noop"

            written = self._frames.commit(plan)
        except FrameStoreError as e:
            logger.error(f"Synthesis run failed: {e}")
            self._record(mode, "failed", error=str(e))
            raise
        finally:
            self._lock.release()

        self._record(mode, "ok", frames_written=written, skipped=len(plan.skipped_vessels))
        last = plan.last_cursor or cursor
        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.info(f"Synthesis run ({mode}) wrote {written} frames in {elapsed_ms:.0f}ms")
        return {
            "mode": mode,
            "frames_written": written,
            "skipped_vessels": list(plan.skipped_vessels),
            "candidate_timestamps": plan.candidate_count,
            "last_frame_index": last.frame_index if last else None,
            "last_frame_timestamp": format_iso(last.frame_timestamp) if last else None,
        }

    def _record(self, mode: str, status: str, frames_written: int = 0, skipped: int = 0,
                error: Optional[str] = None) -> None:
        if self._session_factory is None:
            return
        log_synthesis_run(
            self._session_factory, mode, status,
            frames_written=frames_written, skipped_vessels=skipped, error=error,
        )
