"""
Tests for SynthesisService — run modes, locking and run logging.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.api.database import get_synthesis_runs, init_db
from src.api.frame_store import ConcurrentSynthesisError, FrameStore
from src.api.position_store import PositionStore, VesselRecord
from src.api.synthesis_service import SynthesisInProgressError, SynthesisService
from src.timeline.types import Ping

T0 = datetime(2025, 9, 1, 10, 0, tzinfo=timezone.utc)
NOW = datetime(2025, 9, 1, 20, 0, tzinfo=timezone.utc)


def _pings(vessel_id, minutes):
    return [Ping(vessel_id, 35.0 + m / 100, 20.0, T0 + timedelta(minutes=m)) for m in minutes]


@pytest.fixture
def env(tmp_path):
    session_factory = init_db(f"sqlite:///{tmp_path / 'synth.db'}")
    positions = PositionStore(session_factory)
    frames = FrameStore(session_factory)
    service = SynthesisService(frames, positions, session_factory=session_factory, clock=lambda: NOW)
    return session_factory, positions, frames, service


class TestSynthesisService:
    def test_first_run_rebuilds(self, env):
        session_factory, positions, frames, service = env
        positions.store_group([(VesselRecord("1", "Alma", origin="Tunis"), _pings("1", [0, 10, 20]))])
        result = service.run()
        assert result["mode"] == "rebuild"
        assert result["frames_written"] == 3
        assert result["last_frame_index"] == 2
        assert result["last_frame_timestamp"] == "2025-09-01T10:20:00.000000Z"
        snap = frames.frames_by_index()[0].vessel_snapshots[0]
        assert snap.name == "Alma"
        assert snap.origin == "Tunis"

    def test_second_run_without_new_pings_is_noop(self, env):
        session_factory, positions, frames, service = env
        positions.store_group([(VesselRecord("1", "Alma"), _pings("1", [0, 10]))])
        service.run()
        result = service.run()
        assert result["mode"] == "noop"
        assert result["frames_written"] == 0
        assert frames.count() == 2
        assert result["last_frame_index"] == 1

    def test_incremental_continues_indices(self, env):
        session_factory, positions, frames, service = env
        positions.store_group([(VesselRecord("1", "Alma"), _pings("1", [0, 10]))])
        service.run()
        positions.store_group([(VesselRecord("2", "Bria"), _pings("2", [30, 40]))])
        result = service.run()
        assert result["mode"] == "incremental"
        indices = [f.frame_index for f in frames.frames_by_index()]
        assert indices == list(range(len(indices)))
        assert frames.frames_by_index()[-1].vessel_ids == {"1", "2"}

    def test_runs_logged(self, env):
        session_factory, positions, frames, service = env
        positions.store_group([(VesselRecord("1", "Alma"), _pings("1", [0]))])
        service.run()
        service.run()
        runs = get_synthesis_runs(session_factory)
        assert [r["mode"] for r in runs] == ["noop", "rebuild"]
        assert all(r["status"] == "ok" for r in runs)

    def test_rejects_overlapping_run(self, env):
        _, _, _, service = env
        service._lock.acquire()
        try:
            assert service.running is True
            with pytest.raises(SynthesisInProgressError):
                service.run()
        finally:
            service._lock.release()
        assert service.running is False

    def test_conflict_logged_as_failed(self, env):
        session_factory, positions, frames, service = env
        positions.store_group([(VesselRecord("1", "Alma"), _pings("1", [0]))])
        with patch.object(frames, "commit", side_effect=ConcurrentSynthesisError("moved")):
            with pytest.raises(ConcurrentSynthesisError):
                service.run()
        runs = get_synthesis_runs(session_factory)
        assert runs[0]["status"] == "failed"
        assert service.running is False
