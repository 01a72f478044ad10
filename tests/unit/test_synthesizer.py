"""
Tests for FrameSynthesizer — adaptive sampling, forward-fill, incremental runs.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.timeline.synthesizer import FrameSynthesizer, SynthesisPlan, VesselMeta
from src.timeline.types import FrameCursor, Ping
from src.utils.config_loader import SynthesizerConfig

T0 = datetime(2025, 9, 1, 10, 0, tzinfo=timezone.utc)
NOW = datetime(2025, 9, 1, 20, 0, tzinfo=timezone.utc)


def _ping(vessel_id, minutes, lat=35.0, lon=20.0):
    return Ping(vessel_id=vessel_id, lat=lat, lon=lon, timestamp=T0 + timedelta(minutes=minutes))


def _track(vessel_id, minutes_list, lat=35.0):
    return [_ping(vessel_id, m, lat=lat + i * 0.01) for i, m in enumerate(minutes_list)]


def _apply(plan: SynthesisPlan, history: list):
    """Mimic a committing store: returns (cursor, snapshots) after the plan."""
    if plan.rebuild:
        history.clear()
    history.extend(plan.frames)
    return plan.last_cursor, plan.snapshots


class TestFrameTimeSelection:
    def test_recent_spacing_five_minutes(self):
        synth = FrameSynthesizer()
        times = [T0 + timedelta(minutes=m) for m in (0, 2, 5, 7, 11)]
        kept = synth.select_frame_times(times, NOW)
        assert kept == [T0, T0 + timedelta(minutes=5), T0 + timedelta(minutes=11)]

    def test_old_data_uses_fifteen_minutes(self):
        synth = FrameSynthesizer()
        now = T0 + timedelta(days=3)
        times = [T0 + timedelta(minutes=m) for m in (0, 5, 10, 15, 20, 31)]
        kept = synth.select_frame_times(times, now)
        assert kept == [T0, T0 + timedelta(minutes=15), T0 + timedelta(minutes=31)]

    def test_latest_always_kept(self):
        synth = FrameSynthesizer()
        times = [T0, T0 + timedelta(minutes=1)]
        kept = synth.select_frame_times(times, NOW)
        assert kept[-1] == T0 + timedelta(minutes=1)
        assert kept == [T0, T0 + timedelta(minutes=1)]

    def test_cutover_counts_as_kept(self):
        synth = FrameSynthesizer()
        times = [T0 + timedelta(minutes=2), T0 + timedelta(minutes=6), T0 + timedelta(minutes=8)]
        kept = synth.select_frame_times(times, NOW, cutover=T0)
        assert kept == [T0 + timedelta(minutes=6), T0 + timedelta(minutes=8)]

    def test_empty(self):
        assert FrameSynthesizer().select_frame_times([], NOW) == []

    def test_spacing_for(self):
        synth = FrameSynthesizer()
        assert synth.spacing_for(NOW - timedelta(hours=1), NOW) == timedelta(minutes=5)
        assert synth.spacing_for(NOW - timedelta(hours=30), NOW) == timedelta(minutes=15)

    def test_custom_config(self):
        synth = FrameSynthesizer(SynthesizerConfig(recent_spacing_minutes=1.0))
        times = [T0 + timedelta(minutes=m) for m in (0, 1, 2)]
        assert synth.select_frame_times(times, NOW) == times


class TestRebuild:
    def test_first_run_starts_at_zero(self):
        synth = FrameSynthesizer()
        pings = {"a": _track("a", [0, 10, 20])}
        plan = synth.synthesize(pings, None, {}, NOW)
        assert plan.rebuild is True
        assert [f.frame_index for f in plan.frames] == [0, 1, 2]

    def test_frame_times_strictly_increasing(self):
        synth = FrameSynthesizer()
        pings = {
            "a": _track("a", [0, 3, 6, 9, 30]),
            "b": _track("b", [1, 7, 14, 60]),
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        times = [f.frame_timestamp for f in plan.frames]
        assert all(t1 < t2 for t1, t2 in zip(times, times[1:]))

    def test_sparse_vessel_gets_anchor_frames(self):
        synth = FrameSynthesizer()
        # "b" pings are thinned away by "a" but must still appear in a frame
        pings = {
            "a": _track("a", [0, 5, 10, 200]),
            "b": _track("b", [1, 6]),
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        times = {f.frame_timestamp for f in plan.frames}
        assert T0 + timedelta(minutes=1) in times
        assert T0 + timedelta(minutes=6) in times

    def test_snapshot_carries_meta(self):
        synth = FrameSynthesizer()
        pings = {"a": _track("a", [0])}
        plan = synth.synthesize(pings, None, {}, NOW, vessel_meta={"a": VesselMeta("Alma", "Barcelona")})
        snap = plan.frames[0].vessel_snapshots[0]
        assert snap.name == "Alma"
        assert snap.origin == "Barcelona"

    def test_name_defaults_to_key(self):
        plan = FrameSynthesizer().synthesize({"a": _track("a", [0])}, None, {}, NOW)
        assert plan.frames[0].vessel_snapshots[0].name == "a"

    def test_accepts_raw_mappings(self):
        pings = {"a": [{"timestamp_utc": "2025-09-01T10:00:00Z", "latitude": "35.1", "longitude": 20.2}]}
        plan = FrameSynthesizer().synthesize(pings, None, {}, NOW)
        assert len(plan.frames) == 1
        assert plan.frames[0].vessel_snapshots[0].lat == pytest.approx(35.1)


class TestForwardFill:
    def test_vessel_persists_after_first_appearance(self):
        synth = FrameSynthesizer()
        pings = {
            "a": _track("a", [0, 60, 120, 180, 240]),
            "b": _track("b", [60]),
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        first_b = next(i for i, f in enumerate(plan.frames) if "b" in f.vessel_ids)
        for frame in plan.frames[first_b:]:
            assert "b" in frame.vessel_ids

    def test_forward_filled_position_unchanged(self):
        synth = FrameSynthesizer()
        pings = {
            "a": _track("a", [0, 120]),
            "b": [_ping("b", 0, lat=33.0)],
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        last = plan.frames[-1]
        b = next(s for s in last.vessel_snapshots if s.vessel_id == "b")
        assert b.lat == 33.0

    def test_vessel_absent_before_first_ping(self):
        synth = FrameSynthesizer()
        pings = {"a": _track("a", [0, 120]), "b": _track("b", [120])}
        plan = synth.synthesize(pings, None, {}, NOW)
        assert "b" not in plan.frames[0].vessel_ids

    def test_match_tolerance(self):
        synth = FrameSynthesizer()
        pings = {
            "a": _track("a", [0, 120]),
            "b": [_ping("b", 25, lat=33.0), _ping("b", 200, lat=34.0)],
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        frame0 = plan.frames[0]
        # b's ping 25 minutes after frame 0 is inside the ±30 minute window
        b = next(s for s in frame0.vessel_snapshots if s.vessel_id == "b")
        assert b.lat == 33.0

    def test_exact_match_preferred(self):
        synth = FrameSynthesizer()
        pings = {
            "a": [_ping("a", 0, lat=30.0), _ping("a", 1, lat=31.0), _ping("a", 6, lat=32.0)],
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        assert plan.frames[0].vessel_snapshots[0].lat == 30.0


class TestIncremental:
    def test_indices_gapless_across_runs(self):
        synth = FrameSynthesizer()
        history: list = []
        cursor, snaps = _apply(synth.synthesize({"a": _track("a", [0, 10, 20])}, None, {}, NOW), history)

        new = {"a": _track("a", [0, 10, 20, 30, 40])}
        cursor, snaps = _apply(synth.synthesize(new, cursor, snaps, NOW), history)

        indices = [f.frame_index for f in history]
        assert indices == list(range(len(history)))
        assert len(history) == 5

    def test_rerun_without_new_pings_is_noop(self):
        synth = FrameSynthesizer()
        history: list = []
        pings = {"a": _track("a", [0, 10, 20])}
        cursor, snaps = _apply(synth.synthesize(pings, None, {}, NOW), history)

        plan = synth.synthesize(pings, cursor, snaps, NOW)
        assert plan.is_noop
        assert plan.frames == []
        assert plan.last_cursor == cursor

    def test_only_pings_after_cutover(self):
        synth = FrameSynthesizer()
        history: list = []
        cursor, snaps = _apply(synth.synthesize({"a": _track("a", [0, 10])}, None, {}, NOW), history)

        # A late-arriving ping older than the cutover is ignored
        late = {"a": _track("a", [0, 10]) + [_ping("a", 5)], "b": [_ping("b", 7)]}
        plan = synth.synthesize(late, cursor, snaps, NOW)
        assert plan.is_noop

    def test_prior_vessels_forward_filled(self):
        synth = FrameSynthesizer()
        history: list = []
        cursor, snaps = _apply(synth.synthesize({"a": _track("a", [0])}, None, {}, NOW), history)

        plan = synth.synthesize({"b": _track("b", [30])}, cursor, snaps, NOW)
        assert plan.frames[0].vessel_ids == {"a", "b"}
        assert plan.frames[0].frame_index == cursor.frame_index + 1

    def test_times_strictly_after_cursor(self):
        synth = FrameSynthesizer()
        cursor = FrameCursor(7, T0 + timedelta(minutes=10))
        plan = synth.synthesize({"a": _track("a", [10, 11, 20])}, cursor, {}, NOW)
        assert all(f.frame_timestamp > cursor.frame_timestamp for f in plan.frames)
        assert plan.frames[0].frame_index == 8
        assert plan.base_cursor == cursor


class TestMalformedInput:
    def test_malformed_vessel_skipped(self):
        synth = FrameSynthesizer()
        pings = {
            "good": _track("good", [0, 10]),
            "bad": [{"timestamp": "not-a-time", "lat": 1, "lon": 2}],
        }
        plan = synth.synthesize(pings, None, {}, NOW)
        assert plan.skipped_vessels == ["bad"]
        assert all("bad" not in f.vessel_ids for f in plan.frames)
        assert len(plan.frames) == 2

    def test_out_of_range_latitude_skipped(self):
        pings = {"bad": [{"timestamp": "2025-09-01T10:00:00Z", "lat": 123.0, "lon": 2}]}
        plan = FrameSynthesizer().synthesize(pings, None, {}, NOW)
        assert plan.is_noop
        assert plan.skipped_vessels == ["bad"]
