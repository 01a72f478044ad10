"""
Tests for status classification, visible history and telemetry overrides.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.timeline.overrides import OverrideTable, TelemetryOverride
from src.timeline.status_classifier import (
    StatusClassifier,
    classify,
    visible_pings,
    visible_position,
    normalize_pings,
)
from src.timeline.types import Ping, StatusLabel
from src.utils.config_loader import ClassifierConfig
from src.utils.geo import haversine_km


def _p(t, lat=35.0, lon=20.0, vessel_id="v"):
    return {"timestamp": t, "lat": lat, "lon": lon, "vessel_id": vessel_id}


class TestClassify:
    def test_no_pings(self):
        assert classify([], "2025-09-01T10:00Z") == StatusLabel.NO_DATA

    def test_preparing_before_first_ping(self):
        pings = [_p("2025-09-01T10:00Z")]
        assert classify(pings, "2025-09-01T09:00Z") == StatusLabel.PREPARING

    def test_completed_near_destination(self):
        pings = [_p("2025-09-01T10:00Z", lat=31.35, lon=34.31)]
        assert classify(pings, "2025-09-05T00:00Z") == StatusLabel.COMPLETED

    def test_sailing_far_from_destination(self):
        pings = [_p("2025-09-01T10:00Z", lat=41.0, lon=2.0)]
        assert classify(pings, "2025-09-05T00:00Z") == StatusLabel.SAILING

    def test_active_within_span(self):
        pings = [
            _p("2025-09-01T00:00Z", lat=40.0),
            _p("2025-09-01T18:00Z", lat=39.0),
            _p("2025-09-03T00:00Z", lat=37.0),
        ]
        assert classify(pings, "2025-09-02T00:00Z") == StatusLabel.ACTIVE
        pos = visible_position(normalize_pings(pings), datetime(2025, 9, 2, tzinfo=timezone.utc))
        assert pos.lat == 39.0

    def test_query_at_last_ping_is_active(self):
        pings = [_p("2025-09-01T10:00Z"), _p("2025-09-01T12:00Z")]
        assert classify(pings, "2025-09-01T12:00Z") == StatusLabel.ACTIVE

    def test_radius_boundary(self):
        # 0.45 degrees north of the destination is ~50 km by the flat approximation
        pings = [_p("2025-09-01T10:00Z", lat=31.3547 + 0.45, lon=34.3088)]
        assert classify(pings, "2025-09-05T00:00Z", proximity_radius=50.0) == StatusLabel.COMPLETED
        assert classify(pings, "2025-09-05T00:00Z", proximity_radius=49.0) == StatusLabel.SAILING

    def test_unsorted_input(self):
        pings = [_p("2025-09-03T00:00Z", lat=31.35, lon=34.31), _p("2025-09-01T00:00Z", lat=41.0, lon=2.0)]
        assert classify(pings, "2025-09-05T00:00Z") == StatusLabel.COMPLETED

    def test_malformed_input_never_raises(self):
        assert classify([{"lat": 1.0}], "2025-09-01T10:00Z") == StatusLabel.NO_DATA
        assert classify([_p("2025-09-01T10:00Z")], "garbage") == StatusLabel.NO_DATA
        assert classify([_p("2025-09-01T10:00Z")], None) == StatusLabel.NO_DATA
        assert classify(None, "2025-09-01T10:00Z") == StatusLabel.NO_DATA

    def test_ping_with_naive_timestamp_treated_as_utc(self):
        pings = [Ping("v", 31.35, 34.31, datetime(2025, 9, 1, 10))]
        assert classify(pings, "2025-09-05T00:00Z") == StatusLabel.COMPLETED
        assert classify(pings, "2025-09-01T09:00Z") == StatusLabel.PREPARING

    def test_ping_with_string_timestamp(self):
        pings = [Ping("v", 41.0, 2.0, "2025-09-01T10:00Z")]
        assert classify(pings, "2025-09-05T00:00Z") == StatusLabel.SAILING

    def test_ping_with_unusable_timestamp_is_no_data(self):
        assert classify([Ping("v", 41.0, 2.0, None)], "2025-09-05T00:00Z") == StatusLabel.NO_DATA
        mixed = [Ping("v", 41.0, 2.0, 12345), _p("2025-09-01T10:00Z")]
        assert classify(mixed, "2025-09-05T00:00Z") == StatusLabel.NO_DATA

    def test_custom_distance_function(self):
        pings = [_p("2025-09-01T10:00Z", lat=31.35, lon=34.31)]
        assert classify(pings, "2025-09-05T00:00Z", distance=haversine_km) == StatusLabel.COMPLETED


class TestVisibleHistory:
    def test_excludes_future_pings(self):
        pings = normalize_pings([_p("2025-09-01T10:00Z"), _p("2025-09-01T11:00Z"), _p("2025-09-01T12:00Z")])
        t = datetime(2025, 9, 1, 11, 0, tzinfo=timezone.utc)
        assert len(visible_pings(pings, t)) == 2
        assert visible_position(pings, t).timestamp == t

    def test_none_before_first(self):
        pings = normalize_pings([_p("2025-09-01T10:00Z")])
        assert visible_position(pings, datetime(2025, 9, 1, 9, tzinfo=timezone.utc)) is None


class TestStatusClassifierDescribe:
    def setup_method(self):
        self.classifier = StatusClassifier()
        self.pings = [
            _p("2025-09-01T10:00:00Z", lat=40.0),
            _p("2025-09-01T11:00:00Z", lat=39.0),
            _p("2025-09-01T12:00:00Z", lat=38.0),
        ]

    def test_preparing_has_no_history(self):
        view = self.classifier.describe("v", self.pings, "2025-09-01T09:00:00Z", name="Alma")
        assert view.status == StatusLabel.PREPARING
        assert view.visible_pings == []
        assert view.latest_position is None
        assert view.name == "Alma"

    def test_active_view(self):
        view = self.classifier.describe("v", self.pings, "2025-09-01T11:30:00Z")
        assert view.status == StatusLabel.ACTIVE
        assert len(view.visible_pings) == 2
        assert view.latest_position.lat == 39.0
        assert view.is_spawning is False

    def test_spawning_near_first_ping(self):
        view = self.classifier.describe("v", self.pings, "2025-09-01T10:03:00Z")
        assert view.status == StatusLabel.ACTIVE
        assert view.is_spawning is True

    def test_sailing_shows_full_history(self):
        view = self.classifier.describe("v", self.pings, "2025-09-02T00:00:00Z")
        assert view.status == StatusLabel.SAILING
        assert len(view.visible_pings) == 3
        assert view.is_spawning is False

    def test_malformed_pings_yield_no_data(self):
        view = self.classifier.describe("v", [{"timestamp": "x"}], "2025-09-01T10:00:00Z")
        assert view.status == StatusLabel.NO_DATA

    def test_to_dict(self):
        d = self.classifier.describe("v", self.pings, "2025-09-01T11:30:00Z").to_dict()
        assert d["status"] == "active"
        assert d["latest_position"]["lat"] == 39.0
        assert d["timestamp"] == "2025-09-01T11:00:00.000000Z"

    def test_destination_from_config(self):
        classifier = StatusClassifier(ClassifierConfig(destination_lat=41.0, destination_lon=2.0))
        pings = [_p("2025-09-01T10:00Z", lat=41.0, lon=2.0)]
        assert classifier.classify(pings, "2025-09-05T00:00Z") == StatusLabel.COMPLETED


class TestOverrides:
    WINDOW_START = datetime(2025, 9, 4, 8, 39, tzinfo=timezone.utc)
    WINDOW_END = datetime(2025, 9, 4, 12, 13, 45, tzinfo=timezone.utc)

    def _table(self):
        return OverrideTable.from_records([{
            "vessel_key": "Longhaul",
            "window_start": "2025-09-04T08:39:00Z",
            "window_end": "2025-09-04T12:13:45Z",
            "discard_before": "2025-09-04T08:39:00Z",
            "lat": 39.879,
            "lon": 4.3077,
        }])

    def _pings(self):
        return [
            Ping("lh", 41.0, 2.0, self.WINDOW_START - timedelta(hours=2)),
            Ping("lh", 38.0, 8.0, self.WINDOW_START + timedelta(minutes=30)),
            Ping("lh", 37.5, 9.0, self.WINDOW_END + timedelta(hours=1)),
        ]

    def test_collapses_inside_window(self):
        t = self.WINDOW_START + timedelta(hours=1)
        result = self._table().apply(("lh", "Longhaul"), self._pings()[:2], t)
        assert len(result) == 1
        assert result[0].lat == 39.879
        assert result[0].timestamp == t

    def test_rewrites_window_pings_after_window(self):
        t = self.WINDOW_END + timedelta(hours=2)
        result = self._table().apply(("lh", "Longhaul"), self._pings(), t)
        # Pre-window ping is discarded, in-window ping moved, later ping untouched
        assert len(result) == 2
        assert (result[0].lat, result[0].lon) == (39.879, 4.3077)
        assert result[0].timestamp == self.WINDOW_START + timedelta(minutes=30)
        assert result[1].lat == 37.5

    def test_other_vessels_untouched(self):
        pings = self._pings()
        assert self._table().apply(("other", "Alma"), pings, self.WINDOW_END) == pings

    def test_empty_window_rejected(self):
        with pytest.raises(ValueError):
            TelemetryOverride.from_record({
                "vessel_key": "x",
                "window_start": "2025-09-04T12:00:00Z",
                "window_end": "2025-09-04T12:00:00Z",
                "lat": 0,
                "lon": 0,
            })

    def test_classifier_applies_overrides(self):
        classifier = StatusClassifier(overrides=self._table())
        raw = [p.to_dict() for p in self._pings()]
        view = classifier.describe("lh", raw, self.WINDOW_START + timedelta(hours=1), name="Longhaul")
        assert view.status == StatusLabel.ACTIVE
        assert len(view.visible_pings) == 1
        assert view.latest_position.lat == 39.879

    def test_load_missing_file(self, tmp_path):
        assert len(OverrideTable.load(tmp_path / "missing.yaml")) == 0

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "overrides.yaml"
        path.write_text(
            "overrides:\n"
            "  - vessel_key: Longhaul\n"
            "    window_start: '2025-09-04T08:39:00Z'\n"
            "    window_end: '2025-09-04T12:13:45Z'\n"
            "    lat: 39.87904071807861\n"
            "    lon: 4.3077778816223145\n"
        )
        table = OverrideTable.load(path)
        assert len(table) == 1
        assert table.for_vessel("Longhaul")[0].window_end == self.WINDOW_END
