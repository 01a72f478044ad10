"""
Timeline Engine - Temporal vessel-state reconstruction

This module turns irregular vessel ping streams into scrubbable timeline
frames and derives each vessel's status and visible history at any point
in time.

Components:
- types: Ping, VesselSnapshot, TimelineFrame, StatusLabel
- synthesizer: Adaptive sampling + forward-fill frame builder
- status_classifier: Time/geofence status rules and per-vessel view
- overrides: Declarative corrections for known-bad telemetry
- playback: Cursor, play/pause/seek controller

Example:
    >>> from src.timeline import FrameSynthesizer
    >>> plan = FrameSynthesizer().synthesize(pings_by_vessel, None, {}, now)
"""

__version__ = "0.1.0"

from .types import FrameCursor, Ping, StatusLabel, TimelineFrame, VesselSnapshot
from .synthesizer import FrameSynthesizer, SynthesisPlan, VesselMeta
from .status_classifier import StatusClassifier, VesselView, classify, visible_position
from .overrides import OverrideTable, TelemetryOverride
from .playback import PlaybackController, TimeRange

__all__ = [
    "FrameCursor",
    "Ping",
    "StatusLabel",
    "TimelineFrame",
    "VesselSnapshot",
    "FrameSynthesizer",
    "SynthesisPlan",
    "VesselMeta",
    "StatusClassifier",
    "VesselView",
    "classify",
    "visible_position",
    "OverrideTable",
    "TelemetryOverride",
    "PlaybackController",
    "TimeRange",
]
