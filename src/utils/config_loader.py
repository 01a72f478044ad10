"""
Configuration management for the flotilla timeline backend.
Loads YAML configs with validation and environment variable support.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class FeedConfig(BaseModel):
    """Configuration for the upstream vessel telemetry feed."""

    url: str = Field(
        "https://data.forensic-architecture.org/items/freedom_flotilla_vessels?limit=1000",
        description="Vessel feed endpoint",
    )
    api_token_env: str = Field("FEED_API_TOKEN", description="Environment variable holding the bearer token")
    timeout_seconds: float = Field(30.0, gt=0, description="Per-request timeout")
    max_retries: int = Field(3, ge=1, le=10, description="Attempts before the run fails")
    retry_delay_seconds: float = Field(2.0, ge=0, description="Fixed delay between attempts")

    # Write batching
    vessel_batch_size: int = Field(5, ge=1, description="Vessels processed per group")
    position_batch_size: int = Field(100, ge=1, le=1000, description="Pings per insert statement")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class SynthesizerConfig(BaseModel):
    """Configuration for timeline frame synthesis."""

    recent_window_hours: float = Field(24.0, gt=0, description="Age below which dense spacing applies")
    recent_spacing_minutes: float = Field(5.0, gt=0, description="Minimum frame spacing for recent data")
    old_spacing_minutes: float = Field(15.0, gt=0, description="Minimum frame spacing for older data")
    match_tolerance_minutes: float = Field(30.0, ge=0, description="Ping-to-frame matching window (±)")
    frame_insert_chunk: int = Field(200, ge=1, le=1000, description="Frames per insert statement")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class ClassifierConfig(BaseModel):
    """Configuration for vessel status classification."""

    destination_lat: float = Field(31.3547, ge=-90, le=90, description="Mission destination latitude")
    destination_lon: float = Field(34.3088, ge=-180, le=180, description="Mission destination longitude")
    proximity_radius_km: float = Field(50.0, gt=0, description="Arrival radius around the destination")
    distance_method: str = Field(
        "equirectangular", pattern="^(equirectangular|haversine)$", description="Distance approximation"
    )
    spawn_window_minutes: float = Field(5.0, ge=0, description="Entrance animation window after first ping")
    overrides_file: str = Field("overrides.yaml", description="Telemetry override table (relative to config dir)")

    class Config:
        """Pydantic config."""
        validate_assignment = True


class PlaybackConfig(BaseModel):
    """Configuration for the playback controller."""

    step_count: int = Field(1000, ge=1, description="Ticks needed to traverse the full range at speed 1")
    default_speed: float = Field(1.0, gt=0, description="Initial playback speed multiplier")
    min_speed: float = Field(0.1, gt=0, description="Lowest allowed speed")
    max_speed: float = Field(100.0, gt=0, description="Highest allowed speed")
    tick_interval_seconds: float = Field(1.0 / 30.0, gt=0, description="Wall-clock delay between ticks")
    min_range_minutes: float = Field(60.0, ge=0, description="Shorter ranges are widened to this length")
    placeholder_hours: float = Field(24.0, gt=0, description="Length of the placeholder range")
    timeline_start_floor: Optional[datetime] = Field(
        None, description="Earliest range start shown, even if data starts earlier"
    )

    class Config:
        """Pydantic config."""
        validate_assignment = True


class APIConfig(BaseModel):
    """Configuration for API server."""

    host: str = Field("0.0.0.0", description="API host")
    port: int = Field(8000, ge=1024, le=65535, description="API port")
    reload: bool = Field(False, description="Auto-reload on code changes")

    # Database (DATABASE_URL env var takes precedence)
    database_url: str = Field("sqlite:///data/timeline.db", description="Database connection URL")

    enable_cors: bool = Field(True, description="Enable CORS")
    cors_origins: list[str] = Field(
        ["http://localhost:3000", "http://localhost:8000"], description="Allowed CORS origins"
    )

    class Config:
        """Pydantic config."""
        validate_assignment = True


class Config:
    """Main configuration manager."""

    def __init__(self, config_dir: Path = Path("config")):
        """
        Initialize configuration manager.

        Args:
            config_dir: Directory containing configuration files
        """
        self.config_dir = Path(config_dir)
        self.feed: Optional[FeedConfig] = None
        self.synthesizer: Optional[SynthesizerConfig] = None
        self.classifier: Optional[ClassifierConfig] = None
        self.playback: Optional[PlaybackConfig] = None
        self.api: Optional[APIConfig] = None

    def load_all(self) -> "Config":
        """Load all configuration files."""
        self.feed = self.load_config("feed.yaml", FeedConfig)
        self.synthesizer = self.load_config("synthesizer.yaml", SynthesizerConfig)
        self.classifier = self.load_config("classifier.yaml", ClassifierConfig)
        self.playback = self.load_config("playback.yaml", PlaybackConfig)
        self.api = self.load_config("api.yaml", APIConfig)
        return self

    def load_config(self, filename: str, config_class: type[BaseModel]) -> BaseModel:
        """
        Load and validate a configuration file.

        Args:
            filename: Config file name
            config_class: Pydantic model class for validation

        Returns:
            Validated configuration object

        Example:
            >>> config = Config()
            >>> synth = config.load_config("synthesizer.yaml", SynthesizerConfig)
            >>> print(f"Recent spacing {synth.recent_spacing_minutes} min")
        """
        filepath = self.config_dir / filename

        if not filepath.exists():
            # Return default configuration
            return config_class()

        with open(filepath, 'r') as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return config_class()

        return config_class(**config_dict)

    @property
    def overrides_path(self) -> Path:
        classifier = self.classifier or ClassifierConfig()
        return self.config_dir / classifier.overrides_file

    def save_config(self, config: BaseModel, filename: str):
        """
        Save configuration to YAML file.

        Args:
            config: Configuration object to save
            filename: Output filename
        """
        filepath = self.config_dir / filename
        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            yaml.dump(config.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False)

    def create_default_configs(self):
        """Create default configuration files if they don't exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        configs = [
            ("feed.yaml", FeedConfig()),
            ("synthesizer.yaml", SynthesizerConfig()),
            ("classifier.yaml", ClassifierConfig()),
            ("playback.yaml", PlaybackConfig()),
            ("api.yaml", APIConfig()),
        ]

        for filename, config in configs:
            filepath = self.config_dir / filename
            if not filepath.exists():
                self.save_config(config, filename)


# Example usage:
if __name__ == "__main__":
    config_manager = Config()
    config_manager.create_default_configs()
    config_manager.load_all()

    print(f"Feed: {config_manager.feed.max_retries} attempts, {config_manager.feed.retry_delay_seconds}s delay")
    print(f"Synthesizer: {config_manager.synthesizer.recent_spacing_minutes} min recent spacing")
    print(f"Classifier: {config_manager.classifier.proximity_radius_km} km arrival radius")
