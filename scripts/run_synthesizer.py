#!/usr/bin/env python3
"""
CLI script for running one ingestion + timeline synthesis pass.

Fetches the vessel feed (or reads a saved feed JSON file), appends new
pings to the position store and commits any new timeline frames.
"""

import json
import os
import sys
from pathlib import Path

import click
import pandas as pd

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.api.database import init_db
from src.api.frame_store import FrameStore, FrameStoreError
from src.api.ingestion import FeedUnavailableError, IngestionService
from src.api.position_store import PositionStore
from src.api.synthesis_service import SynthesisService
from src.timeline.synthesizer import FrameSynthesizer
from src.utils.config_loader import Config
from src.utils.logging_config import LogConfig, get_logger

logger = get_logger("synthesizer.cli")


def frames_to_dataframe(frames) -> pd.DataFrame:
    """Flatten frames into one row per (frame, vessel)."""
    rows = [
        {
            "frame_index": frame.frame_index,
            "frame_timestamp": frame.frame_timestamp,
            **snapshot.to_dict(),
        }
        for frame in frames
        for snapshot in frame.vessel_snapshots
    ]
    return pd.DataFrame(
        rows,
        columns=["frame_index", "frame_timestamp", "vessel_id", "name", "lat", "lon", "course", "origin"],
    )


@click.command()
@click.option(
    '--config-dir',
    '-c',
    default='config',
    type=click.Path(),
    help='Directory holding the YAML configuration files'
)
@click.option(
    '--database-url',
    envvar='DATABASE_URL',
    help='Database URL (defaults to api.yaml, then local SQLite)'
)
@click.option(
    '--feed-file',
    '-f',
    type=click.Path(exists=True),
    help='Read the feed from a saved JSON file instead of the upstream URL'
)
@click.option(
    '--skip-ingest',
    is_flag=True,
    help='Only synthesize frames from already-stored pings'
)
@click.option(
    '--export',
    'export_path',
    type=click.Path(),
    help='Write all committed frames to a CSV file after the run'
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Verbose output'
)
def main(config_dir, database_url, feed_file, skip_ingest, export_path, verbose):
    """
    Run the vessel ingestion and timeline synthesizer once.

    Examples:
        # Pull the live feed and append frames
        python scripts/run_synthesizer.py

        # Replay a saved feed dump
        python scripts/run_synthesizer.py -f data/raw/feed.json

        # Re-synthesize from stored pings and export the timeline
        python scripts/run_synthesizer.py --skip-ingest --export results/frames.csv
    """
    if verbose:
        LogConfig.setup(log_level="DEBUG")

    config = Config(Path(config_dir)).load_all()
    session_factory = init_db(database_url or os.environ.get("DATABASE_URL") or config.api.database_url)

    position_store = PositionStore(session_factory, batch_size=config.feed.position_batch_size)
    frame_store = FrameStore(session_factory, chunk_size=config.synthesizer.frame_insert_chunk)

    if not skip_ingest:
        ingestion = IngestionService(position_store, config.feed)
        try:
            if feed_file:
                body = json.loads(Path(feed_file).read_text())
                entries = body.get("data", []) if isinstance(body, dict) else body
                result = ingestion.ingest(entries)
            else:
                result = ingestion.run()
        except FeedUnavailableError as e:
            click.echo(f"❌ Feed unavailable: {e}", err=True)
            sys.exit(2)

        click.echo(
            f"📥 Ingested {result['vessels']} vessels, {result['pings_inserted']} new pings "
            f"({len(result['skipped_vessels'])} skipped)"
        )
        if verbose and result['skipped_vessels']:
            click.echo(f"   Skipped: {', '.join(result['skipped_vessels'])}")

    service = SynthesisService(
        frame_store,
        position_store,
        FrameSynthesizer(config.synthesizer),
        session_factory=session_factory,
    )
    try:
        run = service.run()
    except FrameStoreError as e:
        click.echo(f"❌ Synthesis failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"🎞️  {run['mode']}: {run['frames_written']} frames written")
    if run['last_frame_index'] is not None:
        click.echo(f"   Last frame #{run['last_frame_index']} at {run['last_frame_timestamp']}")

    if export_path:
        df = frames_to_dataframe(frame_store.frames_by_index())
        Path(export_path).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(export_path, index=False)
        click.echo(f"💾 Exported {df['frame_index'].nunique()} frames ({len(df)} rows) to {export_path}")
        logger.info(f"Exported timeline to {export_path}")


if __name__ == '__main__':
    main()
