"""
Logging setup for the flotilla timeline backend (loguru).

Sinks:
    - stderr, coloured, at the configured level
    - one JSONL audit file per pipeline component (synthesizer, ingestion,
      playback), fed by loggers bound through ``get_logger``
    - a rotating ``application.log`` with everything

LOG_DIR and LOG_LEVEL environment variables override the defaults.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger


class LogConfig:
    """Sink configuration shared by the API, the CLI scripts and the timeline core."""

    LOG_DIR = Path(os.environ.get("LOG_DIR", "data/logs"))
    LOG_FORMAT = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[component]}</cyan> | "
        "<level>{message}</level>"
    )

    # Components that get their own JSONL audit file
    COMPONENTS = ("synthesizer", "ingestion", "playback")

    @classmethod
    def setup(
        cls,
        log_level: str = "INFO",
        enable_json: bool = True,
        log_dir: Optional[Union[str, Path]] = None,
    ):
        """
        Replace all loguru sinks with the timeline set.

        Args:
            log_level: Minimum level for stderr and application.log
            enable_json: Write per-component JSONL audit files
            log_dir: Directory for file sinks (defaults to LOG_DIR)
        """
        directory = Path(log_dir) if log_dir is not None else cls.LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)

        logger.remove()
        logger.configure(extra={"component": "app"})

        logger.add(sys.stderr, format=cls.LOG_FORMAT, level=log_level, colorize=True)

        if enable_json:
            # Component names are dotted ("synthesizer.service"); route on the prefix
            for component in cls.COMPONENTS:
                logger.add(
                    directory / f"{component}.jsonl",
                    format="{message}",
                    level="INFO",
                    rotation="1 day",
                    retention="30 days",
                    compression="zip",
                    serialize=True,
                    filter=lambda record, comp=component: (
                        record["extra"].get("component", "").split(".")[0] == comp
                    ),
                )

        logger.add(
            directory / "application.log",
            format=cls.LOG_FORMAT,
            level=log_level,
            rotation="500 MB",
            retention="7 days",
            compression="zip",
        )

        logger.info(f"Logging initialized at level {log_level} in {directory}")


def get_logger(component: str):
    """
    Logger bound to a pipeline component.

    The first dotted segment picks the JSONL audit file, so
    ``get_logger("playback.controller")`` lands in ``playback.jsonl``.

    Example:
        >>> from src.utils.logging_config import get_logger
        >>> logger = get_logger("synthesizer.frames")
        >>> logger.info("Synthesized frames", frame_count=12)
    """
    return logger.bind(component=component)


try:
    LogConfig.setup(log_level=os.environ.get("LOG_LEVEL", "INFO"), enable_json=True)
except OSError as e:
    # Read-only or missing log directory: keep console logging only
    logging.basicConfig(level=logging.INFO)
    logging.warning(f"File logging disabled: {e}")
