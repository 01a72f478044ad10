"""
IngestionService — Pulls the upstream vessel feed and appends pings to the position store.
"""

from __future__ import annotations

import json
import os
import time
from typing import Any, Callable, Mapping, Optional

import requests

from src.api.position_store import PositionStore, VesselRecord
from src.timeline.types import Ping
from src.utils.config_loader import FeedConfig
from src.utils.logging_config import get_logger

logger = get_logger("ingestion.feed")


class FeedUnavailableError(RuntimeError):
    """The upstream feed could not be read after all retry attempts."""


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def fetch_feed(
    config: FeedConfig,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[dict]:
    """
    Download the vessel list from the upstream feed.

    Makes up to ``config.max_retries`` attempts with a fixed delay between
    them. The bearer token is read from the environment variable named by
    ``config.api_token_env`` when set.

    Returns:
        The ``data`` array of the feed response

    Raises:
        FeedUnavailableError: every attempt failed or the body is not a feed
    """
    http = session or requests.Session()
    headers = {"Content-Type": "application/json"}
    token = os.environ.get(config.api_token_env)
    if token:
        headers["Authorization"] = f"Bearer {token}"

    last_error: Optional[Exception] = None
    for attempt in range(1, config.max_retries + 1):
        try:
            response = http.get(config.url, headers=headers, timeout=config.timeout_seconds)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            last_error = e
            logger.warning(f"Feed request attempt {attempt}/{config.max_retries} failed: {e}")
            if attempt < config.max_retries:
                sleep(config.retry_delay_seconds)
            continue

        data = body.get("data") if isinstance(body, Mapping) else None
        if not isinstance(data, list):
            raise FeedUnavailableError("Feed response has no 'data' array")
        logger.info(f"Fetched {len(data)} vessels from feed")
        return data

    raise FeedUnavailableError(
        f"Feed unavailable after {config.max_retries} attempts: {last_error}"
    ) from last_error


def parse_vessel(payload: Mapping[str, Any]) -> tuple[VesselRecord, list[Ping]]:
    """
    Convert one feed entry into a vessel record and its pings.

    ``positions`` may be a JSON-encoded string or a list. The top-level
    current position is added when its timestamp is not already present.

    Raises:
        ValueError, TypeError: the entry or any of its positions is malformed
    """
    if not isinstance(payload, Mapping):
        raise TypeError(f"Vessel entry must be a mapping, got {type(payload).__name__}")

    feed_id = _optional_str(payload.get("id"))
    if feed_id is None:
        raise ValueError("Vessel entry has no id")

    record = VesselRecord(
        feed_id=feed_id,
        name=_optional_str(payload.get("name")) or feed_id,
        mmsi=_optional_str(payload.get("mmsi")),
        origin=_optional_str(payload.get("origin")),
        vessel_type=_optional_str(payload.get("vessel_type") or payload.get("type")),
    )

    raw_positions = payload.get("positions") or []
    if isinstance(raw_positions, str):
        try:
            raw_positions = json.loads(raw_positions)
        except json.JSONDecodeError as e:
            raise ValueError(f"positions is not valid JSON: {e}") from e
    if not isinstance(raw_positions, list):
        raise TypeError(f"positions must be a list, got {type(raw_positions).__name__}")

    pings = [Ping.from_payload(feed_id, p) for p in raw_positions]

    if payload.get("latitude") is not None and payload.get("timestamp_utc") is not None:
        current = Ping.from_payload(feed_id, payload)
        if all(p.timestamp != current.timestamp for p in pings):
            pings.append(current)

    pings.sort(key=lambda p: p.timestamp)
    return record, pings


class IngestionService:
    """Fetches the feed and stores vessels in fixed-size groups."""

    def __init__(
        self,
        position_store: PositionStore,
        config: Optional[FeedConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self._store = position_store
        self.config = config or FeedConfig()
        self._session = session
        self._runs = 0
        self._last_result: Optional[dict] = None

    def ingest(self, entries: list[Any]) -> dict:
        """
        Parse and store already-fetched feed entries.

        Malformed vessels are logged and skipped; the rest are written in
        groups of ``vessel_batch_size``.
        """
        t0 = time.perf_counter()
        parsed: list[tuple[VesselRecord, list[Ping]]] = []
        skipped: list[str] = []
        present: set[str] = set()
        for entry in entries:
            feed_id = _optional_str(entry.get("id")) if isinstance(entry, Mapping) else None
            if feed_id is not None:
                present.add(feed_id)
            try:
                parsed.append(parse_vessel(entry))
            except (TypeError, ValueError) as e:
                key = entry.get("id") if isinstance(entry, Mapping) else repr(entry)[:40]
                logger.warning(f"Skipping malformed vessel {key}: {e}")
                skipped.append(str(key))

        inserted = 0
        size = self.config.vessel_batch_size
        for i in range(0, len(parsed), size):
            group = parsed[i:i + size]
            inserted += self._store.store_group(group)
            logger.debug(f"Stored vessel group {i // size + 1} ({len(group)} vessels)")

        # Presence in the feed keeps a vessel active even if its payload was skipped
        deactivated = self._store.deactivate_missing(present)

        self._runs += 1
        elapsed_ms = (time.perf_counter() - t0) * 1000
        logger.info(
            f"Ingested {len(parsed)} vessels, {inserted} new pings "
            f"({len(skipped)} skipped, {deactivated} deactivated) in {elapsed_ms:.0f}ms"
        )
        self._last_result = {
            "vessels": len(parsed),
            "pings_inserted": inserted,
            "skipped_vessels": skipped,
            "deactivated": deactivated,
        }
        return self._last_result

    def run(self) -> dict:
        """Fetch the feed and store it. Nothing is written if the fetch fails."""
        entries = fetch_feed(self.config, self._session)
        return self.ingest(entries)

    def get_status(self) -> dict:
        """Return ingestion status summary."""
        return {
            "runs": self._runs,
            "last_result": self._last_result,
        }
