"""
Store module for the Galop Watcher pipeline.

This module handles the files carried between runs:
- the SeenStore, as a list of [key, entry] pairs capped FIFO on save
- the run state, recording the last logical day processed
- the confirmed snapshot consumed by the race alert job
- the batch produced by the external fetch step

Reconciliation itself never touches these files; the runner loads state
here, hands it to reconcile() and saves the result.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from galop_watcher.records import Record, records_from_rows
from galop_watcher.reconcile import SeenStore
from galop_watcher.utils import (
    DEFAULT_STORE_CAP,
    DEFAULT_STORE_PATH,
    get_logger,
    safe_read_json,
    safe_write_json,
)


# Module logger
logger = get_logger("store")


class BatchLoadError(Exception):
    """Raised when the fetched batch file cannot be read."""

    def __init__(self, message: str, filepath: Optional[str] = None):
        super().__init__(message)
        self.filepath = filepath


def _utc_timestamp(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    # Naive datetimes are taken as UTC
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def apply_fifo_cap(pairs: List[List[Any]], cap: int = DEFAULT_STORE_CAP) -> List[List[Any]]:
    """
    Keep only the `cap` most recently updated pairs.

    Pairs are ordered oldest update first, so the front is dropped.

    Args:
        pairs: [key, entry] pairs, most-recent-update-last.
        cap: Maximum number of pairs to keep.

    Returns:
        Trimmed list of pairs.

    Raises:
        ValueError: If cap is negative.
    """
    if cap < 0:
        raise ValueError(f"Store cap must not be negative, got {cap}")

    if len(pairs) <= cap:
        return list(pairs)

    dropped = len(pairs) - cap
    logger.info(f"Store cap {cap} exceeded, evicting {dropped} oldest entr{'y' if dropped == 1 else 'ies'}")
    return list(pairs[dropped:])


def load_store(filepath: str = DEFAULT_STORE_PATH) -> SeenStore:
    """
    Load the SeenStore from a JSON pair list.

    A missing or unreadable file gives an empty store; pairs that do
    not have the [key, entry] shape are skipped.

    Args:
        filepath: Path to the store file.

    Returns:
        SeenStore in stored order.
    """
    logger.debug(f"Loading seen store from {filepath}")

    data = safe_read_json(filepath, default=[])

    if not isinstance(data, list):
        logger.warning(f"Unexpected store format in {filepath}, starting with an empty store")
        return SeenStore()

    pairs = []
    for item in data:
        if (
            isinstance(item, (list, tuple))
            and len(item) == 2
            and isinstance(item[0], str)
            and isinstance(item[1], dict)
        ):
            pairs.append((item[0], item[1]))
        else:
            logger.warning(f"Skipping malformed store entry in {filepath}: {item!r}")

    store = SeenStore.from_pairs(pairs)
    logger.info(f"Loaded {len(store)} seen entr{'y' if len(store) == 1 else 'ies'}")

    return store


def save_store(
    store: SeenStore,
    filepath: str = DEFAULT_STORE_PATH,
    cap: int = DEFAULT_STORE_CAP
) -> bool:
    """
    Save the SeenStore after applying the FIFO cap.

    Args:
        store: Store returned by reconcile().
        filepath: Path to the store file.
        cap: Maximum number of entries to keep.

    Returns:
        True if save was successful, False otherwise.
    """
    pairs = apply_fifo_cap(store.to_pairs(), cap)

    success = safe_write_json(filepath, pairs)

    if success:
        logger.info(f"Successfully saved {len(pairs)} seen entr{'y' if len(pairs) == 1 else 'ies'} to {filepath}")
    else:
        logger.error(f"Failed to save seen store to {filepath}")

    return success


def load_batch(filepath: str) -> List[Record]:
    """
    Load the batch written by the fetch step.

    Accepts either a JSON list of row objects or an object with a
    'rows' list.

    Args:
        filepath: Path to the batch file.

    Returns:
        Records in source order.

    Raises:
        BatchLoadError: If the file is missing, invalid or has an
                        unexpected shape.
    """
    path = Path(filepath)
    if not path.exists():
        raise BatchLoadError(f"Batch file not found: {filepath}", filepath=filepath)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise BatchLoadError(f"Could not read batch file {filepath}: {e}", filepath=filepath)

    if isinstance(data, dict):
        data = data.get("rows")

    if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
        raise BatchLoadError(
            f"Batch file {filepath} must contain a list of row objects",
            filepath=filepath
        )

    records = records_from_rows(data)
    logger.info(f"Loaded {len(records)} row(s) from {filepath}")

    return records


def load_run_state(filepath: str) -> Dict[str, Any]:
    """
    Load the run state written by the previous run.

    Returns:
        Dictionary with 'last_period' and 'last_run_at', empty if unknown.
    """
    data = safe_read_json(filepath, default={})

    if not isinstance(data, dict):
        logger.warning(f"Unexpected run state format in {filepath}, ignoring it")
        return {}

    return data


def save_run_state(filepath: str, period: str, now: Optional[datetime] = None) -> bool:
    """Record the logical day processed by this run."""
    data = {
        "last_period": period,
        "last_run_at": _utc_timestamp(now),
    }

    success = safe_write_json(filepath, data)
    if not success:
        logger.error(f"Failed to save run state to {filepath}")

    return success


def save_confirmed_snapshot(
    records: List[Record],
    filepath: str,
    now: Optional[datetime] = None
) -> bool:
    """
    Write every confirmed record of the current batch for the alert job.

    Args:
        records: Confirmed records, in batch order.
        filepath: Snapshot path.
        now: Snapshot time, defaults to now.

    Returns:
        True if save was successful, False otherwise.
    """
    data = {
        "lastUpdate": _utc_timestamp(now),
        "races": [record.to_dict() for record in records],
    }

    success = safe_write_json(filepath, data)

    if success:
        logger.info(f"Saved {len(records)} confirmed record(s) to {filepath}")
    else:
        logger.error(f"Failed to save confirmed snapshot to {filepath}")

    return success
