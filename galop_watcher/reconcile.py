"""
Reconcile module for the Galop Watcher pipeline.

This module turns a freshly scraped batch into change events by comparing
it with the SeenStore carried over from previous runs:

- new: keys never seen before
- changed: known keys whose status differs from the stored one
- unchanged: known keys with the same status
- confirmed: on the first run of a period, every record whose status
  passes the confirmed predicate, whatever its other classification

reconcile() performs no I/O. The caller loads the store, passes it in,
and persists the updated copy returned in the result.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from galop_watcher.records import Record, dedupe_batch, record_key, validate_batch
from galop_watcher.utils import get_logger


# Module logger
logger = get_logger("reconcile")

STATUS_FIELD = "status"
LAST_SEEN_FIELD = "lastSeenAt"


StatusPredicate = Callable[[str], bool]


def never_confirmed(status: str) -> bool:
    """Default predicate: no status counts as confirmed."""
    return False


def status_prefix_predicate(prefix: str) -> StatusPredicate:
    """
    Build a predicate matching statuses that start with a prefix.

    Matching ignores case and surrounding whitespace, so "dp-p (2)"
    matches the prefix "DP-P".

    Args:
        prefix: Status prefix denoting a confirmed participant.

    Returns:
        Predicate taking a status string.
    """
    wanted = prefix.strip().upper()

    def is_confirmed(status: str) -> bool:
        if not wanted:
            return False
        return (status or "").strip().upper().startswith(wanted)

    return is_confirmed


def select_confirmed(records: Iterable[Record], is_confirmed_status: StatusPredicate) -> List[Record]:
    """Return the records whose status is confirmed, in order."""
    return [record for record in records if is_confirmed_status(record.status)]


def now_millis() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class SeenStore:
    """
    Ordered mapping of record key to last known status and timestamp.

    Entries are kept most-recent-update-last: updating a key moves it to
    the end, so trimming from the front drops the least recently seen
    entries first.
    """

    def __init__(self, entries: Optional[Iterable[Tuple[str, Dict[str, Any]]]] = None):
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for key, entry in entries or []:
            self._entries.pop(key, None)
            self._entries[key] = dict(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SeenStore):
            return NotImplemented
        return self.to_pairs() == other.to_pairs()

    def __repr__(self) -> str:
        return f"SeenStore(entries={len(self._entries)})"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the entry for a key, or None."""
        entry = self._entries.get(key)
        return dict(entry) if entry is not None else None

    def status_of(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry.get(STATUS_FIELD) if entry is not None else None

    def observe(self, key: str, status: str, seen_at: int, metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Record an observation of a key.

        The status is overwritten, lastSeenAt never moves backwards, new
        metadata is merged over the stored one, and the key moves to the
        end of the store.

        Args:
            key: Record key.
            status: Status observed in this run.
            seen_at: Observation time in epoch milliseconds.
            metadata: Passthrough values to keep alongside the entry.
        """
        previous = self._entries.pop(key, None) or {}

        entry = dict(previous)
        if metadata:
            entry.update(metadata)

        entry[STATUS_FIELD] = status
        previous_seen = previous.get(LAST_SEEN_FIELD)
        if isinstance(previous_seen, (int, float)) and previous_seen > seen_at:
            entry[LAST_SEEN_FIELD] = previous_seen
        else:
            entry[LAST_SEEN_FIELD] = seen_at

        self._entries[key] = entry

    def copy(self) -> "SeenStore":
        return SeenStore(self.to_pairs())

    def to_pairs(self) -> List[List[Any]]:
        """Serialize to [key, entry] pairs, oldest update first."""
        return [[key, dict(entry)] for key, entry in self._entries.items()]

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[str, Dict[str, Any]]]) -> "SeenStore":
        return cls(pairs)


@dataclass
class ReconcileOptions:
    """
    Options for a reconciliation pass.

    Attributes:
        force: Report every record as new, for manual re-notification.
        is_first_of_period: Also surface every confirmed record.
        is_confirmed_status: Predicate telling whether a status is confirmed.
    """
    force: bool = False
    is_first_of_period: bool = False
    is_confirmed_status: StatusPredicate = never_confirmed


@dataclass
class ChangedRecord:
    """A record whose status changed since the previous run."""
    record: Record
    old_status: str

    @property
    def status(self) -> str:
        return self.record.status

    @property
    def key(self) -> str:
        return record_key(self.record)


@dataclass
class ReconcileResult:
    """Classification of a batch plus the store to persist."""
    new: List[Record] = field(default_factory=list)
    changed: List[ChangedRecord] = field(default_factory=list)
    unchanged: List[Record] = field(default_factory=list)
    confirmed: List[Record] = field(default_factory=list)
    store: SeenStore = field(default_factory=SeenStore)

    @property
    def has_updates(self) -> bool:
        """True when there is anything to notify about."""
        return bool(self.new or self.changed or self.confirmed)

    def summary(self) -> Dict[str, int]:
        return {
            "new_count": len(self.new),
            "changed_count": len(self.changed),
            "unchanged_count": len(self.unchanged),
            "confirmed_count": len(self.confirmed),
            "store_count": len(self.store),
        }


def reconcile(
    batch: Iterable[Record],
    store: SeenStore,
    options: Optional[ReconcileOptions] = None,
    now: Optional[int] = None
) -> ReconcileResult:
    """
    Classify a scraped batch against the previously seen records.

    Pipeline:
    1. Reject the batch if any record lacks identity fields
    2. Drop in-batch duplicates, first occurrence wins
    3. Classify each record as new, changed or unchanged and refresh
       its store entry
    4. In force mode, report everything as new
    5. On the first run of a period, collect confirmed records

    The input store is not modified.

    Args:
        batch: Records in source order.
        store: Store loaded from the previous run.
        options: Force and first-of-period settings.
        now: Observation time in epoch milliseconds. Defaults to now.

    Returns:
        ReconcileResult with the four lists and the updated store.

    Raises:
        InvalidRecordError: If any record lacks identity fields.
    """
    options = options or ReconcileOptions()
    seen_at = now if now is not None else now_millis()

    records = dedupe_batch(validate_batch(batch))
    updated = store.copy()
    result = ReconcileResult(store=updated)

    for record in records:
        key = record_key(record)
        previous_status = updated.status_of(key)

        if key not in updated:
            result.new.append(record)
        elif previous_status != record.status:
            result.changed.append(ChangedRecord(record=record, old_status=previous_status or ""))
            logger.debug(f"Status changed for {key}: {previous_status} -> {record.status}")
        else:
            result.unchanged.append(record)

        updated.observe(key, record.status, seen_at, record.metadata)

    if options.force:
        logger.info(f"Force mode: reporting all {len(records)} record(s) as new")
        result.new = list(records)
        result.changed = []
        result.unchanged = []

    if options.is_first_of_period:
        result.confirmed = select_confirmed(records, options.is_confirmed_status)
        logger.info(f"First run of period: {len(result.confirmed)} confirmed record(s)")

    logger.info(
        f"Reconciliation complete: "
        f"{len(records)} unique, "
        f"{len(result.new)} new, "
        f"{len(result.changed)} changed, "
        f"{len(result.unchanged)} unchanged"
    )

    return result
