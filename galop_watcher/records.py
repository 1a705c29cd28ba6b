"""
Record module for the Galop Watcher pipeline.

A Record is one row of a scraped engagement or result table. Its identity
is not stored: it is derived from the identity fields by normalizing them
into a key, so that two scrapes of the same row map to the same entry even
when whitespace, case or apostrophes drift between runs.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from galop_watcher.utils import get_logger


# Module logger
logger = get_logger("records")

KEY_SEPARATOR = " | "

IDENTITY_FIELDS = ("subject", "date", "location", "event", "extra")

# Apostrophe-like characters seen in scraped French race and horse names
APOSTROPHE_PATTERN = re.compile("[’‘ʼ´`]")
WHITESPACE_PATTERN = re.compile(r"\s+")

# Row keys accepted for each record field, in lookup order. The French
# names are those produced by the engagement and result table scrapers.
ROW_FIELD_ALIASES = {
    "subject": ("subject", "horse"),
    "date": ("date",),
    "location": ("location", "track", "hippodrome"),
    "event": ("event", "race"),
    "extra": ("extra", "dist", "distance"),
    "status": ("status", "statut", "place"),
}


class InvalidRecordError(ValueError):
    """Raised when a batch contains a record without usable identity fields."""

    def __init__(self, message: str, index: Optional[int] = None, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.index = index
        self.missing = missing or []


def normalize_text(value: Optional[str]) -> str:
    """
    Normalize scraped text: collapse whitespace, trim, unify apostrophes.

    Case is preserved; only keys are lowercased.

    Args:
        value: Raw text, possibly None.

    Returns:
        Normalized text string.
    """
    if not value:
        return ""

    text = WHITESPACE_PATTERN.sub(" ", str(value))
    text = APOSTROPHE_PATTERN.sub("'", text)
    return text.strip()


@dataclass
class Record:
    """
    One scraped row.

    Attributes:
        subject: Horse name.
        date: Race date as displayed by the source (e.g. 01/01/2026).
        location: Racecourse.
        event: Race name.
        extra: Distance or other disambiguating detail.
        status: Tracked status (engagement status or finishing place).
        metadata: Passthrough values such as horse_url and race_url.
    """
    subject: str
    date: str
    location: str = ""
    event: str = ""
    extra: str = ""
    status: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Normalized identity key used for deduplication and store lookup."""
        return record_key(self)

    def missing_identity_fields(self) -> List[str]:
        """
        List the identity requirements this record fails.

        A record needs a subject, a date, and a location or an event.
        """
        missing = []
        if not normalize_text(self.subject):
            missing.append("subject")
        if not normalize_text(self.date):
            missing.append("date")
        if not normalize_text(self.location) and not normalize_text(self.event):
            missing.append("location/event")
        return missing

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a flat dictionary, metadata included."""
        data: Dict[str, Any] = {
            "subject": self.subject,
            "date": self.date,
            "location": self.location,
            "event": self.event,
            "extra": self.extra,
            "status": self.status,
        }
        data.update(self.metadata)
        return data

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Record":
        """
        Build a Record from a scraped row dictionary.

        Accepts the canonical field names as well as the table names used
        by the scrapers (horse, track, hippodrome, race, dist, distance,
        statut, place). Keys that are not identity or status fields are
        kept as metadata when non-empty.

        Args:
            row: Mapping of column names to cell values.

        Returns:
            Record with normalized text values.
        """
        values: Dict[str, str] = {}
        consumed = set()

        for field_name, aliases in ROW_FIELD_ALIASES.items():
            values[field_name] = ""
            for alias in aliases:
                if alias in row:
                    consumed.add(alias)
                    if not values[field_name]:
                        values[field_name] = normalize_text(row.get(alias))

        metadata = {
            name: value
            for name, value in row.items()
            if name not in consumed and value not in (None, "")
        }

        return cls(metadata=metadata, **values)


def record_key(record: Record) -> str:
    """
    Compute the deduplication key of a record.

    The identity fields are joined with a fixed separator, normalized and
    lowercased. An empty string means the record has no identity at all.

    Args:
        record: Record to key.

    Returns:
        Normalized key string.
    """
    parts = [getattr(record, name) or "" for name in IDENTITY_FIELDS]
    if not any(normalize_text(part) for part in parts):
        return ""

    return normalize_text(KEY_SEPARATOR.join(parts)).lower()


def validate_batch(batch: Iterable[Record]) -> List[Record]:
    """
    Check that every record of a batch has usable identity fields.

    The whole batch is rejected on the first bad record: a malformed row
    means the scraper produced garbage.

    Args:
        batch: Records to check.

    Returns:
        The batch as a list.

    Raises:
        InvalidRecordError: If any record lacks subject, date, or both
                            location and event.
    """
    records = list(batch)

    for index, record in enumerate(records):
        missing = record.missing_identity_fields()
        if missing:
            raise InvalidRecordError(
                f"Record {index} is missing identity field(s): "
                f"{', '.join(missing)} ({record.to_dict()})",
                index=index,
                missing=missing
            )

    logger.debug(f"Validated batch of {len(records)} record(s)")
    return records


def dedupe_batch(batch: Iterable[Record]) -> List[Record]:
    """
    Remove records whose key already appeared earlier in the batch.

    The first occurrence wins and the original order is kept.

    Args:
        batch: Records in source order.

    Returns:
        Deduplicated list of records.
    """
    seen_keys = set()
    unique: List[Record] = []

    for record in batch:
        key = record_key(record)
        if key in seen_keys:
            logger.debug(f"Dropping duplicate row: {key}")
            continue
        seen_keys.add(key)
        unique.append(record)

    return unique


def records_from_rows(rows: Iterable[Dict[str, Any]]) -> List[Record]:
    """Convert scraped row dictionaries to records, in order."""
    return [Record.from_row(row) for row in rows]
