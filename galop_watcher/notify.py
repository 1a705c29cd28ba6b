"""
Notify module for the Galop Watcher pipeline.

This module renders reconciliation results as chat messages:
- one line per record, with masked markdown links where URLs are known
- one section per event type (new, status changed, confirmed)
- sections packed into chunks that fit the chat message size limit

Delivery is left to a callable supplied by the caller. The default one
only logs the messages; webhook and spreadsheet sinks live outside this
package.
"""

import re
from typing import Callable, List, Optional

from galop_watcher.records import Record
from galop_watcher.reconcile import ChangedRecord, ReconcileResult
from galop_watcher.utils import DEFAULT_MESSAGE_BUDGET, get_logger


# Module logger
logger = get_logger("notify")

LINE_SEPARATOR = "\n"

HEADER_NEW = "🆕 **Nouveaux engagements - {period}**"
HEADER_CHANGED = "🔄 **Statut mis à jour - {period}**"
HEADER_CONFIRMED = "✅ **Partants confirmés - {period}**"

HORSE_URL_KEYS = ("horse_url", "horseUrl")
RACE_URL_KEYS = ("race_url", "raceUrl")
CATEGORY_KEYS = ("category", "cat")

CLASSE_PATTERN = re.compile(r"Classe\s*(\d)", re.IGNORECASE)


Deliver = Callable[[List[str]], None]


class DeliveryError(Exception):
    """Raised by a delivery callable when messages could not be sent."""

    def __init__(self, message: str, delivered: int = 0):
        super().__init__(message)
        self.delivered = delivered


def clean_horse_name(name: Optional[str]) -> str:
    """
    Remove the 'PS.' markers the federation appends to horse names.

    Country, sex and age suffixes are kept.
    """
    if not name:
        return ""
    return name.replace(".PS.", ".").replace("PS.", "").strip()


def clean_category(category: Optional[str]) -> str:
    """
    Tidy a race category: ((Classe 2)) becomes (C2).

    Args:
        category: Raw category text.

    Returns:
        Cleaned category, empty string if none.
    """
    if not category:
        return ""

    cleaned = category
    while "((" in cleaned or "))" in cleaned:
        cleaned = cleaned.replace("((", "(").replace("))", ")")

    return CLASSE_PATTERN.sub(r"C\1", cleaned)


def format_link(text: str, url: Optional[str]) -> str:
    """
    Format a masked markdown link, or plain text without a usable URL.

    Args:
        text: Link text.
        url: Target URL; only http(s) URLs produce a link.

    Returns:
        '[text](url)' or text.
    """
    label = text or "-"
    if url and url.startswith(("http://", "https://")):
        return f"[{label}]({url})"
    return label


def _metadata_value(record: Record, keys) -> str:
    for key in keys:
        value = record.metadata.get(key)
        if value:
            return str(value)
    return ""


def _record_fields(record: Record) -> str:
    horse = format_link(clean_horse_name(record.subject), _metadata_value(record, HORSE_URL_KEYS))
    event = format_link(record.event or record.location, _metadata_value(record, RACE_URL_KEYS))

    parts = [f"**{horse}**", record.date or "-"]
    if record.event and record.location:
        parts.append(record.location)
    parts.append(event)

    category = clean_category(_metadata_value(record, CATEGORY_KEYS))
    if category:
        parts.append(category)
    if record.extra:
        parts.append(record.extra)

    return " - ".join(parts)


def format_new_line(record: Record) -> str:
    """Render a newly seen record."""
    return f"• {_record_fields(record)} - Statut: {record.status or '-'}"


def format_changed_line(changed: ChangedRecord) -> str:
    """Render a status change as 'old → new'."""
    return (
        f"• {_record_fields(changed.record)} - "
        f"Statut: {changed.old_status or '-'} → {changed.status or '-'}"
    )


def format_confirmed_line(record: Record) -> str:
    """Render a confirmed participation."""
    return f"• {_record_fields(record)} - {record.status or '-'}"


def chunk_lines(
    lines: List[str],
    budget: int = DEFAULT_MESSAGE_BUDGET,
    header: Optional[str] = None
) -> List[str]:
    """
    Greedily pack lines into messages of at most `budget` characters.

    Lines are joined with newlines and never split; order is preserved.
    When a header is given it opens every chunk and counts toward the
    budget. A single line longer than the room left by the header is
    sent alone, which is the only case a chunk exceeds the budget.

    Args:
        lines: Lines to pack.
        budget: Maximum characters per chunk.
        header: Optional first line of every chunk.

    Returns:
        List of chunk strings.

    Raises:
        ValueError: If budget is not positive or the header leaves no room.
    """
    if budget <= 0:
        raise ValueError(f"Chunk budget must be positive, got {budget}")

    prefix_length = len(header) + len(LINE_SEPARATOR) if header else 0
    if header and prefix_length >= budget:
        raise ValueError(f"Header of {len(header)} characters leaves no room in a budget of {budget}")

    def render(buffer: List[str]) -> str:
        body = LINE_SEPARATOR.join(buffer)
        return f"{header}{LINE_SEPARATOR}{body}" if header else body

    chunks: List[str] = []
    buffer: List[str] = []
    length = 0

    for line in lines:
        candidate = length + len(LINE_SEPARATOR) + len(line) if buffer else len(line)

        if buffer and prefix_length + candidate > budget:
            chunks.append(render(buffer))
            buffer = [line]
            length = len(line)
        else:
            buffer.append(line)
            length = candidate

        if prefix_length + len(line) > budget:
            logger.warning(f"Line of {len(line)} characters exceeds the chunk budget of {budget}")

    if buffer:
        chunks.append(render(buffer))

    return chunks


def build_messages(
    result: ReconcileResult,
    period: str,
    budget: int = DEFAULT_MESSAGE_BUDGET
) -> List[str]:
    """
    Build the chat messages for a reconciliation result.

    Sections come in a fixed order (new, changed, confirmed), each with
    its own header and chunked on its own. Empty sections are skipped.

    Args:
        result: Output of reconcile().
        period: Logical day shown in the headers.
        budget: Maximum characters per message.

    Returns:
        Ordered list of messages, empty if there is nothing to report.
    """
    sections = [
        (HEADER_NEW, [format_new_line(r) for r in result.new]),
        (HEADER_CHANGED, [format_changed_line(c) for c in result.changed]),
        (HEADER_CONFIRMED, [format_confirmed_line(r) for r in result.confirmed]),
    ]

    messages: List[str] = []
    for header, lines in sections:
        if lines:
            messages.extend(chunk_lines(lines, budget, header.format(period=period)))

    logger.info(f"Built {len(messages)} message(s)")

    return messages


def log_sink(messages: List[str]) -> None:
    """Default delivery: log each message instead of sending it."""
    for i, message in enumerate(messages, 1):
        logger.info(f"Message {i}/{len(messages)} ({len(message)} chars):\n{message}")
