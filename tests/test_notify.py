"""
Unit tests for the notify module.

Tests cover line rendering, cleanup helpers, chunking boundaries and
message building.
"""

import pytest

from galop_watcher.notify import (
    HEADER_CHANGED,
    HEADER_CONFIRMED,
    HEADER_NEW,
    DeliveryError,
    build_messages,
    chunk_lines,
    clean_category,
    clean_horse_name,
    format_changed_line,
    format_confirmed_line,
    format_link,
    format_new_line,
    log_sink,
)
from galop_watcher.records import Record
from galop_watcher.reconcile import ChangedRecord, ReconcileResult
from galop_watcher.utils import MIN_MESSAGE_BUDGET


# =============================================================================
# Test Data Fixtures
# =============================================================================


@pytest.fixture
def engagement():
    """An engagement with links."""
    return Record(
        subject="Horse A",
        date="01/01/2026",
        location="Paris",
        event="Prix X",
        extra="2400",
        status="ENG",
        metadata={
            "horseUrl": "https://www.france-galop.com/fr/cheval/1",
            "raceUrl": "https://www.france-galop.com/fr/course/1",
            "cat": "((Classe 2))",
        },
    )


@pytest.fixture
def plain_record():
    """A record without links or category."""
    return Record(subject="Horse B", date="02/01/2026", location="Chantilly", status="DP-P")


# =============================================================================
# Cleanup Helper Tests
# =============================================================================


class TestCleanupHelpers:
    """Tests for name and category cleanup."""

    def test_clean_horse_name(self):
        """Test that PS. markers are removed."""
        assert clean_horse_name("HORSE A PS.") == "HORSE A"
        assert clean_horse_name("HORSE.PS. A") == "HORSE. A"
        assert clean_horse_name("HORSE A (GB) H. 4 a.") == "HORSE A (GB) H. 4 a."
        assert clean_horse_name(None) == ""

    def test_clean_category(self):
        """Test that doubled parentheses and Classe are shortened."""
        assert clean_category("((Classe 2))") == "(C2)"
        assert clean_category("(((Maiden)))") == "(Maiden)"
        assert clean_category("classe 1") == "C1"
        assert clean_category("") == ""

    def test_format_link(self):
        """Test masked links for http(s) URLs only."""
        assert format_link("Prix X", "https://example.com/x") == "[Prix X](https://example.com/x)"
        assert format_link("Prix X", "/relative") == "Prix X"
        assert format_link("Prix X", None) == "Prix X"
        assert format_link("", None) == "-"


# =============================================================================
# Line Rendering Tests
# =============================================================================


class TestLineRendering:
    """Tests for per-record lines."""

    def test_new_line(self, engagement):
        """Test the line for a new engagement."""
        line = format_new_line(engagement)

        assert line == (
            "• **[Horse A](https://www.france-galop.com/fr/cheval/1)** - 01/01/2026 - Paris - "
            "[Prix X](https://www.france-galop.com/fr/course/1) - (C2) - 2400 - Statut: ENG"
        )

    def test_changed_line(self, engagement):
        """Test that a change shows the old and new status."""
        engagement.status = "DP-P"

        line = format_changed_line(ChangedRecord(record=engagement, old_status="ENG"))

        assert line.endswith("Statut: ENG → DP-P")

    def test_confirmed_line_without_links(self, plain_record):
        """Test a record without event, links or category."""
        line = format_confirmed_line(plain_record)

        assert line == "• **Horse B** - 02/01/2026 - Chantilly - DP-P"


# =============================================================================
# Chunking Tests
# =============================================================================


class TestChunkLines:
    """Tests for greedy chunking."""

    def test_fifty_lines_budget_hundred(self):
        """Test that no line is split and every chunk fits the budget."""
        lines = [f"{i:02d}".ljust(40, "x") for i in range(50)]

        chunks = chunk_lines(lines, budget=100)

        assert all(len(chunk) <= 100 for chunk in chunks)
        rejoined = [line for chunk in chunks for line in chunk.split("\n")]
        assert rejoined == lines
        assert len(chunks) == 25

    def test_exact_fit(self):
        """Test that a chunk may reach the budget exactly."""
        chunks = chunk_lines(["a" * 49, "b" * 50], budget=100)

        assert chunks == ["a" * 49 + "\n" + "b" * 50]

    def test_header_counts_toward_budget(self):
        """Test that every chunk starts with the header and fits."""
        lines = ["x" * 30 for _ in range(6)]

        chunks = chunk_lines(lines, budget=80, header="HEADER")

        assert all(chunk.startswith("HEADER\n") for chunk in chunks)
        assert all(len(chunk) <= 80 for chunk in chunks)
        assert len(chunks) == 3

    def test_oversized_line_sent_alone(self):
        """Test that a line longer than the budget is never split."""
        long_line = "y" * 150

        chunks = chunk_lines(["a", long_line, "b"], budget=100)

        assert chunks == ["a", long_line, "b"]

    def test_empty_input(self):
        """Test that no lines produce no chunks."""
        assert chunk_lines([], budget=100, header="HEADER") == []

    def test_invalid_budget(self):
        """Test that a non-positive budget is rejected."""
        with pytest.raises(ValueError):
            chunk_lines(["a"], budget=0)

    def test_header_too_long(self):
        """Test that a header filling the budget is rejected."""
        with pytest.raises(ValueError, match="no room"):
            chunk_lines(["a"], budget=10, header="h" * 10)

    def test_minimum_budget_fits_every_header(self):
        """Test that the smallest accepted budget leaves room under each header."""
        line = "x" * 40

        for template in (HEADER_NEW, HEADER_CHANGED, HEADER_CONFIRMED):
            header = template.format(period="2026-01-05")
            chunks = chunk_lines([line], budget=MIN_MESSAGE_BUDGET, header=header)

            assert chunks == [header + "\n" + line]


# =============================================================================
# Message Building Tests
# =============================================================================


class TestBuildMessages:
    """Tests for building messages from a reconcile result."""

    def test_sections_in_order(self, engagement, plain_record):
        """Test that new, changed and confirmed sections come in order."""
        result = ReconcileResult(
            new=[engagement],
            changed=[ChangedRecord(record=plain_record, old_status="ENG")],
            confirmed=[plain_record],
        )

        messages = build_messages(result, "2026-01-01")

        assert len(messages) == 3
        assert messages[0].startswith("🆕 **Nouveaux engagements - 2026-01-01**\n")
        assert messages[1].startswith("🔄 **Statut mis à jour - 2026-01-01**\n")
        assert messages[2].startswith("✅ **Partants confirmés - 2026-01-01**\n")

    def test_empty_sections_skipped(self, engagement):
        """Test that only non-empty sections produce messages."""
        result = ReconcileResult(new=[engagement])

        messages = build_messages(result, "2026-01-01")

        assert len(messages) == 1
        assert "Nouveaux engagements" in messages[0]

    def test_nothing_to_report(self):
        """Test that an empty result produces no messages."""
        assert build_messages(ReconcileResult(), "2026-01-01") == []

    def test_sections_chunked_separately(self, plain_record):
        """Test that a large section is split under the budget."""
        records = [
            Record(subject=f"Horse {i}", date="02/01/2026", location="Chantilly", status="ENG")
            for i in range(40)
        ]
        result = ReconcileResult(new=records)

        messages = build_messages(result, "2026-01-02", budget=300)

        assert len(messages) > 1
        assert all(len(m) <= 300 for m in messages)
        assert all(m.startswith("🆕") for m in messages)


class TestDelivery:
    """Tests for the default sink and delivery errors."""

    def test_log_sink_logs_messages(self, caplog):
        """Test that the default sink logs every message."""
        with caplog.at_level("INFO", logger="galop_watcher.notify"):
            log_sink(["first", "second"])

        assert "Message 1/2" in caplog.text
        assert "second" in caplog.text

    def test_delivery_error_count(self):
        """Test that DeliveryError carries the delivered count."""
        error = DeliveryError("webhook failed", delivered=2)

        assert str(error) == "webhook failed"
        assert error.delivered == 2
