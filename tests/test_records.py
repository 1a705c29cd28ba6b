"""
Tests for the records module.

Tests cover:
- Text normalization
- Key derivation and its stability across scrapes
- Mapping of scraped rows to records
- Batch validation
- In-batch deduplication
"""

import pytest

from galop_watcher.records import (
    InvalidRecordError,
    Record,
    dedupe_batch,
    normalize_text,
    record_key,
    records_from_rows,
    validate_batch,
)


def make_record(subject="Horse A", status="ENG", **kwargs):
    """Build an engagement record with sensible defaults."""
    fields = {
        "date": "01/01/2026",
        "location": "Paris",
        "event": "Prix X",
        "extra": "",
    }
    fields.update(kwargs)
    return Record(subject=subject, status=status, **fields)


class TestNormalizeText:
    """Tests for scraped text normalization."""

    def test_collapses_whitespace(self):
        """Test that whitespace runs become single spaces and are trimmed."""
        assert normalize_text("  Horse \t\n  A  ") == "Horse A"

    def test_unifies_apostrophes(self):
        """Test that curly apostrophes become straight ones."""
        assert normalize_text("Prix de l’Arc") == "Prix de l'Arc"
        assert normalize_text("l‘x ʼy") == "l'x 'y"

    def test_keeps_case(self):
        """Test that normalization does not lowercase."""
        assert normalize_text("SAINT-CLOUD") == "SAINT-CLOUD"

    def test_empty_values(self):
        """Test handling of None and empty strings."""
        assert normalize_text(None) == ""
        assert normalize_text("") == ""
        assert normalize_text("   ") == ""


class TestRecordKey:
    """Tests for record key derivation."""

    def test_key_format(self):
        """Test that the key joins normalized identity fields."""
        record = make_record()

        assert record_key(record) == "horse a | 01/01/2026 | paris | prix x |"

    def test_key_ignores_status(self):
        """Test that status is not part of the identity."""
        assert make_record(status="ENG").key == make_record(status="DP-P").key

    def test_case_and_whitespace_insensitive(self):
        """Test that case and whitespace differences map to the same key."""
        first = make_record(subject="É. Test")
        second = make_record(subject="é.  test", location="  PARIS ")

        assert first.key == second.key

    def test_apostrophe_insensitive(self):
        """Test that apostrophe variants map to the same key."""
        first = make_record(event="Prix de l’Arc")
        second = make_record(event="Prix de l'Arc")

        assert first.key == second.key

    def test_extra_distinguishes_records(self):
        """Test that a different distance gives a different key."""
        assert make_record(extra="2400").key != make_record(extra="1600").key

    def test_empty_identity(self):
        """Test that a record without identity has an empty key."""
        record = Record(subject="", date="", status="ENG")

        assert record_key(record) == ""


class TestFromRow:
    """Tests for mapping scraped rows to records."""

    def test_engagement_row(self):
        """Test mapping of an engagements table row."""
        row = {
            "horse": "Horse A",
            "statut": "ENG",
            "date": "01/01/2026",
            "track": "Paris",
            "race": "Prix  X",
            "dist": "2400",
            "cat": "",
            "horseUrl": "https://www.france-galop.com/fr/cheval/1",
        }

        record = Record.from_row(row)

        assert record.subject == "Horse A"
        assert record.status == "ENG"
        assert record.location == "Paris"
        assert record.event == "Prix X"
        assert record.extra == "2400"
        assert record.metadata == {"horseUrl": "https://www.france-galop.com/fr/cheval/1"}

    def test_result_row(self):
        """Test mapping of a results table row."""
        row = {
            "horse": "Horse B",
            "date": "02/01/2026",
            "hippodrome": "Chantilly",
            "distance": "1600",
            "place": "1",
            "jockey": "J. Doe",
        }

        record = Record.from_row(row)

        assert record.location == "Chantilly"
        assert record.event == ""
        assert record.extra == "1600"
        assert record.status == "1"
        assert record.metadata == {"jockey": "J. Doe"}

    def test_canonical_names_take_precedence(self):
        """Test that canonical names win over table aliases."""
        record = Record.from_row({
            "subject": "Canonical",
            "horse": "Alias",
            "date": "01/01/2026",
            "event": "Prix X",
        })

        assert record.subject == "Canonical"
        assert "horse" not in record.metadata

    def test_records_from_rows_keeps_order(self):
        """Test that rows are converted in order."""
        rows = [
            {"horse": "First", "date": "01/01/2026", "race": "Prix X"},
            {"horse": "Second", "date": "01/01/2026", "race": "Prix X"},
        ]

        records = records_from_rows(rows)

        assert [r.subject for r in records] == ["First", "Second"]


class TestValidateBatch:
    """Tests for batch validation."""

    def test_valid_batch(self):
        """Test that a valid batch is returned as a list."""
        batch = [make_record(), make_record(subject="Horse B", location="")]

        assert validate_batch(iter(batch)) == batch

    def test_missing_date_rejects_batch(self):
        """Test that one bad record rejects the whole batch."""
        batch = [make_record(), make_record(date="  ")]

        with pytest.raises(InvalidRecordError) as exc_info:
            validate_batch(batch)

        assert exc_info.value.index == 1
        assert exc_info.value.missing == ["date"]

    def test_missing_location_and_event(self):
        """Test that a record needs a location or an event."""
        batch = [make_record(location="", event="")]

        with pytest.raises(InvalidRecordError, match="location/event"):
            validate_batch(batch)

    def test_missing_subject(self):
        """Test that a record needs a subject."""
        with pytest.raises(InvalidRecordError, match="subject"):
            validate_batch([make_record(subject="")])

    def test_error_is_value_error(self):
        """Test that callers can catch the error as ValueError."""
        with pytest.raises(ValueError):
            validate_batch([Record(subject="", date="")])

    def test_empty_batch(self):
        """Test that an empty batch is valid."""
        assert validate_batch([]) == []


class TestDedupeBatch:
    """Tests for in-batch deduplication."""

    def test_first_occurrence_wins(self):
        """Test that the first duplicate is kept and later ones dropped."""
        first = make_record(status="ENG")
        duplicate = make_record(subject="HORSE  A", status="DP-P")
        other = make_record(subject="Horse B")

        unique = dedupe_batch([first, duplicate, other])

        assert unique == [first, other]
        assert unique[0].status == "ENG"

    def test_no_duplicates(self):
        """Test that a batch without duplicates is unchanged."""
        batch = [make_record(), make_record(subject="Horse B")]

        assert dedupe_batch(batch) == batch
