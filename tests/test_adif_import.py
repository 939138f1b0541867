"""
Tests for ADIF import orchestration (lenient and strict modes).
"""

import pytest

from adif_import import (
    ConstraintViolation, ImportAborted, ImportResult, QuotaExceeded, RecordError,
    import_adif, validate_adif,
)


def record(call, date="20230615", time="1230", **extra):
    parts = []
    if call is not None:
        parts.append(f"<CALL:{len(call)}>{call}")
    parts.append(f"<QSO_DATE:{len(date)}>{date}")
    parts.append(f"<TIME_ON:{len(time)}>{time}")
    for name, value in extra.items():
        parts.append(f"<{name.upper()}:{len(value)}>{value}")
    return " ".join(parts) + " <EOR>\n"


class TestLenientImport:
    """Test the default lenient mode."""

    def test_all_records_imported(self, sample_adif):
        """Test N well-formed records are all imported."""
        result = import_adif(sample_adif)

        assert result.total_records == 3
        assert result.imported_records == 3
        assert result.failed_records == 0
        assert result.skipped_records == 0
        assert result.errors == []
        assert result.is_valid
        assert [c.callsign for c in result.contacts] == ["W1AW", "DL1AB", "JA1XYZ"]

    def test_one_malformed_record(self):
        """Test a record missing CALL fails alone and the rest are imported."""
        doc = record("W1AW") + record(None) + record("K2ABC")
        result = import_adif(doc)

        assert result.total_records == 3
        assert result.imported_records == 2
        assert result.failed_records == 1
        assert not result.is_valid
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.index == 2
        assert error.kind == "missing_required_field"
        assert "CALL" in error.message

    def test_counts_add_up(self):
        """Test imported + failed + skipped == total."""
        doc = (record("W1AW") + record("K2ABC", date="2023") + record("N0X", band="99m")
               + record("DL1AB", time="9999") + record("JA1XYZ"))
        result = import_adif(doc)

        assert result.total_records == 5
        assert result.imported_records + result.failed_records + result.skipped_records == 5
        assert result.failed_records == 3
        assert [e.index for e in result.errors] == [2, 3, 4]
        assert [e.kind for e in result.errors] == ["invalid_date", "validation_error", "invalid_time"]

    def test_validation_can_be_disabled(self):
        """Test validate=False only applies decoding."""
        result = import_adif(record("W1AW", band="99m"), validate=False)

        assert result.imported_records == 1
        assert result.contacts[0].band == "99m"

    def test_warnings_do_not_fail_records(self):
        """Test soft problems are reported as warnings."""
        doc = record("W1AW", freq="abc") + record("K2ABC", time="2350", time_off="0010")
        result = import_adif(doc)

        assert result.imported_records == 2
        assert result.failed_records == 0
        assert [w.kind for w in result.warnings] == ["unparsable_number", "end_before_start"]
        assert str(result.warnings[0]).startswith("Record 1 (W1AW): ")

    def test_date_off_without_time_off_is_reported(self):
        """Test QSO_DATE_OFF with no TIME_OFF imports the record with a warning."""
        result = import_adif(record("W1AW", qso_date_off="20230616"))

        assert result.imported_records == 1
        assert result.contacts[0].qso_datetime_off is None
        assert [w.kind for w in result.warnings] == ["ignored_date_off"]

    def test_overshooting_length_keeps_callsign_clean(self):
        """Test a CALL length that runs into the next tag does not corrupt the contact."""
        doc = "<CALL:10>W1AW<BAND:3>20m<QSO_DATE:8>20230615<TIME_ON:4>1230<EOR>"
        result = import_adif(doc)

        assert result.imported_records == 1
        assert result.contacts[0].callsign == "W1AW"
        assert result.contacts[0].band == "20m"

    def test_eoh_text_in_value_does_not_drop_records(self):
        """Test a value of '<eoh>' in a headerless log keeps every record."""
        result = import_adif(record("W1AW", comment="<eoh>") + record("DL1AB"))

        assert result.total_records == 2
        assert [c.callsign for c in result.contacts] == ["W1AW", "DL1AB"]
        assert result.contacts[0].comment == "<eoh>"

    def test_empty_document(self):
        """Test a document with no records."""
        result = import_adif("")

        assert result.total_records == 0
        assert result.imported_records == 0
        assert result.is_valid

    def test_header_only(self):
        """Test a document with a header but no records."""
        result = import_adif("<ADIF_VER:5>3.1.4 <EOH>\n")
        assert result.total_records == 0

    def test_bytes_input(self, sample_adif):
        """Test bytes are accepted."""
        result = import_adif(sample_adif.encode("utf-8"))
        assert result.imported_records == 3


class TestStrictImport:
    """Test strict mode aborts at the first failure."""

    def test_strict_aborts_with_partial_result(self):
        """Test the result holds the successful prefix and one error."""
        doc = record("W1AW") + record("K2ABC") + record(None) + record("DL1AB")

        with pytest.raises(ImportAborted) as exc:
            import_adif(doc, strict=True)

        result = exc.value.result
        assert result.imported_records == 2
        assert result.failed_records == 1
        assert len(result.errors) == 1
        assert exc.value.error.index == 3
        assert "record 3" in str(exc.value)
        assert [c.callsign for c in result.contacts] == ["W1AW", "K2ABC"]

    def test_strict_success(self, sample_adif):
        """Test strict mode returns normally when every record is fine."""
        result = import_adif(sample_adif, strict=True)
        assert result.imported_records == 3

    def test_strict_does_not_abort_on_warnings(self):
        """Test an end time before the start time does not abort."""
        result = import_adif(record("W1AW", time="2350", time_off="0010"), strict=True)

        assert result.imported_records == 1
        assert result.contacts[0].ends_before_start

    def test_strict_aborts_on_persist_failure(self):
        """Test downstream rejection also aborts in strict mode."""
        def persist(contact):
            raise ConstraintViolation("duplicate")

        with pytest.raises(ImportAborted) as exc:
            import_adif(record("W1AW") + record("K2ABC"), strict=True, persist=persist)

        assert exc.value.result.failed_records == 1
        assert exc.value.error.index == 1


class TestPersistence:
    """Test the persistence callable outcomes."""

    def test_persist_called_for_valid_contacts(self, sample_adif):
        """Test persist receives each valid contact in order."""
        stored = []
        result = import_adif(sample_adif, persist=stored.append)

        assert [c.callsign for c in stored] == ["W1AW", "DL1AB", "JA1XYZ"]
        assert result.imported_records == 3

    def test_persist_not_called_for_failed_records(self):
        """Test invalid records never reach persist."""
        stored = []
        import_adif(record("W1AW") + record(None), persist=stored.append)

        assert len(stored) == 1

    def test_quota_counts_as_skipped(self):
        """Test QuotaExceeded is counted as skipped, not failed."""
        stored = []

        def persist(contact):
            if len(stored) >= 2:
                raise QuotaExceeded("QSO limit reached (2/2)")
            stored.append(contact)

        result = import_adif(record("W1AW") + record("K2ABC") + record("DL1AB"), persist=persist)

        assert result.imported_records == 2
        assert result.skipped_records == 1
        assert result.failed_records == 0
        assert result.errors[0].kind == "quota_exceeded"
        assert str(result.errors[0]) == "Record 3 (DL1AB): QSO limit reached (2/2)"
        assert not result.is_valid

    def test_constraint_violation_counts_as_failed(self):
        """Test other downstream rejections count as failed."""
        def persist(contact):
            if contact.callsign == "K2ABC":
                raise ConstraintViolation("duplicate QSO")

        result = import_adif(record("W1AW") + record("K2ABC"), persist=persist)

        assert result.imported_records == 1
        assert result.failed_records == 1
        assert result.errors[0].kind == "constraint_violation"


class TestImportResult:
    """Test result rendering."""

    def test_record_error_str(self):
        """Test messages with and without a callsign."""
        assert str(RecordError(4, "W1AW", "x", "bad")) == "Record 4 (W1AW): bad"
        assert str(RecordError(4, None, "x", "bad")) == "Record 4: bad"

    def test_to_dict(self):
        """Test counts and messages are included."""
        result = import_adif(record("W1AW") + record(None))
        data = result.to_dict()

        assert data["total_records"] == 2
        assert data["imported_records"] == 1
        assert data["failed_records"] == 1
        assert data["skipped_records"] == 0
        assert data["errors"] == ["Record 2: missing required field: CALL"]
        assert data["warnings"] == []

    def test_to_dict_caps_errors(self):
        """Test long error lists are truncated with a summary line."""
        result = ImportResult(
            total_records=5,
            failed_records=5,
            errors=[RecordError(i, None, "x", "bad") for i in range(1, 6)],
        )
        errors = result.to_dict(max_errors=2)["errors"]

        assert errors == ["Record 1: bad", "Record 2: bad", "... and 3 more errors"]


class TestValidateAdif:
    """Test the dry run."""

    def test_validate_reports_without_storing(self, sample_adif):
        """Test validation produces the same counts as an import."""
        result = validate_adif(sample_adif + record("K2ABC", band="99m"))

        assert result.total_records == 4
        assert result.imported_records == 3
        assert result.failed_records == 1
        assert not result.is_valid

    def test_validate_strict(self):
        """Test strict validation aborts too."""
        with pytest.raises(ImportAborted):
            validate_adif(record(None) + record("W1AW"), strict=True)
