"""
ADIF import orchestration.

Runs every record of a document through decode, validation and (optionally)
a persistence callable, collecting per-record outcomes into an ImportResult.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from adif_decoder import Contact, DecodeError, decode_record
from adif_tokenizer import iter_records
from qso_validation import ValidationError, validate_contact

logger = logging.getLogger(__name__)


class DownstreamRejected(Exception):
    """Raised by a persistence callable that refuses a decoded contact."""

    kind = "downstream_rejected"


class QuotaExceeded(DownstreamRejected):
    """The owning user cannot store more QSOs. Counted as skipped."""

    kind = "quota_exceeded"


class ConstraintViolation(DownstreamRejected):
    """The store refused the contact (duplicate, unknown owner, ...)."""

    kind = "constraint_violation"


@dataclass(frozen=True)
class RecordError:
    """A problem with one record, tagged with its 1-based index."""
    index: int
    callsign: Optional[str]
    kind: str
    message: str

    def __str__(self) -> str:
        if self.callsign:
            return f"Record {self.index} ({self.callsign}): {self.message}"
        return f"Record {self.index}: {self.message}"


@dataclass
class ImportResult:
    """Aggregate outcome of importing one ADIF document."""
    total_records: int = 0
    imported_records: int = 0
    failed_records: int = 0
    skipped_records: int = 0
    errors: List[RecordError] = field(default_factory=list)
    warnings: List[RecordError] = field(default_factory=list)
    contacts: List[Contact] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.failed_records == 0 and self.skipped_records == 0

    def to_dict(self, max_errors: Optional[int] = None) -> Dict[str, Any]:
        """
        Render the result for the HTTP layer.

        Args:
            max_errors: Cap on the number of error and warning strings returned

        Returns:
            Dictionary with counts and human-readable messages
        """
        return {
            "total_records": self.total_records,
            "imported_records": self.imported_records,
            "failed_records": self.failed_records,
            "skipped_records": self.skipped_records,
            "errors": _cap_messages(self.errors, max_errors, "errors"),
            "warnings": _cap_messages(self.warnings, max_errors, "warnings"),
        }


class ImportAborted(Exception):
    """Strict mode stopped at the first failing record."""

    def __init__(self, result: ImportResult, error: RecordError):
        super().__init__(f"import failed at record {error.index}: {error.message}")
        self.result = result
        self.error = error


def _cap_messages(entries: List[RecordError], limit: Optional[int], noun: str) -> List[str]:
    messages = [str(e) for e in entries]
    if limit is not None and len(messages) > limit:
        hidden = len(messages) - limit
        messages = messages[:limit] + [f"... and {hidden} more {noun}"]
    return messages


def _reject(result: ImportResult, error: RecordError, strict: bool, skipped: bool = False) -> None:
    if skipped:
        result.skipped_records += 1
    else:
        result.failed_records += 1
    result.errors.append(error)
    logger.info("ADIF import: %s", error)
    if strict:
        raise ImportAborted(result, error)


def import_adif(
    document: Union[str, bytes],
    strict: bool = False,
    persist: Optional[Callable[[Contact], Any]] = None,
    validate: bool = True,
    encoding: str = "utf-8",
) -> ImportResult:
    """
    Import every record of an ADIF document.

    In lenient mode a failing record is counted and reported and the import
    continues. In strict mode the first failure raises ImportAborted with the
    partial result.

    Args:
        document: Raw ADIF text or bytes
        strict: Abort at the first failing record
        persist: Called with each valid Contact; may raise DownstreamRejected
        validate: Apply validate_contact after decoding
        encoding: Encoding for bytes input

    Returns:
        ImportResult with counts, errors, warnings and the accepted contacts

    Raises:
        ImportAborted: only in strict mode
    """
    records = list(iter_records(document, encoding=encoding))
    result = ImportResult(total_records=len(records))

    for record in records:
        callsign = (record.get("CALL") or "").upper() or None
        warnings = []
        try:
            contact = decode_record(record, warnings)
            if validate:
                validate_contact(contact)
        except (DecodeError, ValidationError) as e:
            _reject(result, RecordError(record.index, callsign, e.kind, e.message), strict)
            continue

        result.warnings.extend(
            RecordError(record.index, contact.callsign, w.kind, w.message) for w in warnings
        )

        if persist is not None:
            try:
                persist(contact)
            except QuotaExceeded as e:
                _reject(result, RecordError(record.index, contact.callsign, e.kind, str(e)), strict, skipped=True)
                continue
            except DownstreamRejected as e:
                _reject(result, RecordError(record.index, contact.callsign, e.kind, str(e)), strict)
                continue

        result.imported_records += 1
        result.contacts.append(contact)

    logger.info(
        "ADIF import finished: %d records, %d imported, %d failed, %d skipped",
        result.total_records, result.imported_records, result.failed_records, result.skipped_records,
    )
    return result


def validate_adif(document: Union[str, bytes], strict: bool = False, encoding: str = "utf-8") -> ImportResult:
    """Dry run: decode and validate every record without storing anything."""
    return import_adif(document, strict=strict, persist=None, validate=True, encoding=encoding)
