"""
ADIF generator.

ADIF spec: https://adif.org/314/ADIF_314.htm
Every field is written as <NAME:LENGTH>VALUE where LENGTH is the UTF-8 byte
length of VALUE. Tag names are always upper case. Fields within a record
follow the fixed order of adif_decoder.OPTIONAL_FIELDS so output is stable.
"""

from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from adif_decoder import FLOAT, KNOWN_TAGS, OPTIONAL_FIELDS, Contact
from config import config

# Frequencies are written with fixed MHz precision
FIXED_PRECISION_TAGS = {"FREQ", "FREQ_RX"}


def format_adif_field(field_name: str, value) -> str:
    """Format a single ADIF field in <NAME:LENGTH>VALUE format."""
    if value is None or value == "":
        return ""
    value_str = str(value)
    return f"<{field_name.upper()}:{len(value_str.encode('utf-8'))}>{value_str}"


def format_adif_date(dt: datetime) -> str:
    return _as_utc(dt).strftime("%Y%m%d")


def format_adif_time(dt: datetime) -> str:
    return _as_utc(dt).strftime("%H%M%S")


def _as_utc(dt: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _format_number(tag: str, value: float) -> str:
    if tag in FIXED_PRECISION_TAGS:
        return "%.6f" % value
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def record_fields(contact: Contact) -> List[str]:
    """
    Build the formatted fields of one record, in canonical order.

    CALL, QSO_DATE and TIME_ON are always present. Attributes that are None,
    empty or zero are left out.
    """
    start = _as_utc(contact.qso_datetime)
    parts = [
        format_adif_field("CALL", contact.callsign),
        format_adif_field("QSO_DATE", format_adif_date(start)),
        format_adif_field("TIME_ON", format_adif_time(start)),
    ]

    if contact.qso_datetime_off is not None:
        end = _as_utc(contact.qso_datetime_off)
        if end.date() != start.date():
            parts.append(format_adif_field("QSO_DATE_OFF", format_adif_date(end)))
        parts.append(format_adif_field("TIME_OFF", format_adif_time(end)))

    for attr, tag, kind in OPTIONAL_FIELDS:
        value = getattr(contact, attr)
        if value is None or value == "" or value == 0:
            continue
        if kind == FLOAT:
            value = _format_number(tag, value)
        parts.append(format_adif_field(tag, value))

    for tag in sorted(contact.extra_fields):
        if tag.upper() in KNOWN_TAGS:
            continue
        parts.append(format_adif_field(tag, contact.extra_fields[tag]))

    return [p for p in parts if p]


def format_record(contact: Contact) -> str:
    """One record terminated by <EOR> and a blank line."""
    return " ".join(record_fields(contact) + ["<EOR>"]) + "\n\n"


def format_header(
    program_id: Optional[str] = None,
    program_version: Optional[str] = None,
    adif_version: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Banner lines plus ADIF_VER, PROGRAMID, PROGRAMVERSION and CREATED_TIMESTAMP."""
    program_id = program_id or config.PROGRAM_ID
    program_version = program_version or config.PROGRAM_VERSION
    adif_version = adif_version or config.ADIF_VERSION
    now = _as_utc(now or datetime.now(timezone.utc))

    lines = [
        f"ADIF Export from {program_id} v{program_version}",
        f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')} UTC",
        format_adif_field("ADIF_VER", adif_version),
        format_adif_field("PROGRAMID", program_id),
        format_adif_field("PROGRAMVERSION", program_version),
        format_adif_field("CREATED_TIMESTAMP", now.strftime("%Y%m%d %H%M%S")),
        "<EOH>",
    ]
    return "\n".join(lines) + "\n\n"


def iter_adif(contacts: Iterable[Contact], now: Optional[datetime] = None, **header) -> Iterator[str]:
    """Yield the header and then one chunk per record, for streaming responses."""
    yield format_header(now=now, **header)
    for contact in contacts:
        yield format_record(contact)


def generate_adif(contacts: Iterable[Contact], now: Optional[datetime] = None, **header) -> str:
    """
    Convert contacts to an ADIF document.

    Args:
        contacts: Contacts in the order they should appear
        now: Timestamp for the header (defaults to the current UTC time)
        **header: program_id, program_version or adif_version overrides

    Returns:
        The complete ADIF document
    """
    return "".join(iter_adif(contacts, now=now, **header))


def export_filename(now: Optional[datetime] = None, prefix: Optional[str] = None) -> str:
    """Download filename such as hamradio_cloud_export_20240115_120000.adi."""
    now = _as_utc(now or datetime.now(timezone.utc))
    return f"{prefix or config.EXPORT_FILENAME_PREFIX}_{now.strftime('%Y%m%d_%H%M%S')}.adi"
