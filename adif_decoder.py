"""
ADIF record decoder.

Maps the tag/value bag of one ADIF record into a Contact. Decoding is
permissive: only the callsign and the QSO date/time are required, numeric
fields that do not parse are dropped with a warning, band/grid/QSL values are
normalized but not checked. Strict checks live in qso_validation.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Dict, List, Mapping, Optional, Union

from adif_tokenizer import ADIFRecord

logger = logging.getLogger(__name__)

# Conversion kinds for optional fields
TEXT = "text"
UPPER = "upper"
LOWER = "lower"
FLOAT = "float"
INT = "int"

# (Contact attribute, ADIF tag, conversion), in canonical export order
OPTIONAL_FIELDS = [
    ("operator", "OPERATOR", UPPER),
    ("station_callsign", "STATION_CALLSIGN", UPPER),
    ("freq", "FREQ", FLOAT),
    ("freq_rx", "FREQ_RX", FLOAT),
    ("band", "BAND", LOWER),
    ("band_rx", "BAND_RX", LOWER),
    ("mode", "MODE", UPPER),
    ("submode", "SUBMODE", UPPER),
    ("rst_sent", "RST_SENT", TEXT),
    ("rst_rcvd", "RST_RCVD", TEXT),
    ("name", "NAME", TEXT),
    ("qth", "QTH", TEXT),
    ("gridsquare", "GRIDSQUARE", UPPER),
    ("my_gridsquare", "MY_GRIDSQUARE", UPPER),
    ("country", "COUNTRY", TEXT),
    ("dxcc", "DXCC", INT),
    ("state", "STATE", TEXT),
    ("county", "CNTY", TEXT),
    ("tx_pwr", "TX_PWR", FLOAT),
    ("rx_pwr", "RX_PWR", FLOAT),
    ("prop_mode", "PROP_MODE", UPPER),
    ("sat_name", "SAT_NAME", TEXT),
    ("sat_mode", "SAT_MODE", TEXT),
    ("contest_id", "CONTEST_ID", TEXT),
    ("stx", "STX", INT),
    ("srx", "SRX", INT),
    ("lotw_qsl_sent", "LOTW_QSL_SENT", UPPER),
    ("lotw_qsl_rcvd", "LOTW_QSL_RCVD", UPPER),
    ("eqsl_qsl_sent", "EQSL_QSL_SENT", UPPER),
    ("eqsl_qsl_rcvd", "EQSL_QSL_RCVD", UPPER),
    ("comment", "COMMENT", TEXT),
    ("notes", "NOTES", TEXT),
]

# Tags some loggers write instead of the standard name
TAG_ALIASES = {
    "COUNTY": "CNTY",
}

KNOWN_TAGS = {"CALL", "QSO_DATE", "TIME_ON", "QSO_DATE_OFF", "TIME_OFF"}
KNOWN_TAGS.update(tag for _, tag, _ in OPTIONAL_FIELDS)
KNOWN_TAGS.update(TAG_ALIASES)

# Warning kinds
UNPARSABLE_NUMBER = "unparsable_number"
END_BEFORE_START = "end_before_start"
IGNORED_DATE_OFF = "ignored_date_off"

_DATE_PATTERN = re.compile(r"\d{8}", re.ASCII)
_TIME_PATTERN = re.compile(r"\d{4}|\d{6}", re.ASCII)


class DecodeError(Exception):
    """A record that cannot be turned into a Contact."""

    kind = "decode_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class MissingRequiredField(DecodeError):
    kind = "missing_required_field"


class InvalidDate(DecodeError):
    kind = "invalid_date"


class InvalidTime(DecodeError):
    kind = "invalid_time"


@dataclass(frozen=True)
class DecodeWarning:
    """A soft problem that did not fail the record."""
    field: str
    kind: str
    message: str


@dataclass(frozen=True)
class Contact:
    """A decoded QSO. Timestamps are timezone-aware UTC."""
    callsign: str
    qso_datetime: datetime
    qso_datetime_off: Optional[datetime] = None
    operator: Optional[str] = None
    station_callsign: Optional[str] = None
    freq: Optional[float] = None
    freq_rx: Optional[float] = None
    band: Optional[str] = None
    band_rx: Optional[str] = None
    mode: Optional[str] = None
    submode: Optional[str] = None
    rst_sent: Optional[str] = None
    rst_rcvd: Optional[str] = None
    name: Optional[str] = None
    qth: Optional[str] = None
    gridsquare: Optional[str] = None
    my_gridsquare: Optional[str] = None
    country: Optional[str] = None
    dxcc: Optional[int] = None
    state: Optional[str] = None
    county: Optional[str] = None
    tx_pwr: Optional[float] = None
    rx_pwr: Optional[float] = None
    prop_mode: Optional[str] = None
    sat_name: Optional[str] = None
    sat_mode: Optional[str] = None
    contest_id: Optional[str] = None
    stx: Optional[int] = None
    srx: Optional[int] = None
    lotw_qsl_sent: Optional[str] = None
    lotw_qsl_rcvd: Optional[str] = None
    eqsl_qsl_sent: Optional[str] = None
    eqsl_qsl_rcvd: Optional[str] = None
    comment: Optional[str] = None
    notes: Optional[str] = None
    # Tags without a dedicated attribute, upper-case name -> value
    extra_fields: Dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def ends_before_start(self) -> bool:
        return self.qso_datetime_off is not None and self.qso_datetime_off < self.qso_datetime


def parse_adif_date(value: str, field_name: str = "QSO_DATE") -> date:
    """
    Parse an ADIF date (YYYYMMDD).

    Raises:
        InvalidDate: if the value is not 8 digits or not a calendar date
    """
    if not _DATE_PATTERN.fullmatch(value):
        raise InvalidDate(field_name, f"{field_name} must be YYYYMMDD, got {value!r}")
    try:
        return datetime.strptime(value, "%Y%m%d").date()
    except ValueError:
        raise InvalidDate(field_name, f"{field_name} is not a valid date: {value!r}")


def parse_adif_time(value: str, field_name: str = "TIME_ON") -> time:
    """
    Parse an ADIF time, HHMM or HHMMSS.

    Raises:
        InvalidTime: if the value is not 4 or 6 digits or out of range
    """
    if not _TIME_PATTERN.fullmatch(value):
        raise InvalidTime(field_name, f"{field_name} must be HHMM or HHMMSS, got {value!r}")
    # Handle both HHMM and HHMMSS formats
    if len(value) == 4:
        value = value + "00"
    try:
        return time(int(value[0:2]), int(value[2:4]), int(value[4:6]))
    except ValueError:
        raise InvalidTime(field_name, f"{field_name} is not a valid time: {value!r}")


def _parse_float(value: str) -> Optional[float]:
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _parse_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _convert(value: str, kind: str):
    if kind == FLOAT:
        return _parse_float(value)
    if kind == INT:
        return _parse_int(value)
    if kind == UPPER:
        return value.upper()
    if kind == LOWER:
        return value.lower()
    return value


def _normalize(fields: Union[ADIFRecord, Mapping[str, str]]) -> Dict[str, str]:
    """Upper-case tag names, strip values, resolve aliases."""
    if isinstance(fields, ADIFRecord):
        fields = fields.as_dict()
    values = {}
    for name, value in fields.items():
        if value is None:
            continue
        values[str(name).strip().upper()] = str(value).strip()
    for alias, tag in TAG_ALIASES.items():
        if values.get(alias) and not values.get(tag):
            values[tag] = values[alias]
    return values


def decode_record(
    fields: Union[ADIFRecord, Mapping[str, str]],
    warnings: Optional[List[DecodeWarning]] = None,
) -> Contact:
    """
    Convert one ADIF record into a Contact.

    Args:
        fields: An ADIFRecord or a mapping of tag name to value (any case)
        warnings: If given, soft problems are appended to this list

    Returns:
        The decoded Contact

    Raises:
        MissingRequiredField: CALL, QSO_DATE or TIME_ON is missing
        InvalidDate: QSO_DATE or QSO_DATE_OFF is malformed
        InvalidTime: TIME_ON or TIME_OFF is malformed
    """
    values = _normalize(fields)
    if warnings is None:
        warnings = []

    callsign = values.get("CALL", "").upper()
    if not callsign:
        raise MissingRequiredField("CALL", "missing required field: CALL")
    for tag in ("QSO_DATE", "TIME_ON"):
        if not values.get(tag):
            raise MissingRequiredField(tag, f"missing required field: {tag}")

    qso_date = parse_adif_date(values["QSO_DATE"], "QSO_DATE")
    qso_datetime = datetime.combine(qso_date, parse_adif_time(values["TIME_ON"], "TIME_ON"), tzinfo=timezone.utc)

    qso_datetime_off = None
    if values.get("TIME_OFF"):
        date_off = qso_date
        if values.get("QSO_DATE_OFF"):
            date_off = parse_adif_date(values["QSO_DATE_OFF"], "QSO_DATE_OFF")
        time_off = parse_adif_time(values["TIME_OFF"], "TIME_OFF")
        qso_datetime_off = datetime.combine(date_off, time_off, tzinfo=timezone.utc)
    elif values.get("QSO_DATE_OFF"):
        warnings.append(DecodeWarning(
            "QSO_DATE_OFF", IGNORED_DATE_OFF, "QSO_DATE_OFF ignored without TIME_OFF"
        ))

    optional = {}
    for attr, tag, kind in OPTIONAL_FIELDS:
        raw = values.get(tag)
        if not raw:
            continue
        converted = _convert(raw, kind)
        if converted is None:
            logger.debug("Dropping unparsable %s value %r for %s", tag, raw, callsign)
            warnings.append(DecodeWarning(tag, UNPARSABLE_NUMBER, f"{tag} is not a number: {raw!r}"))
            continue
        optional[attr] = converted

    extra = {tag: value for tag, value in values.items() if tag not in KNOWN_TAGS and value}

    contact = Contact(
        callsign=callsign,
        qso_datetime=qso_datetime,
        qso_datetime_off=qso_datetime_off,
        extra_fields=extra,
        **optional,
    )

    if contact.ends_before_start:
        # Usually a contact across midnight logged without QSO_DATE_OFF
        logger.info("QSO with %s ends before it starts (%s < %s)", callsign, qso_datetime_off, qso_datetime)
        warnings.append(DecodeWarning("TIME_OFF", END_BEFORE_START, "time_off precedes time_on"))

    return contact
