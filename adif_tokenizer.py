"""
ADIF tokenizer and record splitter.

ADIF format: <FIELD:LENGTH[:TYPE]>value<FIELD:LENGTH>value...<EOR>

Declared lengths are byte lengths, so documents are scanned as bytes with an
explicit cursor. A value is at most LENGTH bytes after the closing '>' and
ends early only where a well-formed tag starts; any other '<' or '>' is
part of the value.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Token kinds
FIELD = "field"
END_OF_HEADER = "eoh"
END_OF_RECORD = "eor"

MARKER_KINDS = {
    "EOH": END_OF_HEADER,
    "EOR": END_OF_RECORD,
}

_TAG_NAME = re.compile(rb"^[A-Za-z0-9_]+$")

# A well-formed tag that ends a value shorter than its declared length
_TAG_START = re.compile(rb"<(?:(?P<name>[A-Za-z0-9_]+):\d+(?::[A-Za-z]*)?|eor|eoh)>", re.IGNORECASE)


class MalformedTagError(ValueError):
    """Raised for a tag that cannot be read. Handled inside the scanner."""
    pass


@dataclass(frozen=True)
class Field:
    """A single ADIF tag as read from the document."""
    name: str
    value: str = ""
    length: Optional[int] = None
    type_hint: Optional[str] = None
    kind: str = FIELD

    @property
    def is_marker(self) -> bool:
        return self.kind != FIELD


@dataclass
class ADIFRecord:
    """Fields between two end-of-record markers, keyed by upper-case tag name."""
    index: int
    fields: Dict[str, Field] = field(default_factory=dict)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        f = self.fields.get(name.upper())
        return f.value if f is not None else default

    def as_dict(self) -> Dict[str, str]:
        return {name: f.value for name, f in self.fields.items()}

    def __contains__(self, name: str) -> bool:
        return name.upper() in self.fields

    def __len__(self) -> int:
        return len(self.fields)


@dataclass
class ADIFHeader:
    """Free-text preamble and header fields (ADIF_VER, PROGRAMID, ...)."""
    text: str = ""
    fields: Dict[str, str] = field(default_factory=dict)


def _to_bytes(document: Union[str, bytes], encoding: str) -> bytes:
    if isinstance(document, str):
        return document.encode(encoding, errors="replace")
    return bytes(document)


def _parse_tag(body: bytes) -> Tuple[str, Optional[int], Optional[str]]:
    """
    Parse the inside of a tag, i.e. NAME, NAME:LENGTH or NAME:LENGTH:TYPE.

    Returns:
        (name, length, type_hint); length is None for EOH/EOR markers

    Raises:
        MalformedTagError: if the tag cannot be read
    """
    parts = body.split(b":")
    raw_name = parts[0].strip()
    if not raw_name or not _TAG_NAME.match(raw_name):
        raise MalformedTagError(f"invalid tag name in <{body.decode('ascii', 'replace')}>")
    name = raw_name.decode("ascii").upper()

    if len(parts) == 1:
        if name not in MARKER_KINDS:
            raise MalformedTagError(f"tag {name} has no length")
        return name, None, None

    if len(parts) > 3:
        raise MalformedTagError(f"too many ':' in tag {name}")

    length_text = parts[1].strip()
    if not length_text.isdigit():
        raise MalformedTagError(
            f"non-numeric length {length_text.decode('ascii', 'replace')!r} for tag {name}"
        )

    type_hint = None
    if len(parts) == 3:
        type_hint = parts[2].strip().decode("ascii", "replace").upper() or None

    return name, int(length_text), type_hint


def _value_end(buf: bytes, start: int, stop: int, end: int) -> int:
    """
    Offset where the value starting at buf[start] ends.

    Normally stop, i.e. start + declared length. A value shorter than its
    declared length ends at the first '<' that opens a well-formed tag, so the
    next field is not swallowed. Any other '<' belongs to the value, as does an
    <EOR>/<EOH> at the very start of the value.
    """
    lt = buf.find(b"<", start, stop)
    while lt != -1:
        m = _TAG_START.match(buf, lt, end)
        if m and (m.group("name") or lt > start):
            return lt
        lt = buf.find(b"<", lt + 1, stop)
    return stop


def _iter_tags(buf: bytes, pos: int, end: int, encoding: str) -> Iterator[Tuple[int, Field]]:
    """Yield (offset, token) for every readable tag in buf[pos:end], skipping text between tags."""
    while pos < end:
        lt = buf.find(b"<", pos, end)
        if lt == -1:
            return

        gt = buf.find(b">", lt + 1, end)
        if gt == -1:
            logger.warning("Unterminated ADIF tag at offset %d, ignoring the rest", lt)
            return

        # "<call:5 <band:3>" - resync on the inner '<'
        inner = buf.find(b"<", lt + 1, gt)
        if inner != -1:
            logger.warning(
                "Skipping malformed ADIF tag at offset %d: %r",
                lt, buf[lt:inner].decode(encoding, "replace"),
            )
            pos = inner
            continue

        try:
            name, length, type_hint = _parse_tag(buf[lt + 1:gt])
        except MalformedTagError as e:
            logger.warning("Skipping malformed ADIF tag at offset %d: %s", lt, e)
            pos = gt + 1
            continue

        start = gt + 1
        if name in MARKER_KINDS:
            # A declared length on a marker is tolerated, its value ignored
            pos = start + (length or 0)
            yield lt, Field(name=name, kind=MARKER_KINDS[name])
            continue

        stop = min(start + length, end)
        value_end = _value_end(buf, start, stop, end)
        if value_end < stop:
            logger.debug("%s value at offset %d is shorter than its declared length %d", name, lt, length)
            pos = value_end
        else:
            pos = start + length
        yield lt, Field(
            name=name,
            value=buf[start:value_end].decode(encoding, errors="replace").strip(),
            length=length,
            type_hint=type_hint,
        )


def _scan(buf: bytes, pos: int, end: int, encoding: str) -> Iterator[Field]:
    for _, token in _iter_tags(buf, pos, end, encoding):
        yield token


def tokenize(document: Union[str, bytes], encoding: str = "utf-8") -> Iterator[Field]:
    """
    Scan an ADIF document into tokens.

    The document has a header when an <EOH> tag comes before the first <EOR>.
    Header fields are not yielded; the stream then starts with an
    END_OF_HEADER token. An <EOH> inside a value is part of the value.
    Malformed tags are logged and skipped.

    Args:
        document: Raw ADIF text or bytes
        encoding: Encoding used for bytes and for decoding values

    Yields:
        Field tokens (kind FIELD, END_OF_HEADER or END_OF_RECORD)
    """
    buf = _to_bytes(document, encoding)
    tokens = _scan(buf, 0, len(buf), encoding)

    # Hold back tokens until the first marker tells header from record
    leading = []
    for token in tokens:
        if token.kind == END_OF_HEADER:
            leading = [token]
            break
        leading.append(token)
        if token.kind == END_OF_RECORD:
            break

    yield from leading
    yield from tokens


def parse_header(document: Union[str, bytes], encoding: str = "utf-8") -> Optional[ADIFHeader]:
    """
    Read the header of an ADIF document.

    Returns:
        ADIFHeader with the leading prose and header fields, or None if the
        document has no <EOH> before its first <EOR>
    """
    buf = _to_bytes(document, encoding)
    header = ADIFHeader()
    prose_end = None
    for offset, token in _iter_tags(buf, 0, len(buf), encoding):
        if prose_end is None:
            prose_end = offset
        if token.kind == END_OF_HEADER:
            header.text = buf[:prose_end].decode(encoding, "replace").strip()
            return header
        if token.kind == END_OF_RECORD:
            return None
        header.fields[token.name] = token.value
    return None


def split_records(tokens: Iterable[Field]) -> Iterator[ADIFRecord]:
    """
    Group tokens into records delimited by <EOR>.

    An END_OF_HEADER token discards anything collected before it. Empty
    records are skipped and do not get an index. Fields after the last <EOR>
    are discarded with a warning.

    Args:
        tokens: Output of tokenize()

    Yields:
        ADIFRecord objects with 1-based indexes in document order
    """
    pending: Dict[str, Field] = {}
    index = 0

    for token in tokens:
        if token.kind == END_OF_HEADER:
            if pending:
                logger.warning("Discarding %d fields before a stray <EOH>", len(pending))
            pending = {}
        elif token.kind == END_OF_RECORD:
            if not pending:
                continue
            index += 1
            yield ADIFRecord(index=index, fields=pending)
            pending = {}
        else:
            if token.name in pending:
                logger.debug("Duplicate %s field in record %d, keeping last value", token.name, index + 1)
            pending[token.name] = token

    if pending:
        logger.warning(
            "Discarding incomplete record after last <EOR> (%d fields: %s)",
            len(pending), ", ".join(sorted(pending)),
        )


def iter_records(document: Union[str, bytes], encoding: str = "utf-8") -> Iterator[ADIFRecord]:
    """Tokenize and split a document in one step."""
    return split_records(tokenize(document, encoding=encoding))
