"""
Cross-reference resolution.

Builds the object table of the newest document revision by walking the
cross-reference chain backwards from the last ``startxref``:

    startxref -> section N (trailer /Prev) -> section N-1 -> ... -> section 1

Both classic ``xref`` tables and cross-reference streams (PDF 1.5+) are
read, including hybrid files whose classic trailer points at an
additional /XRefStm.

Precedence rule: the first entry seen for an object number wins. Since
the walk starts at the newest revision, redefinitions and deletions
made by incremental updates shadow older entries.

AUTHORITY BOUNDARY
------------------
- This module locates objects. It does not parse them (except the
  cross-reference streams themselves) and never follows references.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, NamedTuple, Optional, Union

from erechnung.app.errors import PdfSyntaxError, StreamDecodeError, XRefError
from erechnung.app.pdf.filters import decode_stream_data, normalize_filter_chain
from erechnung.app.pdf.lexer import TokenKind, next_token, skip_whitespace
from erechnung.app.pdf.objects import Name, ObjectId, Reference, Stream
from erechnung.app.pdf.parser import ObjectParser


logger = logging.getLogger(__name__)

HEADER_SEARCH_WINDOW = 1024

TRAILER_KEYS = ("Size", "Root", "Info", "ID", "Encrypt")

_SUBSECTION_HEADER = re.compile(rb"(\d{1,10})[ \t]+(\d{1,10})[ \t]*(?:\r\n|\r|\n)?")
_TABLE_ENTRY = re.compile(rb"[ \t\r\n]*(\d{1,10})[ \t]+(\d{1,5})[ \t]+([nf])(?:\r\n|[ \t\r\n]{0,2})")

# Smallest plausible size of a classic table record, used to reject
# subsection counts that cannot fit in the remaining buffer.
_MIN_ENTRY_SIZE = 17


# ---------------------------------------------------------------------------
# Entry model
# ---------------------------------------------------------------------------

class XRefType(str, Enum):
    FREE = "free"
    STANDARD = "standard"
    COMPRESSED = "compressed"


class CompressedLocation(NamedTuple):
    stream_number: int
    index: int


@dataclass(frozen=True)
class XRefEntry:
    xref_type: XRefType
    object_id: ObjectId
    location: Union[int, CompressedLocation, None] = None


class ObjectTable:
    """Object number -> newest XRefEntry."""

    def __init__(self) -> None:
        self._entries: Dict[int, XRefEntry] = {}

    def record(self, entry: XRefEntry) -> bool:
        number = entry.object_id.number
        if number in self._entries:
            return False
        self._entries[number] = entry
        return True

    def lookup(self, object_id: ObjectId) -> Optional[XRefEntry]:
        """
        Entry for an in-use object with exactly this id, or None when the
        object is unknown, free, or has a different generation.
        """
        entry = self._entries.get(object_id.number)
        if entry is None or entry.xref_type == XRefType.FREE:
            return None
        if entry.object_id.generation != object_id.generation:
            return None
        return entry

    def __contains__(self, object_id: object) -> bool:
        return isinstance(object_id, ObjectId) and self.lookup(object_id) is not None

    def __iter__(self) -> Iterator[XRefEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class CrossReferenceData:
    table: ObjectTable
    trailer: dict
    section_offsets: List[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def strip_leading_junk(data: bytes) -> bytes:
    """
    Return the buffer starting at the ``%PDF-`` header.

    Offsets inside the file are relative to the header, so bytes before
    it are dropped.
    """
    start = data.find(b"%PDF-", 0, HEADER_SEARCH_WINDOW)
    if start == -1:
        raise XRefError("missing %PDF- header")
    return data[start:] if start else data


def find_startxref(data: bytes) -> int:
    marker = data.rfind(b"startxref")
    if marker == -1:
        raise XRefError("startxref not found")

    try:
        token = next_token(data, marker + len(b"startxref"))
    except PdfSyntaxError as exc:
        raise XRefError("unreadable startxref offset", offset=marker) from exc
    if token is None or token.kind != TokenKind.INTEGER:
        raise XRefError("startxref has no offset", offset=marker)

    offset = token.value
    if not 0 <= offset < len(data):
        raise XRefError(f"startxref offset {offset} outside the file", offset=marker)
    return offset


def load_cross_references(
    data: bytes,
    *,
    max_sections: int,
    max_stream_bytes: int,
) -> CrossReferenceData:
    """
    Walk the /Prev chain and build the newest-revision object table.
    """
    table = ObjectTable()
    trailer: dict = {}
    visited: List[int] = []
    offset: Optional[int] = find_startxref(data)

    while offset is not None:
        if offset in visited:
            raise XRefError("cross-reference /Prev chain loops", offset=offset)
        if len(visited) >= max_sections:
            raise XRefError(
                f"more than {max_sections} cross-reference sections", offset=offset
            )
        visited.append(offset)

        section_trailer = _read_section(data, offset, table, max_stream_bytes, visited)
        for key in TRAILER_KEYS:
            if key not in trailer and key in section_trailer:
                trailer[Name(key)] = section_trailer[key]

        offset = _prev_offset(section_trailer, len(data))

    if "Root" not in trailer:
        raise XRefError("trailer has no /Root")

    logger.debug(
        "cross-reference chain: %d sections, %d objects", len(visited), len(table)
    )
    return CrossReferenceData(table=table, trailer=trailer, section_offsets=visited)


# ---------------------------------------------------------------------------
# Section dispatch
# ---------------------------------------------------------------------------

def _read_section(
    data: bytes,
    offset: int,
    table: ObjectTable,
    max_stream_bytes: int,
    visited: List[int],
) -> dict:
    start = skip_whitespace(data, offset)
    if data.startswith(b"xref", start):
        entries, section_trailer = _parse_xref_table(data, start + len(b"xref"))

        hybrid = section_trailer.get("XRefStm")
        if isinstance(hybrid, int) and not isinstance(hybrid, bool):
            if not 0 <= hybrid < len(data) or hybrid in visited:
                raise XRefError("invalid /XRefStm offset", offset=offset)
            visited.append(hybrid)
            stream_entries, _ = _parse_xref_stream(data, hybrid, max_stream_bytes)
            for entry in stream_entries:
                table.record(entry)

        for entry in entries:
            table.record(entry)
        return section_trailer

    if start < len(data) and data[start:start + 1].isdigit():
        entries, section_trailer = _parse_xref_stream(data, start, max_stream_bytes)
        for entry in entries:
            table.record(entry)
        return section_trailer

    raise XRefError("no cross-reference section at offset", offset=offset)


def _prev_offset(section_trailer: dict, size: int) -> Optional[int]:
    prev = section_trailer.get("Prev")
    if prev is None:
        return None
    if isinstance(prev, bool) or not isinstance(prev, int) or not 0 <= prev < size:
        raise XRefError(f"invalid /Prev offset {prev!r}")
    return prev


# ---------------------------------------------------------------------------
# Classic tables
# ---------------------------------------------------------------------------

def _parse_xref_table(data: bytes, pos: int):
    entries: List[XRefEntry] = []

    while True:
        pos = skip_whitespace(data, pos)
        if data.startswith(b"trailer", pos):
            pos += len(b"trailer")
            break

        header = _SUBSECTION_HEADER.match(data, pos)
        if header is None:
            raise XRefError("malformed cross-reference subsection", offset=pos)
        first = int(header.group(1))
        count = int(header.group(2))
        pos = header.end()

        if count * _MIN_ENTRY_SIZE > len(data) - pos:
            raise XRefError("cross-reference subsection overruns the file", offset=pos)

        for number in range(first, first + count):
            record = _TABLE_ENTRY.match(data, pos)
            if record is None:
                raise XRefError("malformed cross-reference entry", offset=pos)
            pos = record.end()
            field1 = int(record.group(1))
            generation = int(record.group(2))
            object_id = ObjectId(number, generation)
            if record.group(3) == b"n":
                entries.append(XRefEntry(XRefType.STANDARD, object_id, field1))
            elif number != 0:
                entries.append(XRefEntry(XRefType.FREE, object_id))

    try:
        section_trailer = ObjectParser(data, pos).parse_value()
    except PdfSyntaxError as exc:
        raise XRefError(f"unreadable trailer: {exc}", offset=pos) from exc
    if not isinstance(section_trailer, dict):
        raise XRefError("trailer is not a dictionary", offset=pos)

    return entries, section_trailer


# ---------------------------------------------------------------------------
# Cross-reference streams
# ---------------------------------------------------------------------------

def _parse_xref_stream(data: bytes, offset: int, max_stream_bytes: int):
    try:
        indirect = ObjectParser(data, offset).parse_indirect_object()
    except PdfSyntaxError as exc:
        raise XRefError(f"unreadable cross-reference stream: {exc}", offset=offset) from exc

    stream = indirect.value
    if not isinstance(stream, Stream) or stream.get("Type") != "XRef":
        raise XRefError("object at offset is not a cross-reference stream", offset=offset)

    dictionary = stream.dictionary
    if any(isinstance(value, Reference) for value in (
        dictionary.get("Filter"), dictionary.get("DecodeParms"), dictionary.get("W")
    )):
        raise XRefError("cross-reference stream uses indirect parameters", offset=offset)

    filters, parms = normalize_filter_chain(
        dictionary.get("Filter"), dictionary.get("DecodeParms")
    )
    try:
        decoded = decode_stream_data(stream.raw, filters, parms, max_stream_bytes)
    except StreamDecodeError as exc:
        raise XRefError(f"undecodable cross-reference stream: {exc}", offset=offset) from exc

    widths = dictionary.get("W")
    if (
        not isinstance(widths, list)
        or len(widths) != 3
        or not all(isinstance(w, int) and not isinstance(w, bool) and w >= 0 for w in widths)
        or sum(widths) == 0
    ):
        raise XRefError("invalid /W in cross-reference stream", offset=offset)

    size = dictionary.get("Size")
    if not isinstance(size, int) or isinstance(size, bool) or size < 0:
        raise XRefError("invalid /Size in cross-reference stream", offset=offset)

    index = dictionary.get("Index", [0, size])
    if (
        not isinstance(index, list)
        or len(index) % 2
        or not all(isinstance(i, int) and not isinstance(i, bool) and i >= 0 for i in index)
    ):
        raise XRefError("invalid /Index in cross-reference stream", offset=offset)

    record_size = sum(widths)
    expected = sum(index[1::2])
    if expected * record_size > len(decoded):
        raise XRefError("cross-reference stream is shorter than /Index declares", offset=offset)

    entries: List[XRefEntry] = []
    pos = 0
    for first, count in zip(index[0::2], index[1::2]):
        for number in range(first, first + count):
            fields = []
            for width in widths:
                fields.append(int.from_bytes(decoded[pos:pos + width], "big"))
                pos += width
            entry = _stream_entry(number, widths, fields)
            if entry is not None:
                entries.append(entry)

    return entries, dictionary


def _stream_entry(number: int, widths: List[int], fields: List[int]) -> Optional[XRefEntry]:
    # A zero-width type field defaults to type 1
    entry_type = fields[0] if widths[0] else 1

    if entry_type == 0:
        if number == 0:
            return None
        return XRefEntry(XRefType.FREE, ObjectId(number, fields[2]))
    if entry_type == 1:
        generation = fields[2] if widths[2] else 0
        return XRefEntry(XRefType.STANDARD, ObjectId(number, generation), fields[1])
    if entry_type == 2:
        return XRefEntry(
            XRefType.COMPRESSED,
            ObjectId(number, 0),
            CompressedLocation(fields[1], fields[2]),
        )
    # Unknown entry types are treated as null references
    logger.debug("ignoring cross-reference entry type %d for object %d", entry_type, number)
    return None


__all__ = [
    "CompressedLocation",
    "CrossReferenceData",
    "ObjectTable",
    "XRefEntry",
    "XRefType",
    "find_startxref",
    "load_cross_references",
    "strip_leading_junk",
]
