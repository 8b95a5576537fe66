"""
Read-only view of one PDF document.

PdfDocument owns the raw buffer, the newest-revision object table and
two per-document caches:

- parsed objects, keyed by ObjectId
- decoded stream bytes, keyed by the stream's ObjectId

Both caches make every object parse and every stream decode happen at
most once per document. The document is built once per upload and
discarded afterwards; it is never shared between requests.

Error handling policy:
- Unresolvable, cyclic or over-deep references raise MalformedPdfError.
- Decode failures of structural streams (object streams) are structural
  and raise MalformedPdfError.
- Decode failures of content streams raise StreamDecodeError and are
  left to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from erechnung.app.config import ExtractionConfig
from erechnung.app.errors import MalformedPdfError, PdfSyntaxError, StreamDecodeError
from erechnung.app.pdf.filters import decode_stream_data, normalize_filter_chain
from erechnung.app.pdf.lexer import Lexer, TokenKind
from erechnung.app.pdf.objects import Name, ObjectId, PdfValue, Reference, Stream
from erechnung.app.pdf.parser import ObjectParser
from erechnung.app.pdf.xref import (
    CompressedLocation,
    XRefType,
    load_cross_references,
    strip_leading_junk,
)


logger = logging.getLogger(__name__)


class PdfDocument:
    def __init__(self, data: bytes, config: Optional[ExtractionConfig] = None) -> None:
        self._config = config or ExtractionConfig()
        self._data = strip_leading_junk(data)

        xref = load_cross_references(
            self._data,
            max_sections=self._config.MAX_XREF_SECTIONS,
            max_stream_bytes=self._config.MAX_DECOMPRESSED_STREAM_BYTES,
        )
        self.table = xref.table
        self.trailer = xref.trailer
        self.section_offsets = xref.section_offsets

        if "Encrypt" in self.trailer:
            raise MalformedPdfError("encrypted PDF documents are not supported")

        self._objects: Dict[ObjectId, PdfValue] = {}
        self._loading: List[ObjectId] = []
        self._object_streams: Dict[int, Tuple[bytes, int, List[Tuple[int, int]]]] = {}
        self._decoded: Dict[ObjectId, bytes] = {}

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    @property
    def catalog(self) -> dict:
        catalog = self.resolve(self.trailer.get("Root"))
        if not isinstance(catalog, dict):
            raise MalformedPdfError("document catalog is not a dictionary")
        return catalog

    # ------------------------------------------------------------------
    # Reference resolution
    # ------------------------------------------------------------------

    def resolve(self, value: Any) -> PdfValue:
        """Follow a reference chain to a direct value."""
        depth = 0
        seen = set()
        while isinstance(value, Reference):
            if value.object_id in seen:
                raise MalformedPdfError(f"reference cycle at {value}")
            if depth >= self._config.MAX_REFERENCE_DEPTH:
                raise MalformedPdfError(f"reference chain deeper than {depth} at {value}")
            seen.add(value.object_id)
            depth += 1
            value = self.get_object(value.object_id)
        return value

    def get_object(self, object_id: ObjectId) -> PdfValue:
        if object_id in self._objects:
            return self._objects[object_id]
        if object_id in self._loading:
            raise MalformedPdfError(f"object {object_id} refers to itself while loading")
        # Indirect /Length values and object streams load other objects
        # mid-parse; the nesting of such loads is bounded like references.
        if len(self._loading) >= self._config.MAX_REFERENCE_DEPTH:
            raise MalformedPdfError(
                f"object {object_id} nested more than "
                f"{self._config.MAX_REFERENCE_DEPTH} loads deep"
            )

        entry = self.table.lookup(object_id)
        if entry is None:
            raise MalformedPdfError(f"unresolved reference {object_id}")

        self._loading.append(object_id)
        try:
            if entry.xref_type == XRefType.COMPRESSED:
                value = self._load_compressed(object_id, entry.location)
            else:
                value = self._load_at_offset(object_id, entry.location)
        finally:
            self._loading.pop()

        self._objects[object_id] = value
        return value

    def _load_at_offset(self, object_id: ObjectId, offset: int) -> PdfValue:
        if not 0 <= offset < len(self._data):
            raise MalformedPdfError(f"object {object_id} offset {offset} outside the file")

        parser = ObjectParser(
            self._data,
            offset,
            length_resolver=self._resolve_length,
            max_nesting=self._config.MAX_OBJECT_NESTING,
        )
        indirect = parser.parse_indirect_object()
        if indirect.object_id != object_id:
            raise MalformedPdfError(
                f"expected object {object_id}, found {indirect.object_id}", offset=offset
            )
        return indirect.value

    def _resolve_length(self, reference: Reference) -> Optional[int]:
        value = self.resolve(reference)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        return None

    # ------------------------------------------------------------------
    # Object streams
    # ------------------------------------------------------------------

    def _load_compressed(self, object_id: ObjectId, location: CompressedLocation) -> PdfValue:
        decoded, first, offsets = self._object_stream(location.stream_number)
        if not 0 <= location.index < len(offsets):
            raise MalformedPdfError(
                f"object {object_id} index {location.index} outside object stream "
                f"{location.stream_number}"
            )

        number, relative = offsets[location.index]
        if number != object_id.number:
            raise MalformedPdfError(
                f"object stream {location.stream_number} holds object {number}, "
                f"expected {object_id.number}"
            )

        parser = ObjectParser(
            decoded, first + relative, max_nesting=self._config.MAX_OBJECT_NESTING
        )
        return parser.parse_value()

    def _object_stream(self, number: int):
        cached = self._object_streams.get(number)
        if cached is not None:
            return cached

        stream = self.get_object(ObjectId(number, 0))
        if not isinstance(stream, Stream) or stream.get("Type") != "ObjStm":
            raise MalformedPdfError(f"object {number} is not an object stream")

        count = self.resolve(stream.get("N"))
        first = self.resolve(stream.get("First"))
        if not isinstance(count, int) or not isinstance(first, int) or count < 0 or first < 0:
            raise MalformedPdfError(f"object stream {number} has invalid /N or /First")

        try:
            decoded = self.decode_stream(stream)
        except StreamDecodeError as exc:
            raise MalformedPdfError(f"undecodable object stream {number}: {exc}") from exc

        offsets = self._object_stream_header(decoded[:first], count, number)
        cached = (decoded, first, offsets)
        self._object_streams[number] = cached
        return cached

    @staticmethod
    def _object_stream_header(header: bytes, count: int, number: int) -> List[Tuple[int, int]]:
        values = []
        try:
            for token in Lexer(header):
                if token.kind != TokenKind.INTEGER:
                    break
                values.append(token.value)
                if len(values) == 2 * count:
                    break
        except PdfSyntaxError as exc:
            raise MalformedPdfError(f"unreadable object stream {number} header") from exc

        if len(values) < 2 * count:
            raise MalformedPdfError(f"object stream {number} header is truncated")
        return list(zip(values[0::2], values[1::2]))

    # ------------------------------------------------------------------
    # Stream decoding
    # ------------------------------------------------------------------

    def decode_stream(self, stream: Stream) -> bytes:
        """
        Decoded bytes of a stream, computed at most once per document.
        """
        key = stream.object_id
        if key is not None and key in self._decoded:
            return self._decoded[key]

        if "F" in stream.dictionary:
            raise StreamDecodeError("external file streams are not supported")

        filters = self.resolve(stream.get("Filter"))
        if isinstance(filters, list):
            filters = [self.resolve(item) for item in filters]

        parms = self.resolve(stream.get("DecodeParms"))
        if isinstance(parms, list):
            parms = [self._resolve_parms(self.resolve(item)) for item in parms]
        else:
            parms = self._resolve_parms(parms)

        names, params = normalize_filter_chain(filters, parms)
        decoded = decode_stream_data(
            stream.raw, names, params, self._config.MAX_DECOMPRESSED_STREAM_BYTES
        )

        if key is not None:
            self._decoded[key] = decoded
        return decoded

    def _resolve_parms(self, parms: Any) -> Any:
        if not isinstance(parms, dict):
            return parms
        return {Name(key): self.resolve(value) for key, value in parms.items()}


__all__ = ["PdfDocument"]
