"""
In-memory model of PDF values.

Mapping of PDF object types to Python values:

    null        -> None
    boolean     -> bool
    number      -> int / float
    string      -> PdfString
    name        -> Name (str subclass, decoded, without the leading slash)
    array       -> list
    dictionary  -> dict keyed by name text
    stream      -> Stream
    reference   -> Reference

References are never followed here. Resolution is the document's job.
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass, field
from typing import Any, Dict, NamedTuple, Optional, Union


class ObjectId(NamedTuple):
    number: int
    generation: int

    def __str__(self) -> str:
        return f"{self.number} {self.generation} R"


class Name(str):
    """A PDF name object. Compares equal to its decoded text."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"Name(/{str.__str__(self)})"


class Keyword(str):
    """A bare keyword token such as ``obj`` or ``endstream``."""

    __slots__ = ()


@dataclass(frozen=True)
class PdfString:
    raw: bytes
    is_hex: bool = False

    def to_text(self) -> str:
        """
        Decode as a PDF text string.

        UTF-16BE/LE and UTF-8 are recognised by their byte order mark.
        Anything else is treated as PDFDocEncoding, approximated by
        Latin-1 (identical for the printable ASCII range).
        """
        raw = self.raw
        if raw.startswith((codecs.BOM_UTF16_BE, codecs.BOM_UTF16_LE)):
            return raw.decode("utf-16", errors="replace")
        if raw.startswith(codecs.BOM_UTF8):
            return raw[len(codecs.BOM_UTF8):].decode("utf-8", errors="replace")
        return raw.decode("latin-1")


@dataclass(frozen=True)
class Reference:
    object_id: ObjectId

    def __str__(self) -> str:
        return str(self.object_id)


@dataclass
class Stream:
    dictionary: Dict[str, Any]
    raw: bytes = field(repr=False)
    object_id: Optional[ObjectId] = None

    def get(self, key: str, default: Any = None) -> Any:
        return self.dictionary.get(key, default)


PdfValue = Union[
    None, bool, int, float, PdfString, Name, list, dict, Stream, Reference
]


def text_of(value: Any) -> Optional[str]:
    """Best-effort text for a direct string or name value."""
    if isinstance(value, PdfString):
        return value.to_text()
    if isinstance(value, Name):
        return str(value)
    return None


__all__ = [
    "Keyword",
    "Name",
    "ObjectId",
    "PdfString",
    "PdfValue",
    "Reference",
    "Stream",
    "text_of",
]
