"""
Embedded-file extraction.

Turns the file specifications found by the conformance inspector into
FileSpecification records: display name, AFRelationship, declared MIME
type and a lazy reader for the decoded content.

Decoding is deferred until ``read_bytes()`` is called and is memoized by
the document, so attachments that are never looked at are never
inflated.

Skipped (logged, not fatal):
- plain-string file specifications (external files)
- file specifications without an /EF embedded stream
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, List, Optional

from erechnung.app.checks.conformance import ConformanceSignal
from erechnung.app.pdf.document import PdfDocument
from erechnung.app.pdf.objects import ObjectId, PdfString, Reference, Stream, text_of
from erechnung.app.schemas.extraction import AFRelationship


logger = logging.getLogger(__name__)

NAME_KEYS = ("UF", "F", "Unix", "DOS")


@dataclass(frozen=True)
class FileSpecification:
    name: str
    relationship: AFRelationship
    declared_mime_type: Optional[str]
    object_id: Optional[ObjectId]
    _reader: Callable[[], bytes] = field(repr=False, compare=False)

    def read_bytes(self) -> bytes:
        """Decoded attachment content. May raise StreamDecodeError."""
        return self._reader()


def extract_embedded_files(
    document: PdfDocument, signal: ConformanceSignal
) -> List[FileSpecification]:
    specs: List[FileSpecification] = []

    for candidate in signal.candidates:
        object_id = (
            candidate.value.object_id if isinstance(candidate.value, Reference) else None
        )
        filespec = document.resolve(candidate.value)

        if isinstance(filespec, PdfString):
            logger.warning(
                "skipping external file specification %r", filespec.to_text()
            )
            continue
        if not isinstance(filespec, dict):
            logger.warning("skipping file specification that is not a dictionary")
            continue

        name = _filespec_name(document, filespec) or candidate.key or ""

        embedded = document.resolve(filespec.get("EF"))
        stream = None
        if isinstance(embedded, dict):
            stream = document.resolve(embedded.get("F"))
            if not isinstance(stream, Stream):
                stream = document.resolve(embedded.get("UF"))
        if not isinstance(stream, Stream):
            logger.warning("skipping file specification %r without embedded stream", name)
            continue

        relationship = AFRelationship.from_pdf_name(
            text_of(document.resolve(filespec.get("AFRelationship")))
        )
        mime_type = text_of(document.resolve(stream.get("Subtype")))

        specs.append(
            FileSpecification(
                name=name,
                relationship=relationship,
                declared_mime_type=mime_type,
                object_id=object_id,
                _reader=partial(document.decode_stream, stream),
            )
        )

    return specs


def _filespec_name(document: PdfDocument, filespec: dict) -> Optional[str]:
    for key in NAME_KEYS:
        text = text_of(document.resolve(filespec.get(key)))
        if text:
            return text
    return None


__all__ = [
    "FileSpecification",
    "extract_embedded_files",
]
