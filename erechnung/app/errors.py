"""
Extraction error taxonomy.

Every failure the engine can report on untrusted input is one of the
exception classes below. Each class carries the ErrorKind it maps to, so
the pipeline boundary can turn any of them into an ExtractionResult
without inspecting messages.

Error handling policy:
- Stages raise these exceptions; only the pipeline catches them.
- Anything else escaping a stage is a programming error and propagates.
"""

from __future__ import annotations

from typing import Optional

from erechnung.app.schemas.extraction import ErrorKind


class ExtractionError(Exception):
    """Base class for all typed extraction failures."""

    kind: ErrorKind = ErrorKind.MALFORMED_PDF

    def __init__(self, message: str, *, offset: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self) -> str:
        if self.offset is None:
            return self.message
        return f"{self.message} (at byte {self.offset})"


# ---------------------------------------------------------------------------
# MalformedPdf
# ---------------------------------------------------------------------------

class MalformedPdfError(ExtractionError):
    """Structural failure: header, object graph, references, encryption."""

    kind = ErrorKind.MALFORMED_PDF


class PdfSyntaxError(MalformedPdfError):
    """Lexical or object-level syntax error at a byte offset."""


class XRefError(MalformedPdfError):
    """Broken cross-reference table, stream or trailer chain."""


# ---------------------------------------------------------------------------
# Conformance and attachment discovery
# ---------------------------------------------------------------------------

class NotPdfA3Error(ExtractionError):
    kind = ErrorKind.NOT_PDFA3


class NoEmbeddedFilesError(ExtractionError):
    kind = ErrorKind.NO_EMBEDDED_FILES


class NoXmlFoundError(ExtractionError):
    kind = ErrorKind.NO_XML_FOUND


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

class StreamDecodeError(ExtractionError):
    """A stream could not be decoded (corrupt, unsupported, or too large)."""

    kind = ErrorKind.EXTRACTION_FAILED


class XmlNotWellFormedError(ExtractionError):
    kind = ErrorKind.XML_NOT_WELL_FORMED
