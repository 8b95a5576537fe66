"""
Extraction result contracts.

This module defines the typed outcome of a single extraction run and the
enumerations it is built from. Everything here is transport-neutral: the
HTTP rendering lives in ``responses.py``.

FROZEN CONTRACTS
----------------
- ErrorKind values are part of the diagnostic contract and MUST NOT be
  renamed.
- AFRelationship values are the literal PDF name values (without the
  leading slash).
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------

class ErrorKind(str, Enum):
    MALFORMED_PDF = "malformed_pdf"
    NOT_PDFA3 = "not_pdfa3"
    NO_EMBEDDED_FILES = "no_embedded_files"
    NO_XML_FOUND = "no_xml_found"
    EXTRACTION_FAILED = "extraction_failed"
    XML_NOT_WELL_FORMED = "xml_not_well_formed"


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class PipelineStage(str, Enum):
    """
    Linear extraction stages, in execution order.

    A run either reaches SUCCESS or stops at the first failing stage.
    """

    PARSED = "parsed"
    CONFORMANCE_CHECKED = "conformance_checked"
    EXTRACTED = "extracted"
    SELECTED = "selected"
    VALIDATED = "validated"
    SUCCESS = "success"


class AFRelationship(str, Enum):
    DATA = "Data"
    ALTERNATIVE = "Alternative"
    SOURCE = "Source"
    SUPPLEMENT = "Supplement"
    ENCRYPTED_PAYLOAD = "EncryptedPayload"
    FORM_DATA = "FormData"
    SCHEMA = "Schema"
    UNSPECIFIED = "Unspecified"

    @classmethod
    def from_pdf_name(cls, value: Optional[str]) -> "AFRelationship":
        """Map a /AFRelationship name to the enum; unknown or missing is Unspecified."""
        if value is None:
            return cls.UNSPECIFIED
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNSPECIFIED


class SelectionRule(str, Enum):
    KNOWN_FILENAME = "known_filename"
    XML_RELATIONSHIP = "xml_relationship"
    CONTENT_SNIFF = "content_sniff"


# ---------------------------------------------------------------------------
# Informational PDF/A identification
# ---------------------------------------------------------------------------

class PdfAIdentification(BaseModel):
    """
    PDF/A identification as declared by the document itself.

    Read from the XMP metadata packet (pdfaid schema) and the catalog's
    /OutputIntents. This is a declaration only; no ISO 19005 conformance
    is implied.
    """

    part: Optional[int] = Field(None, description="Declared pdfaid:part")
    conformance: Optional[str] = Field(
        None, description="Declared pdfaid:conformance level (A, B, U)"
    )
    output_intents: List[str] = Field(
        default_factory=list,
        description="/S subtypes of the catalog's output intents",
    )

    model_config = ConfigDict(frozen=True)

    @property
    def is_pdfa3(self) -> bool:
        return self.part == 3


# ---------------------------------------------------------------------------
# Extraction result
# ---------------------------------------------------------------------------

class ExtractionResult(BaseModel):
    """
    Terminal outcome of one extraction run.

    INVARIANTS
    ----------
    - status == SUCCESS  <=>  error_kind is None
    - xml_content / xml_filename / xml_bytes are populated on success only
    - embedded_file_names is populated as soon as attachments were
      extracted, including on the NoXmlFound, ExtractionFailed and
      XmlNotWellFormed error paths
    """

    status: ExtractionStatus
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None

    embedded_file_names: List[str] = Field(default_factory=list)
    xml_content: Optional[str] = None
    xml_filename: Optional[str] = None
    xml_bytes: Optional[bytes] = Field(
        None,
        repr=False,
        description="Selected attachment exactly as decoded from the PDF",
    )

    selection_rule: Optional[SelectionRule] = None
    pdfa: Optional[PdfAIdentification] = None

    stages_completed: List[PipelineStage] = Field(default_factory=list)
    document_sha256: Optional[str] = Field(
        None, description="Digest of the uploaded bytes, for diagnostics"
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def succeeded(self) -> bool:
        return self.status == ExtractionStatus.SUCCESS


__all__ = [
    "AFRelationship",
    "ErrorKind",
    "ExtractionResult",
    "ExtractionStatus",
    "PdfAIdentification",
    "PipelineStage",
    "SelectionRule",
]
