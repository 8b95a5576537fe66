"""
HTTP rendering of extraction results.

FROZEN CONTRACT
---------------
The JSON field names below are fixed for compatibility with existing
clients and MUST NOT change:

    "file status"     "Success" or an error description
    "embedded files"  attachment names joined with ", "
    "xml_content"     extracted XML text (success only)
    "xml_filename"    selected attachment name (success only)

Fields without a value are omitted from the payload.
"""

from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from erechnung.app.schemas.extraction import ErrorKind, ExtractionResult


SUCCESS_STATUS = "Success"
NO_FILE_STATUS = "No file uploaded"

# Every ErrorKind MUST have an entry in both tables.
ERROR_DESCRIPTIONS: Dict[ErrorKind, str] = {
    ErrorKind.MALFORMED_PDF: "Not a valid PDF file",
    ErrorKind.NOT_PDFA3: "PDF is not in PDF/A-3 format",
    ErrorKind.NO_EMBEDDED_FILES: "No embedded files",
    ErrorKind.NO_XML_FOUND: "No embedded XML-file",
    ErrorKind.EXTRACTION_FAILED: "XML file found but could not extract content",
    ErrorKind.XML_NOT_WELL_FORMED: "Embedded XML is not well-formed",
}

ERROR_HTTP_STATUS: Dict[ErrorKind, int] = {
    ErrorKind.MALFORMED_PDF: 400,
    ErrorKind.NOT_PDFA3: 400,
    ErrorKind.NO_EMBEDDED_FILES: 400,
    ErrorKind.NO_XML_FOUND: 400,
    ErrorKind.EXTRACTION_FAILED: 400,
    ErrorKind.XML_NOT_WELL_FORMED: 400,
}


class ExtractionResponse(BaseModel):
    file_status: str = Field(..., alias="file status")
    embedded_files: Optional[str] = Field(None, alias="embedded files")
    xml_content: Optional[str] = None
    xml_filename: Optional[str] = None

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @classmethod
    def from_result(cls, result: ExtractionResult) -> "ExtractionResponse":
        embedded = (
            ", ".join(result.embedded_file_names)
            if result.embedded_file_names
            else None
        )
        if result.succeeded:
            return cls(
                file_status=SUCCESS_STATUS,
                embedded_files=embedded,
                xml_content=result.xml_content,
                xml_filename=result.xml_filename,
            )
        return cls(
            file_status=ERROR_DESCRIPTIONS[result.error_kind],
            embedded_files=embedded,
        )

    @classmethod
    def no_file(cls) -> "ExtractionResponse":
        return cls(file_status=NO_FILE_STATUS)

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def http_status_for(result: ExtractionResult) -> int:
    if result.succeeded:
        return 200
    return ERROR_HTTP_STATUS[result.error_kind]


__all__ = [
    "ERROR_DESCRIPTIONS",
    "ERROR_HTTP_STATUS",
    "ExtractionResponse",
    "NO_FILE_STATUS",
    "SUCCESS_STATUS",
    "http_status_for",
]
