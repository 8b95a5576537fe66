"""
Runtime configuration for the eRechnung extractor.

Two layers:

- ExtractionConfig: engine limits and selection policy. A plain frozen
  model so the engine can be used (and tested) without any environment.
- ServiceSettings: environment-driven settings for the HTTP service,
  parsed with pydantic-settings (prefix ``ERECHNUNG_``). It builds the
  ExtractionConfig the service hands to the engine.

Configuration is read-only at runtime. The same input and the same
configuration always produce the same extraction result.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, List, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_INVOICE_FILENAMES: Tuple[str, ...] = (
    "factur-x.xml",
    "zugferd-invoice.xml",
    "xrechnung.xml",
)


def _normalize_filenames(value) -> Tuple[str, ...]:
    names = tuple(str(name).strip().lower() for name in value)
    if not names or any(not name for name in names):
        raise ValueError("invoice filenames must be a non-empty list of non-empty names")
    return names


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

class ExtractionConfig(BaseModel):
    """
    Engine limits and invoice selection policy.

    Every limit bounds work done on untrusted input. Exceeding one is a
    typed extraction error, never a crash.
    """

    # ------------------------------------------------------------------
    # Safety and resource limits
    # ------------------------------------------------------------------

    MAX_XREF_SECTIONS: int = Field(
        64,
        ge=1,
        description="Maximum cross-reference sections followed through /Prev",
    )

    MAX_DECOMPRESSED_STREAM_BYTES: int = Field(
        64 * 1024 * 1024,
        ge=1,
        description="Ceiling on the decoded size of any single stream",
    )

    MAX_NAME_TREE_DEPTH: int = Field(
        32,
        ge=1,
        description="Maximum /Kids depth of the EmbeddedFiles name tree",
    )

    MAX_REFERENCE_DEPTH: int = Field(
        32,
        ge=1,
        description="Maximum length of an indirect reference chain",
    )

    MAX_OBJECT_NESTING: int = Field(
        128,
        ge=1,
        description="Maximum nesting of arrays and dictionaries in one object",
    )

    # ------------------------------------------------------------------
    # Selection policy
    # ------------------------------------------------------------------

    INVOICE_FILENAMES: Tuple[str, ...] = Field(
        DEFAULT_INVOICE_FILENAMES,
        description=(
            "Attachment names recognised as the invoice XML, compared "
            "case-insensitively. Earlier attachments win over later ones."
        ),
    )

    REQUIRE_PDFA3_IDENTIFICATION: bool = Field(
        False,
        description=(
            "Reject documents whose XMP metadata does not declare "
            "pdfaid:part 3"
        ),
    )

    @field_validator("INVOICE_FILENAMES", mode="before")
    @classmethod
    def normalize_invoice_filenames(cls, value):
        return _normalize_filenames(value)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Service settings
# ---------------------------------------------------------------------------

class ServiceSettings(BaseSettings):
    """
    HTTP service settings parsed from the environment.

    Fails fast at startup on invalid values.
    """

    # ---------------------------------------------------------------------
    # Network binding
    # ---------------------------------------------------------------------

    host: Annotated[str, Field(default="127.0.0.1", min_length=1)]
    port: Annotated[int, Field(default=8080, ge=1, le=65535)]

    log_level: Annotated[
        str,
        Field(default="INFO", description="Root log level (DEBUG, INFO, WARNING, ...)"),
    ]

    # ---------------------------------------------------------------------
    # Operational boundaries
    # ---------------------------------------------------------------------

    max_pdf_size_mb: Annotated[
        int,
        Field(default=25, ge=1, le=512, description="Upload size limit"),
    ]

    max_xref_sections: Annotated[int, Field(default=64, ge=1)]
    max_decompressed_stream_mb: Annotated[int, Field(default=64, ge=1)]
    max_name_tree_depth: Annotated[int, Field(default=32, ge=1)]
    max_reference_depth: Annotated[int, Field(default=32, ge=1)]
    max_object_nesting: Annotated[int, Field(default=128, ge=1)]

    # ---------------------------------------------------------------------
    # Selection policy
    # ---------------------------------------------------------------------

    invoice_filenames: List[str] = Field(
        default_factory=lambda: list(DEFAULT_INVOICE_FILENAMES)
    )
    require_pdfa3_identification: bool = False

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {value!r}")
        return level

    @field_validator("invoice_filenames")
    @classmethod
    def validate_invoice_filenames(cls, value: List[str]) -> List[str]:
        return list(_normalize_filenames(value))

    model_config = SettingsConfigDict(
        env_prefix="ERECHNUNG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
    )

    @property
    def max_pdf_size_bytes(self) -> int:
        return self.max_pdf_size_mb * 1024 * 1024

    def extraction_config(self) -> ExtractionConfig:
        return ExtractionConfig(
            MAX_XREF_SECTIONS=self.max_xref_sections,
            MAX_DECOMPRESSED_STREAM_BYTES=self.max_decompressed_stream_mb * 1024 * 1024,
            MAX_NAME_TREE_DEPTH=self.max_name_tree_depth,
            MAX_REFERENCE_DEPTH=self.max_reference_depth,
            MAX_OBJECT_NESTING=self.max_object_nesting,
            INVOICE_FILENAMES=tuple(self.invoice_filenames),
            REQUIRE_PDFA3_IDENTIFICATION=self.require_pdfa3_identification,
        )


@lru_cache(maxsize=1)
def get_settings() -> ServiceSettings:
    return ServiceSettings()
