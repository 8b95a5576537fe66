"""
Extraction pipeline.

Runs the extraction stages in a fixed order against one uploaded
buffer:

    parse -> conformance -> extract -> select -> validate

Responsibilities:
- Execute stages in order, recording every completed stage
- Stop at the first failing stage
- Convert typed extraction errors into an ExtractionResult

This pipeline MUST NOT:
- Catch anything other than ExtractionError (logic errors propagate)
- Touch the network, the filesystem or the environment
- Carry state between runs
"""

from __future__ import annotations

import logging
from typing import List, Optional

from erechnung.app.checks.candidate_selection import select_invoice_xml
from erechnung.app.checks.conformance import inspect_conformance
from erechnung.app.checks.embedded_files import extract_embedded_files
from erechnung.app.checks.xml_sanity import check_well_formed
from erechnung.app.config import ExtractionConfig
from erechnung.app.errors import ExtractionError, NoEmbeddedFilesError
from erechnung.app.pdf.document import PdfDocument
from erechnung.app.schemas.extraction import (
    ExtractionResult,
    ExtractionStatus,
    PdfAIdentification,
    PipelineStage,
)
from erechnung.app.utils.hashing import compute_input_digest


logger = logging.getLogger(__name__)


class ExtractionPipeline:
    def __init__(self, config: Optional[ExtractionConfig] = None) -> None:
        self.config = config or ExtractionConfig()

    def run(self, file_bytes: bytes) -> ExtractionResult:
        stages: List[PipelineStage] = []
        embedded_file_names: List[str] = []
        pdfa: Optional[PdfAIdentification] = None
        digest = compute_input_digest(file_bytes)

        try:
            document = PdfDocument(file_bytes, config=self.config)
            stages.append(PipelineStage.PARSED)

            signal = inspect_conformance(document, self.config)
            pdfa = signal.pdfa
            if not signal.has_embedded_files:
                raise NoEmbeddedFilesError("No embedded files")
            stages.append(PipelineStage.CONFORMANCE_CHECKED)

            specs = extract_embedded_files(document, signal)
            embedded_file_names = [spec.name for spec in specs]
            if not specs:
                raise NoEmbeddedFilesError("No embedded files with content")
            stages.append(PipelineStage.EXTRACTED)

            selection = select_invoice_xml(specs, self.config.INVOICE_FILENAMES)
            stages.append(PipelineStage.SELECTED)

            xml_bytes = selection.spec.read_bytes()
            xml_content = check_well_formed(xml_bytes)
            stages.append(PipelineStage.VALIDATED)

        except ExtractionError as exc:
            logger.info(
                "extraction failed (%s) after %s: %s [size=%d, %s]",
                exc.kind.value,
                stages[-1].value if stages else "start",
                exc,
                len(file_bytes),
                digest,
            )
            return ExtractionResult(
                status=ExtractionStatus.ERROR,
                error_kind=exc.kind,
                message=str(exc),
                embedded_file_names=embedded_file_names,
                pdfa=pdfa,
                stages_completed=stages,
                document_sha256=digest,
            )

        stages.append(PipelineStage.SUCCESS)
        logger.info(
            "extracted %r via %s from %d attachments [size=%d, %s]",
            selection.spec.name,
            selection.rule.value,
            len(specs),
            len(file_bytes),
            digest,
        )
        return ExtractionResult(
            status=ExtractionStatus.SUCCESS,
            embedded_file_names=embedded_file_names,
            xml_content=xml_content,
            xml_filename=selection.spec.name,
            xml_bytes=xml_bytes,
            selection_rule=selection.rule,
            pdfa=pdfa,
            stages_completed=stages,
            document_sha256=digest,
        )


def extract_xml(
    file_bytes: bytes, config: Optional[ExtractionConfig] = None
) -> ExtractionResult:
    """Engine entry point: one buffer in, one result out."""
    return ExtractionPipeline(config).run(file_bytes)


__all__ = ["ExtractionPipeline", "extract_xml"]
