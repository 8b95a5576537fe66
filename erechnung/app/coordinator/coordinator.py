"""
Service-side extraction coordinator.

IMPORTANT:
The coordinator is a DUMB AUTHORITY.

It MUST NOT:
- inspect PDF structure
- interpret attachments
- alter extraction outcomes

Its sole responsibility is running the CPU-bound pipeline in a worker
thread so the event loop keeps serving other requests.
"""

from __future__ import annotations

import logging
from typing import Optional

import anyio

from erechnung.app.config import ExtractionConfig
from erechnung.app.coordinator.extraction_pipeline import ExtractionPipeline
from erechnung.app.schemas.extraction import ExtractionResult


logger = logging.getLogger(__name__)


class ExtractionCoordinator:
    def __init__(
        self,
        config: Optional[ExtractionConfig] = None,
        pipeline: Optional[ExtractionPipeline] = None,
    ) -> None:
        self._pipeline = pipeline if pipeline is not None else ExtractionPipeline(config)

    @property
    def config(self) -> ExtractionConfig:
        return self._pipeline.config

    async def run_extraction(self, pdf_bytes: bytes) -> ExtractionResult:
        try:
            return await anyio.to_thread.run_sync(self._pipeline.run, pdf_bytes)
        except Exception:
            logger.exception(
                "extraction pipeline crashed on a %d byte upload", len(pdf_bytes)
            )
            raise
