"""
FastAPI entrypoint for the eRechnung extractor.

This module defines the public HTTP interface: a PDF/A-3 hybrid invoice
(Factur-X, ZUGFeRD, XRechnung) is uploaded and the embedded invoice XML
is returned, either inside a JSON document or as the XML file itself.

The service is stateless. Each upload is extracted independently and
nothing is written to disk.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from starlette.responses import Response

from erechnung.app.config import ServiceSettings, get_settings
from erechnung.app.coordinator.coordinator import ExtractionCoordinator
from erechnung.app.schemas.extraction import ExtractionResult
from erechnung.app.schemas.responses import ExtractionResponse, http_status_for


logger = logging.getLogger(__name__)

SERVICE_NAME = "eRechnung PDF/A-3 XML Extractor"
DEFAULT_DOWNLOAD_NAME = "invoice.xml"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_UNSAFE_FALLBACK_CHARS = re.compile(r'[^\x20-\x7e]|["\\]')


# ---------------------------------------------------------------------------
# Application setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title=SERVICE_NAME,
    description="Extracts the embedded invoice XML from PDF/A-3 hybrid invoices",
    version="0.1.0",
)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------

@app.on_event("startup")
def startup_event() -> None:
    """
    Application startup hook.

    Settings are loaded once and treated as immutable for the lifetime of
    the process.
    """
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app.state.settings = settings
    app.state.coordinator = ExtractionCoordinator(config=settings.extraction_config())

    logger.info(
        "%s ready (max upload %d MB)", SERVICE_NAME, settings.max_pdf_size_mb
    )


# ---------------------------------------------------------------------------
# Shared upload handling
# ---------------------------------------------------------------------------

async def _extract_upload(upload: Optional[UploadFile]) -> Optional[ExtractionResult]:
    """
    Read the upload and run the extraction.

    Returns None when no (or an empty) file was uploaded.
    """
    if upload is None:
        return None

    try:
        pdf_bytes = await upload.read()
    except Exception as exc:
        raise HTTPException(
            status_code=400,
            detail="Failed to read uploaded file",
        ) from exc

    if not pdf_bytes:
        return None

    # ------------------------------------------------------------------
    # Hard resource safety limits
    # ------------------------------------------------------------------
    settings: ServiceSettings = app.state.settings
    if len(pdf_bytes) > settings.max_pdf_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"PDF exceeds maximum allowed size of "
                f"{settings.max_pdf_size_mb} MB"
            ),
        )

    coordinator: ExtractionCoordinator = app.state.coordinator
    return await coordinator.run_extraction(pdf_bytes)


def content_disposition(filename: Optional[str]) -> str:
    """
    Attachment header for an untrusted attachment name.

    ``filename`` carries an ASCII-only fallback; the exact name travels
    percent-encoded in ``filename*`` (RFC 5987), as starlette's
    FileResponse does for non-ASCII names.
    """
    name = _CONTROL_CHARS.sub("", filename or "") or DEFAULT_DOWNLOAD_NAME
    fallback = _UNSAFE_FALLBACK_CHARS.sub("_", name)
    header = f'attachment; filename="{fallback}"'
    if fallback != name:
        header += f"; filename*=UTF-8''{quote(name, safe='')}"
    return header


def _json_response(result: Optional[ExtractionResult]) -> JSONResponse:
    if result is None:
        return JSONResponse(
            status_code=400, content=ExtractionResponse.no_file().to_payload()
        )
    return JSONResponse(
        status_code=http_status_for(result),
        content=ExtractionResponse.from_result(result).to_payload(),
    )


# ---------------------------------------------------------------------------
# API Routes
# ---------------------------------------------------------------------------

@app.post(
    "/extract_xml",
    summary="Extract the embedded invoice XML as JSON",
)
async def extract_xml_endpoint(
    file: Optional[UploadFile] = File(None, description="PDF/A-3 hybrid invoice"),
) -> JSONResponse:
    return _json_response(await _extract_upload(file))


@app.post(
    "/extract_xml_file",
    summary="Extract the embedded invoice XML as a file download",
)
async def extract_xml_file_endpoint(
    file: Optional[UploadFile] = File(None, description="PDF/A-3 hybrid invoice"),
) -> Response:
    result = await _extract_upload(file)
    if result is None or not result.succeeded:
        return _json_response(result)

    return Response(
        content=result.xml_bytes,
        media_type="application/xml",
        headers={"Content-Disposition": content_disposition(result.xml_filename)},
    )


@app.get("/health", summary="Service health check")
def health() -> JSONResponse:
    return JSONResponse(content={"status": "healthy", "service": SERVICE_NAME})


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "erechnung.app.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
