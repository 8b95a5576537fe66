"""
Conformance inspection: where are the attachments, and what does the
document claim to be?

Attachment discovery follows the two PDF/A-3 entry points:

    Catalog -> /Names -> /EmbeddedFiles  (name tree, /Kids + /Names)
    Catalog -> /AF                        (associated files array)

Discovery order is name-tree order first, then /AF. A file specification
reachable through both is listed once.

PDF/A identification (informational) is read from the XMP packet in
Catalog /Metadata and from Catalog /OutputIntents. It becomes a hard
requirement only when REQUIRE_PDFA3_IDENTIFICATION is set.

Error handling policy:
- Name-tree cycles, non-dictionary nodes and excessive depth raise
  MalformedPdfError. A subtree shared by several /Kids arrays is walked
  once.
- Unreadable XMP metadata is logged and treated as "no identification".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Set, Tuple

from erechnung.app.config import ExtractionConfig
from erechnung.app.errors import MalformedPdfError, NotPdfA3Error, StreamDecodeError
from erechnung.app.pdf.document import PdfDocument
from erechnung.app.pdf.objects import ObjectId, PdfValue, Reference, Stream, text_of
from erechnung.app.schemas.extraction import PdfAIdentification


logger = logging.getLogger(__name__)

_PDFAID_PART = re.compile(
    rb"pdfaid:part\s*(?:=\s*[\"']\s*(\d{1,3})\s*[\"']|>\s*(\d{1,3})\s*<)"
)
_PDFAID_CONFORMANCE = re.compile(
    rb"pdfaid:conformance\s*(?:=\s*[\"']\s*([A-Za-z])\s*[\"']|>\s*([A-Za-z])\s*<)"
)


class DiscoverySource(str, Enum):
    NAME_TREE = "name_tree"
    ASSOCIATED_FILES = "associated_files"


@dataclass(frozen=True)
class FileSpecCandidate:
    """A file specification value found during discovery (unresolved)."""

    value: PdfValue
    source: DiscoverySource
    key: Optional[str] = None


@dataclass(frozen=True)
class ConformanceSignal:
    candidates: Tuple[FileSpecCandidate, ...]
    pdfa: Optional[PdfAIdentification] = None

    @property
    def has_embedded_files(self) -> bool:
        return bool(self.candidates)


def inspect_conformance(
    document: PdfDocument, config: Optional[ExtractionConfig] = None
) -> ConformanceSignal:
    config = config or ExtractionConfig()
    catalog = document.catalog

    pdfa = read_pdfa_identification(document, catalog)
    if config.REQUIRE_PDFA3_IDENTIFICATION and (pdfa is None or not pdfa.is_pdfa3):
        raise NotPdfA3Error("PDF is not in PDF/A-3 format")

    candidates: List[FileSpecCandidate] = []
    seen: Set[ObjectId] = set()

    names = document.resolve(catalog.get("Names"))
    if isinstance(names, dict) and "EmbeddedFiles" in names:
        for key, value in _walk_name_tree(
            document, names["EmbeddedFiles"], config.MAX_NAME_TREE_DEPTH
        ):
            if isinstance(value, Reference):
                seen.add(value.object_id)
            candidates.append(FileSpecCandidate(value, DiscoverySource.NAME_TREE, key))

    associated = document.resolve(catalog.get("AF"))
    if isinstance(associated, list):
        for value in associated:
            if isinstance(value, Reference):
                if value.object_id in seen:
                    continue
                seen.add(value.object_id)
            candidates.append(FileSpecCandidate(value, DiscoverySource.ASSOCIATED_FILES))

    logger.debug("discovered %d file specifications", len(candidates))
    return ConformanceSignal(candidates=tuple(candidates), pdfa=pdfa)


# ---------------------------------------------------------------------------
# Name tree traversal
# ---------------------------------------------------------------------------

def _walk_name_tree(document: PdfDocument, root: Any, max_depth: int):
    """Yield ``(key, value)`` leaf pairs in tree order."""
    path: Set[ObjectId] = set()
    visited: Set[ObjectId] = set()
    results: List[Tuple[Optional[str], PdfValue]] = []

    def visit(node_value: Any, depth: int) -> None:
        if depth > max_depth:
            raise MalformedPdfError(f"name tree deeper than {max_depth} levels")
        if not isinstance(node_value, Reference):
            walk(node_value, depth)
            return

        object_id = node_value.object_id
        if object_id in path:
            raise MalformedPdfError(f"name tree cycle at {node_value}")
        if object_id in visited:
            logger.debug("name tree node %s is shared, already walked", node_value)
            return
        visited.add(object_id)
        path.add(object_id)
        try:
            walk(node_value, depth)
        finally:
            path.discard(object_id)

    def walk(node_value: Any, depth: int) -> None:
        node = document.resolve(node_value)
        if not isinstance(node, dict):
            raise MalformedPdfError("name tree node is not a dictionary")

        pairs = document.resolve(node.get("Names"))
        if isinstance(pairs, list):
            if len(pairs) % 2:
                logger.warning("name tree leaf has an odd number of entries")
            for index in range(0, len(pairs) - 1, 2):
                key = text_of(document.resolve(pairs[index]))
                results.append((key, pairs[index + 1]))

        kids = document.resolve(node.get("Kids"))
        if isinstance(kids, list):
            for kid in kids:
                visit(kid, depth + 1)

    visit(root, 1)
    return results


# ---------------------------------------------------------------------------
# PDF/A identification
# ---------------------------------------------------------------------------

def read_pdfa_identification(
    document: PdfDocument, catalog: dict
) -> Optional[PdfAIdentification]:
    output_intents = _output_intent_subtypes(document, catalog)

    metadata = document.resolve(catalog.get("Metadata"))
    part = conformance = None
    if isinstance(metadata, Stream):
        try:
            packet = document.decode_stream(metadata)
        except StreamDecodeError as exc:
            logger.warning("XMP metadata could not be decoded: %s", exc)
        else:
            part_match = _PDFAID_PART.search(packet)
            if part_match:
                part = int(part_match.group(1) or part_match.group(2))
            conformance_match = _PDFAID_CONFORMANCE.search(packet)
            if conformance_match:
                level = conformance_match.group(1) or conformance_match.group(2)
                conformance = level.decode("ascii").upper()

    if part is None and conformance is None and not output_intents:
        return None
    return PdfAIdentification(
        part=part, conformance=conformance, output_intents=output_intents
    )


def _output_intent_subtypes(document: PdfDocument, catalog: dict) -> List[str]:
    intents = document.resolve(catalog.get("OutputIntents"))
    if not isinstance(intents, list):
        return []

    subtypes = []
    for intent in intents:
        intent = document.resolve(intent)
        if isinstance(intent, dict):
            subtype = text_of(document.resolve(intent.get("S")))
            if subtype:
                subtypes.append(subtype)
    return subtypes


__all__ = [
    "ConformanceSignal",
    "DiscoverySource",
    "FileSpecCandidate",
    "inspect_conformance",
    "read_pdfa_identification",
]
