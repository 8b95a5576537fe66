"""
Invoice candidate selection.

Given the ordered attachment list, pick the one attachment that is the
structured invoice. Rules, first match wins:

    1a. name equals a known invoice filename (case-insensitive)
    1b. name ends in ".xml" and AFRelationship is Data or Alternative
    2.  exactly one attachment whose content looks like XML
    3.  otherwise NoXmlFound

Within a rule, earlier attachments (discovery order) win. The function
is pure and total: the same list always gives the same answer.
"""

from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from erechnung.app.config import DEFAULT_INVOICE_FILENAMES
from erechnung.app.checks.embedded_files import FileSpecification
from erechnung.app.errors import NoXmlFoundError, StreamDecodeError
from erechnung.app.schemas.extraction import AFRelationship, SelectionRule


logger = logging.getLogger(__name__)

XML_RELATIONSHIPS = (AFRelationship.DATA, AFRelationship.ALTERNATIVE)

# XML declaration or a start tag (optionally prefixed, e.g. <rsm:...>)
_XML_START = re.compile(r"\s*<(?:\?xml|[A-Za-z_])")


@dataclass(frozen=True)
class CandidateSelection:
    spec: FileSpecification
    rule: SelectionRule


def select_invoice_xml(
    specs: Sequence[FileSpecification],
    invoice_filenames: Iterable[str] = DEFAULT_INVOICE_FILENAMES,
) -> CandidateSelection:
    known = {name.lower() for name in invoice_filenames}

    for spec in specs:
        if spec.name.lower() in known:
            return CandidateSelection(spec, SelectionRule.KNOWN_FILENAME)

    for spec in specs:
        if spec.name.lower().endswith(".xml") and spec.relationship in XML_RELATIONSHIPS:
            return CandidateSelection(spec, SelectionRule.XML_RELATIONSHIP)

    xml_like: List[FileSpecification] = [spec for spec in specs if _content_looks_like_xml(spec)]
    if len(xml_like) == 1:
        return CandidateSelection(xml_like[0], SelectionRule.CONTENT_SNIFF)

    if xml_like:
        raise NoXmlFoundError(
            f"{len(xml_like)} attachments look like XML, none is a known invoice file"
        )
    raise NoXmlFoundError("No embedded XML-file")


def looks_like_xml(data: bytes) -> bool:
    head = data[:1024]
    if head.startswith((codecs.BOM_UTF16_BE, codecs.BOM_UTF16_LE)):
        text = head.decode("utf-16", errors="ignore")
    else:
        if head.startswith(codecs.BOM_UTF8):
            head = head[len(codecs.BOM_UTF8):]
        text = head.decode("latin-1")
    return _XML_START.match(text) is not None


def _content_looks_like_xml(spec: FileSpecification) -> bool:
    try:
        return looks_like_xml(spec.read_bytes())
    except StreamDecodeError as exc:
        logger.warning("attachment %r could not be decoded for sniffing: %s", spec.name, exc)
        return False


__all__ = [
    "CandidateSelection",
    "looks_like_xml",
    "select_invoice_xml",
]
