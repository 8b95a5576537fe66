"""
XML well-formedness check for the selected attachment.

Only well-formedness is checked (balanced tags, a single root element,
terminated declarations). Schema and business-rule validation of the
invoice are out of scope.
"""

from __future__ import annotations

import codecs
import re
import xml.etree.ElementTree as ET

from erechnung.app.errors import XmlNotWellFormedError


_DECLARED_ENCODING = re.compile(
    rb"""\s*<\?xml[^>]*?encoding\s*=\s*["']([A-Za-z0-9._-]+)["']"""
)


def check_well_formed(data: bytes) -> str:
    """
    Parse ``data`` as XML and return it as text.

    Raises XmlNotWellFormedError when parsing fails or the bytes cannot
    be decoded in the encoding they declare.
    """
    parser = ET.XMLParser()
    try:
        parser.feed(data)
        parser.close()
    except ET.ParseError as exc:
        raise XmlNotWellFormedError(f"Embedded XML is not well-formed: {exc}") from exc
    except LookupError as exc:
        # expat defers unknown declared encodings to Python's codec registry
        raise XmlNotWellFormedError(f"Embedded XML could not be decoded: {exc}") from exc

    try:
        return decode_xml_text(data)
    except (UnicodeDecodeError, LookupError) as exc:
        raise XmlNotWellFormedError(f"Embedded XML could not be decoded: {exc}") from exc


def decode_xml_text(data: bytes) -> str:
    if data.startswith(codecs.BOM_UTF8):
        return data[len(codecs.BOM_UTF8):].decode("utf-8")
    if data.startswith((codecs.BOM_UTF16_BE, codecs.BOM_UTF16_LE)):
        return data.decode("utf-16")

    declared = _DECLARED_ENCODING.match(data)
    encoding = declared.group(1).decode("ascii") if declared else "utf-8"
    return data.decode(encoding)


__all__ = ["check_well_formed", "decode_xml_text"]
