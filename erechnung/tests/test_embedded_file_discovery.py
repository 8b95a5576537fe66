"""
Conformance inspection and embedded-file extraction tests.

Coverage:
- name tree and /AF discovery, order and de-duplication
- nested, cyclic and over-deep name trees
- PDF/A identification from XMP
- filespec name, relationship, MIME type and lazy content
"""

from unittest import mock

import pytest

from erechnung.app.checks.conformance import DiscoverySource, inspect_conformance
from erechnung.app.checks.embedded_files import extract_embedded_files
from erechnung.app.config import ExtractionConfig
from erechnung.app.errors import MalformedPdfError, NotPdfA3Error
from erechnung.app.pdf.document import PdfDocument
from erechnung.app.pdf.filters import decode_stream_data
from erechnung.app.pdf.objects import ObjectId
from erechnung.app.schemas.extraction import AFRelationship
from erechnung.tests.fixtures.pdf_factory import (
    FACTURX_XML,
    PNG_BYTES,
    Attachment,
    RawPdfBuilder,
    build_invoice_pdf,
    cyclic_name_tree_pdf,
    deep_name_tree_pdf,
    invoice_pdf,
    nested_name_tree_pdf,
    pikepdf_invoice_pdf,
    shared_name_tree_pdf,
    write_page_tree,
)


def discover(data: bytes, config: ExtractionConfig = None):
    document = PdfDocument(data, config=config)
    signal = inspect_conformance(document, config)
    return signal, extract_embedded_files(document, signal)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def test_attachment_in_name_tree_and_af_is_listed_once():
    signal, specs = discover(invoice_pdf())

    assert len(signal.candidates) == 1
    assert signal.candidates[0].source == DiscoverySource.NAME_TREE
    assert signal.candidates[0].key == "factur-x.xml"
    assert [spec.name for spec in specs] == ["factur-x.xml"]


@pytest.mark.parametrize(
    "name_tree, associated_files, source",
    [
        (True, False, DiscoverySource.NAME_TREE),
        (False, True, DiscoverySource.ASSOCIATED_FILES),
    ],
)
def test_either_entry_point_is_enough(name_tree, associated_files, source):
    signal, specs = discover(
        invoice_pdf(name_tree=name_tree, associated_files=associated_files)
    )

    assert [candidate.source for candidate in signal.candidates] == [source]
    assert specs[0].read_bytes() == FACTURX_XML


def test_no_attachments():
    signal, specs = discover(build_invoice_pdf([]))

    assert signal.has_embedded_files is False
    assert specs == []


def test_discovery_order_and_duplicate_names():
    attachments = [
        Attachment("notes.xml", b"<notes/>", "Supplement"),
        Attachment("factur-x.xml", FACTURX_XML),
        Attachment("notes.xml", b"<more/>", "Supplement"),
    ]

    _, specs = discover(build_invoice_pdf(attachments))

    assert [spec.name for spec in specs] == ["notes.xml", "factur-x.xml", "notes.xml"]
    assert [spec.object_id for spec in specs] == [
        ObjectId(10, 0),
        ObjectId(12, 0),
        ObjectId(14, 0),
    ]


def test_nested_name_tree():
    _, specs = discover(nested_name_tree_pdf())

    assert [spec.name for spec in specs] == ["logo.png", "zugferd-invoice.xml"]
    assert [spec.relationship for spec in specs] == [
        AFRelationship.SUPPLEMENT,
        AFRelationship.DATA,
    ]
    assert specs[0].declared_mime_type == "image/png"
    assert specs[0].read_bytes() == PNG_BYTES


def test_cyclic_name_tree():
    with pytest.raises(MalformedPdfError, match="cycle"):
        discover(cyclic_name_tree_pdf())


def test_shared_name_tree_subtree_is_walked_once():
    signal, specs = discover(shared_name_tree_pdf())

    assert [c.key for c in signal.candidates] == ["factur-x.xml"]
    assert [spec.name for spec in specs] == ["factur-x.xml"]


def test_name_tree_depth_is_bounded():
    config = ExtractionConfig(MAX_NAME_TREE_DEPTH=8)

    _, specs = discover(deep_name_tree_pdf(6), config)
    assert [spec.name for spec in specs] == ["factur-x.xml"]

    with pytest.raises(MalformedPdfError, match="deeper than 8"):
        discover(deep_name_tree_pdf(12), config)


# ---------------------------------------------------------------------------
# PDF/A identification
# ---------------------------------------------------------------------------

def test_pdfa_identification_from_xmp():
    signal, _ = discover(invoice_pdf())

    assert signal.pdfa.part == 3
    assert signal.pdfa.conformance == "B"
    assert signal.pdfa.is_pdfa3


def test_pdfa_identification_from_pikepdf_metadata():
    signal, _ = discover(pikepdf_invoice_pdf())

    assert signal.pdfa is not None
    assert signal.pdfa.part == 3


def test_missing_metadata_is_not_an_error_by_default():
    signal, specs = discover(invoice_pdf(pdfa_part=None))

    assert signal.pdfa is None
    assert len(specs) == 1


@pytest.mark.parametrize("pdfa_part", [None, 2])
def test_pdfa3_identification_can_be_required(pdfa_part):
    config = ExtractionConfig(REQUIRE_PDFA3_IDENTIFICATION=True)

    with pytest.raises(NotPdfA3Error, match="PDF/A-3"):
        discover(invoice_pdf(pdfa_part=pdfa_part), config)


# ---------------------------------------------------------------------------
# File specification fields
# ---------------------------------------------------------------------------

def test_filespec_fields():
    _, (spec,) = discover(invoice_pdf())

    assert spec.name == "factur-x.xml"
    assert spec.relationship == AFRelationship.DATA
    assert spec.declared_mime_type == "text/xml"
    assert spec.object_id == ObjectId(10, 0)


def test_missing_relationship_defaults_to_unspecified():
    _, (spec,) = discover(
        build_invoice_pdf([Attachment("factur-x.xml", FACTURX_XML, relationship=None)])
    )

    assert spec.relationship == AFRelationship.UNSPECIFIED


def test_unicode_filename_and_name_tree_key_fallback():
    builder = RawPdfBuilder()
    write_page_tree(builder)
    builder.add_stream(11, b"<a/>", b"/Type /EmbeddedFile")
    builder.add_stream(13, b"<b/>", b"/Type /EmbeddedFile")
    # UTF-16BE "Rechnung-ä.xml"
    builder.add_object(
        10,
        b"<< /Type /Filespec /UF <FEFF0052006500630068006E0075006E0067002D00E4002E0078006D006C>"
        b" /EF << /F 11 0 R >> >>",
    )
    builder.add_object(12, b"<< /Type /Filespec /EF << /F 13 0 R >> >>")
    builder.add_object(
        1,
        b"<< /Type /Catalog /Pages 2 0 R /Names << /EmbeddedFiles"
        b" << /Names [(first) 10 0 R (from-key.xml) 12 0 R] >> >> >>",
    )
    builder.write_xref()

    _, specs = discover(builder.to_bytes())

    assert [spec.name for spec in specs] == ["Rechnung-ä.xml", "from-key.xml"]
    assert specs[0].declared_mime_type is None


def test_filespecs_without_embedded_stream_are_skipped():
    builder = RawPdfBuilder()
    write_page_tree(builder)
    builder.add_stream(11, b"<a/>", b"/Type /EmbeddedFile")
    builder.add_object(10, b"<< /Type /Filespec /F (linked.xml) >>")
    builder.add_object(12, b"<< /Type /Filespec /F (embedded.xml) /EF << /F 11 0 R >> >>")
    builder.add_object(
        1, b"<< /Type /Catalog /Pages 2 0 R /AF [10 0 R (external.xml) 12 0 R] >>"
    )
    builder.write_xref()

    signal, specs = discover(builder.to_bytes())

    assert len(signal.candidates) == 3
    assert [spec.name for spec in specs] == ["embedded.xml"]


def test_content_is_decoded_lazily_and_once():
    document = PdfDocument(invoice_pdf())
    signal = inspect_conformance(document)

    with mock.patch(
        "erechnung.app.pdf.document.decode_stream_data",
        wraps=decode_stream_data,
    ) as decoder:
        (spec,) = extract_embedded_files(document, signal)
        assert decoder.call_count == 0

        first = spec.read_bytes()
        second = spec.read_bytes()

    assert first == FACTURX_XML
    assert first is second
    assert decoder.call_count == 1
