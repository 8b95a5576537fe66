"""
End-to-end extraction tests: one buffer in, one ExtractionResult out.

Coverage matrix:

    writer                 | xref layout          | expected
    -----------------------+----------------------+----------------------
    hand-built             | classic table        | SUCCESS
    pikepdf                | classic table        | SUCCESS
    pikepdf                | xref + object stream | SUCCESS
    hand-built             | hybrid (/XRefStm)    | SUCCESS
    incremental update     | rename / delete      | newest revision wins
    hostile input          | bomb / corrupt       | EXTRACTION_FAILED
    not a PDF / truncated  | -                    | MALFORMED_PDF
"""

from unittest import mock

import pytest

from erechnung.app.config import ExtractionConfig
from erechnung.app.coordinator.extraction_pipeline import ExtractionPipeline, extract_xml
from erechnung.app.pdf.filters import decode_stream_data
from erechnung.app.schemas.extraction import (
    ErrorKind,
    ExtractionStatus,
    PipelineStage,
    SelectionRule,
)
from erechnung.tests.fixtures.pdf_factory import (
    FACTURX_XML,
    PNG_BYTES,
    UBL_XML,
    Attachment,
    build_invoice_pdf,
    corrupt_flate_pdf,
    corrupt_xref_entries_pdf,
    dangling_root_pdf,
    deep_name_tree_pdf,
    deeply_nested_catalog_pdf,
    encrypted_pdf,
    flate_bomb_pdf,
    huge_predictor_columns_pdf,
    hybrid_xref_pdf,
    incremental_delete_pdf,
    incremental_rename_pdf,
    invoice_pdf,
    length_chain_pdf,
    length_mismatch_pdf,
    long_number_in_catalog_pdf,
    long_startxref_pdf,
    long_subsection_header_pdf,
    many_revisions_pdf,
    no_attachments_pdf,
    object_stream_chain_pdf,
    pikepdf_invoice_pdf,
    prev_loop_pdf,
    reference_chain_af_pdf,
)


def assert_error(result, kind: ErrorKind) -> None:
    assert result.status == ExtractionStatus.ERROR
    assert result.error_kind == kind
    assert result.xml_content is None
    assert result.xml_filename is None


# ---------------------------------------------------------------------------
# Successful extraction
# ---------------------------------------------------------------------------

def test_factur_x_invoice():
    result = extract_xml(invoice_pdf())

    assert result.succeeded
    assert result.xml_content == FACTURX_XML.decode("utf-8")
    assert result.xml_filename == "factur-x.xml"
    assert result.embedded_file_names == ["factur-x.xml"]
    assert result.selection_rule == SelectionRule.KNOWN_FILENAME
    assert result.pdfa.part == 3
    assert result.stages_completed == [
        PipelineStage.PARSED,
        PipelineStage.CONFORMANCE_CHECKED,
        PipelineStage.EXTRACTED,
        PipelineStage.SELECTED,
        PipelineStage.VALIDATED,
        PipelineStage.SUCCESS,
    ]
    assert result.document_sha256.startswith("SHA-256:")


@pytest.mark.parametrize("object_streams", [False, True])
def test_pikepdf_written_invoice(object_streams):
    result = extract_xml(pikepdf_invoice_pdf(UBL_XML, object_streams=object_streams))

    assert result.succeeded
    assert result.xml_content == UBL_XML.decode("utf-8")
    assert result.xml_filename == "factur-x.xml"


def test_pikepdf_invoice_with_supplementary_attachments():
    data = pikepdf_invoice_pdf(
        FACTURX_XML,
        "xrechnung.xml",
        extra_attachments=[("notes.xml", b"<notes/>", "/Supplement")],
        object_streams=True,
    )

    result = extract_xml(data)

    assert result.xml_filename == "xrechnung.xml"
    assert result.embedded_file_names == ["xrechnung.xml", "notes.xml"]


def test_hybrid_reference_file():
    result = extract_xml(hybrid_xref_pdf())

    assert result.succeeded
    assert result.xml_content == FACTURX_XML.decode("utf-8")


def test_xml_with_data_relationship_and_unknown_name():
    result = extract_xml(invoice_pdf(filename="INV-2024-0042.xml"))

    assert result.xml_filename == "INV-2024-0042.xml"
    assert result.selection_rule == SelectionRule.XML_RELATIONSHIP


def test_content_sniffing_fallback():
    data = build_invoice_pdf(
        [
            Attachment("logo.png", PNG_BYTES, "Supplement", "image/png"),
            Attachment("payload", UBL_XML, relationship=None, mime_type="application/octet-stream"),
        ]
    )

    result = extract_xml(data)

    assert result.xml_filename == "payload"
    assert result.selection_rule == SelectionRule.CONTENT_SNIFF


def test_known_name_wins_regardless_of_attachment_order():
    other = Attachment("other.xml", b"<other/>", "Source")
    invoice = Attachment("zugferd-invoice.xml", FACTURX_XML)

    for attachments in ([other, invoice], [invoice, other]):
        result = extract_xml(build_invoice_pdf(attachments))
        assert result.xml_filename == "zugferd-invoice.xml"


def test_configured_invoice_filenames():
    data = build_invoice_pdf(
        [
            Attachment("factur-x.xml", b"<decoy/>"),
            Attachment("rechnung.xml", FACTURX_XML, "Source"),
        ]
    )
    config = ExtractionConfig(INVOICE_FILENAMES=["rechnung.xml"])

    assert extract_xml(data, config).xml_filename == "rechnung.xml"


def test_leading_junk_before_header():
    result = extract_xml(b"\r\n\xef\xbb\xbfjunk\n" + invoice_pdf())

    assert result.succeeded


@pytest.mark.parametrize("declared_length", [2, 999999])
def test_wrong_stream_length_is_recovered(declared_length):
    result = extract_xml(length_mismatch_pdf(declared_length))

    assert result.succeeded
    assert result.xml_content == FACTURX_XML.decode("utf-8")


# ---------------------------------------------------------------------------
# Incremental updates
# ---------------------------------------------------------------------------

def test_renamed_attachment_uses_newest_revision():
    result = extract_xml(incremental_rename_pdf())

    assert result.embedded_file_names == ["xrechnung.xml"]
    assert result.xml_filename == "xrechnung.xml"


def test_deleted_attachment_is_gone():
    result = extract_xml(incremental_delete_pdf())

    assert_error(result, ErrorKind.NO_EMBEDDED_FILES)


# ---------------------------------------------------------------------------
# Structural failures
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"not a pdf",
        b"%PDF-1.7\n",
        b"%PDF-1.7\nstartxref\n0\n%%EOF\n",
    ],
)
def test_not_a_pdf(data):
    result = extract_xml(data)

    assert_error(result, ErrorKind.MALFORMED_PDF)
    assert result.stages_completed == []


@pytest.mark.parametrize(
    "factory",
    [corrupt_xref_entries_pdf, prev_loop_pdf, dangling_root_pdf, encrypted_pdf],
)
def test_broken_structure(factory):
    assert_error(extract_xml(factory()), ErrorKind.MALFORMED_PDF)


def test_truncated_files_never_raise():
    data = invoice_pdf()

    for size in range(0, len(data), 41):
        result = extract_xml(data[:size])
        # Only a cut inside the final %%EOF marker leaves a usable file
        assert result.succeeded or result.error_kind == ErrorKind.MALFORMED_PDF


def test_corrupted_files_never_raise():
    data = pikepdf_invoice_pdf(object_streams=True)

    for start in range(0, len(data) - 8, 53):
        corrupted = data[:start] + b"\x00(<[" * 2 + data[start + 8:]
        result = extract_xml(corrupted)
        assert result.status in (ExtractionStatus.SUCCESS, ExtractionStatus.ERROR)


# ---------------------------------------------------------------------------
# Attachment failures
# ---------------------------------------------------------------------------

def test_no_attachments():
    result = extract_xml(no_attachments_pdf())

    assert_error(result, ErrorKind.NO_EMBEDDED_FILES)
    assert result.stages_completed == [PipelineStage.PARSED]
    assert result.pdfa.part == 3


def test_only_non_xml_attachments():
    data = build_invoice_pdf([Attachment("logo.png", PNG_BYTES, "Supplement", "image/png")])

    result = extract_xml(data)

    assert_error(result, ErrorKind.NO_XML_FOUND)
    assert result.embedded_file_names == ["logo.png"]


def test_two_anonymous_xml_attachments_are_ambiguous():
    data = build_invoice_pdf(
        [
            Attachment("a", FACTURX_XML, relationship=None),
            Attachment("b", UBL_XML, relationship=None),
        ]
    )

    assert_error(extract_xml(data), ErrorKind.NO_XML_FOUND)


def test_decompression_bomb():
    config = ExtractionConfig(MAX_DECOMPRESSED_STREAM_BYTES=64 * 1024)

    result = extract_xml(flate_bomb_pdf(4 * 1024 * 1024), config)

    assert_error(result, ErrorKind.EXTRACTION_FAILED)
    assert result.embedded_file_names == ["factur-x.xml"]
    assert "exceeds" in result.message


def test_corrupt_flate_stream():
    result = extract_xml(corrupt_flate_pdf())

    assert_error(result, ErrorKind.EXTRACTION_FAILED)
    assert result.embedded_file_names == ["factur-x.xml"]
    assert result.stages_completed[-1] == PipelineStage.SELECTED


def test_malformed_xml():
    result = extract_xml(invoice_pdf(b"<rsm:CrossIndustryInvoice><unclosed>"))

    assert_error(result, ErrorKind.XML_NOT_WELL_FORMED)
    assert result.embedded_file_names == ["factur-x.xml"]


@pytest.mark.parametrize("pdfa_part", [None, 2])
def test_pdfa3_identification_required(pdfa_part):
    config = ExtractionConfig(REQUIRE_PDFA3_IDENTIFICATION=True)

    result = extract_xml(invoice_pdf(pdfa_part=pdfa_part), config)

    assert_error(result, ErrorKind.NOT_PDFA3)
    assert result.stages_completed == [PipelineStage.PARSED]


# ---------------------------------------------------------------------------
# Determinism and resource use
# ---------------------------------------------------------------------------

def test_same_input_same_result():
    pipeline = ExtractionPipeline()
    data = pikepdf_invoice_pdf(object_streams=True)

    assert pipeline.run(data) == pipeline.run(data)


def test_pipeline_does_not_mutate_input():
    data = bytearray(invoice_pdf())
    snapshot = bytes(data)

    extract_xml(bytes(data))

    assert bytes(data) == snapshot


def test_selected_attachment_is_decoded_once():
    data = build_invoice_pdf(
        [
            Attachment("logo.png", PNG_BYTES, "Supplement", "image/png"),
            Attachment("factur-x.xml", FACTURX_XML),
        ],
        pdfa_part=None,
    )

    with mock.patch(
        "erechnung.app.pdf.document.decode_stream_data",
        wraps=decode_stream_data,
    ) as decoder:
        result = extract_xml(data)

    assert result.succeeded
    # logo.png is never inflated
    assert decoder.call_count == 1


# ---------------------------------------------------------------------------
# Hostile input bounds
#
# One document per resource limit. Each must end in a typed error (or,
# where the format allows recovery, a clean success) and never in an
# uncaught ValueError, RecursionError or MemoryError.
# ---------------------------------------------------------------------------

SMALL_LIMITS = ExtractionConfig(
    MAX_XREF_SECTIONS=2,
    MAX_DECOMPRESSED_STREAM_BYTES=64 * 1024,
    MAX_NAME_TREE_DEPTH=8,
    MAX_REFERENCE_DEPTH=16,
)


@pytest.mark.parametrize(
    "factory, kind",
    [
        (long_startxref_pdf, ErrorKind.MALFORMED_PDF),
        (long_subsection_header_pdf, ErrorKind.MALFORMED_PDF),
        (long_number_in_catalog_pdf, ErrorKind.MALFORMED_PDF),
        (object_stream_chain_pdf, ErrorKind.MALFORMED_PDF),
        (lambda: reference_chain_af_pdf(40), ErrorKind.MALFORMED_PDF),
        (deeply_nested_catalog_pdf, ErrorKind.MALFORMED_PDF),
        (lambda: deep_name_tree_pdf(64), ErrorKind.MALFORMED_PDF),
        (lambda: many_revisions_pdf(6), ErrorKind.MALFORMED_PDF),
        (huge_predictor_columns_pdf, ErrorKind.EXTRACTION_FAILED),
        (lambda: flate_bomb_pdf(4 * 1024 * 1024), ErrorKind.EXTRACTION_FAILED),
    ],
    ids=[
        "startxref-digits",
        "subsection-digits",
        "catalog-digits",
        "object-stream-chain",
        "reference-chain",
        "array-nesting",
        "name-tree-depth",
        "xref-sections",
        "predictor-columns",
        "flate-bomb",
    ],
)
def test_resource_limits_end_in_typed_errors(factory, kind):
    assert_error(extract_xml(factory(), SMALL_LIMITS), kind)


@pytest.mark.parametrize(
    "factory",
    [
        lambda: reference_chain_af_pdf(5),
        lambda: deep_name_tree_pdf(6),
        lambda: many_revisions_pdf(1),
    ],
    ids=["reference-chain", "name-tree-depth", "xref-sections"],
)
def test_resource_limits_leave_ordinary_files_alone(factory):
    result = extract_xml(factory(), SMALL_LIMITS)

    assert result.succeeded
    assert result.xml_content == FACTURX_XML.decode("utf-8")


def test_object_stream_chain_reports_the_nesting_bound():
    result = extract_xml(object_stream_chain_pdf(300))

    assert_error(result, ErrorKind.MALFORMED_PDF)
    assert "loads deep" in result.message


def test_indirect_length_chain_falls_back_to_endstream():
    result = extract_xml(length_chain_pdf(300))

    assert result.succeeded
    assert result.xml_content == FACTURX_XML.decode("utf-8")


def test_huge_predictor_columns_fail_before_allocating():
    result = extract_xml(huge_predictor_columns_pdf())

    assert_error(result, ErrorKind.EXTRACTION_FAILED)
    assert result.embedded_file_names == ["factur-x.xml"]
    assert "exceeds" in result.message


def test_selected_attachment_bytes_are_kept_verbatim():
    xml = (
        b'<?xml version="1.0" encoding="ISO-8859-1"?>\n'
        b"<Invoice><SellerName>M\xfcller GmbH</SellerName></Invoice>"
    )

    result = extract_xml(invoice_pdf(xml))

    assert result.succeeded
    assert result.xml_bytes == xml
    assert "Müller GmbH" in result.xml_content
