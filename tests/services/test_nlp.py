"""Unit tests for document text extraction and identity field parsing."""

from datetime import date

import pytest

from app.services.nlp import (
    ExtractedIdentity,
    detect_document_type,
    parse_date_flexible,
    parse_identity_fields,
)
from app.services.ocr import ExtractionResult, extract_text, extract_text_from_image, extract_text_from_pdf


def _pdf_with_text(text: str) -> bytes:
    """Build a single-page PDF with a text layer using PyMuPDF."""
    import fitz

    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text, fontsize=12)
    content = doc.tobytes()
    doc.close()
    return content


NID_TEXT = (
    "PAPUA NEW GUINEA\n"
    "NATIONAL IDENTITY CARD\n"
    "Name: JOHN DOE\n"
    "NID No: 1234567890\n"
    "Date of Birth: 15.03.1990\n"
    "Expiry Date: 15.03.2030\n"
)

PNG_PASSPORT_TEXT = (
    "PASSPORT\n"
    "PAPUA NEW GUINEA\n"
    "P1234567\n"
    "MARY KILA\n"
    "01/02/1985\n"
    "01/02/2031\n"
)


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------


class TestTextExtraction:
    def test_pdf_text_layer(self) -> None:
        result = extract_text_from_pdf(_pdf_with_text("Name: John Doe\nPassport: AB1234567"))
        assert isinstance(result, ExtractionResult)
        assert result.extraction_method == "pymupdf_text_layer"
        assert result.page_count == 1
        assert not result.is_empty
        assert "John Doe" in result.text
        assert "AB1234567" in result.text

    def test_corrupt_pdf_is_an_error_result(self) -> None:
        result = extract_text_from_pdf(b"definitely not a pdf")
        assert result.extraction_method == "error"
        assert result.is_empty
        assert result.warnings

    def test_routing_by_content_type(self) -> None:
        result = extract_text(_pdf_with_text("Test document content"), "application/pdf")
        assert result.extraction_method == "pymupdf_text_layer"
        assert "Test document" in result.text

    def test_unsupported_content_type(self) -> None:
        result = extract_text(b"plain text", "text/plain")
        assert result.extraction_method == "unsupported"
        assert result.is_empty

    def test_unreadable_image(self) -> None:
        result = extract_text_from_image(b"\x00\x01 not an image")
        assert result.extraction_method == "error"
        assert result.is_empty


# ---------------------------------------------------------------------------
# Document type detection
# ---------------------------------------------------------------------------


class TestDetectDocumentType:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("NATIONAL IDENTITY CARD", "nid"),
            ("NID 1234567890", "nid"),
            ("DRIVER LICENCE", "drivers_license"),
            ("PASSPORT PAPUA NEW GUINEA", "png_passport"),
            ("PASSPORT REPUBLIC OF FIJI", "international_passport"),
        ],
    )
    def test_known_types(self, text: str, expected: str) -> None:
        document_type, confidence = detect_document_type(text)
        assert document_type == expected
        assert confidence >= 0.8

    def test_unknown_text(self) -> None:
        assert detect_document_type("grocery receipt") == (None, 0.1)


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------


class TestParseIdentityFields:
    def test_labelled_national_id(self) -> None:
        result = parse_identity_fields(NID_TEXT)
        assert result.document_type == "nid"
        assert result.document_number == "1234567890"
        assert result.full_name == "John Doe"
        assert result.date_of_birth == date(1990, 3, 15)
        assert result.expiry_date == date(2030, 3, 15)
        assert result.nationality is None

    def test_unlabelled_png_passport(self) -> None:
        result = parse_identity_fields(PNG_PASSPORT_TEXT)
        assert result.document_type == "png_passport"
        assert result.document_number == "P1234567"
        assert result.full_name == "Mary Kila"
        assert result.date_of_birth == date(1985, 2, 1)
        assert result.expiry_date == date(2031, 2, 1)
        assert result.nationality == "Papua New Guinea"

    def test_drivers_license_number_and_title_case_name(self) -> None:
        result = parse_identity_fields("DRIVER LICENCE\nLicence No: AB123456\nPeter Tau\n")
        assert result.document_type == "drivers_license"
        assert result.document_number == "AB123456"
        assert result.full_name == "Peter Tau"

    def test_declared_type_wins_over_detection(self) -> None:
        result = parse_identity_fields(
            "Name: jane smith\nA12345678\nNationality: australian", "international_passport"
        )
        assert result.document_type == "international_passport"
        assert result.document_type_confidence == 1.0
        assert result.document_number == "A12345678"
        assert result.full_name == "Jane Smith"
        assert result.nationality == "Australian"

    def test_empty_text(self) -> None:
        result = parse_identity_fields("   ", "nid")
        assert result == ExtractedIdentity(document_type="nid")

    def test_empty_name_label_does_not_take_the_next_line(self) -> None:
        result = parse_identity_fields("NATIONAL ID\nName:\nDate of Birth: 01.01.1990\n12345678")
        assert result.full_name is None
        assert result.document_number == "12345678"
        assert result.date_of_birth == date(1990, 1, 1)

    def test_empty_name_label_falls_back_to_a_name_line(self) -> None:
        result = parse_identity_fields("NATIONAL ID\nName:\nJOHN DOE\n12345678")
        assert result.full_name == "John Doe"

    def test_empty_nationality_label(self) -> None:
        result = parse_identity_fields("Name: Jane Smith\nNationality:\nAustralian Citizen")
        assert result.nationality is None

    def test_dates_are_deduplicated(self) -> None:
        result = parse_identity_fields("15.03.1990 and again 15.03.1990")
        assert result.dates == ["15.03.1990"]
        assert result.date_of_birth == date(1990, 3, 15)
        assert result.expiry_date is None


class TestParseDateFlexible:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("15.03.1990", date(1990, 3, 15)),
            ("15/03/1990", date(1990, 3, 15)),
            ("15-03-1990", date(1990, 3, 15)),
            ("1990-03-15", date(1990, 3, 15)),
        ],
    )
    def test_supported_formats(self, value: str, expected: date) -> None:
        assert parse_date_flexible(value) == expected

    @pytest.mark.parametrize("value", ["", "32.01.1990", "March 15, 1990"])
    def test_unparseable(self, value: str) -> None:
        assert parse_date_flexible(value) is None
