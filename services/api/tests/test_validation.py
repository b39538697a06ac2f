"""
Tests for validation functions.

Run with: pytest tests/test_validation.py -v
"""
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import SplitValidationError
from core.validation import (
    validate_pdf_upload,
    validate_split_page_count,
    ensure_unique_mapping_pages,
    coerce_discipline,
    page_update_fields,
)

PDF = b"%PDF-1.7\n" + b"0" * 100
MB = 1024 * 1024


class TestValidatePdfUpload:
    """Tests for upload validation."""

    def test_valid_upload(self):
        """Valid PDF should not raise."""
        validate_pdf_upload(filename="set.pdf", content_type="application/pdf", data=PDF, max_bytes=MB)
        validate_pdf_upload(
            filename="set.pdf", content_type="application/pdf; charset=binary", data=PDF, max_bytes=MB
        )

    def test_missing_file(self):
        """No filename or empty body should raise."""
        with pytest.raises(SplitValidationError) as exc:
            validate_pdf_upload(filename=None, content_type="application/pdf", data=PDF, max_bytes=MB)
        assert exc.value.status_code == 400
        assert exc.value.message == "No file provided"

        with pytest.raises(SplitValidationError):
            validate_pdf_upload(filename="set.pdf", content_type="application/pdf", data=b"", max_bytes=MB)

    def test_wrong_content_type(self):
        """Non-PDF content type should raise."""
        with pytest.raises(SplitValidationError) as exc:
            validate_pdf_upload(filename="set.png", content_type="image/png", data=PDF, max_bytes=MB)
        assert exc.value.message == "Only PDF files can be split"

    def test_too_large(self):
        """Body over the size limit should raise."""
        with pytest.raises(SplitValidationError) as exc:
            validate_pdf_upload(
                filename="set.pdf", content_type="application/pdf", data=PDF + b"0" * MB, max_bytes=MB
            )
        assert exc.value.message == "File size exceeds 1MB limit"

    def test_not_really_a_pdf(self):
        """PDF content type with non-PDF bytes should raise."""
        with pytest.raises(SplitValidationError) as exc:
            validate_pdf_upload(filename="set.pdf", content_type="application/pdf", data=b"PK\x03\x04", max_bytes=MB)
        assert exc.value.message == "File content is not a PDF"


class TestValidateSplitPageCount:
    """Tests for page count validation."""

    def test_multi_page(self):
        validate_split_page_count(2, "single")
        validate_split_page_count(100, "single")

    def test_single_page(self):
        """One page uses the caller's message."""
        with pytest.raises(SplitValidationError) as exc:
            validate_split_page_count(1, "PDF has only 1 page. No splitting needed.")
        assert exc.value.message == "PDF has only 1 page. No splitting needed."

    def test_no_pages(self):
        with pytest.raises(SplitValidationError) as exc:
            validate_split_page_count(0, "single")
        assert exc.value.message == "PDF has no pages"


class TestEnsureUniqueMappingPages:
    """Tests for revision mapping uniqueness."""

    def test_unique_pages(self):
        """Unique page numbers should not raise."""
        ensure_unique_mapping_pages([{"page_number": 1}, {"page_number": 2}, {"page_number": 3}])

    def test_empty_list(self):
        """Empty list should not raise."""
        ensure_unique_mapping_pages([])

    def test_duplicate_pages(self):
        """Duplicate page numbers should raise."""
        with pytest.raises(SplitValidationError) as exc:
            ensure_unique_mapping_pages([{"page_number": 1}, {"page_number": 2}, {"page_number": 1}])
        assert exc.value.status_code == 400
        assert "Duplicate" in exc.value.message
        assert "[1]" in exc.value.message


class TestCoerceDiscipline:
    """Tests for discipline normalization."""

    def test_normalizes(self):
        assert coerce_discipline("architectural") == "ARCHITECTURAL"
        assert coerce_discipline(" fire protection ") == "FIRE_PROTECTION"
        assert coerce_discipline("fire-protection") == "FIRE_PROTECTION"

    def test_empty(self):
        assert coerce_discipline(None) is None
        assert coerce_discipline("   ") is None


class TestPageUpdateFields:
    """Tests for page edit filtering."""

    def test_only_present_fields(self):
        assert page_update_fields({"page_number": 2, "verified": True}) == {"verified": True}

    def test_page_number_not_editable(self):
        assert "page_number" not in page_update_fields({"page_number": 5, "sheet_title": "ROOF"})

    def test_normalizes_values(self):
        out = page_update_fields(
            {"drawing_number": "  A1.01 ", "sheet_title": "", "discipline": "civil", "skipped": 1}
        )
        assert out == {
            "drawing_number": "A1.01",
            "sheet_title": None,
            "discipline": "CIVIL",
            "skipped": True,
        }

    def test_unknown_keys_dropped(self):
        assert page_update_fields({"confidence": 1.0, "thumbnail_path": "x"}) == {}
