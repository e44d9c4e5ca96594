"""Tests for dispatch_app/services/pdf_validation.py

Run with:  pytest tests/test_pdf_validation.py -v
"""
import pytest

from dispatch_app.core.errors import ValidationError
from dispatch_app.services.pdf_validation import pdf_page_count, validate_pdf, validate_upload


def _pdf(header=b"%PDF-1.4\n", body=b"1 0 obj << >> endobj\nxref\n0 1\ntrailer << >>\n", tail=b"startxref\n0\n%%EOF\n", size=400):
    padding = b"%" + b"x" * max(size - len(header) - len(body) - len(tail) - 2, 0) + b"\n"
    return header + body + padding + tail


# ── validate_pdf ───────────────────────────────────────────────────────────────

class TestValidatePdf:
    def test_real_pdf_is_valid(self, pdf_bytes):
        result = validate_pdf(pdf_bytes)
        assert result.is_valid
        assert result.error is None

    def test_synthetic_minimal_pdf_is_valid(self):
        assert validate_pdf(_pdf()).is_valid

    def test_199_bytes_is_too_small(self):
        result = validate_pdf(b"%PDF-1.4\n" + b"0" * 190)
        assert not result.is_valid
        assert result.error == "PDF file appears to be too small or corrupted"

    def test_missing_header(self):
        result = validate_pdf(_pdf(header=b"HELLO-1.4\n"))
        assert result.error == "File is not a valid PDF (missing PDF header)"

    def test_unreadable_version(self):
        result = validate_pdf(_pdf(header=b"%PDF-x.y\n"))
        assert result.error == "Invalid PDF version header"

    def test_version_out_of_range(self):
        result = validate_pdf(_pdf(header=b"%PDF-3.0\n"))
        assert result.error == "Unsupported PDF version: 3"

    def test_version_two_is_accepted(self):
        assert validate_pdf(_pdf(header=b"%PDF-2.0\n")).is_valid

    def test_missing_eof_marker(self):
        result = validate_pdf(_pdf(tail=b"startxref\n0\n"))
        assert result.error == "PDF file appears to be incomplete (missing EOF marker)"

    def test_eof_marker_must_be_near_the_end(self):
        buffer = _pdf() + b"%" + b"z" * 2048 + b"\n"
        assert validate_pdf(buffer).error == "PDF file appears to be incomplete (missing EOF marker)"

    def test_missing_xref_or_trailer(self):
        result = validate_pdf(_pdf(body=b"1 0 obj << >> endobj\n"))
        assert result.error == "PDF file is missing essential structures"


# ── validate_upload ────────────────────────────────────────────────────────────

class TestValidateUpload:
    def test_content_type_checked_first(self):
        with pytest.raises(ValidationError) as exc:
            validate_upload("text/plain", b"")
        assert exc.value.message == "Please upload a PDF file"
        assert exc.value.status_code == 400

    def test_empty_file(self):
        with pytest.raises(ValidationError, match="No file provided"):
            validate_upload("application/pdf", b"")

    def test_oversize_file(self):
        limit = 1024 * 1024
        with pytest.raises(ValidationError) as exc:
            validate_upload("application/pdf", _pdf(size=limit + 10), max_bytes=limit)
        assert exc.value.message == "PDF file is too large. Maximum size is 1MB"

    def test_default_limit_is_25mb(self):
        with pytest.raises(ValidationError, match="Maximum size is 25MB"):
            validate_upload("application/pdf", b"%" * (25 * 1024 * 1024 + 1))

    def test_structural_reason_is_surfaced(self):
        with pytest.raises(ValidationError, match="missing PDF header"):
            validate_upload("application/pdf", b"x" * 500)

    def test_content_type_parameters_ignored(self, pdf_bytes):
        validate_upload("application/pdf; charset=binary", pdf_bytes)


def test_page_count(pdf_bytes):
    assert pdf_page_count(pdf_bytes) == 1
