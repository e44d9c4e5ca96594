import logging
import re
from dataclasses import dataclass
from io import BytesIO

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from dispatch_app.core.config import settings as core_settings
from dispatch_app.core.errors import ValidationError


logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
MIN_PDF_BYTES = 200
EOF_SCAN_BYTES = 1024

_VERSION_PATTERN = re.compile(r"%PDF-(\d+\.\d+)")


@dataclass(frozen=True)
class PdfValidation:
    is_valid: bool
    error: str | None = None


def validate_pdf(buffer: bytes) -> PdfValidation:
    """
    Structural sanity check on raw PDF bytes.

    Each failure carries the exact reason shown to the user, so the order of the
    checks matters: size, header, version, EOF marker, then xref/trailer.
    """
    if len(buffer) < MIN_PDF_BYTES:
        return PdfValidation(False, "PDF file appears to be too small or corrupted")

    if buffer[:4] != b"%PDF":
        return PdfValidation(False, "File is not a valid PDF (missing PDF header)")

    version_match = _VERSION_PATTERN.search(buffer[:10].decode("latin-1"))
    if not version_match:
        return PdfValidation(False, "Invalid PDF version header")

    version = float(version_match.group(1))
    if version < 1.0 or version > 2.0:
        return PdfValidation(False, f"Unsupported PDF version: {version:g}")

    if b"%%EOF" not in buffer[-EOF_SCAN_BYTES:]:
        return PdfValidation(False, "PDF file appears to be incomplete (missing EOF marker)")

    if b"xref" not in buffer or b"trailer" not in buffer:
        return PdfValidation(False, "PDF file is missing essential structures")

    return PdfValidation(True)


def validate_upload(content_type: str | None, file_bytes: bytes | None, *, max_bytes: int | None = None) -> None:
    normalized_type = (content_type or "").split(";")[0].strip().lower()
    if normalized_type != PDF_CONTENT_TYPE:
        raise ValidationError("Please upload a PDF file")

    if not file_bytes:
        raise ValidationError("No file provided")

    limit = max_bytes if max_bytes is not None else core_settings.max_upload_bytes
    if len(file_bytes) > limit:
        raise ValidationError(f"PDF file is too large. Maximum size is {limit // (1024 * 1024)}MB")

    result = validate_pdf(file_bytes)
    if not result.is_valid:
        raise ValidationError(result.error or "Invalid PDF file")


def pdf_page_count(file_bytes: bytes) -> int | None:
    try:
        return len(PdfReader(BytesIO(file_bytes)).pages)
    except PdfReadError:
        return None
    except Exception as exc:
        # Damaged files surface as arbitrary errors from the parser.
        logger.debug("pdf_validation: page count failed error=%s", exc)
        return None
