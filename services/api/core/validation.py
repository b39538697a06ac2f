"""
Validation utilities for the split pipeline.
Ensures data integrity and provides clear error messages.
"""
from typing import Any, Dict, Iterable, List, Optional

from core.errors import SplitValidationError
from core.pdf_pages import is_pdf_bytes

PDF_CONTENT_TYPE = "application/pdf"


def validate_upload_size(size: Optional[int], max_bytes: int) -> None:
    """Reject an upload whose (declared or actual) size is over max_bytes."""
    if size is not None and size > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise SplitValidationError(f"File size exceeds {limit_mb}MB limit")


def validate_pdf_upload(
    *,
    filename: Optional[str],
    content_type: Optional[str],
    data: bytes,
    max_bytes: int,
) -> None:
    """
    Validate an uploaded drawing set before anything is stored.

    Rules:
    - a file must be present and non-empty
    - content type must be application/pdf
    - size must not exceed max_bytes
    - content must start with the %PDF- magic bytes

    Raises:
        SplitValidationError: 400 if validation fails
    """
    if not filename or not data:
        raise SplitValidationError("No file provided")

    if (content_type or "").split(";")[0].strip().lower() != PDF_CONTENT_TYPE:
        raise SplitValidationError("Only PDF files can be split")

    validate_upload_size(len(data), max_bytes)

    if not is_pdf_bytes(data):
        raise SplitValidationError("File content is not a PDF")


def validate_split_page_count(page_count: int, single_page_message: str) -> None:
    """
    A split needs at least two pages.

    Raises:
        SplitValidationError: 400 for empty or single-page documents
    """
    if page_count <= 0:
        raise SplitValidationError("PDF has no pages")
    if page_count == 1:
        raise SplitValidationError(single_page_message)


def ensure_unique_mapping_pages(mappings: Iterable[Dict[str, Any]]) -> None:
    """
    Ensure each page is mapped to at most one existing document.

    Raises:
        SplitValidationError: 400 if duplicate page numbers found
    """
    seen = set()
    duplicates = []

    for m in mappings:
        page = m.get("page_number")
        if page in seen:
            duplicates.append(page)
        seen.add(page)

    if duplicates:
        raise SplitValidationError(
            f"Duplicate pageNumber values in revisionMappings: {sorted(set(duplicates))}"
        )


def coerce_discipline(discipline: Optional[str]) -> Optional[str]:
    """
    Normalize a user-entered discipline: "fire protection" -> "FIRE_PROTECTION".
    Empty input stays None.
    """
    if discipline is None:
        return None
    value = "_".join(discipline.strip().upper().replace("-", " ").split())
    return value or None


def clean_optional_text(value: Optional[str]) -> Optional[str]:
    """Trim user text; whitespace-only becomes None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def page_update_fields(update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Keep only the editable PageEntry fields that are present in `update`
    and normalize their values. `page_number` is never editable.
    """
    editable: List[str] = [
        "drawing_number",
        "sheet_title",
        "discipline",
        "revision",
        "scale",
        "verified",
        "skipped",
    ]
    out: Dict[str, Any] = {}
    for key in editable:
        if key not in update:
            continue
        value = update[key]
        if key == "discipline":
            value = coerce_discipline(value)
        elif key in ("verified", "skipped"):
            value = bool(value)
        else:
            value = clean_optional_text(value)
        out[key] = value
    return out
