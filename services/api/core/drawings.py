# services/api/core/drawings.py
"""
Drawing-number helpers shared by inference, revision matching and confirm.
"""
from __future__ import annotations

import re
import time
import uuid
from typing import Dict, Optional

# Discipline prefixes for construction drawings (two-letter prefixes win)
DISCIPLINE_PREFIXES: Dict[str, str] = {
    "C": "CIVIL",
    "L": "LANDSCAPE",
    "A": "ARCHITECTURAL",
    "S": "STRUCTURAL",
    "M": "MECHANICAL",
    "P": "PLUMBING",
    "FP": "FIRE_PROTECTION",
    "E": "ELECTRICAL",
    "T": "TELECOMMUNICATIONS",
    "I": "INSTRUMENTATION",
    "G": "GENERAL",
}

DRAWING_DISCIPLINES = set(DISCIPLINE_PREFIXES.values())

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_DRAWING_PARTS = re.compile(r"^([A-Z]{1,2})(\d+)[.\-]?(\d+)?$")


def normalize_drawing_number(value: Optional[str]) -> str:
    """Case-normalized key used for matching: trimmed + upper-cased."""
    if not value:
        return ""
    return value.strip().upper()


def infer_discipline(drawing_number: Optional[str]) -> Optional[str]:
    """
    Infer discipline from a drawing number prefix.

    "C0.00" -> CIVIL, "FP-101" -> FIRE_PROTECTION, "X9" -> None
    """
    upper = normalize_drawing_number(drawing_number)
    if not upper:
        return None

    for prefix, discipline in DISCIPLINE_PREFIXES.items():
        if len(prefix) == 2 and upper.startswith(prefix):
            return discipline

    return DISCIPLINE_PREFIXES.get(upper[0])


def discipline_to_category(discipline: Optional[str]) -> str:
    if discipline and discipline.upper() in DRAWING_DISCIPLINES:
        return "DRAWINGS"
    return "OTHER"


def format_drawing_number(drawing_number: Optional[str]) -> str:
    """
    Format a drawing number for display: "c0.0" -> "C0.00", "A1-1" -> "A1.10".
    Unrecognized formats are returned trimmed + upper-cased.
    """
    trimmed = normalize_drawing_number(drawing_number)
    if not trimmed:
        return ""

    match = _DRAWING_PARTS.match(trimmed)
    if match:
        prefix, major, minor = match.groups()
        minor = (minor or "00").ljust(2, "0")
        return f"{prefix}{major}.{minor}"

    return trimmed


def safe_segment(value: Optional[str], fallback: str = "UNKNOWN") -> str:
    """Make a string safe for use inside a storage path segment."""
    if not value or not value.strip():
        return fallback
    return _UNSAFE_CHARS.sub("_", value.strip())[:120]


def page_label(page_number: int) -> str:
    """Fallback drawing label for pages without a drawing number: Page-003."""
    return f"Page-{page_number:03d}"


def page_file_name(drawing_number: Optional[str], sheet_title: Optional[str], page_number: int) -> str:
    label = drawing_number or page_label(page_number)
    if sheet_title:
        return f"{label} - {sheet_title}.pdf"
    return f"{label}.pdf"


def _unique_prefix(now_ms: Optional[int] = None) -> str:
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{ts}-{uuid.uuid4().hex[:6]}"


def build_page_storage_path(
    *,
    project_id: Optional[str],
    discipline: Optional[str],
    drawing_label: str,
    version: Optional[int] = None,
    now_ms: Optional[int] = None,
) -> str:
    """
    {project}/drawings/{discipline}/{ts}-{rand}-{drawing}[-v{N}].pdf

    Timestamp + random suffix keep paths unique per upload; uploads never
    overwrite.
    """
    folder = (discipline or "uncategorized").lower()
    name = safe_segment(drawing_label, "page")
    suffix = f"-v{version}" if version is not None else ""
    return (
        f"{project_id or 'company-wide'}/drawings/{safe_segment(folder, 'uncategorized')}/"
        f"{_unique_prefix(now_ms)}-{name}{suffix}.pdf"
    )


def build_original_storage_path(
    *,
    project_id: str,
    file_name: str,
    now_ms: Optional[int] = None,
) -> str:
    """{project}/originals/{ts}-{rand}-{safe_file_name}"""
    return f"{project_id}/originals/{_unique_prefix(now_ms)}-{safe_segment(file_name, 'upload.pdf')}"
