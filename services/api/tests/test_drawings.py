"""
Tests for drawing-number helpers.
"""
import re

import pytest

from core.drawings import (
    build_original_storage_path,
    build_page_storage_path,
    discipline_to_category,
    format_drawing_number,
    infer_discipline,
    normalize_drawing_number,
    page_file_name,
    page_label,
    safe_segment,
)


@pytest.mark.parametrize(
    "number,expected",
    [
        ("C0.00", "CIVIL"),
        ("a1.01", "ARCHITECTURAL"),
        ("FP-101", "FIRE_PROTECTION"),
        ("E2.1", "ELECTRICAL"),
        ("X9", None),
        ("", None),
        (None, None),
    ],
)
def test_infer_discipline(number, expected):
    assert infer_discipline(number) == expected


def test_normalize_drawing_number():
    assert normalize_drawing_number("  a1.01 ") == "A1.01"
    assert normalize_drawing_number(None) == ""


def test_format_drawing_number():
    assert format_drawing_number("c0.0") == "C0.00"
    assert format_drawing_number("A1-1") == "A1.10"
    assert format_drawing_number("A101") == "A101.00"
    assert format_drawing_number("SK-SPECIAL") == "SK-SPECIAL"


def test_discipline_to_category():
    assert discipline_to_category("ARCHITECTURAL") == "DRAWINGS"
    assert discipline_to_category("structural") == "DRAWINGS"
    assert discipline_to_category("SPECIFICATIONS") == "OTHER"


def test_page_labels_and_names():
    assert page_label(3) == "Page-003"
    assert page_file_name("A1.01", "FIRST FLOOR PLAN", 2) == "A1.01 - FIRST FLOOR PLAN.pdf"
    assert page_file_name(None, None, 7) == "Page-007.pdf"


def test_safe_segment():
    assert safe_segment("A1.01 / roof") == "A1.01___roof"
    assert safe_segment("   ") == "UNKNOWN"


class TestStoragePaths:
    def test_new_page_path(self):
        path = build_page_storage_path(
            project_id="proj-1", discipline="ARCHITECTURAL", drawing_label="A1.01", now_ms=1700000000000
        )
        assert re.fullmatch(r"proj-1/drawings/architectural/1700000000000-[0-9a-f]{6}-A1\.01\.pdf", path)

    def test_revision_path_has_version_suffix(self):
        path = build_page_storage_path(
            project_id="proj-1", discipline=None, drawing_label="Page-002", version=3
        )
        assert path.startswith("proj-1/drawings/uncategorized/")
        assert path.endswith("-Page-002-v3.pdf")

    def test_paths_are_unique(self):
        kwargs = dict(project_id="p", discipline="CIVIL", drawing_label="C1", now_ms=1)
        assert build_page_storage_path(**kwargs) != build_page_storage_path(**kwargs)

    def test_original_path(self):
        path = build_original_storage_path(project_id="proj-1", file_name="My Set.pdf", now_ms=5)
        assert re.fullmatch(r"proj-1/originals/5-[0-9a-f]{6}-My_Set\.pdf", path)
