"""
Tests for revision candidate matching.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from adapters.sqlite import files
from core.revision_matcher import NO_DRAWING_NUMBERS_MESSAGE, find_revision_candidates
from helpers import make_pdf
from models import PageEntry


@pytest.fixture
def original(seed_original):
    return seed_original(make_pdf(["1", "2", "3"]))


def test_matches_existing_drawing(storage, original, make_draft, seed_drawing):
    existing = seed_drawing("A1.01", revision="B")
    draft = make_draft(
        original.id,
        [
            PageEntry(page_number=1, drawing_number="A1.01"),
            PageEntry(page_number=2, drawing_number="A1.02"),
            PageEntry(page_number=3),
        ],
    )

    result = find_revision_candidates(storage, draft)

    assert result.message is None
    assert len(result.matches) == 1
    match = result.matches[0]
    assert match.file_id == existing.id
    assert match.drawing_number == "A1.01"
    assert match.current_version == 1
    assert match.current_revision == "B"
    assert match.matched_page_numbers == [1]

    assert result.summary.total_pages == 3
    assert result.summary.pages_with_drawing_numbers == 2
    assert result.summary.matched_pages == 1
    assert result.summary.new_drawings == 1
    assert result.summary.duplicate_drawing_numbers == []


def test_match_is_case_insensitive(storage, original, make_draft, seed_drawing):
    seed_drawing("a1.01")
    draft = make_draft(original.id, [PageEntry(page_number=1, drawing_number="A1.01 "), PageEntry(page_number=2)])

    result = find_revision_candidates(storage, draft)

    assert [m.matched_page_numbers for m in result.matches] == [[1]]


def test_no_drawing_numbers(storage, original, make_draft, seed_drawing):
    seed_drawing("A1.01")
    draft = make_draft(original.id, [PageEntry(page_number=1), PageEntry(page_number=2)])

    result = find_revision_candidates(storage, draft)

    assert result.matches == []
    assert result.message == NO_DRAWING_NUMBERS_MESSAGE
    assert result.summary.pages_with_drawing_numbers == 0


def test_pages_sharing_a_number_grouped(storage, original, make_draft, seed_drawing):
    seed_drawing("S2.01")
    draft = make_draft(
        original.id,
        [
            PageEntry(page_number=1, drawing_number="S2.01"),
            PageEntry(page_number=2, drawing_number="X"),
            PageEntry(page_number=3, drawing_number="S2.01", skipped=True),
        ],
    )

    result = find_revision_candidates(storage, draft)

    # skipped pages still take part in matching
    assert result.matches[0].matched_page_numbers == [1, 3]
    assert result.summary.matched_pages == 2
    assert result.summary.new_drawings == 1


def test_ignores_other_projects_and_superseded(storage, original, make_draft, seed_drawing):
    other = storage.create_project("Other Job", project_id="proj-2")
    storage.create_document_with_revision(
        {"project_id": other.id, "name": "A1.01.pdf", "storage_path": "proj-2/a.pdf"},
        {"drawing_number": "A1.01"},
        {},
    )
    storage.create_document_with_revision(
        {"project_id": "proj-1", "name": "old.pdf", "storage_path": "proj-1/old.pdf"},
        {"drawing_number": "A1.01"},
        {},
    )
    # mark it superseded
    with storage.engine.begin() as conn:
        conn.execute(update(files).where(files.c.name == "old.pdf").values(is_latest=0))

    draft = make_draft(original.id, [PageEntry(page_number=1, drawing_number="A1.01"), PageEntry(page_number=2)])

    assert find_revision_candidates(storage, draft).matches == []


def test_duplicate_latest_newest_wins(storage, original, make_draft, seed_drawing, caplog):
    now = datetime(2024, 5, 1, 12, 0, 0)
    older = seed_drawing("A1.01", created_at=now - timedelta(days=3))
    newer = seed_drawing("A1.01", created_at=now)
    draft = make_draft(original.id, [PageEntry(page_number=1, drawing_number="A1.01"), PageEntry(page_number=2)])

    with caplog.at_level("WARNING"):
        result = find_revision_candidates(storage, draft)

    assert [m.file_id for m in result.matches] == [newer.id]
    assert result.summary.duplicate_drawing_numbers == ["A1.01"]
    assert older.id in caplog.text


def test_matches_ordered_by_first_page(storage, original, make_draft, seed_drawing):
    seed_drawing("A1.01")
    seed_drawing("C1.00")
    draft = make_draft(
        original.id,
        [
            PageEntry(page_number=1, drawing_number="C1.00"),
            PageEntry(page_number=2, drawing_number="A1.01"),
        ],
    )

    result = find_revision_candidates(storage, draft)

    assert [m.drawing_number for m in result.matches] == ["C1.00", "A1.01"]
