"""
Tests for confirming a split draft.

Run with: pytest tests/test_split_confirm.py -v
"""
import asyncio
from pathlib import Path

import pytest

from core.auth import CurrentUser
from core.errors import (
    AccessDeniedError,
    InvalidDraftStateError,
    PageExtractionError,
    SplitConfirmError,
    SplitValidationError,
)
from core.pdf_pages import count_pages, extract_page
from core.split_confirm import RevisionMapping, SplitOrchestrator, build_summary_message
from helpers import make_pdf
from models import DraftStatus, PageEntry


@pytest.fixture
def orchestrator(storage, blobs, drafts, notifier):
    return SplitOrchestrator(storage, blobs, drafts, notifier, ocr_provider="google-vision")


@pytest.fixture
def draft(seed_original, make_draft, drawing_set_pdf):
    original = seed_original(drawing_set_pdf)
    return make_draft(
        original.id,
        [
            PageEntry(page_number=1, drawing_number="C1.00", sheet_title="SITE PLAN", discipline="CIVIL", confidence=0.8),
            PageEntry(page_number=2, drawing_number="A1.01", sheet_title="FIRST FLOOR PLAN", discipline="ARCHITECTURAL", revision="C"),
            PageEntry(page_number=3, drawing_number="S2.01", discipline="STRUCTURAL", scale="1:100"),
        ],
    )


def _confirm(orchestrator, draft_id, user, mappings=None):
    return asyncio.run(orchestrator.confirm(draft_id, user, mappings or []))


def _page_blobs(blobs):
    return sorted(p for p in Path(blobs.root).rglob("*.pdf") if "/drawings/" in p.as_posix())


class TestAllNewDocuments:
    def test_creates_one_document_per_page(self, orchestrator, storage, blobs, drafts, draft, uploader):
        result = _confirm(orchestrator, draft.id, uploader)

        assert result.success is True
        assert result.created_files == 3
        assert result.updated_files == 0
        assert result.errors == []
        assert result.message == "Created 3 new files"
        assert drafts.get_draft(draft.id).status == DraftStatus.COMPLETED

        names = [storage.get_file(fid).name for fid in result.new_file_ids]
        assert names == [
            "C1.00 - SITE PLAN.pdf",
            "A1.01 - FIRST FLOOR PLAN.pdf",
            "S2.01.pdf",
        ]

    def test_document_rows(self, orchestrator, storage, blobs, draft, uploader):
        result = _confirm(orchestrator, draft.id, uploader)
        file = storage.get_file(result.new_file_ids[0])

        assert file.project_id == "proj-1"
        assert file.current_version == 1
        assert file.is_latest is True
        assert file.category == "DRAWINGS"
        assert file.tags == ["civil"]
        assert file.page_count == 1
        assert file.uploaded_by == uploader.user_id
        assert file.storage_path.startswith("proj-1/drawings/civil/")
        assert file.storage_path.endswith("-C1.00.pdf")

        data = blobs.download(file.storage_path)
        assert count_pages(data) == 1

        meta = storage.get_metadata(file.id)
        assert meta.drawing_number == "C1.00"
        assert meta.sheet_number == "1"
        assert meta.ocr_provider == "google-vision"
        assert meta.ocr_confidence == pytest.approx(0.8)

        revisions = storage.list_revisions(file.id)
        assert [r.version for r in revisions] == [1]
        assert revisions[0].storage_path == file.storage_path
        assert revisions[0].file_size == len(data)
        assert revisions[0].change_notes.endswith("(page 1)")

    def test_page_without_metadata(self, orchestrator, storage, seed_original, make_draft, uploader):
        original = seed_original(make_pdf(["one", "two"]), "plain.pdf")
        draft = make_draft(original.id, [PageEntry(page_number=1), PageEntry(page_number=2)])

        result = _confirm(orchestrator, draft.id, uploader)

        file = storage.get_file(result.new_file_ids[1])
        assert file.name == "Page-002.pdf"
        assert file.storage_path.startswith("proj-1/drawings/uncategorized/")
        assert file.tags == []
        assert storage.get_metadata(file.id) is None

    def test_skipped_pages_are_not_committed(self, orchestrator, storage, drafts, draft, uploader):
        drafts.update_pages(draft.id, [{"page_number": 2, "skipped": True}])

        result = _confirm(orchestrator, draft.id, uploader)

        assert result.created_files == 2
        names = [storage.get_file(fid).name for fid in result.new_file_ids]
        assert "A1.01 - FIRST FLOOR PLAN.pdf" not in names

    def test_completion_notification(self, orchestrator, storage, draft, uploader):
        _confirm(orchestrator, draft.id, uploader)

        [note] = storage.list_notifications(uploader.user_id)
        assert note.type == "DOCUMENT_SPLIT_COMPLETE"
        assert note.severity == "INFO"
        assert note.title == "Document Split Complete"
        assert note.message == "Created 3 new files in Harbor View Tower"
        assert note.data["createdFiles"] == 3
        assert note.data["errors"] == []


class TestRevisions:
    def test_page_becomes_new_version(self, orchestrator, storage, blobs, draft, uploader, seed_drawing):
        existing = seed_drawing("A1.01", revision="B", sheet_title="OLD TITLE")
        old_path = existing.storage_path

        result = _confirm(
            orchestrator, draft.id, uploader,
            [RevisionMapping(page_number=2, existing_file_id=existing.id)],
        )

        assert result.created_files == 2
        assert result.revision_file_ids == [existing.id]
        assert result.message == "Created 2 new files and 1 revision"

        file = storage.get_file(existing.id)
        assert file.current_version == 2
        assert file.storage_path != old_path
        assert file.storage_path.endswith("-A1.01-v2.pdf")
        # previous version's blob is kept
        assert blobs.exists(old_path)

        revisions = storage.list_revisions(existing.id)
        assert [r.version for r in revisions] == [2, 1]
        assert revisions[0].storage_path == file.storage_path
        assert revisions[0].change_notes == "Revision C - Extracted from split document (page 2)"
        assert revisions[0].uploaded_by == uploader.user_id

        meta = storage.get_metadata(existing.id)
        assert meta.revision == "C"
        assert meta.sheet_title == "FIRST FLOOR PLAN"
        assert meta.drawing_number == "A1.01"

    def test_empty_page_values_do_not_clear_metadata(self, orchestrator, storage, drafts, draft, uploader, seed_drawing):
        existing = seed_drawing("S2.01", revision="A", sheet_title="FOUNDATION PLAN")
        # page 3 has no sheet title or revision
        result = _confirm(
            orchestrator, draft.id, uploader,
            [RevisionMapping(page_number=3, existing_file_id=existing.id)],
        )

        assert result.updated_files == 1
        meta = storage.get_metadata(existing.id)
        assert meta.sheet_title == "FOUNDATION PLAN"
        assert meta.revision == "A"
        assert meta.scale == "1:100"
        assert storage.list_revisions(existing.id)[0].change_notes == (
            "Version 2 - Extracted from split document (page 3)"
        )

    def test_missing_target_is_a_page_error(self, orchestrator, draft, uploader):
        result = _confirm(
            orchestrator, draft.id, uploader,
            [RevisionMapping(page_number=1, existing_file_id="does-not-exist")],
        )

        assert result.success is True
        assert result.created_files == 2
        assert [(e.page_number, e.error) for e in result.errors] == [
            (1, "Existing file not found for revision")
        ]

    def test_two_pages_onto_one_document(self, orchestrator, storage, draft, uploader, seed_drawing):
        existing = seed_drawing("A1.01")
        _confirm(
            orchestrator, draft.id, uploader,
            [
                RevisionMapping(page_number=1, existing_file_id=existing.id),
                RevisionMapping(page_number=2, existing_file_id=existing.id),
            ],
        )
        assert [r.version for r in storage.list_revisions(existing.id)] == [3, 2, 1]


class TestPageFailures:
    def test_extraction_failure_isolated(self, storage, blobs, drafts, notifier, draft, uploader):
        def flaky_extract(source, page_number):
            if page_number == 2:
                raise PageExtractionError("Failed to extract page 2: corrupt content stream")
            return extract_page(source, page_number)

        orchestrator = SplitOrchestrator(storage, blobs, drafts, notifier, page_extractor=flaky_extract)
        result = _confirm(orchestrator, draft.id, uploader)

        assert result.success is True
        assert result.created_files == 2
        assert [e.page_number for e in result.errors] == [2]
        assert result.message == "Created 2 new files with 1 error"
        assert drafts.get_draft(draft.id).status == DraftStatus.COMPLETED

        [note] = storage.list_notifications(uploader.user_id)
        assert note.severity == "WARNING"
        assert note.title == "Document Split Completed with Errors"
        assert note.data["errors"] == ["Page 2: Failed to extract page 2: corrupt content stream"]

    def test_failed_db_write_removes_uploaded_page(self, storage, blobs, drafts, draft, uploader):
        class FailingStorage:
            def __init__(self, inner):
                self.inner = inner

            def __getattr__(self, name):
                return getattr(self.inner, name)

            def create_document_with_revision(self, *args, **kwargs):
                raise RuntimeError("database is locked")

        orchestrator = SplitOrchestrator(FailingStorage(storage), blobs, drafts)
        result = _confirm(orchestrator, draft.id, uploader)

        assert result.created_files == 0
        assert [e.error for e in result.errors] == ["database is locked"] * 3
        assert result.message == "No files processed with 3 errors"
        assert _page_blobs(blobs) == []


class TestFatalFailures:
    def test_missing_original_blob_reverts_draft(self, orchestrator, storage, blobs, drafts, draft, uploader):
        original = storage.get_file(draft.original_file_id)
        blobs.delete(original.storage_path)

        with pytest.raises(SplitConfirmError) as exc:
            _confirm(orchestrator, draft.id, uploader)

        assert exc.value.status_code == 500
        payload = exc.value.to_payload()
        assert payload["error"] == "Failed to download original PDF from storage"
        assert payload["debugInfo"]["storagePath"] == original.storage_path
        assert payload["debugInfo"]["draftId"] == draft.id

        assert drafts.get_draft(draft.id).status == DraftStatus.DRAFT
        [note] = storage.list_notifications(uploader.user_id)
        assert note.severity == "ERROR"
        assert note.title == "Document Split Failed"

    def test_retry_after_fatal_failure(self, orchestrator, storage, blobs, draft, uploader, drawing_set_pdf):
        original = storage.get_file(draft.original_file_id)
        blobs.delete(original.storage_path)
        with pytest.raises(SplitConfirmError):
            _confirm(orchestrator, draft.id, uploader)

        blobs.upload(original.storage_path, drawing_set_pdf)
        assert _confirm(orchestrator, draft.id, uploader).created_files == 3

    def test_completion_write_failure_never_reverts(self, storage, blobs, drafts, notifier, draft, uploader):
        """Once pages are committed a failed status write must not reopen the draft."""
        class CompleteFails:
            def __init__(self, inner):
                self.inner = inner

            def __getattr__(self, name):
                return getattr(self.inner, name)

            def complete(self, draft_id):
                raise RuntimeError("database is locked")

        orchestrator = SplitOrchestrator(storage, blobs, CompleteFails(drafts), notifier)
        result = _confirm(orchestrator, draft.id, uploader)

        assert result.created_files == 3
        assert result.errors == []
        assert drafts.get_draft(draft.id).status == DraftStatus.PROCESSING

        with pytest.raises(InvalidDraftStateError):
            _confirm(orchestrator, draft.id, uploader)
        assert len(_page_blobs(blobs)) == 3


class TestGuards:
    def test_second_confirm_rejected(self, orchestrator, storage, draft, uploader):
        _confirm(orchestrator, draft.id, uploader)

        with pytest.raises(InvalidDraftStateError) as exc:
            _confirm(orchestrator, draft.id, uploader)
        assert exc.value.message == "Draft has already been processed"
        # nothing duplicated
        assert len([f for f in storage.list_latest_drawings("proj-1", ["C1.00"])]) == 1

    def test_cancelled_draft_rejected(self, orchestrator, drafts, draft, uploader):
        drafts.cancel(draft.id)
        with pytest.raises(InvalidDraftStateError):
            _confirm(orchestrator, draft.id, uploader)

    def test_duplicate_mapping_pages(self, orchestrator, drafts, draft, uploader):
        with pytest.raises(SplitValidationError):
            _confirm(
                orchestrator, draft.id, uploader,
                [
                    RevisionMapping(page_number=1, existing_file_id="a"),
                    RevisionMapping(page_number=1, existing_file_id="b"),
                ],
            )
        assert drafts.get_draft(draft.id).status == DraftStatus.DRAFT

    def test_only_uploader_may_confirm(self, orchestrator, drafts, draft):
        with pytest.raises(AccessDeniedError):
            _confirm(orchestrator, draft.id, CurrentUser(user_id="intruder", role="ADMIN"))
        assert drafts.get_draft(draft.id).status == DraftStatus.DRAFT


@pytest.mark.parametrize(
    "created,updated,errors,expected",
    [
        (3, 0, 0, "Created 3 new files"),
        (1, 1, 0, "Created 1 new file and 1 revision"),
        (0, 2, 1, "Created 2 revisions with 1 error"),
        (0, 0, 0, "No files processed"),
    ],
)
def test_build_summary_message(created, updated, errors, expected):
    assert build_summary_message(created, updated, errors) == expected
