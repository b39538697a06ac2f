# services/api/core/split_confirm.py
"""
Confirm a split draft: commit every non-skipped page as a new document or
as a new revision of an existing one.

Pages are committed one at a time in page order. A page that fails records
an error and the loop moves on; only failures before the loop (original
file missing or unreadable) abort the whole confirm, which puts the draft
back into DRAFT so the user can retry.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from adapters.base import StorageAdapter
from core.auth import CurrentUser, ensure_uploader
from core.blob_store import BlobStore
from core.draft_store import DraftStore
from core.drawings import (
    build_page_storage_path,
    discipline_to_category,
    page_file_name,
    page_label,
)
from core.errors import (
    BlobStoreError,
    FileNotFoundInStoreError,
    InvalidDraftStateError,
    SplitConfirmError,
    SplitError,
)
from core.notifications import SPLIT_COMPLETE, SPLIT_FAILED, Notifier
from core.pdf_pages import extract_page
from core.validation import ensure_unique_mapping_pages
from models import PageEntry, SplitDraft

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


@dataclass
class RevisionMapping:
    page_number: int
    existing_file_id: str


@dataclass
class PageError:
    page_number: int
    error: str


@dataclass
class PageCommitResult:
    page_number: int
    file_id: Optional[str] = None
    is_revision: bool = False
    error: Optional[str] = None


@dataclass
class ConfirmContext:
    """Everything a single page commit needs, loaded once per confirm."""
    draft: SplitDraft
    user: CurrentUser
    source_pdf: bytes
    original_path: str


@dataclass
class ConfirmResult:
    success: bool
    new_file_ids: List[str] = field(default_factory=list)
    revision_file_ids: List[str] = field(default_factory=list)
    errors: List[PageError] = field(default_factory=list)
    message: str = ""

    @property
    def created_files(self) -> int:
        return len(self.new_file_ids)

    @property
    def updated_files(self) -> int:
        return len(self.revision_file_ids)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def build_summary_message(created: int, updated: int, error_count: int = 0) -> str:
    """'Created 2 new files and 1 revision with 1 error'"""
    parts = []
    if created:
        parts.append(_plural(created, "new file"))
    if updated:
        parts.append(_plural(updated, "revision"))
    message = f"Created {' and '.join(parts)}" if parts else "No files processed"
    if error_count:
        message += f" with {_plural(error_count, 'error')}"
    return message


class SplitOrchestrator:
    def __init__(
        self,
        storage: StorageAdapter,
        blobs: BlobStore,
        drafts: DraftStore,
        notifier: Optional[Notifier] = None,
        *,
        ocr_provider: str = "google-vision",
        page_extractor: Callable[[bytes, int], bytes] = extract_page,
    ):
        self.storage = storage
        self.blobs = blobs
        self.drafts = drafts
        self.notifier = notifier
        self.ocr_provider = ocr_provider
        self.page_extractor = page_extractor

    # ---- public entry point ---------------------------------------------------

    async def confirm(
        self,
        draft_id: str,
        user: CurrentUser,
        revision_mappings: Optional[Sequence[RevisionMapping]] = None,
    ) -> ConfirmResult:
        mappings = list(revision_mappings or [])

        draft = self.drafts.get_draft(draft_id)
        ensure_uploader(draft, user)
        ensure_unique_mapping_pages([{"page_number": m.page_number} for m in mappings])

        if not self.drafts.begin_processing(draft_id):
            raise InvalidDraftStateError("Draft has already been processed")

        logger.info(
            "[split.confirm] draft %s: processing %d pages (%d revision mappings)",
            draft_id, draft.total_pages, len(mappings),
        )

        try:
            context = await asyncio.to_thread(self._load_context, draft, user)
            result = await self._commit_pages(context, mappings)
        except Exception as e:
            await self._abort(draft, e)
            raise self._fatal_error(draft, e) from e

        # pages are committed; from here on the draft never goes back to DRAFT
        self._mark_completed(draft_id)

        result.message = build_summary_message(
            result.created_files, result.updated_files, len(result.errors)
        )
        logger.info("[split.confirm] draft %s: %s", draft_id, result.message)

        await self._notify_done(draft, result)
        return result

    async def _commit_pages(
        self,
        context: ConfirmContext,
        mappings: Sequence[RevisionMapping],
    ) -> ConfirmResult:
        mapping_by_page = {m.page_number: m.existing_file_id for m in mappings}
        result = ConfirmResult(success=True)

        for page in sorted(context.draft.pages, key=lambda p: p.page_number):
            if page.skipped:
                continue
            outcome = await asyncio.to_thread(self.commit_page, context, page, mapping_by_page)
            if outcome.error:
                result.errors.append(PageError(page_number=outcome.page_number, error=outcome.error))
            elif outcome.is_revision:
                result.revision_file_ids.append(outcome.file_id)
            else:
                result.new_file_ids.append(outcome.file_id)

        return result

    # ---- per-page unit ----------------------------------------------------------

    def commit_page(
        self,
        context: ConfirmContext,
        page: PageEntry,
        mappings: Dict[int, str],
    ) -> PageCommitResult:
        """
        Extract one page and commit it. Never raises: failures come back as
        PageCommitResult.error.
        """
        n = page.page_number
        try:
            page_pdf = self.page_extractor(context.source_pdf, n)

            existing_file_id = mappings.get(n)
            if existing_file_id:
                return self._commit_revision(context, page, page_pdf, existing_file_id)
            return self._commit_new_document(context, page, page_pdf)
        except SplitError as e:
            logger.warning("[split.confirm] page %s failed: %s", n, e.message)
            return PageCommitResult(page_number=n, error=e.message)
        except Exception as e:
            logger.exception("[split.confirm] page %s failed", n)
            return PageCommitResult(page_number=n, error=str(e) or type(e).__name__)

    def _upload(self, path: str, data: bytes, failure_message: str) -> None:
        try:
            self.blobs.upload(path, data, PDF_CONTENT_TYPE)
        except BlobStoreError as e:
            raise BlobStoreError(f"{failure_message}: {e.message}") from e

    def _discard_blob(self, path: str) -> None:
        """Remove an uploaded page whose database write failed."""
        try:
            self.blobs.delete(path)
        except Exception:
            logger.exception("[split.confirm] could not remove orphaned blob %s", path)

    def _commit_revision(
        self,
        context: ConfirmContext,
        page: PageEntry,
        page_pdf: bytes,
        existing_file_id: str,
    ) -> PageCommitResult:
        n = page.page_number
        target = self.storage.get_file(existing_file_id)
        if target is None:
            return PageCommitResult(page_number=n, error="Existing file not found for revision")

        existing_meta = self.storage.get_metadata(existing_file_id)
        new_version = target.current_version + 1
        label = (
            page.drawing_number
            or (existing_meta.drawing_number if existing_meta else None)
            or page_label(n)
        )
        path = build_page_storage_path(
            project_id=context.draft.project_id,
            discipline=page.discipline,
            drawing_label=label,
            version=new_version,
        )
        self._upload(path, page_pdf, "Upload failed for revision")

        if page.revision:
            notes = f"Revision {page.revision} - Extracted from split document (page {n})"
        else:
            notes = f"Version {new_version} - Extracted from split document (page {n})"

        try:
            self.storage.commit_revision(
                existing_file_id,
                expected_version=target.current_version,
                storage_path=path,
                metadata_updates={
                    "revision": page.revision,
                    "scale": page.scale,
                    "sheet_title": page.sheet_title,
                    "discipline": page.discipline,
                },
                revision_row={
                    "change_notes": notes,
                    "uploaded_by": context.user.user_id,
                    "file_size": len(page_pdf),
                },
            )
        except Exception:
            self._discard_blob(path)
            raise

        logger.info(
            "[split.confirm] page %s -> revision v%s of %s", n, new_version, existing_file_id
        )
        return PageCommitResult(page_number=n, file_id=existing_file_id, is_revision=True)

    def _commit_new_document(
        self,
        context: ConfirmContext,
        page: PageEntry,
        page_pdf: bytes,
    ) -> PageCommitResult:
        n = page.page_number
        draft = context.draft
        label = page.drawing_number or page_label(n)
        path = build_page_storage_path(
            project_id=draft.project_id,
            discipline=page.discipline,
            drawing_label=label,
        )
        self._upload(path, page_pdf, "Upload failed")

        file_row: Dict[str, Any] = {
            "project_id": draft.project_id,
            "name": page_file_name(page.drawing_number, page.sheet_title, n),
            "type": "document",
            "storage_path": path,
            "uploaded_by": context.user.user_id,
            "category": discipline_to_category(page.discipline) if page.discipline else "DRAWINGS",
            "description": page.sheet_title,
            "tags": [page.discipline.lower()] if page.discipline else [],
            "source": "UPLOAD",
            "page_count": 1,
        }

        metadata_row = None
        if any([page.drawing_number, page.sheet_title, page.discipline, page.revision, page.scale]):
            metadata_row = {
                "drawing_number": page.drawing_number,
                "sheet_number": str(n),
                "sheet_title": page.sheet_title,
                "discipline": page.discipline,
                "revision": page.revision,
                "scale": page.scale,
                "ocr_provider": self.ocr_provider,
                "ocr_confidence": page.confidence,
            }

        try:
            created = self.storage.create_document_with_revision(
                file_row,
                metadata_row,
                {
                    "change_notes": f"Extracted from {context.original_path} (page {n})",
                    "uploaded_by": context.user.user_id,
                    "file_size": len(page_pdf),
                },
            )
        except Exception:
            self._discard_blob(path)
            raise

        logger.info("[split.confirm] page %s -> new document %s", n, created.id)
        return PageCommitResult(page_number=n, file_id=created.id)

    # ---- setup / teardown ---------------------------------------------------------

    def _load_context(self, draft: SplitDraft, user: CurrentUser) -> ConfirmContext:
        original = self.storage.get_file(draft.original_file_id)
        if original is None:
            raise FileNotFoundInStoreError("Original file record not found")

        source_pdf = self.blobs.download(original.storage_path)
        return ConfirmContext(
            draft=draft,
            user=user,
            source_pdf=source_pdf,
            original_path=original.storage_path,
        )

    def _fatal_error(self, draft: SplitDraft, exc: Exception) -> SplitConfirmError:
        details = exc.message if isinstance(exc, SplitError) else (str(exc) or type(exc).__name__)
        if isinstance(exc, BlobStoreError):
            error = "Failed to download original PDF from storage"
            original = self.storage.get_file(draft.original_file_id)
            debug_info = {
                "storagePath": original.storage_path if original else None,
                "draftId": draft.id,
                "originalFileId": draft.original_file_id,
                "hint": "The original PDF may have been deleted from storage. "
                        "Try re-uploading the document.",
            }
        else:
            error = "Failed to confirm split"
            debug_info = {
                "errorType": type(exc).__name__,
                "draftId": draft.id,
                "originalFileId": draft.original_file_id,
            }
        return SplitConfirmError(
            error,
            detail={"error": error, "details": details, "debugInfo": debug_info},
        )

    def _mark_completed(self, draft_id: str) -> None:
        try:
            if self.drafts.complete(draft_id):
                return
            current = self.storage.get_draft(draft_id)
            logger.warning(
                "[split.confirm] draft %s changed to %s while processing; keeping it",
                draft_id, current.status.value if current else "MISSING",
            )
        except Exception:
            logger.exception(
                "[split.confirm] draft %s: pages committed but status update failed", draft_id
            )

    async def _abort(self, draft: SplitDraft, exc: Exception) -> None:
        logger.error("[split.confirm] draft %s failed before processing pages: %s", draft.id, exc)
        if not self.drafts.revert_to_draft(draft.id):
            logger.warning("[split.confirm] draft %s was not PROCESSING; status left as is", draft.id)

        message = exc.message if isinstance(exc, SplitError) else str(exc)
        project_name = self._project_name(draft)
        await self._safe_notify(
            user_id=draft.uploader_id,
            type=SPLIT_FAILED,
            title="Document Split Failed",
            message=f"Failed to split document in {project_name}: {message}",
            severity="ERROR",
            action_url=f"/documents?project={draft.project_id}",
            data={"projectId": draft.project_id, "projectName": project_name, "error": message},
        )

    async def _notify_done(self, draft: SplitDraft, result: ConfirmResult) -> None:
        project_name = self._project_name(draft)
        has_errors = bool(result.errors)
        summary = build_summary_message(result.created_files, result.updated_files)
        if has_errors:
            message = f"{summary} with {_plural(len(result.errors), 'error')} in {project_name}"
        else:
            message = f"{summary} in {project_name}"

        await self._safe_notify(
            user_id=draft.uploader_id,
            type=SPLIT_FAILED if has_errors else SPLIT_COMPLETE,
            title="Document Split Completed with Errors" if has_errors else "Document Split Complete",
            message=message,
            severity="WARNING" if has_errors else "INFO",
            action_url=f"/documents?project={draft.project_id}",
            data={
                "projectId": draft.project_id,
                "projectName": project_name,
                "createdFiles": result.created_files,
                "updatedFiles": result.updated_files,
                "errors": [f"Page {e.page_number}: {e.error}" for e in result.errors],
            },
        )

    def _project_name(self, draft: SplitDraft) -> str:
        try:
            project = self.storage.get_project(draft.project_id)
        except Exception:
            logger.exception("[split.confirm] project lookup failed for %s", draft.project_id)
            return draft.project_id
        return project.name if project else draft.project_id

    async def _safe_notify(self, **kwargs: Any) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.create_notification(**kwargs)
        except Exception:
            logger.exception("[split.confirm] failed to send %s notification", kwargs.get("type"))
