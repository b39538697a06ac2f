# services/api/core/split_start.py
"""
Start a split: store the original, probe pages, infer metadata, open a draft.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from adapters.base import StorageAdapter
from core.auth import CurrentUser, ensure_can_view
from core.blob_store import BlobStore
from core.draft_store import DraftStore
from core.drawings import build_original_storage_path, infer_discipline, normalize_drawing_number
from core.errors import BlobStoreError, FileNotFoundInStoreError, ProjectNotFoundError, SplitValidationError
from core.pdf_pages import count_pages
from core.validation import validate_pdf_upload, validate_split_page_count
from core.vision_ocr import BaseInferencer, InferenceSummary, MultiPageInference
from models import PageEntry, ProjectInfo, SplitDraft, StoredFile

logger = logging.getLogger(__name__)

ORIGINAL_TAGS = ["original", "full-set", "do-not-modify"]

SINGLE_PAGE_UPLOAD = "PDF has only 1 page. Use regular upload for single-page documents."
SINGLE_PAGE_EXISTING = "PDF has only 1 page. No splitting needed."


@dataclass
class StartSplitResult:
    draft: SplitDraft
    project: ProjectInfo
    original_file: StoredFile
    summary: Optional[InferenceSummary] = None
    inference_error: Optional[str] = None
    existing: bool = False


def build_page_entries(total_pages: int, inference: Optional[MultiPageInference]) -> List[PageEntry]:
    """
    One unverified, unskipped entry per page. Pages inference could not read
    start empty; discipline falls back to the drawing-number prefix.
    """
    pages = []
    for n in range(1, total_pages + 1):
        result = inference.for_page(n) if inference else None
        if result is None or result.error:
            pages.append(PageEntry(page_number=n))
            continue

        drawing = normalize_drawing_number(result.drawing_number) or None
        pages.append(
            PageEntry(
                page_number=n,
                drawing_number=drawing,
                sheet_title=result.sheet_title or None,
                discipline=result.discipline or infer_discipline(drawing),
                revision=result.revision or None,
                scale=result.scale or None,
                confidence=result.confidence,
            )
        )
    return pages


class SplitStarter:
    def __init__(
        self,
        storage: StorageAdapter,
        blobs: BlobStore,
        drafts: DraftStore,
        inferencer: BaseInferencer,
        *,
        max_pages: int = 100,
        max_file_bytes: int = 50 * 1024 * 1024,
        concurrency: int = 3,
    ):
        self.storage = storage
        self.blobs = blobs
        self.drafts = drafts
        self.inferencer = inferencer
        self.max_pages = max_pages
        self.max_file_bytes = max_file_bytes
        self.concurrency = concurrency

    @classmethod
    def from_settings(cls, settings, storage, blobs, drafts, inferencer) -> "SplitStarter":
        return cls(
            storage,
            blobs,
            drafts,
            inferencer,
            max_pages=settings.split_max_pages,
            max_file_bytes=settings.split_max_file_bytes,
            concurrency=settings.inference_concurrency,
        )

    def _probe(self, data: bytes, single_page_message: str = SINGLE_PAGE_UPLOAD) -> int:
        """Page count capped at max_pages; pages past the cap are dropped."""
        page_count = count_pages(data)
        total = min(page_count, self.max_pages)
        validate_split_page_count(total, single_page_message)
        if page_count > total:
            logger.info("[split.start] truncating %d pages to %d", page_count, total)
        return total

    async def _infer(self, data: bytes, project: ProjectInfo, total: int) -> Optional[MultiPageInference]:
        try:
            return await self.inferencer.infer_all_pages(
                data,
                [project],
                max_pages=total,
                concurrency=self.concurrency,
            )
        except Exception:
            # manual entry still works without inference
            logger.exception("[split.start] inference failed; continuing without metadata")
            return None

    async def _open_draft(
        self,
        *,
        data: bytes,
        total: int,
        project: ProjectInfo,
        original: StoredFile,
        user: CurrentUser,
    ) -> StartSplitResult:
        inference = await self._infer(data, project, total)
        pages = build_page_entries(total, inference)
        draft = self.drafts.create_draft(
            project_id=project.id,
            uploader_id=user.user_id,
            original_file_id=original.id,
            pages=pages,
        )
        return StartSplitResult(
            draft=draft,
            project=project,
            original_file=original,
            summary=inference.summary if inference and not inference.error else None,
            inference_error=inference.error if inference else "Inference unavailable",
        )

    async def start_split(
        self,
        *,
        filename: Optional[str],
        content_type: Optional[str],
        data: bytes,
        project_id: Optional[str],
        user: CurrentUser,
    ) -> StartSplitResult:
        validate_pdf_upload(
            filename=filename,
            content_type=content_type,
            data=data,
            max_bytes=self.max_file_bytes,
        )
        if not project_id:
            raise SplitValidationError("Project ID is required")

        project = self.storage.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError("Project not found or access denied")

        total = self._probe(data)

        path = build_original_storage_path(project_id=project_id, file_name=filename)
        try:
            await asyncio.to_thread(self.blobs.upload, path, data, "application/pdf")
        except BlobStoreError as e:
            logger.error("[split.start] storage upload failed for %s: %s", path, e.message)
            raise BlobStoreError(f"Failed to upload file: {e.message}") from e

        original = self.storage.create_file(
            {
                "project_id": project_id,
                "name": f"ORIGINAL - {filename}",
                "type": "document",
                "storage_path": path,
                "uploaded_by": user.user_id,
                "category": "DRAWINGS",
                "description": (
                    f"Original multi-page document ({total} pages). "
                    "Individual pages will be extracted separately."
                ),
                "tags": ORIGINAL_TAGS,
                "source": "UPLOAD",
                "page_count": total,
            }
        )
        logger.info(
            "[split.start] stored original %s (%d pages) for project %s",
            original.id, total, project_id,
        )

        return await self._open_draft(
            data=data, total=total, project=project, original=original, user=user
        )

    async def split_existing_file(
        self,
        file_id: str,
        user: CurrentUser,
        elevated_roles: Sequence[str] = (),
    ) -> StartSplitResult:
        """
        Open a draft for a PDF that is already stored. If the file already has
        an open draft, that draft is returned instead (existing=True), provided
        the caller may read it.
        """
        original = self.storage.get_file(file_id)
        if original is None:
            raise FileNotFoundInStoreError("File not found or access denied")
        if not original.storage_path.lower().endswith(".pdf") and original.type != "document":
            raise SplitValidationError("Only PDF files can be split")
        if not original.project_id:
            raise SplitValidationError("File is not assigned to a project")

        project = self.storage.get_project(original.project_id)
        if project is None:
            raise ProjectNotFoundError("Project not found or access denied")

        open_draft = self.drafts.find_open_draft_for_file(file_id)
        if open_draft is not None:
            ensure_can_view(open_draft, user, elevated_roles)
            logger.info("[split.start] reusing open draft %s for file %s", open_draft.id, file_id)
            return StartSplitResult(
                draft=open_draft, project=project, original_file=original, existing=True
            )

        try:
            data = await asyncio.to_thread(self.blobs.download, original.storage_path)
        except BlobStoreError as e:
            raise BlobStoreError(
                "Failed to download file from storage",
                detail={"details": e.message, "storagePath": original.storage_path},
            ) from e

        total = self._probe(data, SINGLE_PAGE_EXISTING)
        return await self._open_draft(
            data=data, total=total, project=project, original=original, user=user
        )
