# services/api/core/draft_store.py
r"""
Split draft lifecycle on top of the storage adapter.

    DRAFT --confirm--> PROCESSING --done--> COMPLETED
      |                    |  \--fatal--> DRAFT
      \------cancel--------+--> CANCELLED

Every status change is a compare-and-swap in the adapter, so two callers
racing on the same draft cannot both win.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from adapters.base import StorageAdapter
from core.errors import DraftNotFoundError, InvalidDraftStateError, SplitValidationError
from core.validation import page_update_fields
from models import DraftStatus, PageEntry, SplitDraft

logger = logging.getLogger(__name__)


class DraftStore:
    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    def create_draft(
        self,
        *,
        project_id: str,
        uploader_id: str,
        original_file_id: str,
        pages: List[PageEntry],
    ) -> SplitDraft:
        numbers = [p.page_number for p in pages]
        if not numbers or numbers != list(range(1, len(numbers) + 1)):
            raise SplitValidationError("Draft pages must be numbered 1..N without gaps")

        draft = self.storage.create_draft(
            {
                "project_id": project_id,
                "uploader_id": uploader_id,
                "original_file_id": original_file_id,
                "status": DraftStatus.DRAFT.value,
                "pages": pages,
            }
        )
        logger.info(
            "[split.draft] created %s (%d pages, project=%s)",
            draft.id, draft.total_pages, project_id,
        )
        return draft

    def get_draft(self, draft_id: str) -> SplitDraft:
        draft = self.storage.get_draft(draft_id)
        if draft is None:
            raise DraftNotFoundError("Draft not found")
        return draft

    def list_drafts(
        self,
        uploader_id: str,
        *,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> List[SplitDraft]:
        return self.storage.list_drafts(uploader_id, status=status, project_id=project_id)

    def find_open_draft_for_file(self, original_file_id: str) -> Optional[SplitDraft]:
        return self.storage.find_open_draft_for_file(original_file_id)

    def update_pages(self, draft_id: str, updates: List[Dict[str, Any]]) -> SplitDraft:
        """
        Merge per-page edits into the draft, matched by page_number.

        Unknown page numbers are ignored. Applying the same updates twice
        leaves the draft unchanged.
        """
        draft = self.get_draft(draft_id)
        if draft.status != DraftStatus.DRAFT:
            raise InvalidDraftStateError(f"Cannot modify draft in {draft.status.value} status")

        by_number = {p.page_number: p for p in draft.pages}
        ignored = []
        for update in updates:
            number = update.get("page_number")
            entry = by_number.get(number)
            if entry is None:
                ignored.append(number)
                continue
            fields = page_update_fields(update)
            if fields:
                by_number[number] = PageEntry.model_validate({**entry.model_dump(), **fields})

        if ignored:
            logger.info("[split.draft] %s: ignored updates for unknown pages %s", draft_id, ignored)

        new_pages = [by_number[p.page_number] for p in draft.pages]
        if not self.storage.update_draft_pages(draft_id, new_pages):
            current = self.get_draft(draft_id)
            raise InvalidDraftStateError(f"Cannot modify draft in {current.status.value} status")

        return self.get_draft(draft_id)

    def cancel(self, draft_id: str) -> SplitDraft:
        """Soft delete. Cancelling twice is a no-op; completed drafts stay completed."""
        draft = self.get_draft(draft_id)
        if draft.status == DraftStatus.CANCELLED:
            return draft
        if draft.status == DraftStatus.COMPLETED:
            raise InvalidDraftStateError("Cannot cancel a completed draft")

        moved = self.storage.transition_draft_status(
            draft_id,
            [DraftStatus.DRAFT.value, DraftStatus.PROCESSING.value],
            DraftStatus.CANCELLED.value,
        )
        if not moved:
            current = self.get_draft(draft_id)
            if current.status == DraftStatus.CANCELLED:
                return current
            raise InvalidDraftStateError("Cannot cancel a completed draft")

        logger.info("[split.draft] %s cancelled (was %s)", draft_id, draft.status.value)
        return self.get_draft(draft_id)

    def begin_processing(self, draft_id: str) -> bool:
        return self.storage.transition_draft_status(
            draft_id, [DraftStatus.DRAFT.value], DraftStatus.PROCESSING.value
        )

    def complete(self, draft_id: str) -> bool:
        return self.storage.transition_draft_status(
            draft_id, [DraftStatus.PROCESSING.value], DraftStatus.COMPLETED.value
        )

    def revert_to_draft(self, draft_id: str) -> bool:
        return self.storage.transition_draft_status(
            draft_id, [DraftStatus.PROCESSING.value], DraftStatus.DRAFT.value
        )
