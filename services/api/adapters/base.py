"""
Storage adapter interface for the drawing split service.
Defines the contract that all storage backends must implement.
"""

from typing import Protocol, List, Dict, Any, Optional, Sequence

from models import (
    DocumentMetadata,
    DocumentRevision,
    LatestDrawing,
    Notification,
    PageEntry,
    ProjectInfo,
    SplitDraft,
    StoredFile,
)


class StorageAdapter(Protocol):
    """
    Protocol defining the interface for all storage adapters.

    Routers and core services only talk to this protocol; the SQLite
    implementation lives in adapters/sqlite.

    NOTE:
    - Every multi-row write (new document, new revision) happens in a
      single transaction inside the adapter.
    - Draft status changes are compare-and-swap: they report whether the
      row was actually in one of the expected statuses.
    """

    def ping(self) -> None:
        """Raise if the backend is unreachable (health checks)."""
        ...

    # ========== Projects ==========

    def get_project(self, project_id: str) -> Optional[ProjectInfo]:
        ...

    def create_project(
        self,
        name: str,
        address: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ProjectInfo:
        ...

    def list_projects(self) -> List[ProjectInfo]:
        """All projects, used as candidates for project matching."""
        ...

    # ========== Files / documents ==========

    def get_file(self, file_id: str) -> Optional[StoredFile]:
        ...

    def create_file(self, file_row: Dict[str, Any]) -> StoredFile:
        """
        Insert a bare file record (used for the uploaded original).
        `id` is generated when absent.
        """
        ...

    def get_metadata(self, file_id: str) -> Optional[DocumentMetadata]:
        ...

    def list_revisions(self, file_id: str) -> List[DocumentRevision]:
        """Revision history for one file, newest version first."""
        ...

    def list_latest_drawings(
        self,
        project_id: str,
        drawing_numbers: Sequence[str],
    ) -> List[LatestDrawing]:
        """
        Latest documents in a project whose metadata drawing number matches
        one of `drawing_numbers` (compared trimmed + upper-cased).
        """
        ...

    def create_document_with_revision(
        self,
        file_row: Dict[str, Any],
        metadata_row: Optional[Dict[str, Any]],
        revision_row: Dict[str, Any],
    ) -> StoredFile:
        """
        Create file (version 1), optional metadata row and the initial
        revision in one transaction.
        """
        ...

    def commit_revision(
        self,
        file_id: str,
        *,
        expected_version: int,
        storage_path: str,
        metadata_updates: Dict[str, Any],
        revision_row: Dict[str, Any],
    ) -> StoredFile:
        """
        In one transaction: point the file at `storage_path` and bump its
        version to expected_version + 1 (only if it is still at
        `expected_version`), merge non-empty `metadata_updates` into the
        metadata row, and append the revision record.

        Raises:
            FileNotFoundInStoreError: file is gone.
            ConcurrentRevisionError: file version moved since it was read.
        """
        ...

    # ========== Split drafts ==========

    def create_draft(self, draft_row: Dict[str, Any]) -> SplitDraft:
        ...

    def get_draft(self, draft_id: str) -> Optional[SplitDraft]:
        """
        Raises:
            MalformedDraftError: stored pages do not match the page schema.
        """
        ...

    def list_drafts(
        self,
        uploader_id: str,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> List[SplitDraft]:
        """Drafts of one uploader, newest first."""
        ...

    def find_open_draft_for_file(self, original_file_id: str) -> Optional[SplitDraft]:
        """Most recent DRAFT-status draft created from this file, if any."""
        ...

    def update_draft_pages(self, draft_id: str, pages: List[PageEntry]) -> bool:
        """
        Replace the page list, only while the draft is in DRAFT.
        Returns False if the status had moved on.
        """
        ...

    def transition_draft_status(
        self,
        draft_id: str,
        from_statuses: Sequence[str],
        to_status: str,
    ) -> bool:
        """
        Atomically move a draft from any of `from_statuses` to `to_status`.
        Returns True only if this call performed the transition.
        """
        ...

    # ========== Notifications ==========

    def create_notification(self, notification_row: Dict[str, Any]) -> Notification:
        ...

    def list_notifications(self, user_id: str) -> List[Notification]:
        ...
