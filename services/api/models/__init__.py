from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PAGE_SCHEMA_VERSION = 1


class DraftStatus(str, Enum):
    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PageEntry(BaseModel):
    """
    One source page inside a split draft.

    Stored as JSON on the draft row, but always read back through this model
    (extra keys and unknown schema versions are rejected).
    """
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    schema_version: int = PAGE_SCHEMA_VERSION
    page_number: int = Field(ge=1)
    thumbnail_path: Optional[str] = None
    drawing_number: Optional[str] = None
    sheet_title: Optional[str] = None
    discipline: Optional[str] = None
    revision: Optional[str] = None
    scale: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    verified: bool = False
    skipped: bool = False

    @field_validator("schema_version")
    @classmethod
    def _known_version(cls, v: int) -> int:
        if v != PAGE_SCHEMA_VERSION:
            raise ValueError(f"unsupported page schema_version {v}")
        return v


class SplitDraft(BaseModel):
    """
    Working state of one split operation.

    `verified_count` is derived from `pages`; it is never stored independently
    of a page write.
    """
    id: str
    project_id: str
    uploader_id: str
    original_file_id: str
    status: DraftStatus = DraftStatus.DRAFT
    total_pages: int = 0
    pages: List[PageEntry] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def verified_count(self) -> int:
        return compute_verified_count(self.pages)

    def page(self, page_number: int) -> Optional[PageEntry]:
        for p in self.pages:
            if p.page_number == page_number:
                return p
        return None


def compute_verified_count(pages: List[PageEntry]) -> int:
    return sum(1 for p in pages if p.verified and not p.skipped)


class ProjectInfo(BaseModel):
    id: str
    name: str
    address: Optional[str] = None


class StoredFile(BaseModel):
    """
    Domain model for a row of the `files` table (a committed document).
    """
    id: str
    project_id: Optional[str] = None
    name: str
    type: str = "document"
    storage_path: str
    uploaded_by: Optional[str] = None
    category: str = "DRAWINGS"
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    source: str = "UPLOAD"
    current_version: int = 1
    is_latest: bool = True
    page_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DocumentMetadata(BaseModel):
    file_id: str
    drawing_number: Optional[str] = None
    sheet_number: Optional[str] = None
    sheet_title: Optional[str] = None
    discipline: Optional[str] = None
    revision: Optional[str] = None
    scale: Optional[str] = None
    ocr_provider: Optional[str] = None
    ocr_confidence: Optional[float] = None


class DocumentRevision(BaseModel):
    id: str
    file_id: str
    version: int
    storage_path: str
    change_notes: Optional[str] = None
    uploaded_by: Optional[str] = None
    file_size: Optional[int] = None
    created_at: Optional[datetime] = None


class LatestDrawing(BaseModel):
    """A latest document joined with its drawing metadata (revision matching input)."""
    file_id: str
    file_name: str
    drawing_number: str
    current_version: int
    sheet_title: Optional[str] = None
    revision: Optional[str] = None
    created_at: Optional[datetime] = None


class Notification(BaseModel):
    id: str
    user_id: str
    type: str
    title: str
    message: str
    severity: str = "INFO"
    category: str = "DOCUMENT"
    action_url: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: Optional[datetime] = None
