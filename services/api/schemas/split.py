"""
Pydantic schemas for the split API.

Field names are snake_case in Python and camelCase on the wire; requests
accept either.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============ Draft Schemas ============


class PageEntryOut(CamelModel):
    page_number: int
    thumbnail_path: Optional[str] = None
    drawing_number: Optional[str] = None
    sheet_title: Optional[str] = None
    discipline: Optional[str] = None
    revision: Optional[str] = None
    scale: Optional[str] = None
    confidence: float
    verified: bool
    skipped: bool
    schema_version: int


class DraftOut(CamelModel):
    """Full draft, including every page entry."""
    id: str
    project_id: str
    project_name: Optional[str] = None
    uploader_id: str
    original_file_id: str
    original_file_name: Optional[str] = None
    status: str
    total_pages: int
    verified_count: int
    pages: List[PageEntryOut]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DraftListItem(CamelModel):
    """Draft without its page list (for listings)."""
    id: str
    project_id: str
    original_file_id: str
    status: str
    total_pages: int
    verified_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DraftListResponse(CamelModel):
    drafts: List[DraftListItem]


class ProjectMatchOut(CamelModel):
    id: str
    name: str
    confidence: float


class InferenceSummaryOut(CamelModel):
    unique_drawings: List[str] = Field(default_factory=list)
    sheet_titles: List[str] = Field(default_factory=list)
    disciplines: List[str] = Field(default_factory=list)
    project_match: Optional[ProjectMatchOut] = None


class StartSplitResponse(CamelModel):
    success: bool = True
    existing: bool = False
    draft: DraftOut
    summary: Optional[InferenceSummaryOut] = None
    inference_error: Optional[str] = None


# ============ Page Edit Schemas ============


class PageUpdateIn(CamelModel):
    """
    Edit for one page, matched by page_number. Only fields present in the
    request are applied.
    """
    page_number: int = Field(..., ge=1)
    drawing_number: Optional[str] = Field(None, max_length=64)
    sheet_title: Optional[str] = Field(None, max_length=300)
    discipline: Optional[str] = Field(None, max_length=64)
    revision: Optional[str] = Field(None, max_length=32)
    scale: Optional[str] = Field(None, max_length=64)
    verified: Optional[bool] = None
    skipped: Optional[bool] = None

    @field_validator("verified", "skipped")
    @classmethod
    def no_null_flags(cls, v: Optional[bool]) -> bool:
        if v is None:
            raise ValueError("must be true or false")
        return v


class DraftPatchIn(CamelModel):
    """Either page edits or a cancel request (status=CANCELLED)."""
    pages: Optional[List[PageUpdateIn]] = None
    status: Optional[str] = None


# ============ Revision Schemas ============


class RevisionMatchOut(CamelModel):
    file_id: str
    file_name: str
    drawing_number: str
    current_version: int
    current_revision: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    matched_page_numbers: List[int]


class RevisionSummaryOut(CamelModel):
    total_pages: int
    pages_with_drawing_numbers: int
    matched_pages: int
    new_drawings: int
    duplicate_drawing_numbers: List[str] = Field(default_factory=list)


class RevisionCheckResponse(CamelModel):
    matches: List[RevisionMatchOut]
    summary: RevisionSummaryOut
    message: Optional[str] = None


class DocumentRevisionOut(CamelModel):
    id: str
    version: int
    storage_path: str
    change_notes: Optional[str] = None
    uploaded_by: Optional[str] = None
    file_size: Optional[int] = None
    created_at: Optional[datetime] = None


class RevisionHistoryResponse(CamelModel):
    file_id: str
    file_name: str
    current_version: int
    revisions: List[DocumentRevisionOut]


# ============ Confirm Schemas ============


class RevisionMappingIn(CamelModel):
    page_number: int = Field(..., ge=1)
    existing_file_id: str = Field(..., min_length=1)


class ConfirmRequest(CamelModel):
    revision_mappings: List[RevisionMappingIn] = Field(default_factory=list)


class PageErrorOut(CamelModel):
    page_number: int
    error: str


class ConfirmResponse(CamelModel):
    success: bool
    created_files: int
    updated_files: int
    new_file_ids: List[str]
    revision_file_ids: List[str]
    errors: Optional[List[PageErrorOut]] = None
    message: str
