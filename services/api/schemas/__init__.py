"""
Pydantic schemas for API request/response validation.
"""
from .split import (
    ConfirmRequest,
    ConfirmResponse,
    DocumentRevisionOut,
    DraftListItem,
    DraftListResponse,
    DraftOut,
    DraftPatchIn,
    InferenceSummaryOut,
    PageEntryOut,
    PageErrorOut,
    PageUpdateIn,
    RevisionCheckResponse,
    RevisionHistoryResponse,
    RevisionMappingIn,
    RevisionMatchOut,
    RevisionSummaryOut,
    StartSplitResponse,
)

__all__ = [
    "ConfirmRequest",
    "ConfirmResponse",
    "DocumentRevisionOut",
    "DraftListItem",
    "DraftListResponse",
    "DraftOut",
    "DraftPatchIn",
    "InferenceSummaryOut",
    "PageEntryOut",
    "PageErrorOut",
    "PageUpdateIn",
    "RevisionCheckResponse",
    "RevisionHistoryResponse",
    "RevisionMappingIn",
    "RevisionMatchOut",
    "RevisionSummaryOut",
    "StartSplitResponse",
]
