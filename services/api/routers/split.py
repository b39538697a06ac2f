# services/api/routers/split.py
from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, List, Optional

from fastapi import APIRouter, Body, Depends, File, Form, Query, UploadFile
import logging

from main import (
    get_draft_store,
    get_elevated_roles,
    get_split_orchestrator,
    get_split_starter,
    get_storage_adapter,
)
from core.auth import CurrentUser, ensure_can_view, ensure_uploader, get_current_user
from core.errors import SplitValidationError
from core.revision_matcher import find_revision_candidates
from core.split_confirm import RevisionMapping
from core.split_start import StartSplitResult
from core.validation import validate_upload_size
from models import DraftStatus, SplitDraft
from schemas import (
    ConfirmRequest,
    ConfirmResponse,
    DraftListItem,
    DraftListResponse,
    DraftOut,
    DraftPatchIn,
    InferenceSummaryOut,
    PageErrorOut,
    RevisionCheckResponse,
    StartSplitResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents/split", tags=["split"])

# ---- DI aliases (no default value allowed) ----
Storage = Annotated[object, Depends(get_storage_adapter)]
Drafts = Annotated[object, Depends(get_draft_store)]
Starter = Annotated[object, Depends(get_split_starter)]
Orchestrator = Annotated[object, Depends(get_split_orchestrator)]
ElevatedRoles = Annotated[List[str], Depends(get_elevated_roles)]
User = Annotated[CurrentUser, Depends(get_current_user)]


# ====== Response builders ======

def draft_out(
    draft: SplitDraft,
    *,
    project_name: Optional[str] = None,
    original_file_name: Optional[str] = None,
) -> DraftOut:
    data = draft.model_dump(mode="json")
    data["verified_count"] = draft.verified_count
    data["project_name"] = project_name
    data["original_file_name"] = original_file_name
    return DraftOut.model_validate(data)


def _draft_with_names(storage, draft: SplitDraft) -> DraftOut:
    project = storage.get_project(draft.project_id)
    original = storage.get_file(draft.original_file_id)
    return draft_out(
        draft,
        project_name=project.name if project else None,
        original_file_name=original.name if original else None,
    )


def start_response(result: StartSplitResult) -> StartSplitResponse:
    summary = None
    if result.summary is not None:
        summary = InferenceSummaryOut.model_validate(asdict(result.summary))
    return StartSplitResponse(
        success=True,
        existing=result.existing,
        draft=draft_out(
            result.draft,
            project_name=result.project.name,
            original_file_name=result.original_file.name,
        ),
        summary=summary,
        inference_error=None if result.existing else result.inference_error,
    )


# ====== Endpoints ======

@router.post("/start", response_model=StartSplitResponse)
async def start_split(
    user: User,
    starter: Starter,
    file: Optional[UploadFile] = File(None),
    projectId: Optional[str] = Form(None),
):
    """
    Upload a multi-page PDF, run page inference and open a split draft.
    """
    data = b""
    if file is not None:
        validate_upload_size(file.size, starter.max_file_bytes)
        # one byte past the limit is enough for validation to reject it
        data = await file.read(starter.max_file_bytes + 1)
    result = await starter.start_split(
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        data=data,
        project_id=projectId,
        user=user,
    )
    return start_response(result)


# NOTE: must stay above /{draft_id}
@router.get("/drafts", response_model=DraftListResponse)
def list_drafts(
    user: User,
    drafts: Drafts,
    status_filter: Optional[str] = Query(None, alias="status"),
    project_id: Optional[str] = Query(None, alias="projectId"),
):
    """Caller's drafts, newest first."""
    if status_filter and status_filter.upper() not in DraftStatus.__members__:
        raise SplitValidationError(f"Unknown status: {status_filter}")

    items = drafts.list_drafts(
        user.user_id,
        status=status_filter.upper() if status_filter else None,
        project_id=project_id,
    )
    return DraftListResponse(
        drafts=[
            DraftListItem.model_validate(
                {**d.model_dump(mode="json", exclude={"pages"}), "verified_count": d.verified_count}
            )
            for d in items
        ]
    )


@router.get("/{draft_id}", response_model=DraftOut)
def get_draft(draft_id: str, user: User, drafts: Drafts, storage: Storage, roles: ElevatedRoles):
    draft = drafts.get_draft(draft_id)
    ensure_can_view(draft, user, roles)
    return _draft_with_names(storage, draft)


@router.patch("/{draft_id}", response_model=DraftOut)
def patch_draft(
    draft_id: str,
    user: User,
    drafts: Drafts,
    storage: Storage,
    roles: ElevatedRoles,
    body: DraftPatchIn = Body(...),
):
    """
    Update page entries, or cancel with {"status": "CANCELLED"}.
    """
    draft = drafts.get_draft(draft_id)

    if body.status is not None and body.pages is not None:
        raise SplitValidationError("Send either pages or status, not both")

    if body.status is not None:
        if body.status.upper() != DraftStatus.CANCELLED.value:
            raise SplitValidationError("Only status=CANCELLED can be set directly")
        ensure_can_view(draft, user, roles)
        return _draft_with_names(storage, drafts.cancel(draft_id))

    if body.pages is None:
        raise SplitValidationError("Provide pages to update or status=CANCELLED")

    ensure_uploader(draft, user)
    updated = drafts.update_pages(
        draft_id, [p.model_dump(exclude_unset=True) for p in body.pages]
    )
    return _draft_with_names(storage, updated)


@router.delete("/{draft_id}", response_model=DraftOut)
def cancel_draft(draft_id: str, user: User, drafts: Drafts, storage: Storage, roles: ElevatedRoles):
    """Soft cancel; the row is kept."""
    draft = drafts.get_draft(draft_id)
    ensure_can_view(draft, user, roles)
    return _draft_with_names(storage, drafts.cancel(draft_id))


@router.post("/{draft_id}/check-revisions", response_model=RevisionCheckResponse)
def check_revisions(draft_id: str, user: User, drafts: Drafts, storage: Storage, roles: ElevatedRoles):
    """Propose existing documents that draft pages could revise."""
    draft = drafts.get_draft(draft_id)
    ensure_can_view(draft, user, roles)
    result = find_revision_candidates(storage, draft)
    return RevisionCheckResponse.model_validate(asdict(result))


@router.post("/{draft_id}/confirm", response_model=ConfirmResponse)
async def confirm_split(
    draft_id: str,
    user: User,
    orchestrator: Orchestrator,
    body: Optional[ConfirmRequest] = Body(None),
):
    """
    Commit every non-skipped page. Pages listed in revisionMappings become
    new revisions of the given documents; the rest become new documents.
    """
    mappings = [
        RevisionMapping(page_number=m.page_number, existing_file_id=m.existing_file_id)
        for m in (body.revision_mappings if body else [])
    ]
    result = await orchestrator.confirm(draft_id, user, mappings)
    logger.info(f"[split] draft {draft_id} confirmed by {user.user_id}: {result.message}")
    return ConfirmResponse(
        success=result.success,
        created_files=result.created_files,
        updated_files=result.updated_files,
        new_file_ids=result.new_file_ids,
        revision_file_ids=result.revision_file_ids,
        errors=[PageErrorOut(page_number=e.page_number, error=e.error) for e in result.errors] or None,
        message=result.message,
    )
