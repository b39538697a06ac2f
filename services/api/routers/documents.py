# services/api/routers/documents.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from typing import Annotated, List

from main import get_elevated_roles, get_split_starter, get_storage_adapter  # DI helpers from main
from core.auth import CurrentUser, get_current_user
from core.errors import FileNotFoundInStoreError
from routers.split import start_response
from schemas import DocumentRevisionOut, RevisionHistoryResponse, StartSplitResponse

router = APIRouter(prefix="/documents", tags=["documents"])

# ---- DI aliases (no default value allowed) ----
Storage = Annotated[object, Depends(get_storage_adapter)]
Starter = Annotated[object, Depends(get_split_starter)]
User = Annotated[CurrentUser, Depends(get_current_user)]
ElevatedRoles = Annotated[List[str], Depends(get_elevated_roles)]


@router.post("/{file_id}/split", response_model=StartSplitResponse)
async def split_existing_document(file_id: str, user: User, starter: Starter, roles: ElevatedRoles):
    """
    Open a split draft for an already stored PDF.
    Returns the file's open draft instead if it has one (existing=true);
    403 when that draft belongs to someone else and the caller is not elevated.
    """
    result = await starter.split_existing_file(file_id, user, roles)
    return start_response(result)


@router.get("/{file_id}/revisions", response_model=RevisionHistoryResponse)
def list_document_revisions(file_id: str, user: User, storage: Storage):
    """Revision history, newest version first."""
    file = storage.get_file(file_id)
    if file is None:
        raise FileNotFoundInStoreError("File not found")

    revisions = storage.list_revisions(file_id)
    return RevisionHistoryResponse(
        file_id=file.id,
        file_name=file.name,
        current_version=file.current_version,
        revisions=[DocumentRevisionOut.model_validate(r.model_dump()) for r in revisions],
    )
