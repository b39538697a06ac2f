from __future__ import annotations

import json
from typing import Any, Dict, List

from pydantic import ValidationError

from core.errors import MalformedDraftError

from . import (
    DocumentMetadata,
    DocumentRevision,
    LatestDrawing,
    Notification,
    PageEntry,
    ProjectInfo,
    SplitDraft,
    StoredFile,
)


def _json_list(raw: Any) -> List[Any]:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    return json.loads(raw)


def pages_from_json(raw: Any, *, draft_id: str = "") -> List[PageEntry]:
    """
    Parse the stored page list. Anything that does not match the current
    PageEntry schema raises MalformedDraftError.
    """
    try:
        items = _json_list(raw)
        if not isinstance(items, list):
            raise ValueError("pages must be a JSON array")
        return [PageEntry.model_validate(item) for item in items]
    except (ValueError, TypeError, ValidationError) as e:
        raise MalformedDraftError(
            f"Draft {draft_id or '?'} has a malformed page list",
            detail={"error": str(e)},
        ) from e


def pages_to_json(pages: List[PageEntry]) -> str:
    return json.dumps([p.model_dump(mode="json") for p in pages])


def draft_from_row(row: Dict[str, Any]) -> SplitDraft:
    return SplitDraft(
        id=row["id"],
        project_id=row["project_id"],
        uploader_id=row["uploader_id"],
        original_file_id=row["original_file_id"],
        status=row["status"],
        total_pages=int(row.get("total_pages") or 0),
        pages=pages_from_json(row.get("pages"), draft_id=row["id"]),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def file_from_row(row: Dict[str, Any]) -> StoredFile:
    data = dict(row)
    data["tags"] = _json_list(row.get("tags"))
    data["is_latest"] = bool(row.get("is_latest"))
    return StoredFile.model_validate(data)


def metadata_from_row(row: Dict[str, Any]) -> DocumentMetadata:
    return DocumentMetadata.model_validate(dict(row))


def revision_from_row(row: Dict[str, Any]) -> DocumentRevision:
    return DocumentRevision.model_validate(dict(row))


def project_from_row(row: Dict[str, Any]) -> ProjectInfo:
    return ProjectInfo.model_validate(dict(row))


def latest_drawing_from_row(row: Dict[str, Any]) -> LatestDrawing:
    return LatestDrawing.model_validate(dict(row))


def notification_from_row(row: Dict[str, Any]) -> Notification:
    data = dict(row)
    raw = row.get("data")
    data["data"] = json.loads(raw) if isinstance(raw, str) and raw else (raw or {})
    data["read"] = bool(row.get("read"))
    return Notification.model_validate(data)
