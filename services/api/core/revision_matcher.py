# services/api/core/revision_matcher.py
"""
Cross-reference a draft's drawing numbers against the project's latest
stored drawings. Read-only.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from adapters.base import StorageAdapter
from core.drawings import normalize_drawing_number
from models import LatestDrawing, SplitDraft

logger = logging.getLogger(__name__)

NO_DRAWING_NUMBERS_MESSAGE = "No drawing numbers detected"


@dataclass
class RevisionMatch:
    file_id: str
    file_name: str
    drawing_number: str
    current_version: int
    current_revision: Optional[str]
    uploaded_at: Optional[datetime]
    matched_page_numbers: List[int] = field(default_factory=list)


@dataclass
class RevisionSummary:
    total_pages: int
    pages_with_drawing_numbers: int = 0
    matched_pages: int = 0
    new_drawings: int = 0
    duplicate_drawing_numbers: List[str] = field(default_factory=list)


@dataclass
class RevisionCheckResult:
    matches: List[RevisionMatch]
    summary: RevisionSummary
    message: Optional[str] = None


def _newest(a: LatestDrawing, b: LatestDrawing) -> LatestDrawing:
    # rows without a timestamp lose
    if a.created_at is None:
        return b
    if b.created_at is None:
        return a
    return b if b.created_at > a.created_at else a


def find_revision_candidates(storage: StorageAdapter, draft: SplitDraft) -> RevisionCheckResult:
    """
    Propose existing documents that draft pages could become revisions of.

    Skipped pages still take part: a page skipped today may be un-skipped
    before confirm.
    """
    pages_by_number: Dict[str, List[int]] = {}
    for page in draft.pages:
        key = normalize_drawing_number(page.drawing_number)
        if key:
            pages_by_number.setdefault(key, []).append(page.page_number)

    summary = RevisionSummary(total_pages=len(draft.pages))
    if not pages_by_number:
        return RevisionCheckResult(matches=[], summary=summary, message=NO_DRAWING_NUMBERS_MESSAGE)

    summary.pages_with_drawing_numbers = sum(len(v) for v in pages_by_number.values())

    latest = storage.list_latest_drawings(draft.project_id, list(pages_by_number))

    chosen: Dict[str, LatestDrawing] = {}
    duplicates: Dict[str, List[str]] = {}
    for doc in latest:
        key = normalize_drawing_number(doc.drawing_number)
        if key not in pages_by_number:
            continue
        current = chosen.get(key)
        if current is None:
            chosen[key] = doc
            continue
        keep = _newest(current, doc)
        dropped = doc if keep is current else current
        chosen[key] = keep
        duplicates.setdefault(key, []).append(dropped.file_id)

    for key, dropped_ids in duplicates.items():
        logger.warning(
            "[split.revisions] draft %s: %d latest documents share drawing number %s; "
            "using %s, ignoring %s",
            draft.id, len(dropped_ids) + 1, key, chosen[key].file_id, dropped_ids,
        )
    summary.duplicate_drawing_numbers = sorted(duplicates)

    matches: List[RevisionMatch] = []
    for key in sorted(chosen, key=lambda k: min(pages_by_number[k])):
        doc = chosen[key]
        matches.append(
            RevisionMatch(
                file_id=doc.file_id,
                file_name=doc.file_name,
                drawing_number=doc.drawing_number,
                current_version=doc.current_version,
                current_revision=doc.revision,
                uploaded_at=doc.created_at,
                matched_page_numbers=sorted(pages_by_number[key]),
            )
        )

    summary.matched_pages = sum(len(m.matched_page_numbers) for m in matches)
    summary.new_drawings = summary.pages_with_drawing_numbers - summary.matched_pages

    return RevisionCheckResult(matches=matches, summary=summary)
