# services/api/core/auth.py
"""
Caller identity and draft access rules.

Authentication happens upstream; the gateway forwards the user id and role
as X-User-Id / X-User-Role headers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from fastapi import Header, HTTPException

from core.errors import AccessDeniedError
from models import SplitDraft


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str = "USER"


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> CurrentUser:
    """FastAPI dependency: 401 when the gateway did not identify the caller."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return CurrentUser(user_id=user_id, role=(x_user_role or "USER").strip().upper())


def is_elevated(user: CurrentUser, elevated_roles: Sequence[str]) -> bool:
    return user.role.upper() in {r.upper() for r in elevated_roles}


def ensure_uploader(draft: SplitDraft, user: CurrentUser) -> None:
    """Only the uploader may edit or confirm a draft."""
    if draft.uploader_id != user.user_id:
        raise AccessDeniedError("Access denied")


def ensure_can_view(draft: SplitDraft, user: CurrentUser, elevated_roles: Sequence[str]) -> None:
    """Uploader or an elevated role may read or cancel a draft."""
    if draft.uploader_id != user.user_id and not is_elevated(user, elevated_roles):
        raise AccessDeniedError("Access denied")
