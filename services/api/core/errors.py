# services/api/core/errors.py
"""
Error types for the split pipeline.

Every error that can reach a router carries its HTTP status so main.py can
translate it with a single exception handler.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class SplitError(Exception):
    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> Dict[str, Any]:
        if self.detail:
            return {"detail": self.message, **self.detail}
        return {"detail": self.message}


class SplitValidationError(SplitError):
    """Bad upload or request body. Nothing has been persisted."""
    status_code = 400


class InvalidDraftStateError(SplitError):
    status_code = 400


class AccessDeniedError(SplitError):
    status_code = 403


class DraftNotFoundError(SplitError):
    status_code = 404


class FileNotFoundInStoreError(SplitError):
    status_code = 404


class ProjectNotFoundError(SplitError):
    status_code = 404


class MalformedDraftError(SplitError):
    """Stored page list does not match the page-entry schema."""
    status_code = 500


class SplitConfirmError(SplitError):
    """Fatal confirm failure; the draft has been reverted to DRAFT."""
    status_code = 500


class PdfReadError(SplitError):
    status_code = 400


class PageExtractionError(SplitError):
    status_code = 422


class ConcurrentRevisionError(SplitError):
    """The target document moved to a new version between read and write."""
    status_code = 409


class BlobStoreError(SplitError):
    status_code = 502


class BlobExistsError(BlobStoreError):
    status_code = 409
