"""
Shared fixtures: in-memory SQLite adapter, temp-dir blob store and seeded
projects, drawings and drafts.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from datetime import datetime
from typing import List, Optional
from uuid import uuid4

import pytest

from adapters.sqlite import SqliteAdapter
from core.auth import CurrentUser
from core.blob_store import LocalBlobStore
from core.draft_store import DraftStore
from core.notifications import Notifier
from helpers import make_pdf
from models import PageEntry


@pytest.fixture
def storage():
    adapter = SqliteAdapter.from_url("sqlite://")
    yield adapter
    adapter.engine.dispose()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def drafts(storage):
    return DraftStore(storage)


@pytest.fixture
def notifier(storage):
    return Notifier(storage)


@pytest.fixture
def project(storage):
    return storage.create_project(
        "Harbor View Tower", address="100 Main Street, Springfield", project_id="proj-1"
    )


@pytest.fixture
def uploader():
    return CurrentUser(user_id="user-1")


@pytest.fixture
def drawing_set_pdf():
    return make_pdf(
        [
            "SITE PLAN\nSHEET NO: C1.00",
            "FIRST FLOOR PLAN\nSHEET NO: A1.01",
            "FOUNDATION PLAN\nSHEET NO: S2.01",
        ]
    )


@pytest.fixture
def seed_original(storage, blobs, project, uploader):
    """Store a source PDF the way a split start does and return its file record."""

    def _seed(pdf_bytes: bytes, name: str = "set.pdf"):
        path = f"{project.id}/originals/{name}"
        blobs.upload(path, pdf_bytes, "application/pdf")
        return storage.create_file(
            {
                "project_id": project.id,
                "name": f"ORIGINAL - {name}",
                "storage_path": path,
                "uploaded_by": uploader.user_id,
                "tags": ["original", "full-set", "do-not-modify"],
                "page_count": 3,
            }
        )

    return _seed


@pytest.fixture
def seed_drawing(storage, blobs, project):
    """Create an existing latest drawing (v1) with metadata."""

    def _seed(
        drawing_number: str,
        *,
        revision: Optional[str] = "A",
        sheet_title: str = "EXISTING",
        created_at: Optional[datetime] = None,
    ):
        path = f"{project.id}/drawings/existing/{uuid4().hex[:8]}-{drawing_number}.pdf"
        blobs.upload(path, make_pdf([drawing_number]), "application/pdf")
        file_row = {
            "project_id": project.id,
            "name": f"{drawing_number} - {sheet_title}.pdf",
            "storage_path": path,
            "uploaded_by": "someone-else",
            "page_count": 1,
        }
        if created_at is not None:
            file_row["created_at"] = created_at
        return storage.create_document_with_revision(
            file_row,
            {
                "drawing_number": drawing_number,
                "sheet_title": sheet_title,
                "discipline": "ARCHITECTURAL",
                "revision": revision,
                "scale": "1/8\" = 1'-0\"",
            },
            {"change_notes": "Initial upload", "uploaded_by": "someone-else", "file_size": 100},
        )

    return _seed


@pytest.fixture
def make_draft(drafts, project, uploader):
    def _make(original_file_id: str, pages: List[PageEntry], uploader_id: Optional[str] = None):
        return drafts.create_draft(
            project_id=project.id,
            uploader_id=uploader_id or uploader.user_id,
            original_file_id=original_file_id,
            pages=pages,
        )

    return _make
