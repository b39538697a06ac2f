# services/api/adapters/sqlite/__init__.py
from __future__ import annotations

import json
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from core.errors import ConcurrentRevisionError, FileNotFoundInStoreError
from models import (
    DocumentMetadata,
    DocumentRevision,
    LatestDrawing,
    Notification,
    PageEntry,
    ProjectInfo,
    SplitDraft,
    StoredFile,
    compute_verified_count,
)
from models.converters import (
    draft_from_row,
    file_from_row,
    latest_drawing_from_row,
    metadata_from_row,
    notification_from_row,
    pages_to_json,
    project_from_row,
    revision_from_row,
)


def _now() -> datetime:
    # naive UTC, SQLite DateTime columns carry no tz
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---- Engine (SQLite) with WAL & pragmas -------------------------------------

def _ensure_dir(path: str):
    d = os.path.dirname(path)
    if d and not os.path.isdir(d):
        os.makedirs(d, exist_ok=True)


def make_engine(db_url: str) -> Engine:
    in_memory = db_url in ("sqlite://", "sqlite:///:memory:")

    if in_memory:
        # one shared connection, otherwise every checkout sees an empty db
        engine = create_engine(
            db_url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # Create data dir if sqlite file
        if db_url.startswith("sqlite:///"):
            file_path = db_url.replace("sqlite:///", "", 1)
            _ensure_dir(file_path)
        engine = create_engine(db_url, future=True, pool_pre_ping=True)

    # Apply pragmas per-connection
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore
        if isinstance(dbapi_connection, sqlite3.Connection):
            cursor = dbapi_connection.cursor()
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL;")
                cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA temp_store=MEMORY;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine


# ---- Schema via SQLAlchemy Core ---------------------------------------------

metadata = MetaData()

projects = Table(
    "projects",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("address", Text),
    Column("created_at", DateTime, nullable=False, default=_now),
)

files = Table(
    "files",
    metadata,
    Column("id", String, primary_key=True),
    Column("project_id", String, ForeignKey("projects.id", ondelete="SET NULL")),
    Column("name", String, nullable=False),
    Column("type", String, nullable=False, default="document"),
    Column("storage_path", Text, nullable=False),
    Column("uploaded_by", String),
    Column("category", String, nullable=False, default="DRAWINGS"),
    Column("description", Text),
    Column("tags", Text, nullable=False, default="[]"),  # JSON array
    Column("source", String, nullable=False, default="UPLOAD"),
    Column("current_version", Integer, nullable=False, default=1),
    Column("is_latest", Integer, nullable=False, default=1),  # 0/1
    Column("page_count", Integer),
    Column("created_at", DateTime, nullable=False, default=_now),
    Column("updated_at", DateTime, nullable=False, default=_now),
    CheckConstraint("current_version >= 1", name="ck_files_version"),
)

document_metadata = Table(
    "document_metadata",
    metadata,
    Column("file_id", String, ForeignKey("files.id", ondelete="CASCADE"), primary_key=True),
    Column("drawing_number", String),
    Column("sheet_number", String),
    Column("sheet_title", Text),
    Column("discipline", String),
    Column("revision", String),
    Column("scale", String),
    Column("ocr_provider", String),
    Column("ocr_confidence", Float),
)

document_revisions = Table(
    "document_revisions",
    metadata,
    Column("id", String, primary_key=True),
    Column("file_id", String, ForeignKey("files.id", ondelete="CASCADE"), nullable=False),
    Column("version", Integer, nullable=False),
    Column("storage_path", Text, nullable=False),
    Column("change_notes", Text),
    Column("uploaded_by", String),
    Column("file_size", Integer),
    Column("created_at", DateTime, nullable=False, default=_now),
    UniqueConstraint("file_id", "version", name="uq_revisions_file_version"),
)

split_drafts = Table(
    "split_drafts",
    metadata,
    Column("id", String, primary_key=True),
    Column("project_id", String, ForeignKey("projects.id"), nullable=False),
    Column("uploader_id", String, nullable=False),
    Column("original_file_id", String, ForeignKey("files.id"), nullable=False),
    Column("status", String, nullable=False, default="DRAFT"),
    Column("total_pages", Integer, nullable=False),
    Column("verified_count", Integer, nullable=False, default=0),
    Column("pages", Text, nullable=False),  # JSON array of PageEntry
    Column("created_at", DateTime, nullable=False, default=_now),
    Column("updated_at", DateTime, nullable=False, default=_now),
    CheckConstraint(
        "status IN ('DRAFT','PROCESSING','COMPLETED','CANCELLED')",
        name="ck_split_drafts_status",
    ),
)

notifications = Table(
    "notifications",
    metadata,
    Column("id", String, primary_key=True),
    Column("user_id", String, nullable=False),
    Column("type", String, nullable=False),
    Column("title", String, nullable=False),
    Column("message", Text, nullable=False),
    Column("severity", String, nullable=False, default="INFO"),
    Column("category", String, nullable=False, default="DOCUMENT"),
    Column("action_url", Text),
    Column("data", Text),  # JSON object
    Column("read", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False, default=_now),
)

Index("idx_files_project_latest", files.c.project_id, files.c.is_latest)
Index("idx_metadata_drawing", document_metadata.c.drawing_number)
Index("idx_revisions_file", document_revisions.c.file_id)
Index("idx_drafts_uploader", split_drafts.c.uploader_id, split_drafts.c.status)
Index("idx_drafts_original", split_drafts.c.original_file_id)
Index("idx_notifications_user", notifications.c.user_id)

# merged on revision commit; empty values never overwrite existing ones
_METADATA_MERGE_FIELDS = ("revision", "scale", "sheet_title", "discipline")

_FILE_FIELDS = {c.name for c in files.columns}
_METADATA_FIELDS = {c.name for c in document_metadata.columns}
_REVISION_FIELDS = {c.name for c in document_revisions.columns}


def _file_values(file_row: Dict[str, Any]) -> Dict[str, Any]:
    now = _now()
    values = {k: v for k, v in file_row.items() if k in _FILE_FIELDS}
    values["id"] = values.get("id") or str(uuid4())
    values["tags"] = json.dumps(list(values.get("tags") or []))
    values["is_latest"] = 1 if values.get("is_latest", True) else 0
    values.setdefault("created_at", now)
    values.setdefault("updated_at", values["created_at"])
    return values


# ---- Adapter implementation --------------------------------------------------

@dataclass(frozen=True)
class SqliteAdapter:
    engine: Engine

    @classmethod
    def from_url(cls, db_url: str = "sqlite:///data/drawing_split.db") -> "SqliteAdapter":
        eng = make_engine(db_url)
        metadata.create_all(eng)
        return cls(engine=eng)

    def ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(select(1)).scalar_one()

    # Projects
    def get_project(self, project_id: str) -> Optional[ProjectInfo]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(projects.c.id, projects.c.name, projects.c.address)
                .where(projects.c.id == project_id)
            ).mappings().first()
        return project_from_row(row) if row else None

    def create_project(
        self,
        name: str,
        address: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> ProjectInfo:
        pid = project_id or str(uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                insert(projects).values(id=pid, name=name, address=address, created_at=_now())
            )
        return ProjectInfo(id=pid, name=name, address=address)

    def list_projects(self) -> List[ProjectInfo]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(projects.c.id, projects.c.name, projects.c.address)
                .order_by(projects.c.name.asc())
            ).mappings().all()
        return [project_from_row(r) for r in rows]

    # Files
    def get_file(self, file_id: str) -> Optional[StoredFile]:
        with self.engine.begin() as conn:
            row = conn.execute(select(files).where(files.c.id == file_id)).mappings().first()
        return file_from_row(row) if row else None

    def create_file(self, file_row: Dict[str, Any]) -> StoredFile:
        values = _file_values(file_row)
        with self.engine.begin() as conn:
            conn.execute(insert(files).values(**values))
            row = conn.execute(select(files).where(files.c.id == values["id"])).mappings().one()
        return file_from_row(row)

    def get_metadata(self, file_id: str) -> Optional[DocumentMetadata]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(document_metadata).where(document_metadata.c.file_id == file_id)
            ).mappings().first()
        return metadata_from_row(row) if row else None

    def list_revisions(self, file_id: str) -> List[DocumentRevision]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(document_revisions)
                .where(document_revisions.c.file_id == file_id)
                .order_by(document_revisions.c.version.desc())
            ).mappings().all()
        return [revision_from_row(r) for r in rows]

    def list_latest_drawings(
        self,
        project_id: str,
        drawing_numbers: Sequence[str],
    ) -> List[LatestDrawing]:
        keys = sorted({n.strip().upper() for n in drawing_numbers if n and n.strip()})
        if not keys:
            return []

        q = (
            select(
                files.c.id.label("file_id"),
                files.c.name.label("file_name"),
                files.c.current_version,
                files.c.created_at,
                document_metadata.c.drawing_number,
                document_metadata.c.sheet_title,
                document_metadata.c.revision,
            )
            .select_from(files.join(document_metadata, document_metadata.c.file_id == files.c.id))
            .where(
                files.c.project_id == project_id,
                files.c.is_latest == 1,
                func.upper(func.trim(document_metadata.c.drawing_number)).in_(keys),
            )
            .order_by(files.c.created_at.desc())
        )
        with self.engine.begin() as conn:
            rows = conn.execute(q).mappings().all()
        return [latest_drawing_from_row(r) for r in rows]

    # Create file + metadata + first revision (atomic)
    def create_document_with_revision(
        self,
        file_row: Dict[str, Any],
        metadata_row: Optional[Dict[str, Any]],
        revision_row: Dict[str, Any],
    ) -> StoredFile:
        values = _file_values(file_row)
        values["current_version"] = 1
        values["is_latest"] = 1

        with self.engine.begin() as conn:
            conn.execute(insert(files).values(**values))

            if metadata_row:
                meta = {k: v for k, v in metadata_row.items() if k in _METADATA_FIELDS}
                meta["file_id"] = values["id"]
                conn.execute(insert(document_metadata).values(**meta))

            rev = {k: v for k, v in revision_row.items() if k in _REVISION_FIELDS}
            rev.update(
                id=rev.get("id") or str(uuid4()),
                file_id=values["id"],
                version=1,
                storage_path=values["storage_path"],
                created_at=values["created_at"],
            )
            conn.execute(insert(document_revisions).values(**rev))

            row = conn.execute(select(files).where(files.c.id == values["id"])).mappings().one()
        return file_from_row(row)

    # Swap pointer + bump version + merge metadata + append revision (atomic)
    def commit_revision(
        self,
        file_id: str,
        *,
        expected_version: int,
        storage_path: str,
        metadata_updates: Dict[str, Any],
        revision_row: Dict[str, Any],
    ) -> StoredFile:
        new_version = expected_version + 1
        now = _now()

        with self.engine.begin() as conn:
            res = conn.execute(
                update(files)
                .where(files.c.id == file_id, files.c.current_version == expected_version)
                .values(storage_path=storage_path, current_version=new_version, updated_at=now)
            )
            if res.rowcount != 1:
                found = conn.execute(select(files.c.id).where(files.c.id == file_id)).first()
                if not found:
                    raise FileNotFoundInStoreError(f"File not found: {file_id}")
                raise ConcurrentRevisionError(
                    f"File {file_id} is no longer at version {expected_version}"
                )

            merged = {
                k: v
                for k, v in metadata_updates.items()
                if k in _METADATA_MERGE_FIELDS and v not in (None, "")
            }
            existing = conn.execute(
                select(document_metadata.c.file_id).where(document_metadata.c.file_id == file_id)
            ).first()
            if existing:
                if merged:
                    conn.execute(
                        update(document_metadata)
                        .where(document_metadata.c.file_id == file_id)
                        .values(**merged)
                    )
            elif merged:
                conn.execute(insert(document_metadata).values(file_id=file_id, **merged))

            rev = {k: v for k, v in revision_row.items() if k in _REVISION_FIELDS}
            rev.update(
                id=rev.get("id") or str(uuid4()),
                file_id=file_id,
                version=new_version,
                storage_path=storage_path,
                created_at=now,
            )
            conn.execute(insert(document_revisions).values(**rev))

            row = conn.execute(select(files).where(files.c.id == file_id)).mappings().one()
        return file_from_row(row)

    # Drafts
    def create_draft(self, draft_row: Dict[str, Any]) -> SplitDraft:
        now = _now()
        pages: List[PageEntry] = draft_row["pages"]
        draft_id = draft_row.get("id") or str(uuid4())
        with self.engine.begin() as conn:
            conn.execute(
                insert(split_drafts).values(
                    id=draft_id,
                    project_id=draft_row["project_id"],
                    uploader_id=draft_row["uploader_id"],
                    original_file_id=draft_row["original_file_id"],
                    status=draft_row.get("status", "DRAFT"),
                    total_pages=len(pages),
                    verified_count=compute_verified_count(pages),
                    pages=pages_to_json(pages),
                    created_at=draft_row.get("created_at") or now,
                    updated_at=now,
                )
            )
            row = conn.execute(
                select(split_drafts).where(split_drafts.c.id == draft_id)
            ).mappings().one()
        return draft_from_row(row)

    def get_draft(self, draft_id: str) -> Optional[SplitDraft]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(split_drafts).where(split_drafts.c.id == draft_id)
            ).mappings().first()
        return draft_from_row(row) if row else None

    def list_drafts(
        self,
        uploader_id: str,
        status: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> List[SplitDraft]:
        q = select(split_drafts).where(split_drafts.c.uploader_id == uploader_id)
        if status:
            q = q.where(split_drafts.c.status == status)
        if project_id:
            q = q.where(split_drafts.c.project_id == project_id)
        q = q.order_by(split_drafts.c.created_at.desc())

        with self.engine.begin() as conn:
            rows = conn.execute(q).mappings().all()
        return [draft_from_row(r) for r in rows]

    def find_open_draft_for_file(self, original_file_id: str) -> Optional[SplitDraft]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(split_drafts)
                .where(
                    split_drafts.c.original_file_id == original_file_id,
                    split_drafts.c.status == "DRAFT",
                )
                .order_by(split_drafts.c.created_at.desc())
                .limit(1)
            ).mappings().first()
        return draft_from_row(row) if row else None

    def update_draft_pages(self, draft_id: str, pages: List[PageEntry]) -> bool:
        with self.engine.begin() as conn:
            res = conn.execute(
                update(split_drafts)
                .where(split_drafts.c.id == draft_id, split_drafts.c.status == "DRAFT")
                .values(
                    pages=pages_to_json(pages),
                    verified_count=compute_verified_count(pages),
                    updated_at=_now(),
                )
            )
            return res.rowcount == 1

    def transition_draft_status(
        self,
        draft_id: str,
        from_statuses: Sequence[str],
        to_status: str,
    ) -> bool:
        with self.engine.begin() as conn:
            res = conn.execute(
                update(split_drafts)
                .where(
                    split_drafts.c.id == draft_id,
                    split_drafts.c.status.in_(list(from_statuses)),
                )
                .values(status=to_status, updated_at=_now())
            )
            return res.rowcount == 1

    # Notifications
    def create_notification(self, notification_row: Dict[str, Any]) -> Notification:
        values = dict(notification_row)
        values["id"] = values.get("id") or str(uuid4())
        values["data"] = json.dumps(values.get("data") or {})
        values["read"] = 1 if values.get("read") else 0
        values.setdefault("created_at", _now())
        with self.engine.begin() as conn:
            conn.execute(insert(notifications).values(**values))
            row = conn.execute(
                select(notifications).where(notifications.c.id == values["id"])
            ).mappings().one()
        return notification_from_row(row)

    def list_notifications(self, user_id: str) -> List[Notification]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(notifications)
                .where(notifications.c.user_id == user_id)
                .order_by(notifications.c.created_at.desc())
            ).mappings().all()
        return [notification_from_row(r) for r in rows]
