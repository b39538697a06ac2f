# services/api/core/drive_client.py
from __future__ import annotations
import logging
import os
import json
from io import BytesIO
from typing import Dict, List, Optional, Tuple
from pathlib import Path

from google.oauth2.credentials import Credentials as UserCredentials
from google.auth.transport.requests import Request
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

from core.errors import BlobExistsError, BlobStoreError

logger = logging.getLogger(__name__)

_drive_service = None

# We only need "drive.file" – upload + manage files created by this app
SCOPES = ["https://www.googleapis.com/auth/drive.file"]

# Paths relative to services/api/
BASE_DIR = Path(__file__).resolve().parent.parent
CREDS_DIR = BASE_DIR / "creds"
TOKEN_FILE = CREDS_DIR / "drive_token.json"

FOLDER_MIME = "application/vnd.google-apps.folder"


def _is_transient(exc: BaseException) -> bool:
    """429 / 5xx from Drive are worth another try; everything else is not."""
    if isinstance(exc, HttpError):
        status = getattr(exc.resp, "status", None)
        return status in (429, 500, 502, 503, 504)
    return False


def retry_drive_api(func):
    """Retry Drive API calls with exponential backoff on transient HTTP errors."""
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def _get_drive_credentials() -> UserCredentials:
    """
    Load user OAuth credentials.

    Priority:
    1) If DRIVE_TOKEN_JSON env var is set (prod), use that.
    2) Else, fall back to local creds/drive_token.json (dev).
    """
    token_env = os.getenv("DRIVE_TOKEN_JSON")

    if token_env:
        try:
            info = json.loads(token_env)
            creds = UserCredentials.from_authorized_user_info(info, SCOPES)
        except Exception as e:
            logger.exception("Failed to load DRIVE_TOKEN_JSON from env: %s", e)
            raise
    else:
        if not TOKEN_FILE.exists():
            msg = (
                f"Drive token not found in env or at {TOKEN_FILE}. "
                "Set DRIVE_TOKEN_JSON to an authorized-user token."
            )
            logger.error(msg)
            raise RuntimeError(msg)

        creds = UserCredentials.from_authorized_user_file(str(TOKEN_FILE), SCOPES)

    # Refresh if expired and we have a refresh token
    if creds.expired and creds.refresh_token:
        try:
            logger.info("Refreshing Google Drive OAuth token...")
            creds.refresh(Request())

            # file-based creds (dev): persist refreshed token
            if not token_env:
                CREDS_DIR.mkdir(parents=True, exist_ok=True)
                TOKEN_FILE.write_text(creds.to_json())
        except Exception as e:
            logger.exception("Failed to refresh Drive OAuth token: %s", e)
            raise

    return creds


def get_drive_service():
    """
    Lazily construct and cache a Google Drive v3 service client.
    """
    global _drive_service
    if _drive_service is None:
        creds = _get_drive_credentials()
        _drive_service = build(
            "drive",
            "v3",
            credentials=creds,
            cache_discovery=False,
        )
        logger.info("Initialized Google Drive client using OAuth user credentials.")
    return _drive_service


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def split_blob_path(path: str) -> Tuple[List[str], str]:
    """
    "p1/drawings/civil/x.pdf" -> (["p1", "drawings", "civil"], "x.pdf")
    """
    parts = [p for p in (path or "").strip().split("/") if p.strip()]
    if not parts:
        raise BlobStoreError("Empty storage path")
    return parts[:-1], parts[-1]


class DriveBlobStore:
    """
    Blob store backed by a Google Drive folder tree.

    Each "/"-separated path segment maps to one folder under the root folder;
    the last segment is the file name. Folder ids are cached per process.
    """

    def __init__(self, service, root_folder_id: str):
        self.service = service
        self.root_folder_id = root_folder_id
        self._folder_cache: Dict[Tuple[str, str], str] = {}

    @classmethod
    def from_settings(cls, settings) -> "DriveBlobStore":
        service = get_drive_service()
        root_id = (settings.gdrive_root_folder_id or "").strip()
        store = cls(service, root_id)
        if not root_id:
            store.root_folder_id = store._ensure_folder(
                settings.gdrive_root_folder_name or "Drawing_Split", parent_id=None
            )
        return store

    @retry_drive_api
    def _find_child(self, name: str, parent_id: Optional[str], folder: bool) -> Optional[str]:
        clauses = [f"name = '{_escape(name)}'", "trashed = false"]
        if folder:
            clauses.append(f"mimeType = '{FOLDER_MIME}'")
        else:
            clauses.append(f"mimeType != '{FOLDER_MIME}'")
        if parent_id:
            clauses.append(f"'{parent_id}' in parents")

        result = self.service.files().list(
            q=" and ".join(clauses),
            spaces="drive",
            fields="files(id, name)",
            pageSize=1,
        ).execute()
        found = result.get("files", [])
        return found[0]["id"] if found else None

    @retry_drive_api
    def _create_folder(self, name: str, parent_id: Optional[str]) -> str:
        body = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            body["parents"] = [parent_id]
        created = self.service.files().create(body=body, fields="id").execute()
        return created["id"]

    def _ensure_folder(self, name: str, parent_id: Optional[str]) -> str:
        """Find (or create) a folder with given name under parent_id."""
        key = (parent_id or "", name)
        cached = self._folder_cache.get(key)
        if cached:
            return cached

        folder_id = self._find_child(name, parent_id, folder=True)
        if not folder_id:
            folder_id = self._create_folder(name, parent_id)
        self._folder_cache[key] = folder_id
        return folder_id

    def _folder_for(self, segments: List[str], create: bool) -> Optional[str]:
        parent = self.root_folder_id
        for seg in segments:
            if create:
                parent = self._ensure_folder(seg, parent)
            else:
                cached = self._folder_cache.get((parent or "", seg))
                parent = cached or self._find_child(seg, parent, folder=True)
                if not parent:
                    return None
        return parent

    def _file_id(self, path: str) -> Optional[str]:
        segments, name = split_blob_path(path)
        folder_id = self._folder_for(segments, create=False)
        if folder_id is None:
            return None
        return self._find_child(name, folder_id, folder=False)

    def upload(self, path: str, data: bytes, content_type: str = "application/pdf") -> str:
        segments, name = split_blob_path(path)
        try:
            folder_id = self._folder_for(segments, create=True)
            if self._find_child(name, folder_id, folder=False):
                raise BlobExistsError(f"Blob already exists: {path}")
            self._upload_media(name, folder_id, data, content_type)
        except HttpError as e:
            logger.exception("[drive] upload failed for %s", path)
            raise BlobStoreError(f"Drive upload failed for {path}: {e}") from e

        logger.info("[drive] stored %s (%d bytes)", path, len(data))
        return path

    @retry_drive_api
    def _upload_media(self, name: str, folder_id: Optional[str], data: bytes, content_type: str) -> str:
        media = MediaIoBaseUpload(BytesIO(data), mimetype=content_type, resumable=False)
        body = {"name": name}
        if folder_id:
            body["parents"] = [folder_id]
        created = self.service.files().create(body=body, media_body=media, fields="id").execute()
        return created["id"]

    def download(self, path: str) -> bytes:
        try:
            file_id = self._file_id(path)
            if not file_id:
                raise BlobStoreError(f"Blob not found: {path}")
            return self._download_media(file_id)
        except HttpError as e:
            raise BlobStoreError(f"Drive download failed for {path}: {e}") from e

    @retry_drive_api
    def _download_media(self, file_id: str) -> bytes:
        buf = BytesIO()
        downloader = MediaIoBaseDownload(buf, self.service.files().get_media(fileId=file_id))
        done = False
        while not done:
            _, done = downloader.next_chunk()
        return buf.getvalue()

    def delete(self, path: str) -> None:
        try:
            file_id = self._file_id(path)
            if file_id:
                self.service.files().delete(fileId=file_id).execute()
        except HttpError as e:
            raise BlobStoreError(f"Drive delete failed for {path}: {e}") from e

    def exists(self, path: str) -> bool:
        try:
            return self._file_id(path) is not None
        except HttpError as e:
            raise BlobStoreError(f"Drive lookup failed for {path}: {e}") from e
