"""
Tests for the local and Google Drive blob stores.
"""
import re
from types import SimpleNamespace

import pytest
from googleapiclient.errors import HttpError

from core.blob_store import LocalBlobStore, make_blob_store
from core.drive_client import FOLDER_MIME, DriveBlobStore, _is_transient, split_blob_path
from core.errors import BlobExistsError, BlobStoreError


class TestLocalBlobStore:
    def test_roundtrip(self, blobs):
        blobs.upload("p1/drawings/civil/a.pdf", b"%PDF-a")
        assert blobs.exists("p1/drawings/civil/a.pdf")
        assert blobs.download("p1/drawings/civil/a.pdf") == b"%PDF-a"

    def test_never_overwrites(self, blobs):
        blobs.upload("p1/a.pdf", b"first")
        with pytest.raises(BlobExistsError):
            blobs.upload("p1/a.pdf", b"second")
        assert blobs.download("p1/a.pdf") == b"first"

    def test_missing_blob(self, blobs):
        with pytest.raises(BlobStoreError) as exc:
            blobs.download("p1/missing.pdf")
        assert exc.value.message == "Blob not found: p1/missing.pdf"

    def test_delete_missing_is_quiet(self, blobs):
        blobs.delete("p1/never-there.pdf")

    @pytest.mark.parametrize("path", ["", "   ", "../outside.pdf", "p1/../../outside.pdf"])
    def test_rejects_bad_paths(self, blobs, path):
        with pytest.raises(BlobStoreError):
            blobs.upload(path, b"x")

    def test_factory(self, tmp_path):
        settings = SimpleNamespace(blob_backend="local", blob_root_dir=str(tmp_path / "b"))
        assert isinstance(make_blob_store(settings), LocalBlobStore)

        with pytest.raises(ValueError):
            make_blob_store(SimpleNamespace(blob_backend="s3", blob_root_dir=""))


# ---- Drive ------------------------------------------------------------------

class _Call:
    def __init__(self, fn):
        self.fn = fn

    def execute(self):
        return self.fn()


class FakeDriveFiles:
    """Just enough of drive.files() for folder lookups, uploads and deletes."""

    def __init__(self):
        self.items = {}
        self.next_id = 0
        self.list_calls = 0

    def _new_id(self):
        self.next_id += 1
        return f"id{self.next_id}"

    def list(self, q, spaces=None, fields=None, pageSize=None):
        self.list_calls += 1
        name = re.search(r"name = '((?:[^'\\]|\\.)*)'", q).group(1).replace("\\'", "'")
        parent = re.search(r"'([^']+)' in parents", q)
        want_folder = f"mimeType = '{FOLDER_MIME}'" in q

        def run():
            found = [
                {"id": fid, "name": item["name"]}
                for fid, item in self.items.items()
                if item["name"] == name
                and (item["mimeType"] == FOLDER_MIME) == want_folder
                and (parent is None or parent.group(1) in item["parents"])
            ]
            return {"files": found[:1]}

        return _Call(run)

    def create(self, body, fields=None, media_body=None):
        def run():
            fid = self._new_id()
            data = media_body.getbytes(0, media_body.size()) if media_body is not None else None
            self.items[fid] = {
                "name": body["name"],
                "mimeType": body.get("mimeType", "application/pdf"),
                "parents": body.get("parents", []),
                "data": data,
            }
            return {"id": fid}

        return _Call(run)

    def delete(self, fileId):
        return _Call(lambda: self.items.pop(fileId))


class FakeDriveService:
    def __init__(self):
        self._files = FakeDriveFiles()

    def files(self):
        return self._files


@pytest.fixture
def drive():
    service = FakeDriveService()
    return DriveBlobStore(service, "root"), service._files


class TestDriveBlobStore:
    def test_upload_creates_folder_tree(self, drive):
        store, files = drive
        store.upload("p1/drawings/civil/a.pdf", b"%PDF-a")

        folders = {i["name"]: i for i in files.items.values() if i["mimeType"] == FOLDER_MIME}
        assert set(folders) == {"p1", "drawings", "civil"}
        assert folders["p1"]["parents"] == ["root"]

        [stored] = [i for i in files.items.values() if i["name"] == "a.pdf"]
        assert stored["data"] == b"%PDF-a"
        assert store.exists("p1/drawings/civil/a.pdf")

    def test_folders_are_cached(self, drive):
        store, files = drive
        store.upload("p1/drawings/a.pdf", b"a")
        calls = files.list_calls
        store.upload("p1/drawings/b.pdf", b"b")
        # only the existence check for the new file
        assert files.list_calls == calls + 1

    def test_never_overwrites(self, drive):
        store, _ = drive
        store.upload("p1/a.pdf", b"a")
        with pytest.raises(BlobExistsError):
            store.upload("p1/a.pdf", b"b")

    def test_delete_and_missing(self, drive):
        store, _ = drive
        store.upload("p1/a.pdf", b"a")
        store.delete("p1/a.pdf")
        assert not store.exists("p1/a.pdf")
        assert not store.exists("nowhere/a.pdf")
        with pytest.raises(BlobStoreError):
            store.download("nowhere/a.pdf")

    def test_http_errors_become_blob_errors(self, drive):
        store, files = drive

        def forbidden(*args, **kwargs):
            raise HttpError(SimpleNamespace(status=403, reason="Forbidden"), b"")

        files.list = forbidden
        with pytest.raises(BlobStoreError):
            store.upload("p1/a.pdf", b"a")


def test_is_transient():
    def err(status):
        return HttpError(SimpleNamespace(status=status, reason="x"), b"")

    assert _is_transient(err(429))
    assert _is_transient(err(503))
    assert not _is_transient(err(404))
    assert not _is_transient(ValueError("nope"))


def test_split_blob_path():
    assert split_blob_path("p1/drawings/civil/x.pdf") == (["p1", "drawings", "civil"], "x.pdf")
    assert split_blob_path("x.pdf") == ([], "x.pdf")
    with pytest.raises(BlobStoreError):
        split_blob_path(" / ")
