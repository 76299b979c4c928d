from datetime import datetime

import pytest

from dictanote.errors import StorageError
from dictanote.models import SourceType
from dictanote.repository import NoteRepository
from dictanote.storage import (
    BlobStore,
    build_export_basename,
    ensure_structure,
    timestamp_slug,
)


def test_timestamp_slug_format():
    slug = timestamp_slug()
    assert len(slug) == 10
    assert slug.count("-") == 2


def test_build_export_basename():
    name = build_export_basename("Client Interview", datetime(2026, 3, 4))
    assert name == "2026-03-04--Client-Interview"


def test_ensure_structure_creates_folders(tmp_path):
    paths = ensure_structure(str(tmp_path))
    for key in ("audio", "documents", "notes", "exports", "logs"):
        assert (tmp_path / key).is_dir()
    assert paths["notes"] == str(tmp_path / "notes")


def test_blob_store_put_get_delete(tmp_path):
    store = BlobStore(str(tmp_path / "audio"))

    ref = store.put(b"abc", "alice", "note1", "ogg")

    assert ref == "alice/note1.ogg"
    assert store.read(ref) == b"abc"
    assert store.get(ref).startswith("file://")
    assert store.delete(ref) is True
    assert store.delete(ref) is False
    with pytest.raises(StorageError):
        store.get(ref)


def test_blob_store_rejects_paths_outside_bucket(tmp_path):
    store = BlobStore(str(tmp_path / "audio"))
    with pytest.raises(StorageError):
        store.read("../secret.txt")


def test_repository_create_update_and_list(tmp_path):
    repo = NoteRepository(str(tmp_path))
    first = repo.create({"owner_id": "alice", "title": "One"})
    repo.create({"owner_id": "bob", "title": "Other"})

    updated = repo.update(first.id, {"summary": "Short", "detailed_note": None})

    assert updated.summary == "Short"
    assert updated.detailed_note == ""
    assert updated.created_at == first.created_at
    assert [n.title for n in repo.list_for_user("alice")] == ["One"]
    assert repo.get(first.id).source_type == SourceType.AUDIO


def test_repository_update_ignores_read_only_fields(tmp_path):
    repo = NoteRepository(str(tmp_path))
    note = repo.create({"owner_id": "alice"})

    updated = repo.update(note.id, {"id": "other", "title": "Kept"})

    assert updated.id == note.id
    assert updated.title == "Kept"


def test_repository_rejects_unknown_fields(tmp_path):
    repo = NoteRepository(str(tmp_path))
    with pytest.raises(ValueError):
        repo.create({"owner_id": "alice", "color": "red"})


def test_repository_update_missing_note(tmp_path):
    repo = NoteRepository(str(tmp_path))
    with pytest.raises(StorageError):
        repo.update("missing", {"title": "x"})
    assert repo.get("missing") is None
    assert repo.delete("missing") is False
