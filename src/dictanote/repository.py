"""Note persistence."""

from __future__ import annotations

import json
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

from .errors import StorageError
from .models import NOTE_TEXT_FIELDS, Note, SourceType, now_iso

logger = logging.getLogger(__name__)

_READ_ONLY = {"id", "created_at", "updated_at"}


class NoteRepository:
    """Notes stored as one JSON document each under ``root``."""

    def __init__(self, root: str) -> None:
        self.root = Path(root)

    def _path(self, note_id: str) -> Path:
        if not note_id or os.sep in note_id or "/" in note_id or note_id.startswith("."):
            raise StorageError(f"Invalid note id: {note_id!r}")
        return self.root / f"{note_id}.json"

    def _write(self, note: Note) -> None:
        path = self._path(note.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            with open(tmp, "w", encoding="utf-8") as handle:
                json.dump(note.to_dict(), handle, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except OSError as exc:
            raise StorageError(f"Could not save note {note.id}: {exc}") from exc

    def _check_fields(self, partial: dict) -> None:
        unknown = set(partial) - set(Note.field_names())
        if unknown:
            raise ValueError(f"Unknown note fields: {sorted(unknown)}")

    def create(self, partial: dict) -> Note:
        self._check_fields(partial)
        values = {k: v for k, v in partial.items() if k not in _READ_ONLY}
        stamp = now_iso()
        note = Note(id=uuid.uuid4().hex, created_at=stamp, updated_at=stamp, **values)
        self._write(note)
        logger.info("Created note %s", note.id)
        return note

    def get(self, note_id: str) -> Optional[Note]:
        path = self._path(note_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return Note.from_dict(json.load(handle))
        except (OSError, ValueError) as exc:
            raise StorageError(f"Could not read note {note_id}: {exc}") from exc

    def update(self, note_id: str, partial: dict) -> Note:
        self._check_fields(partial)
        note = self.get(note_id)
        if note is None:
            raise StorageError(f"Note {note_id} does not exist.")
        for key, value in partial.items():
            if key in _READ_ONLY:
                continue
            if key in NOTE_TEXT_FIELDS and value is None:
                value = ""
            elif key == "source_type":
                value = SourceType(value)
            setattr(note, key, value)
        note.updated_at = now_iso()
        self._write(note)
        logger.debug("Updated note %s: %s", note_id, sorted(partial))
        return note

    def delete(self, note_id: str) -> bool:
        path = self._path(note_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Could not delete note {note_id}: {exc}") from exc
        logger.info("Deleted note %s", note_id)
        return True

    def list_for_user(self, owner_id: str) -> List[Note]:
        if not self.root.exists():
            return []
        notes = []
        for path in self.root.glob("*.json"):
            note = self.get(path.stem)
            if note is not None and note.owner_id == owner_id:
                notes.append(note)
        return sorted(notes, key=lambda n: (n.created_at, n.id), reverse=True)
