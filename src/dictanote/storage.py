"""Blob storage and directory layout."""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^\w\-.]+")


def timestamp_slug(dt: datetime | None = None) -> str:
    now = dt or datetime.now()
    return now.strftime("%Y-%m-%d")


def safe_name(value: str, max_len: int = 80) -> str:
    cleaned = _UNSAFE.sub("-", (value or "").strip()).strip("-.")
    return cleaned[:max_len] or "note"


def build_export_basename(title: str, dt: datetime | None = None) -> str:
    return f"{timestamp_slug(dt)}--{safe_name(title)}"


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def ensure_structure(base_dir: str) -> dict:
    root = base_dir or os.getcwd()
    paths = {
        "root": root,
        "audio": os.path.join(root, "audio"),
        "documents": os.path.join(root, "documents"),
        "notes": os.path.join(root, "notes"),
        "exports": os.path.join(root, "exports"),
        "logs": os.path.join(root, "logs"),
    }
    for path in paths.values():
        ensure_dir(path)
    return paths


class BlobStore:
    """One bucket of binary objects stored as ``<owner>/<note_id>.<ext>``."""

    def __init__(self, root: str) -> None:
        self.root = Path(root).resolve()

    def _path(self, path_ref: str) -> Path:
        target = (self.root / path_ref).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Path outside bucket: {path_ref}")
        return target

    def put(self, data: bytes, owner_id: str, note_id: str, extension: str) -> str:
        path_ref = f"{safe_name(owner_id)}/{safe_name(note_id)}.{extension.lstrip('.')}"
        target = self._path(path_ref)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, target)
        except OSError as exc:
            raise StorageError(f"Could not store {path_ref}: {exc}") from exc
        logger.info("Stored %s (%s bytes)", path_ref, len(data))
        return path_ref

    def get(self, path_ref: str) -> str:
        target = self._path(path_ref)
        if not target.is_file():
            raise StorageError(f"No such object: {path_ref}")
        return target.as_uri()

    def read(self, path_ref: str) -> bytes:
        try:
            return self._path(path_ref).read_bytes()
        except OSError as exc:
            raise StorageError(f"Could not read {path_ref}: {exc}") from exc

    def delete(self, path_ref: str) -> bool:
        target = self._path(path_ref)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Could not delete {path_ref}: {exc}") from exc
        logger.info("Deleted %s", path_ref)
        return True
