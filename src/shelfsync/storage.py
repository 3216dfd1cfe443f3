"""File-backed local storage for the library."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from .notify import ProgressCallback, ignore_progress

logger = logging.getLogger(__name__)

MANIFEST_NAME = "books.json"
CONFIG_NAME = "config.json"
COVER_NAME = "cover.png"
PAGES_NAME = "pages.json"


class StorageArea(Enum):
    """Scope a path is resolved against."""

    BOOKS = "Books"
    NONE = "None"


@dataclass(frozen=True)
class Entry:
    path: str
    is_dir: bool


class LocalStorage:
    """Reads and writes library files below ``root``.

    Paths in the ``BOOKS`` area are relative to the library root, paths in
    the ``NONE`` area are taken as they are (files picked by the user).
    """

    def __init__(self, root: Path) -> None:
        self.root = root.expanduser()

    def resolve(self, path: str, area: StorageArea = StorageArea.BOOKS) -> Path:
        if area is StorageArea.NONE:
            return Path(path).expanduser()
        return self.root / path

    def exists(self, path: str, area: StorageArea = StorageArea.BOOKS) -> bool:
        return self.resolve(path, area).exists()

    def read_bytes(self, path: str, area: StorageArea = StorageArea.BOOKS) -> bytes:
        return self.resolve(path, area).read_bytes()

    def read_text(self, path: str, area: StorageArea = StorageArea.BOOKS) -> str:
        return self.resolve(path, area).read_text(encoding="utf-8")

    def write(
        self,
        path: str,
        data: Union[bytes, str],
        area: StorageArea = StorageArea.BOOKS,
        *,
        overwrite: bool = True,
    ) -> bool:
        """Write ``data`` and return whether anything was written."""

        target = self.resolve(path, area)
        if not overwrite and target.exists():
            return False
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            target.write_text(data, encoding="utf-8")
        else:
            target.write_bytes(data)
        return True

    def create_dir(self, path: str, area: StorageArea = StorageArea.BOOKS) -> None:
        self.resolve(path, area).mkdir(parents=True, exist_ok=True)

    def list_dir(self, path: str = "", area: StorageArea = StorageArea.BOOKS, depth: int = 1) -> List[Entry]:
        base = self.resolve(path, area)
        if not base.is_dir():
            return []
        entries: List[Entry] = []
        self._walk(base, base, depth, entries)
        return entries

    def _walk(self, base: Path, current: Path, depth: int, entries: List[Entry]) -> None:
        for child in sorted(current.iterdir()):
            entries.append(Entry(child.relative_to(base).as_posix(), child.is_dir()))
            if child.is_dir() and depth > 1:
                self._walk(base, child, depth - 1, entries)

    def remove(self, path: str, area: StorageArea = StorageArea.BOOKS) -> None:
        target = self.resolve(path, area)
        if target.is_dir():
            shutil.rmtree(target)
        elif target.exists():
            target.unlink()


def migrate_library(
    storage: LocalStorage,
    new_root: Path,
    on_update: Optional[ProgressCallback] = None,
) -> LocalStorage:
    """Copy the library into ``new_root`` and return storage rooted there.

    Only the manifest level and the per-book directories are copied.
    """

    on_update = on_update or ignore_progress
    target = LocalStorage(new_root)
    if target.root.resolve() == storage.root.resolve():
        return storage

    on_update("Migrating local books...")
    for entry in storage.list_dir(""):
        if not entry.is_dir:
            target.write(entry.path, storage.read_bytes(entry.path))
            continue
        target.create_dir(entry.path)
        for child in storage.list_dir(entry.path):
            if child.is_dir:
                continue
            child_path = f"{entry.path}/{child.path}"
            if child.path.endswith(".epub"):
                on_update(f"Migrating book {child.path}...")
            target.write(child_path, storage.read_bytes(child_path))
    logger.info("Migrated library from %s to %s", storage.root, target.root)
    return target
