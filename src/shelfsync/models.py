"""Data models for the book library and per-book reading state."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

BOOK_TYPE_EPUB = "EPUB"


def now_ms() -> int:
    """Current time in milliseconds since the epoch."""

    return int(time.time() * 1000)


@dataclass
class Book:
    """One row of the library manifest, identified by its content hash."""

    hash: str
    name: str
    author: str = ""
    ts: int = 0
    type: str = BOOK_TYPE_EPUB
    removed: bool = False
    cover: Optional[str] = None

    @property
    def body_filename(self) -> str:
        return f"{self.name.replace('/', '_')}.epub"

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "Book":
        return cls(
            hash=str(data["hash"]),
            name=str(data.get("name") or ""),
            author=str(data.get("author") or ""),
            ts=int(data.get("ts") or 0),
            type=str(data.get("type") or BOOK_TYPE_EPUB),
            removed=bool(data.get("removed", False)),
            cover=data.get("cover") or None,
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "hash": self.hash,
            "type": self.type,
            "name": self.name,
            "author": self.author,
            "ts": self.ts,
        }
        if self.removed:
            data["removed"] = True
        if self.cover:
            data["cover"] = self.cover
        return data


@dataclass
class BookNote:
    """A highlight, annotation or bookmark keyed by its content locator.

    ``cfi`` is the full range locator while ``start`` and ``end`` are the
    point locators of the range bounds. ``removed`` holds the deletion
    timestamp when the note is a tombstone.
    """

    cfi: str
    start: str
    end: str
    page: int = 0
    text: Optional[str] = None
    annotation: Optional[str] = None
    modified: int = 0
    removed: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "BookNote":
        removed = data.get("removed")
        return cls(
            cfi=str(data["cfi"]),
            start=str(data.get("start") or data["cfi"]),
            end=str(data.get("end") or data["cfi"]),
            page=int(data.get("page") or 0),
            text=data.get("text"),
            annotation=data.get("annotation"),
            modified=int(data.get("modified") or 0),
            removed=int(removed) if removed else None,
        )

    def to_mapping(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "cfi": self.cfi,
            "start": self.start,
            "end": self.end,
            "page": self.page,
            "modified": self.modified,
        }
        if self.text is not None:
            data["text"] = self.text
        if self.annotation is not None:
            data["annotation"] = self.annotation
        if self.removed:
            data["removed"] = self.removed
        return data


@dataclass
class Bookshelf:
    """Bookshelf assignment; a ``value`` of ``None`` is the default shelf."""

    value: Optional[str]
    ts: int = 0

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> Optional["Bookshelf"]:
        if not data:
            return None
        return cls(value=data.get("value"), ts=int(data.get("ts") or 0))

    def to_mapping(self) -> Dict[str, Any]:
        return {"value": self.value, "ts": self.ts}


@dataclass
class BookConfig:
    """Reading state for a single book.

    ``progress`` never leaves the device, ``last_progress`` is the synced
    value used for conflict comparison. ``removed_ts`` maps locators to
    deletion timestamps and only lives in the remote copy of the document.
    """

    ts: Optional[int] = None
    progress: float = 0
    last_progress: Optional[float] = None
    notes: List[BookNote] = field(default_factory=list)
    bookmarks: List[BookNote] = field(default_factory=list)
    bookshelf: Optional[Bookshelf] = None
    removed_ts: Optional[Dict[str, int]] = None

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "BookConfig":
        removed_ts = data.get("removedTs")
        last_progress = data.get("lastProgress")
        return cls(
            ts=int(data["ts"]) if data.get("ts") else None,
            progress=data.get("progress") or 0,
            last_progress=last_progress,
            notes=[BookNote.from_mapping(item) for item in data.get("notes") or []],
            bookmarks=[BookNote.from_mapping(item) for item in data.get("bookmarks") or []],
            bookshelf=Bookshelf.from_mapping(data.get("bookshelf")),
            removed_ts={str(k): int(v) for k, v in removed_ts.items()} if removed_ts else None,
        )

    def to_mapping(self, *, include_removed_ts: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "progress": self.progress,
            "notes": [note.to_mapping() for note in self.notes],
            "bookmarks": [note.to_mapping() for note in self.bookmarks],
        }
        if self.ts is not None:
            data["ts"] = self.ts
        if self.last_progress is not None:
            data["lastProgress"] = self.last_progress
        if self.bookshelf is not None:
            data["bookshelf"] = self.bookshelf.to_mapping()
        if include_removed_ts and self.removed_ts is not None:
            data["removedTs"] = dict(self.removed_ts)
        return data


@dataclass
class BookContent:
    """Everything a reader needs to open a book."""

    content: bytes
    config: BookConfig
    pages: Optional[str] = None
