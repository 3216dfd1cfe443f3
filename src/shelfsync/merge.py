"""Merging of a book's local and remote reading state."""
from __future__ import annotations

from typing import Optional

from .models import BookConfig, Bookshelf, now_ms
from .notes import merge_notes


def _bookshelf_ts(bookshelf: Optional[Bookshelf]) -> int:
    return bookshelf.ts if bookshelf else 0


def merge_config(local: BookConfig, remote: BookConfig) -> BookConfig:
    """Merge ``remote`` into ``local`` and return ``local``.

    Notes and bookmarks share the remote tombstone map, which is updated with
    any tombstone found during the merge and attached to the result so it can
    be written back to the remote copy. No I/O happens here.
    """

    current = now_ms()
    local_ts = local.ts or current
    remote_ts = remote.ts or current
    if remote.removed_ts is None:
        remote.removed_ts = {}
    if local.last_progress is None:
        local.last_progress = local.progress
    if remote.last_progress is None:
        remote.last_progress = remote.progress

    local.ts = max(local_ts, remote_ts)
    local.last_progress = local.last_progress if local_ts > remote_ts else remote.last_progress
    local.notes = merge_notes(local.notes, remote.notes, remote.removed_ts)
    local.bookmarks = merge_notes(local.bookmarks, remote.bookmarks, remote.removed_ts)

    if _bookshelf_ts(local.bookshelf) < _bookshelf_ts(remote.bookshelf):
        local.bookshelf = remote.bookshelf

    local.removed_ts = remote.removed_ts
    return local
