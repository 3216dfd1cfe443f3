"""Two-way merge of note and bookmark lists ordered by content locator."""
from __future__ import annotations

from typing import List, Mapping, MutableMapping, Optional, Sequence

from .cfi import compare_notes
from .models import BookNote


def _suppressed(note: BookNote, removed_ts: Mapping[str, int]) -> bool:
    stamp = removed_ts.get(note.cfi)
    return stamp is not None and stamp >= note.modified


def merge_notes(
    local_notes: Sequence[BookNote],
    remote_notes: Sequence[BookNote],
    removed_ts: MutableMapping[str, int],
) -> List[BookNote]:
    """Merge two locator-sorted note lists into one.

    When both heads start at the same locator the more recently modified one
    is taken first. Tombstones are never emitted; their deletion time is
    folded into ``removed_ts`` (updated in place) and suppresses any version
    of the note modified at or before that time, including one already
    emitted earlier in the pass. A second live version at the
    locator of the previously emitted note only pushes its ``modified``
    forward. The result keeps the input ordering.
    """

    merged: List[BookNote] = []
    local_index = 0
    remote_index = 0
    previous: Optional[BookNote] = None

    while local_index < len(local_notes) or remote_index < len(remote_notes):
        local = local_notes[local_index] if local_index < len(local_notes) else None
        remote = remote_notes[remote_index] if remote_index < len(remote_notes) else None

        order = compare_notes(local, remote)
        if order == 0:
            assert local is not None and remote is not None
            if local.modified < remote.modified:
                picked = remote
                remote_index += 1
            else:
                picked = local
                local_index += 1
        elif order > 0:
            assert remote is not None
            picked = remote
            remote_index += 1
        else:
            assert local is not None
            picked = local
            local_index += 1

        if picked.removed:
            removed_ts[picked.cfi] = max(picked.removed, removed_ts.get(picked.cfi, 0))
            if previous is not None and previous.cfi == picked.cfi and _suppressed(previous, removed_ts):
                merged.pop()
                previous = merged[-1] if merged else None
            continue

        if _suppressed(picked, removed_ts):
            continue

        if previous is not None and compare_notes(previous, picked) == 0:
            previous.modified = max(previous.modified, picked.modified)
            continue

        merged.append(picked)
        previous = picked

    return merged


def tombstone(note: BookNote, when: int) -> BookNote:
    """Mark ``note`` as deleted at ``when`` and return it."""

    note.removed = when
    note.modified = max(note.modified, when)
    return note

