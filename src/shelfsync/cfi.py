"""Parsing, building and ordering of EPUB canonical fragment identifiers."""
from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

from .models import BookNote

CFI_PREFIX = "epubcfi("
CFI_SUFFIX = ")"

ASSERTION_PATTERN = re.compile(r"\[(?:\^.|[^\]\^])*\]")
STEP_PATTERN = re.compile(r"/(\d+)")
OFFSET_PATTERN = re.compile(r":(\d+)")

CfiKey = Tuple[Tuple[int, ...], int]


def _unwrap(cfi: str) -> str:
    value = cfi.strip()
    if value.startswith(CFI_PREFIX) and value.endswith(CFI_SUFFIX):
        value = value[len(CFI_PREFIX) : -len(CFI_SUFFIX)]
    return value


def _split_top_level(body: str) -> List[str]:
    """Split on commas that are not inside an ``[...]`` assertion."""

    parts: List[str] = []
    depth = 0
    current: List[str] = []
    escaped = False
    for char in body:
        if escaped:
            current.append(char)
            escaped = False
            continue
        if char == "^":
            escaped = True
            current.append(char)
            continue
        if char == "[":
            depth += 1
        elif char == "]":
            depth = max(depth - 1, 0)
        elif char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def is_range(cfi: str) -> bool:
    return len(_split_top_level(_unwrap(cfi))) == 3


def split_cfi(cfi: str) -> Tuple[str, str]:
    """Return the point locators for the start and end of a range CFI.

    A point CFI is returned as both start and end.
    """

    parts = _split_top_level(_unwrap(cfi))
    if len(parts) != 3:
        point = wrap(parts[0])
        return point, point
    parent, start, end = parts
    return wrap(parent + start), wrap(parent + end)


def wrap(body: str) -> str:
    return f"{CFI_PREFIX}{body}{CFI_SUFFIX}"


def build_point(spine_steps: Sequence[int], spine_id: Optional[str], path: Sequence[int], offset: int) -> str:
    """Build ``epubcfi(/6/4[id]!/4/2/1:10)`` from step indices."""

    return wrap(_package_part(spine_steps, spine_id) + "!" + _steps(path) + f":{offset}")


def build_range(
    spine_steps: Sequence[int],
    spine_id: Optional[str],
    start_path: Sequence[int],
    start_offset: int,
    end_path: Sequence[int],
    end_offset: int,
) -> str:
    """Build a range CFI whose parent is the deepest step shared by both ends."""

    common = 0
    # The terminal step always addresses a text node, keep it out of the parent.
    limit = min(len(start_path), len(end_path)) - 1
    while common < limit and start_path[common] == end_path[common]:
        common += 1
    parent = _package_part(spine_steps, spine_id) + "!" + _steps(start_path[:common])
    start = _steps(start_path[common:]) + f":{start_offset}"
    end = _steps(end_path[common:]) + f":{end_offset}"
    return wrap(f"{parent},{start},{end}")


def _package_part(spine_steps: Sequence[int], spine_id: Optional[str]) -> str:
    text = _steps(spine_steps)
    if spine_id:
        text += f"[{spine_id}]"
    return text


def _steps(path: Sequence[int]) -> str:
    return "".join(f"/{step}" for step in path)


def parse_key(cfi: str) -> CfiKey:
    """Reduce a CFI to a sortable key of step indices and a character offset.

    Ranges are reduced to their start point. Assertions, temporal and spatial
    offsets are ignored.
    """

    start, _ = split_cfi(cfi)
    body = ASSERTION_PATTERN.sub("", _unwrap(start))
    body = re.split(r"[~@]", body, maxsplit=1)[0]
    offset = 0
    match = OFFSET_PATTERN.search(body)
    if match:
        offset = int(match.group(1))
        body = body[: match.start()]
    steps = tuple(int(step) for step in STEP_PATTERN.findall(body))
    return steps, offset


def compare(left: str, right: str) -> int:
    """Compare two CFIs, returning -1, 0 or 1."""

    left_key = parse_key(left)
    right_key = parse_key(right)
    if left_key < right_key:
        return -1
    if left_key > right_key:
        return 1
    return 0


def compare_notes(local: Optional[BookNote], remote: Optional[BookNote]) -> int:
    """Order two list heads by their range start.

    Full ranges are never compared since end points cannot be ordered
    reliably. A missing operand sorts after the other one so a merge pass can
    drain whichever list remains.
    """

    if local is None:
        return 1
    if remote is None:
        return -1
    return compare(local.start, remote.start)


def sort_notes(notes: List[BookNote]) -> List[BookNote]:
    return sorted(notes, key=lambda note: parse_key(note.start))
