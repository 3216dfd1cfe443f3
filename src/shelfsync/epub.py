"""Reading EPUB containers: metadata, cover, page locations and text search."""
from __future__ import annotations

import io
import json
import posixpath
import re
import zipfile
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote

from lxml import etree

from . import cfi

CONTAINER_PATH = "META-INF/container.xml"
CONTAINER_NS = "urn:oasis:names:tc:opendocument:xmlns:container"
OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"

# Steps of the spine inside the package document and of <body> inside <html>.
SPINE_STEP = 6

WHITESPACE = re.compile(r"\s+")

_PARSER = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)


class EpubParseError(ValueError):
    """Raised when a blob is not a readable EPUB container."""


@dataclass(frozen=True)
class TextSegment:
    """A text node together with its CFI step path inside the document."""

    path: Tuple[int, ...]
    text: str


@dataclass
class Section:
    index: int
    idref: str
    href: str
    segments: List[TextSegment] = field(default_factory=list)
    _stripped: Optional[str] = None
    _positions: List[Tuple[int, int]] = field(default_factory=list)

    @property
    def spine_steps(self) -> Tuple[int, int]:
        return SPINE_STEP, 2 * (self.index + 1)

    def stripped(self) -> str:
        """Section text with every whitespace character removed."""

        if self._stripped is None:
            characters: List[str] = []
            for segment_index, segment in enumerate(self.segments):
                for offset, char in enumerate(segment.text):
                    if char.isspace():
                        continue
                    characters.append(char)
                    self._positions.append((segment_index, offset))
            self._stripped = "".join(characters)
        return self._stripped

    def position(self, stripped_index: int) -> Tuple[TextSegment, int]:
        segment_index, offset = self._positions[stripped_index]
        return self.segments[segment_index], offset


@dataclass(frozen=True)
class SearchMatch:
    cfi: str
    section: int
    end: int


class EpubDocument:
    """An opened EPUB container."""

    def __init__(self, archive: zipfile.ZipFile) -> None:
        self._archive = archive
        self.title = ""
        self.creator = ""
        self._opf_dir = ""
        self._manifest: Dict[str, Dict[str, str]] = {}
        self._cover_id: Optional[str] = None
        self._spine: List[Tuple[str, str]] = []
        self._sections: Dict[int, Section] = {}
        self.locations: List[str] = []
        self._location_keys: List[cfi.CfiKey] = []
        self._read_package()

    @classmethod
    def open(cls, data: bytes) -> "EpubDocument":
        try:
            archive = zipfile.ZipFile(io.BytesIO(data))
        except zipfile.BadZipFile as exc:
            raise EpubParseError("Not a zip container") from exc
        return cls(archive)

    def close(self) -> None:
        self._archive.close()

    def __enter__(self) -> "EpubDocument":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Package document
    # ------------------------------------------------------------------
    def _read_xml(self, name: str) -> etree._Element:
        try:
            raw = self._archive.read(name)
        except KeyError as exc:
            raise EpubParseError(f"Missing {name} in EPUB container") from exc
        root = etree.fromstring(raw, _PARSER)
        if root is None:
            raise EpubParseError(f"Unreadable XML in {name}")
        return root

    def _resolve(self, href: str) -> str:
        return posixpath.normpath(posixpath.join(self._opf_dir, unquote(href.split("#", 1)[0])))

    def _read_package(self) -> None:
        container = self._read_xml(CONTAINER_PATH)
        rootfile = container.find(f".//{{{CONTAINER_NS}}}rootfile")
        if rootfile is None or not rootfile.get("full-path"):
            raise EpubParseError("EPUB container has no package document")
        opf_path = rootfile.get("full-path")
        self._opf_dir = posixpath.dirname(opf_path)
        package = self._read_xml(opf_path)

        self.title = (package.findtext(f".//{{{DC_NS}}}title") or "").strip()
        self.creator = (package.findtext(f".//{{{DC_NS}}}creator") or "").strip()

        for item in package.iterfind(f".//{{{OPF_NS}}}manifest/{{{OPF_NS}}}item"):
            item_id = item.get("id")
            if not item_id:
                continue
            self._manifest[item_id] = {
                "href": item.get("href") or "",
                "media-type": item.get("media-type") or "",
                "properties": item.get("properties") or "",
            }
            if "cover-image" in self._manifest[item_id]["properties"].split():
                self._cover_id = item_id

        if self._cover_id is None:
            for meta in package.iterfind(f".//{{{OPF_NS}}}metadata/{{{OPF_NS}}}meta"):
                if meta.get("name") == "cover" and meta.get("content") in self._manifest:
                    self._cover_id = meta.get("content")
                    break

        for itemref in package.iterfind(f".//{{{OPF_NS}}}spine/{{{OPF_NS}}}itemref"):
            idref = itemref.get("idref") or ""
            item = self._manifest.get(idref)
            if item is None:
                continue
            self._spine.append((idref, self._resolve(item["href"])))

        if not self._spine:
            raise EpubParseError("EPUB package has an empty spine")

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------
    def cover(self) -> Optional[bytes]:
        if self._cover_id is None:
            return None
        href = self._resolve(self._manifest[self._cover_id]["href"])
        try:
            return self._archive.read(href)
        except KeyError:
            return None

    @property
    def section_count(self) -> int:
        return len(self._spine)

    def section(self, index: int) -> Section:
        section = self._sections.get(index)
        if section is None:
            idref, href = self._spine[index]
            section = Section(index=index, idref=idref, href=href)
            try:
                root = etree.fromstring(self._archive.read(href), _PARSER)
            except KeyError:
                root = None
            if root is not None:
                _collect_segments(root, (), section.segments)
            self._sections[index] = section
        return section

    # ------------------------------------------------------------------
    # Page locations
    # ------------------------------------------------------------------
    def generate_locations(self, chars: int) -> List[str]:
        """Split the text flow into locations of roughly ``chars`` characters."""

        locations: List[str] = []
        for index in range(self.section_count):
            section = self.section(index)
            counted = chars
            for segment in section.segments:
                if not segment.text.strip():
                    continue
                for offset in range(len(segment.text)):
                    if counted >= chars:
                        locations.append(cfi.build_point(section.spine_steps, section.idref, segment.path, offset))
                        counted = 0
                    counted += 1
        self._set_locations(locations)
        return locations

    def load_locations(self, serialised: str) -> None:
        self._set_locations([str(value) for value in json.loads(serialised)])

    def _set_locations(self, locations: Sequence[str]) -> None:
        self.locations = list(locations)
        self._location_keys = [cfi.parse_key(value) for value in self.locations]

    def location_from_cfi(self, target: str) -> int:
        if not self._location_keys:
            return 0
        return max(bisect_right(self._location_keys, cfi.parse_key(target)) - 1, 0)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------
    def search_first(self, text: str, section: int = 0, start: int = 0) -> Optional[SearchMatch]:
        """Find ``text`` at or after ``start`` in ``section``, then in later sections.

        Whitespace is ignored on both sides. ``start`` counts characters of the
        whitespace-stripped section text, which is also what ``SearchMatch.end``
        reports.
        """

        needle = WHITESPACE.sub("", text)
        if not needle:
            return None
        for index in range(section, self.section_count):
            current = self.section(index)
            haystack = current.stripped()
            position = haystack.find(needle, start if index == section else 0)
            if position < 0:
                continue
            end = position + len(needle)
            first_segment, first_offset = current.position(position)
            last_segment, last_offset = current.position(end - 1)
            match_cfi = cfi.build_range(
                current.spine_steps,
                current.idref,
                first_segment.path,
                first_offset,
                last_segment.path,
                last_offset + 1,
            )
            return SearchMatch(cfi=match_cfi, section=index, end=end)
        return None


def _local_name(element: etree._Element) -> str:
    return etree.QName(element).localname


def _collect_segments(element: etree._Element, path: Tuple[int, ...], segments: List[TextSegment]) -> None:
    """Walk ``element`` in document order, recording text nodes.

    Element children take even CFI indices and the text around them the odd
    ones, so ``element.text`` is step 1 and the tail of child ``i`` is
    step ``2 * i + 3``.
    """

    if element.text:
        segments.append(TextSegment(path + (1,), element.text))
    children = [child for child in element if isinstance(child.tag, str)]
    for position, child in enumerate(children):
        if _local_name(child) != "head":
            _collect_segments(child, path + (2 * position + 2,), segments)
        if child.tail:
            segments.append(TextSegment(path + (2 * position + 3,), child.tail))
