"""Parsers that ingest Kindle notebook exports."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from .errors import PreconditionError

TITLE_BRACKETS = {"《": "》", "「": "」", "“": "”", '"': '"', "'": "'", "[": "]"}
NOTE_HEADING = re.compile(r"^\s*(?:Note|备注|Notiz|Remarque|Nota|メモ)\b", re.IGNORECASE)


@dataclass(frozen=True)
class NotebookEntry:
    """A highlighted passage and the note attached to it, if any."""

    heading: str
    text: str
    annotation: str = ""


@dataclass
class Notebook:
    title: str
    author: Optional[str] = None
    entries: List[NotebookEntry] = field(default_factory=list)


class HighlightParser:
    """Base class for highlight export parsers."""

    def parse(self, path: Path) -> Notebook:
        return self.parse_text(path.expanduser().resolve().read_text(encoding="utf-8-sig"))

    def parse_text(self, text: str) -> Notebook:
        raise NotImplementedError


class KindleNotebookParser(HighlightParser):
    """Parses the HTML notebook a Kindle exports by e-mail.

    The export is a ``div.bookTitle`` followed by ``h3.noteHeading`` /
    ``div.noteText`` pairs. Note divs are never closed, so the text of a
    ``div.noteText`` runs into the following heading; only its first text
    node belongs to the entry. A ``Note`` heading right after a highlight is
    that highlight's annotation.
    """

    @staticmethod
    def _strip_title(title: str) -> str:
        title = title.strip()
        if len(title) >= 2 and TITLE_BRACKETS.get(title[0]) == title[-1]:
            title = title[1:-1].strip()
        return title

    @staticmethod
    def _first_text(node: Tag) -> str:
        for child in node.children:
            if isinstance(child, NavigableString):
                return str(child)
            return child.get_text()
        return ""

    def parse_text(self, text: str) -> Notebook:
        soup = BeautifulSoup(text, "lxml")
        title_node = soup.select_one("div.bookTitle")
        title = self._strip_title(title_node.get_text()) if title_node else ""
        if not title:
            raise PreconditionError("Not a valid Kindle notebook export.")
        author_node = soup.select_one("div.authors")
        author = author_node.get_text().strip() if author_node else None

        headings = [node.get_text() for node in soup.select("h3.noteHeading")]
        texts = [self._first_text(node) for node in soup.select("div.noteText")]

        entries: List[NotebookEntry] = []
        index = 0
        while index < len(headings) and index < len(texts):
            heading = headings[index].strip()
            body = texts[index]
            annotation = ""
            has_note = False
            next_heading = headings[index + 1] if index + 1 < len(headings) else None

            if next_heading is not None and NOTE_HEADING.match(next_heading) and index + 1 < len(texts):
                has_note = True
                annotation = texts[index + 1]
            if next_heading:
                body = body.replace(next_heading, "")
                after_note = headings[index + 2] if index + 2 < len(headings) else None
                if has_note and after_note:
                    annotation = annotation.replace(after_note, "")

            entries.append(NotebookEntry(heading=heading, text=body.strip(), annotation=annotation.strip()))
            index += 2 if has_note else 1

        return Notebook(title=title, author=author or None, entries=entries)
