"""Import of Kindle notebook highlights into a book's notes."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from .cfi import sort_notes, split_cfi
from .epub import WHITESPACE, EpubDocument
from .errors import LookupFailure, PreconditionError, ShelfSyncError
from .library import Library
from .models import Book, BookNote, now_ms
from .notes import merge_notes
from .notify import ERROR, WARNING, ProgressCallback, ignore_progress
from .parsers import HighlightParser, KindleNotebookParser, NotebookEntry
from .storage import StorageArea

logger = logging.getLogger(__name__)


class AnnotationImporter:
    """Locates exported highlights inside a book and merges them as notes."""

    def __init__(self, library: Library, parser: Optional[HighlightParser] = None) -> None:
        self.library = library
        self.parser = parser or KindleNotebookParser()

    def import_notes(
        self, book: Book, file_path: str, on_update: Optional[ProgressCallback] = None
    ) -> List[LookupFailure]:
        """Import the export at ``file_path`` into ``book``.

        Returns the entries whose text could not be found in the book. Every
        located entry is saved even when some fail.
        """

        on_update = on_update or ignore_progress
        notebook = self.parser.parse(self.library.storage.resolve(file_path, StorageArea.NONE))

        on_update("Checking that the notes belong to the book...")
        if notebook.title != book.name:
            raise PreconditionError(
                f"The file holds notes for {notebook.title!r}, which does not match {book.name!r}."
            )

        with self.library.locks.hold(book.hash):
            content = self.library.check_and_download_book(book, on_update)
            if content is None:
                content = self.library.storage.read_bytes(f"{book.hash}/{book.body_filename}")

            with EpubDocument.open(content) as document:
                self.library.prepare_locations(book, document, on_update)
                on_update(f"Found {len(notebook.entries)} highlight(s) or note(s), analysing...")
                notes, failed = self.locate(notebook.entries, document, on_update)

            on_update("Analysis finished, merging with existing notes...")
            config = self.library.load_config(book)
            config.notes = merge_notes(config.notes, sort_notes(notes), {})
            self.library.save_config(book, config)
            logger.info("Imported %d note(s) into %s, %d not found", len(notes), book.name, len(failed))

            if not self.library.connected:
                self.library.notifier.show("Server is not connected; notes are not pushed to remote yet.", WARNING)
                return failed

            try:
                on_update("Merge finished, syncing to remote...")
                self.library.sync_book(book, config)
            except (ShelfSyncError, OSError) as exc:
                logger.error("Pushing imported notes of %s failed: %s", book.name, exc)
                self.library.notifier.show("Syncing to remote failed, please retry manually.", ERROR)

        return failed

    def locate(
        self,
        entries: Sequence[NotebookEntry],
        document: EpubDocument,
        on_update: Optional[ProgressCallback] = None,
    ) -> Tuple[List[BookNote], List[LookupFailure]]:
        """Find each entry in reading order, never searching before the last hit."""

        on_update = on_update or ignore_progress
        notes: List[BookNote] = []
        failed: List[LookupFailure] = []
        section = 0
        position = 0

        for number, entry in enumerate(entries, start=1):
            text = WHITESPACE.sub("", entry.text)
            match = document.search_first(text, section, position) if text else None
            if match is None:
                failed.append(LookupFailure(entry.heading, text, entry.annotation or None))
            else:
                start, end = split_cfi(match.cfi)
                notes.append(
                    BookNote(
                        cfi=match.cfi,
                        start=start,
                        end=end,
                        page=document.location_from_cfi(match.cfi),
                        text=text,
                        annotation=entry.annotation,
                        modified=now_ms(),
                    )
                )
                section, position = match.section, match.end
            on_update(f"Analysed {number} / {len(entries)} entries...")

        return notes, failed
