import json
from pathlib import Path
from typing import List

import pytest

from shelfsync.errors import PreconditionError
from shelfsync.importer import AnnotationImporter
from shelfsync.library import Library
from shelfsync.models import Book
from shelfsync.parsers import KindleNotebookParser, Notebook

from conftest import FakeRemote, RecordingNotifier, build_epub


CHAPTERS = ["<p>Hello world</p><p>Second passage of the book.</p>"]


def notebook_html(title: str, *entries: tuple) -> str:
    parts = [f'<html><body><div class="bookTitle">{title}</div><div class="authors">Jane Doe</div>']
    for heading, text in entries:
        parts.append(f'<h3 class="noteHeading">{heading}</h3><div class="noteText">{text}</h3>')
    parts.append("</body></html>")
    return "\n".join(parts)


def write_notebook(tmp_path: Path, title: str = "The Example Book") -> str:
    path = tmp_path / "notebook.html"
    path.write_text(
        notebook_html(
            title,
            ("Highlight(yellow) - Location 1", "Hello   world"),
            ("Note - Location 1", "Greeting"),
            ("Highlight(yellow) - Location 5", "Not in this book"),
            ("Highlight(yellow) - Location 9", "Second passage"),
        ),
        encoding="utf-8",
    )
    return str(path)


def add_book(library: Library, tmp_path: Path) -> Book:
    source = tmp_path / "example.epub"
    source.write_bytes(build_epub(chapters=CHAPTERS))
    return library.add_book(str(source))


def test_mismatched_title_is_rejected_before_touching_the_book(library: Library, tmp_path: Path) -> None:
    book = add_book(library, tmp_path)
    notebook = write_notebook(tmp_path, title="Some Other Book")

    with pytest.raises(PreconditionError, match="Some Other Book"):
        AnnotationImporter(library).import_notes(book, notebook)

    assert not library.storage.exists(f"{book.hash}/pages.json")
    assert library.load_config(book).notes == []


def test_offline_import_saves_located_notes_and_reports_failures(
    library: Library, notifier: RecordingNotifier, tmp_path: Path
) -> None:
    book = add_book(library, tmp_path)
    messages = []

    failed = AnnotationImporter(library).import_notes(book, write_notebook(tmp_path), messages.append)

    assert [failure.text for failure in failed] == ["Notinthisbook"]
    assert "Not in this book" not in failed[0].describe()
    notes = library.load_config(book).notes
    assert [note.text for note in notes] == ["Helloworld", "Secondpassage"]
    assert notes[0].annotation == "Greeting"
    assert notes[0].cfi == "epubcfi(/6/2[ch1]!/4/2,/1:0,/1:11)"
    assert notes[1].start == "epubcfi(/6/2[ch1]!/4/4/1:0)"
    assert library.storage.exists(f"{book.hash}/pages.json")
    assert "Generating book pages for the first time..." in messages
    assert notifier.messages[-1][0] == "warning"


class RecordingParser(KindleNotebookParser):
    def __init__(self) -> None:
        self.texts: List[str] = []

    def parse_text(self, text: str) -> Notebook:
        self.texts.append(text)
        return super().parse_text(text)


def test_export_with_byte_order_mark_is_decoded_without_it(library: Library, tmp_path: Path) -> None:
    book = add_book(library, tmp_path)
    notebook = write_notebook(tmp_path)
    Path(notebook).write_bytes(b"\xef\xbb\xbf" + Path(notebook).read_bytes())
    parser = RecordingParser()

    failed = AnnotationImporter(library, parser).import_notes(book, notebook)

    assert not parser.texts[0].startswith("\ufeff")
    assert len(failed) == 1
    assert len(library.load_config(book).notes) == 2


def test_corrupt_remote_config_is_reported_after_local_save(
    connected_library: Library, remote: FakeRemote, notifier: RecordingNotifier, tmp_path: Path
) -> None:
    book = add_book(connected_library, tmp_path)
    remote.add_file(f"Library/{book.hash}/config.json", b"{not json")

    AnnotationImporter(connected_library).import_notes(book, write_notebook(tmp_path))

    assert notifier.messages[-1][0] == "error"
    assert len(connected_library.load_config(book).notes) == 2


def test_import_pushes_notes_when_connected(
    connected_library: Library, remote: FakeRemote, tmp_path: Path
) -> None:
    book = add_book(connected_library, tmp_path)

    AnnotationImporter(connected_library).import_notes(book, write_notebook(tmp_path))

    pushed = remote.json(f"Library/{book.hash}/config.json")
    assert [note["text"] for note in pushed["notes"]] == ["Helloworld", "Secondpassage"]
    assert pushed["removedTs"] == {}


def test_reimport_keeps_a_single_copy_of_each_note(library: Library, tmp_path: Path) -> None:
    book = add_book(library, tmp_path)
    notebook = write_notebook(tmp_path)
    importer = AnnotationImporter(library)

    importer.import_notes(book, notebook)
    importer.import_notes(book, notebook)

    assert len(library.load_config(book).notes) == 2


def test_push_failure_is_reported_not_raised(
    connected_library: Library, remote: FakeRemote, notifier: RecordingNotifier, tmp_path: Path
) -> None:
    book = add_book(connected_library, tmp_path)
    remote.fail_reads = True

    failed = AnnotationImporter(connected_library).import_notes(book, write_notebook(tmp_path))

    assert len(failed) == 1
    assert notifier.messages[-1][0] == "error"
    assert len(connected_library.load_config(book).notes) == 2


def test_pages_cache_is_reused(library: Library, tmp_path: Path) -> None:
    book = add_book(library, tmp_path)
    library.storage.write(f"{book.hash}/pages.json", json.dumps(["epubcfi(/6/2!/4/2/1:0)"]))

    AnnotationImporter(library).import_notes(book, write_notebook(tmp_path))

    assert all(note.page == 0 for note in library.load_config(book).notes)
    assert json.loads(library.storage.read_text(f"{book.hash}/pages.json")) == ["epubcfi(/6/2!/4/2/1:0)"]
