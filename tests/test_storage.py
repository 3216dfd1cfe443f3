from pathlib import Path

from shelfsync.storage import Entry, LocalStorage, StorageArea, migrate_library


def test_write_creates_parent_directories(tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path / "library")

    assert storage.write("abc/config.json", "{}") is True

    assert storage.read_text("abc/config.json") == "{}"
    assert (tmp_path / "library" / "abc" / "config.json").exists()


def test_write_without_overwrite_keeps_existing_file(tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path)
    storage.write("books.json", "[1]")

    assert storage.write("books.json", "[2]", overwrite=False) is False
    assert storage.read_text("books.json") == "[1]"


def test_none_area_resolves_paths_as_given(tmp_path: Path) -> None:
    outside = tmp_path / "Downloads" / "book.epub"
    outside.parent.mkdir()
    outside.write_bytes(b"epub")
    storage = LocalStorage(tmp_path / "library")

    assert storage.exists(str(outside), StorageArea.NONE)
    assert storage.read_bytes(str(outside), StorageArea.NONE) == b"epub"
    assert not storage.exists(str(outside))


def test_list_dir_respects_depth(tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path)
    storage.write("books.json", "[]")
    storage.write("abc/config.json", "{}")

    assert storage.list_dir("") == [Entry("abc", True), Entry("books.json", False)]
    assert storage.list_dir("", depth=2) == [
        Entry("abc", True),
        Entry("abc/config.json", False),
        Entry("books.json", False),
    ]
    assert storage.list_dir("missing") == []


def test_remove_handles_files_and_directories(tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path)
    storage.write("abc/cover.png", b"png")
    storage.write("abc/config.json", "{}")

    storage.remove("abc/cover.png")
    assert not storage.exists("abc/cover.png")
    assert storage.exists("abc/config.json")

    storage.remove("abc")
    assert not storage.exists("abc")
    storage.remove("abc")


def test_migrate_library_copies_manifest_and_book_files(tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path / "old")
    storage.write("books.json", "[]")
    storage.write("abc/Book.epub", b"epub")
    storage.write("abc/config.json", "{}")
    messages = []

    migrated = migrate_library(storage, tmp_path / "new", messages.append)

    assert migrated.root == tmp_path / "new"
    assert migrated.read_text("books.json") == "[]"
    assert migrated.read_bytes("abc/Book.epub") == b"epub"
    assert migrated.read_text("abc/config.json") == "{}"
    assert messages == ["Migrating local books...", "Migrating book Book.epub..."]
    assert storage.exists("abc/Book.epub")


def test_migrating_to_the_same_root_is_a_no_op(tmp_path: Path) -> None:
    storage = LocalStorage(tmp_path)

    assert migrate_library(storage, tmp_path) is storage
