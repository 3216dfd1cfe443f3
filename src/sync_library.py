"""Command line entry point for syncing an EPUB library with a WebDAV server."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from shelfsync.config import SyncConfig, load_config
from shelfsync.errors import ShelfSyncError
from shelfsync.importer import AnnotationImporter
from shelfsync.library import Library
from shelfsync.models import Book


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--config", type=Path, help="Path to JSON configuration file", default=None)
    parser.add_argument("--library", type=Path, help="Path to the local library folder", default=None)
    parser.add_argument("--url", help="WebDAV server URL", default=None)
    parser.add_argument("--user", help="WebDAV user name", default=None)
    parser.add_argument("--password", help="WebDAV password", default=None)
    parser.add_argument("--remote-root", help="Folder on the server that holds the library", default=None)
    parser.add_argument("--offline", action="store_true", help="Do not connect to the server")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("sync", help="Sync the whole library")
    commands.add_parser("list", help="List the books in the library")

    add = commands.add_parser("add", help="Add EPUB files to the library")
    add.add_argument("paths", nargs="+", type=Path)

    remove = commands.add_parser("remove", help="Remove a book from the library")
    remove.add_argument("book", help="Book hash or name")

    fetch = commands.add_parser("fetch", help="Download a book body from the server")
    fetch.add_argument("book", help="Book hash or name")

    notes = commands.add_parser("import-notes", help="Import a Kindle notebook export into a book")
    notes.add_argument("book", help="Book hash or name")
    notes.add_argument("export", type=Path, help="Path to the exported HTML notebook")

    shelf = commands.add_parser("bookshelf", help="Sync and print the bookshelf of a book")
    shelf.add_argument("book", help="Book hash or name")
    return parser.parse_args(argv)


def _combine_config(args: argparse.Namespace) -> SyncConfig:
    try:
        file_config = load_config(args.config)
    except FileNotFoundError as exc:  # pragma: no cover - user error
        raise SystemExit(f"Configuration file not found: {args.config}") from exc
    except OSError as exc:  # pragma: no cover - user error
        raise SystemExit(f"Failed to read configuration file: {exc}") from exc
    config = SyncConfig.from_mapping(file_config)

    if args.library is not None:
        config.library_root = args.library
    if args.url is not None:
        config.webdav_url = args.url
    if args.user is not None:
        config.webdav_user = args.user
    if args.password is not None:
        config.webdav_password = args.password
    if args.remote_root is not None:
        config.remote_root = args.remote_root.strip("/")
    if args.offline:
        config.webdav_url = None
    return config


def _find_book(library: Library, key: str) -> Book:
    for book in library.books:
        if book.hash == key or book.name == key:
            return book
    raise SystemExit(f"No book matching {key!r} in the library.")


def _run(args: argparse.Namespace, library: Library) -> int:
    if args.command == "list":
        for book in library.books:
            status = " (removed)" if book.removed else ""
            print(f"{book.hash}  {book.name} - {book.author or 'Unknown'}{status}")
        return 0

    if args.command == "sync":
        library.sync_books(print)
        print(f"Sync complete: {len(library.books)} book(s) in the library.")
        return 0

    if args.command == "add":
        for path in args.paths:
            book = library.add_book(str(path))
            print(f"Added {book.name} ({book.hash}).")
        return 0

    book = _find_book(library, args.book)

    if args.command == "remove":
        library.remove_book(book)
        print(f"Removed {book.name}.")
    elif args.command == "fetch":
        content = library.check_and_download_book(book, print)
        print(f"Downloaded {book.name}." if content is not None else f"{book.name} is already local.")
    elif args.command == "import-notes":
        failed = AnnotationImporter(library).import_notes(book, str(args.export), print)
        for failure in failed:
            print(f"Not found: {failure}")
        print(f"Import complete: {len(failed)} entr{'y' if len(failed) == 1 else 'ies'} could not be located.")
    elif args.command == "bookshelf":
        shelf: Optional[str] = library.sync_bookshelf(book)
        print(shelf or "Default bookshelf")
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    config = _combine_config(args)
    library = Library.from_config(config)

    try:
        if config.has_remote:
            library.connect_webdav(config)
        return _run(args, library)
    except ShelfSyncError as exc:
        print(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
