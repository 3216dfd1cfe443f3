"""The local book library and its synchronisation with a remote mirror."""
from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import requests

from .config import DEFAULT_PAGE_CHARS, DEFAULT_REMOTE_ROOT, SyncConfig
from .epub import EpubDocument, EpubParseError
from .errors import (
    PartialSyncError,
    PreconditionError,
    RemoteConnectionError,
    RemoteNotFoundError,
)
from .fetchers.webdav import RemoteStore, TransferCallback, WebDAVClient
from .locks import BookLocks
from .merge import merge_config
from .models import Book, BookConfig, BookContent, now_ms
from .notify import (
    INFO,
    WARNING,
    LoggingNotifier,
    Notifier,
    ProgressCallback,
    ignore_progress,
    percent,
)
from .storage import (
    CONFIG_NAME,
    COVER_NAME,
    MANIFEST_NAME,
    PAGES_NAME,
    LocalStorage,
    StorageArea,
    migrate_library,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {"progress": 0, "notes": [], "bookmarks": []}


def _dumps(data: object) -> str:
    return json.dumps(data, ensure_ascii=False)


def _needs_sync(candidate: Book, counterpart: Optional[Book]) -> bool:
    """Whether ``candidate`` should be copied over to the other replica."""

    if counterpart is not None:
        return candidate.ts > counterpart.ts
    return not candidate.removed


class Library:
    """Owns the book manifest and keeps it in sync with a remote store.

    The manifest is ordered most recently touched first and is only ever
    changed in place: rows move to the front, new rows are inserted at the
    front and removed books keep their row as a tombstone.
    """

    def __init__(
        self,
        storage: LocalStorage,
        *,
        notifier: Optional[Notifier] = None,
        remote_root: str = DEFAULT_REMOTE_ROOT,
        page_chars: int = DEFAULT_PAGE_CHARS,
        locks: Optional[BookLocks] = None,
    ) -> None:
        self.storage = storage
        self.notifier: Notifier = notifier or LoggingNotifier()
        self.remote_root = remote_root.strip("/")
        self.page_chars = page_chars
        self.locks = locks or BookLocks()
        self.books: List[Book] = []
        self._remote: Optional[RemoteStore] = None
        self._connect_warn_showed = False

    @classmethod
    def from_config(cls, config: SyncConfig, *, notifier: Optional[Notifier] = None) -> "Library":
        library = cls(
            LocalStorage(config.library_root),
            notifier=notifier,
            remote_root=config.remote_root,
            page_chars=config.page_chars,
        )
        library.load_manifest()
        return library

    # ------------------------------------------------------------------
    # Remote connection
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        return self._remote is not None

    def remote_path(self, path: str) -> str:
        return f"{self.remote_root}/{path}"

    def connect(self, remote: RemoteStore) -> None:
        """Attach ``remote``, creating the remote root and manifest if missing."""

        self._remote = None
        try:
            if not remote.exists(self.remote_root):
                logger.info("Creating remote library root %s", self.remote_root)
                remote.create_directory(self.remote_root)
                remote.write(self.remote_path(MANIFEST_NAME), "[]", overwrite=True)
        except RemoteConnectionError as exc:
            raise RemoteConnectionError(
                f"Cannot connect to the saved server; it may be invalid or blocked: {exc}"
            ) from exc
        self._remote = remote

    def connect_webdav(self, config: SyncConfig, session: Optional[requests.Session] = None) -> None:
        if not config.webdav_url:
            raise PreconditionError("No WebDAV server configured.")
        client = WebDAVClient(
            config.webdav_url,
            username=config.webdav_user,
            password=config.webdav_password,
            timeout=config.timeout,
            session=session,
        )
        self.connect(client)

    def disconnect(self) -> None:
        self._remote = None

    def _require_remote(self) -> RemoteStore:
        if self._remote is None:
            raise RemoteConnectionError("Remote server is not connected.")
        return self._remote

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------
    def load_manifest(self) -> List[Book]:
        if self.storage.exists(MANIFEST_NAME):
            raw = json.loads(self.storage.read_text(MANIFEST_NAME))
            self.books[:] = [Book.from_mapping(item) for item in raw]
        else:
            self.books[:] = []
        return self.books

    def dump_manifest(self) -> str:
        return _dumps([book.to_mapping() for book in self.books])

    def save_manifest(self) -> str:
        data = self.dump_manifest()
        self.storage.write(MANIFEST_NAME, data)
        return data

    def find(self, book_hash: str) -> Optional[Book]:
        for book in self.books:
            if book.hash == book_hash:
                return book
        return None

    def set_book_to_top(self, index: int) -> Book:
        book = self.books.pop(index)
        self.books.insert(0, book)
        self.save_manifest()
        return book

    def add_book(self, path: str) -> Book:
        """Import the EPUB at ``path`` (any location) into the library."""

        content = self.storage.read_bytes(path, StorageArea.NONE)
        try:
            document = EpubDocument.open(content)
        except EpubParseError as exc:
            raise PreconditionError(f"Cannot parse book: {path}") from exc

        with document:
            book_hash = hashlib.md5(content).hexdigest()
            existing = self.find(book_hash)
            if existing is not None and not existing.removed:
                raise PreconditionError(f"Book already exists: {path}")
            cover = document.cover()
            name = document.title or Path(path).stem
            author = document.creator

        if existing is None:
            book = Book(hash=book_hash, name=name, author=author, ts=now_ms())
            self.storage.create_dir(book_hash)
            self.storage.write(f"{book_hash}/{CONFIG_NAME}", _dumps(DEFAULT_CONFIG))
            self.storage.write(f"{book_hash}/{book.body_filename}", content)
            if cover:
                self.storage.write(f"{book_hash}/{COVER_NAME}", cover)
                book.cover = f"{book_hash}/{COVER_NAME}"
            self.books.insert(0, book)
            logger.info("Added book %s (%s)", book.name, book_hash)
        else:
            book = existing
            self.storage.write(f"{book_hash}/{book.body_filename}", content)
            if cover:
                self.storage.write(f"{book_hash}/{COVER_NAME}", cover)
                book.cover = f"{book_hash}/{COVER_NAME}"
            book.removed = False
            book.ts = now_ms()
            logger.info("Restored removed book %s (%s)", book.name, book_hash)

        self.save_manifest()
        return book

    def remove_book(self, book: Book) -> Book:
        """Delete the book's body and cover and tombstone its manifest row."""

        self._discard_files(book)
        self.save_manifest()
        return book

    def _discard_files(self, book: Book) -> None:
        for name in (book.body_filename, COVER_NAME):
            path = f"{book.hash}/{name}"
            if self.storage.exists(path):
                self.storage.remove(path)
        book.removed = True
        book.cover = None
        book.ts = now_ms()

    def _fill_cover(self, book: Book) -> None:
        path = f"{book.hash}/{COVER_NAME}"
        book.cover = path if self.storage.exists(path) else None

    def change_local(self, new_root: Path, on_update: Optional[ProgressCallback] = None) -> None:
        self.storage = migrate_library(self.storage, new_root, on_update)

    # ------------------------------------------------------------------
    # Per-book files
    # ------------------------------------------------------------------
    def load_config(self, book: Book) -> BookConfig:
        return BookConfig.from_mapping(json.loads(self.storage.read_text(f"{book.hash}/{CONFIG_NAME}")))

    def save_config(self, book: Book, config: BookConfig) -> None:
        # The tombstone map belongs to the remote copy only.
        self.storage.write(
            f"{book.hash}/{CONFIG_NAME}", _dumps(config.to_mapping(include_removed_ts=False))
        )

    def load_pages(self, book: Book) -> Optional[str]:
        path = f"{book.hash}/{PAGES_NAME}"
        if not self.storage.exists(path):
            return None
        return self.storage.read_text(path)

    def save_pages(self, book: Book, pages: List[str]) -> None:
        self.storage.write(f"{book.hash}/{PAGES_NAME}", _dumps(pages))

    def prepare_locations(
        self, book: Book, document: EpubDocument, on_update: Optional[ProgressCallback] = None
    ) -> None:
        """Load the cached page-location index or generate and cache it."""

        pages = self.load_pages(book)
        if pages is not None:
            document.load_locations(pages)
            return
        (on_update or ignore_progress)("Generating book pages for the first time...")
        self.save_pages(book, document.generate_locations(self.page_chars))

    def load_book(self, book: Book, on_update: Optional[ProgressCallback] = None) -> BookContent:
        content = self.check_and_download_book(book, on_update or ignore_progress)
        config = self.sync_book(book)
        if content is None:
            content = self.storage.read_bytes(f"{book.hash}/{book.body_filename}")
        return BookContent(content=content, config=config, pages=self.load_pages(book))

    # ------------------------------------------------------------------
    # Fetch on demand
    # ------------------------------------------------------------------
    def _progress(self, on_update: ProgressCallback, label: str) -> TransferCallback:
        def report(loaded: int, total: int) -> None:
            on_update(f"{label}: {percent(loaded, total)}%")

        return report

    def ensure_file(
        self, book: Book, filename: str, on_update: Optional[ProgressCallback] = None
    ) -> Optional[bytes]:
        """Download ``filename`` of ``book`` unless it already exists locally.

        Returns the downloaded payload, or ``None`` when nothing was fetched.
        """

        path = f"{book.hash}/{filename}"
        if self.storage.exists(path):
            return None
        remote = self._require_remote()
        data = remote.read_bytes(
            self.remote_path(path),
            on_progress=self._progress(on_update or ignore_progress, f"Pulling {filename} of {book.name}"),
        )
        self.storage.write(path, data)
        return data

    def check_and_download_book(
        self, book: Book, on_update: Optional[ProgressCallback] = None
    ) -> Optional[bytes]:
        on_update = on_update or ignore_progress
        if not self.storage.exists(f"{book.hash}/{book.body_filename}") and not self.connected:
            raise PreconditionError(
                "The book has not been downloaded and no server is connected; connect to a server first."
            )
        on_update("Checking whether the book has to be pulled from remote...")
        try:
            return self.ensure_file(book, book.body_filename, on_update)
        except RemoteConnectionError as exc:
            raise RemoteConnectionError(f"Book download failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Book config sync
    # ------------------------------------------------------------------
    def _read_remote_config(self, book: Book) -> Optional[BookConfig]:
        remote = self._require_remote()
        try:
            raw = remote.read_text(self.remote_path(f"{book.hash}/{CONFIG_NAME}"))
        except RemoteNotFoundError:
            return None
        try:
            return BookConfig.from_mapping(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            raise RemoteConnectionError(f"Remote config of {book.name} is not readable: {exc}") from exc

    def sync_book(self, book: Book, config: Optional[BookConfig] = None) -> BookConfig:
        """Merge the book's local reading state with the remote copy."""

        with self.locks.hold(book.hash):
            if config is None:
                config = self.load_config(book)

            if not self.connected:
                if not self._connect_warn_showed:
                    self.notifier.show(
                        "Not connected to a server; only local notes are used (shown once).", INFO
                    )
                    self._connect_warn_showed = True
                return config

            remote = self._read_remote_config(book)
            if remote is None:
                remote = BookConfig(
                    ts=config.ts or now_ms(),
                    progress=config.progress,
                    last_progress=config.last_progress,
                    removed_ts={},
                )
            config = merge_config(config, remote)

            self.save_config(book, config)
            config.removed_ts = remote.removed_ts
            self._require_remote().write(
                self.remote_path(f"{book.hash}/{CONFIG_NAME}"),
                _dumps(config.to_mapping()),
                overwrite=True,
            )
            return config

    def sync_bookshelf(self, book: Book, config: Optional[BookConfig] = None) -> Optional[str]:
        """Reconcile only the bookshelf assignment; returns the shelf name."""

        with self.locks.hold(book.hash):
            if config is None:
                config = self.load_config(book)

            remote = self._read_remote_config(book) if self.connected else None
            if remote is not None and remote.bookshelf != config.bookshelf:
                local_ts = config.bookshelf.ts if config.bookshelf else 0
                remote_ts = remote.bookshelf.ts if remote.bookshelf else 0
                if remote_ts > local_ts:
                    config.bookshelf = remote.bookshelf
                    self.save_config(book, config)
                elif remote_ts < local_ts:
                    remote.bookshelf = config.bookshelf
                    self._require_remote().write(
                        self.remote_path(f"{book.hash}/{CONFIG_NAME}"),
                        _dumps(remote.to_mapping()),
                        overwrite=True,
                    )

            return config.bookshelf.value if config.bookshelf else None

    # ------------------------------------------------------------------
    # Library sync
    # ------------------------------------------------------------------
    def _read_remote_manifest(self) -> List[Book]:
        raw = self._require_remote().read_text(self.remote_path(MANIFEST_NAME))
        try:
            return [Book.from_mapping(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as exc:
            raise RemoteConnectionError(f"Remote manifest is not readable: {exc}") from exc

    def sync_books(self, on_update: Optional[ProgressCallback] = None) -> List[Book]:
        """Reconcile the local manifest with the remote one.

        Pulling is all-or-nothing: any error before the local manifest is
        saved propagates. Pushing is best effort, failures are reported as a
        warning and the sync can simply be run again.
        """

        on_update = on_update or ignore_progress
        if not self.connected:
            self.notifier.show("Server is not connected, cannot sync.", WARNING)
            return self.books

        remote_books = self._read_remote_manifest()
        local_table: Dict[str, Book] = {book.hash: book for book in self.books}
        remote_table: Dict[str, Book] = {book.hash: book for book in remote_books}

        to_local = [book for book in remote_books if _needs_sync(book, local_table.get(book.hash))]
        to_remote = [book for book in self.books if _needs_sync(book, remote_table.get(book.hash))]

        if to_local:
            on_update(f"Found {len(to_local)} new book(s) on remote, syncing to local...")
        for book in to_local:
            self._pull_book(book, local_table.get(book.hash), on_update)

        self.save_manifest()

        if to_remote:
            try:
                self._push_books(to_remote, on_update)
            except PartialSyncError as exc:
                logger.warning("Push to remote failed: %s", exc)
                self.notifier.show(str(exc), WARNING)

        return self.books

    def _pull_book(self, book: Book, local: Optional[Book], on_update: ProgressCallback) -> None:
        remote = self._require_remote()
        if book.removed:
            assert local is not None
            on_update(f"Removing local book {book.name}...")
            self._discard_files(local)
            local.ts = book.ts
            return

        on_update(f"Pulling book {book.name} to local...")
        contents = remote.list_directory(self.remote_path(book.hash))
        had_config = self.storage.exists(f"{book.hash}/{CONFIG_NAME}")
        if not self.storage.exists(book.hash):
            self.storage.create_dir(book.hash)

        for entry in contents:
            # Book bodies are only downloaded when the book is opened.
            if not entry.is_file or entry.basename.endswith(".epub"):
                continue
            on_update(f"Pulling {entry.basename} of {book.name} to local...")
            self.ensure_file(book, entry.basename, on_update)

        if local is None:
            self._fill_cover(book)
            self.books.insert(0, book)
            return

        # The row is only marked current once its config has been merged.
        if had_config:
            self.sync_book(local)
        local.ts = book.ts
        local.removed = False
        self._fill_cover(local)

    def _push_books(self, books: List[Book], on_update: ProgressCallback) -> None:
        remote = self._require_remote()
        try:
            on_update(f"Found {len(books)} new book(s) locally, syncing to remote...")
            for book in books:
                if book.removed:
                    on_update(f"Deleting remote book {book.name}...")
                    try:
                        remote.delete(self.remote_path(f"{book.hash}/{book.body_filename}"))
                    except RemoteNotFoundError:
                        logger.debug("Remote body of %s already gone", book.name)
                    continue
                self._push_book(book, on_update)

            on_update("Syncing manifest to remote...")
            manifest = self.save_manifest()
            remote.write(
                self.remote_path(MANIFEST_NAME),
                manifest,
                overwrite=True,
                on_progress=self._progress(on_update, "Syncing manifest to remote"),
            )
        except (RemoteConnectionError, OSError) as exc:
            raise PartialSyncError(f"Syncing to remote failed, you can sync again manually: {exc}") from exc

    def _push_book(self, book: Book, on_update: ProgressCallback) -> None:
        remote = self._require_remote()
        book_dir = self.remote_path(book.hash)
        if not remote.exists(book_dir):
            remote.create_directory(book_dir)

        for name in (book.body_filename, COVER_NAME, CONFIG_NAME):
            path = f"{book.hash}/{name}"
            if not self.storage.exists(path):
                continue
            if name == CONFIG_NAME and remote.exists(self.remote_path(path)):
                on_update(f"Merging {name} of {book.name} with remote...")
                self.sync_book(book)
                continue
            on_update(f"Syncing {name} of {book.name} to remote...")
            remote.write(
                self.remote_path(path),
                self.storage.read_bytes(path),
                overwrite=True,
                on_progress=self._progress(on_update, f"Syncing {name} of {book.name} to remote"),
            )
