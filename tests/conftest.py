from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

import pytest

from shelfsync.errors import RemoteConnectionError, RemoteNotFoundError
from shelfsync.fetchers.webdav import RemoteEntry
from shelfsync.library import Library
from shelfsync.storage import LocalStorage

CONTAINER_XML = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<container xmlns="urn:oasis:names:tc:opendocument:xmlns:container" version="1.0">'
    '<rootfiles><rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/></rootfiles>'
    "</container>"
)


def build_epub(
    title: str = "The Example Book",
    creator: str = "Jane Doe",
    chapters: Sequence[str] = ("<p>Hello world</p>",),
    cover: Optional[bytes] = None,
) -> bytes:
    """Build a minimal EPUB whose chapters contain the given body markup."""

    manifest = []
    spine = []
    for index in range(len(chapters)):
        manifest.append(
            f'<item id="ch{index + 1}" href="ch{index + 1}.xhtml" media-type="application/xhtml+xml"/>'
        )
        spine.append(f'<itemref idref="ch{index + 1}"/>')
    if cover is not None:
        manifest.append('<item id="cover-img" href="images/cover.png" media-type="image/png" properties="cover-image"/>')

    opf = (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0">'
        '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/">'
        f"<dc:title>{title}</dc:title><dc:creator>{creator}</dc:creator>"
        "</metadata>"
        f"<manifest>{''.join(manifest)}</manifest>"
        f"<spine>{''.join(spine)}</spine>"
        "</package>"
    )

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/epub+zip")
        archive.writestr("META-INF/container.xml", CONTAINER_XML)
        archive.writestr("OEBPS/content.opf", opf)
        for index, body in enumerate(chapters):
            archive.writestr(
                f"OEBPS/ch{index + 1}.xhtml",
                '<?xml version="1.0" encoding="utf-8"?>'
                '<html xmlns="http://www.w3.org/1999/xhtml"><head><title>Chapter</title></head>'
                f"<body>{body}</body></html>",
            )
        if cover is not None:
            archive.writestr("OEBPS/images/cover.png", cover)
    return buffer.getvalue()


class FakeRemote:
    """In-memory stand-in for a WebDAV server."""

    def __init__(self) -> None:
        self.files: Dict[str, bytes] = {}
        self.dirs: Set[str] = set()
        self.calls: List[Tuple[str, str]] = []
        self.fail_writes = False
        self.fail_reads = False

    def seed_json(self, path: str, data: object) -> None:
        self.add_file(path, json.dumps(data).encode("utf-8"))

    def add_file(self, path: str, data: bytes) -> None:
        parts = path.split("/")
        for depth in range(1, len(parts)):
            self.dirs.add("/".join(parts[:depth]))
        self.files[path] = data

    def json(self, path: str) -> object:
        return json.loads(self.files[path].decode("utf-8"))

    def exists(self, path: str) -> bool:
        self.calls.append(("exists", path))
        return path in self.files or path in self.dirs

    def list_directory(self, path: str) -> List[RemoteEntry]:
        self.calls.append(("list", path))
        if path not in self.dirs:
            raise RemoteNotFoundError(path)
        prefix = path + "/"
        entries = []
        for name, data in sorted(self.files.items()):
            if name.startswith(prefix) and "/" not in name[len(prefix) :]:
                entries.append(RemoteEntry(basename=name[len(prefix) :], type="file", size=len(data)))
        for name in sorted(self.dirs):
            if name.startswith(prefix) and "/" not in name[len(prefix) :]:
                entries.append(RemoteEntry(basename=name[len(prefix) :], type="directory"))
        return entries

    def create_directory(self, path: str) -> None:
        self.calls.append(("mkcol", path))
        self.dirs.add(path)

    def read_bytes(self, path: str, on_progress: Optional[Callable[[int, int], None]] = None) -> bytes:
        self.calls.append(("get", path))
        if self.fail_reads:
            raise RemoteConnectionError("server unreachable")
        if path not in self.files:
            raise RemoteNotFoundError(path)
        data = self.files[path]
        if on_progress is not None:
            on_progress(len(data) // 2, len(data))
            on_progress(len(data), len(data))
        return data

    def read_text(self, path: str, on_progress: Optional[Callable[[int, int], None]] = None) -> str:
        return self.read_bytes(path, on_progress).decode("utf-8")

    def write(
        self,
        path: str,
        data: Union[bytes, str],
        *,
        overwrite: bool = True,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> bool:
        self.calls.append(("put", path))
        if self.fail_writes:
            raise RemoteConnectionError("upload refused")
        if not overwrite and path in self.files:
            return False
        payload = data.encode("utf-8") if isinstance(data, str) else data
        self.add_file(path, payload)
        if on_progress is not None:
            on_progress(len(payload), len(payload))
        return True

    def delete(self, path: str) -> None:
        self.calls.append(("delete", path))
        if path not in self.files:
            raise RemoteNotFoundError(path)
        del self.files[path]


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: List[Tuple[str, str]] = []

    def show(self, message: str, level: str = "info") -> None:
        self.messages.append((level, message))


@pytest.fixture
def remote() -> FakeRemote:
    fake = FakeRemote()
    fake.dirs.add("Library")
    fake.seed_json("Library/books.json", [])
    return fake


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def library(tmp_path: Path, notifier: RecordingNotifier) -> Library:
    return Library(LocalStorage(tmp_path / "library"), notifier=notifier)


@pytest.fixture
def connected_library(library: Library, remote: FakeRemote) -> Library:
    library.connect(remote)
    return library
