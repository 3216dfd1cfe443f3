"""WebDAV client used to mirror the library on a remote server."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Union
from urllib.parse import quote, unquote, urlsplit

import requests
from lxml import etree

from shelfsync.errors import RemoteConnectionError, RemoteNotFoundError

logger = logging.getLogger(__name__)

DAV_NS = "DAV:"
CHUNK_SIZE = 64 * 1024

TransferCallback = Callable[[int, int], None]

PROPFIND_BODY = (
    b'<?xml version="1.0" encoding="utf-8"?>'
    b'<d:propfind xmlns:d="DAV:"><d:prop>'
    b"<d:resourcetype/><d:getcontentlength/><d:getlastmodified/>"
    b"</d:prop></d:propfind>"
)


@dataclass(frozen=True)
class RemoteEntry:
    """One child of a remote directory."""

    basename: str
    type: str
    size: int = 0

    @property
    def is_file(self) -> bool:
        return self.type == "file"


class RemoteStore(Protocol):
    """Operations the synchroniser needs from a remote store."""

    def exists(self, path: str) -> bool:
        ...

    def list_directory(self, path: str) -> List[RemoteEntry]:
        ...

    def create_directory(self, path: str) -> None:
        ...

    def read_text(self, path: str, on_progress: Optional[TransferCallback] = None) -> str:
        ...

    def read_bytes(self, path: str, on_progress: Optional[TransferCallback] = None) -> bytes:
        ...

    def write(
        self,
        path: str,
        data: Union[bytes, str],
        *,
        overwrite: bool = True,
        on_progress: Optional[TransferCallback] = None,
    ) -> bool:
        ...

    def delete(self, path: str) -> None:
        ...


class _ProgressReader:
    """File-like wrapper that reports how much of a request body was sent."""

    def __init__(self, data: bytes, on_progress: Optional[TransferCallback]) -> None:
        self._data = data
        self._offset = 0
        self._on_progress = on_progress
        self.len = len(data)

    def __len__(self) -> int:
        return self.len

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = self.len - self._offset
        chunk = self._data[self._offset : self._offset + size]
        self._offset += len(chunk)
        if chunk and self._on_progress is not None:
            self._on_progress(self._offset, self.len)
        return chunk


class WebDAVClient:
    """Minimal WebDAV client on top of :class:`requests.Session`.

    Parameters
    ----------
    url:
        Base URL of the WebDAV share. Every path is resolved below it.
    username, password:
        Optional basic-auth credentials.
    session:
        Optional ``requests.Session`` instance. Primarily intended for tests so
        that HTTP requests can be mocked.
    timeout:
        Seconds to wait for the server on each request.
    """

    def __init__(
        self,
        url: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self._session = session or requests.Session()
        if username:
            self._session.auth = (username, password or "")
        self._base_url = url.rstrip("/")
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def exists(self, path: str) -> bool:
        response = self._request("PROPFIND", path, headers={"Depth": "0"}, data=PROPFIND_BODY)
        if response.status_code == 404:
            return False
        self._ensure_success(response, path)
        return True

    def list_directory(self, path: str) -> List[RemoteEntry]:
        response = self._request("PROPFIND", path, headers={"Depth": "1"}, data=PROPFIND_BODY)
        self._ensure_success(response, path)
        return self._parse_multistatus(response.content, path)

    def create_directory(self, path: str) -> None:
        response = self._request("MKCOL", path)
        # 405 means the collection already exists.
        if response.status_code == 405:
            return
        self._ensure_success(response, path)

    def read_text(self, path: str, on_progress: Optional[TransferCallback] = None) -> str:
        return self.read_bytes(path, on_progress).decode("utf-8")

    def read_bytes(self, path: str, on_progress: Optional[TransferCallback] = None) -> bytes:
        response = self._request("GET", path, stream=True)
        try:
            self._ensure_success(response, path)
            total = int(response.headers.get("Content-Length") or 0)
            chunks: List[bytes] = []
            loaded = 0
            for chunk in self._iter_content(response, path):
                chunks.append(chunk)
                loaded += len(chunk)
                if on_progress is not None:
                    on_progress(loaded, total or loaded)
            return b"".join(chunks)
        finally:
            response.close()

    def write(
        self,
        path: str,
        data: Union[bytes, str],
        *,
        overwrite: bool = True,
        on_progress: Optional[TransferCallback] = None,
    ) -> bool:
        """Upload ``data``; returns ``False`` if the file existed and was kept."""

        payload = data.encode("utf-8") if isinstance(data, str) else data
        headers: Dict[str, str] = {"Content-Type": "application/octet-stream"}
        if not overwrite:
            headers["If-None-Match"] = "*"
        response = self._request(
            "PUT", path, headers=headers, data=_ProgressReader(payload, on_progress)
        )
        if not overwrite and response.status_code == 412:
            return False
        self._ensure_success(response, path)
        return True

    def delete(self, path: str) -> None:
        response = self._request("DELETE", path)
        self._ensure_success(response, path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{quote(path.strip('/'))}"

    def _request(self, method: str, path: str, **kwargs: object) -> requests.Response:
        url = self.url_for(path)
        logger.debug("%s %s", method, url)
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise RemoteConnectionError(f"WebDAV {method} {path} failed: {exc}") from exc

    def _iter_content(self, response: requests.Response, path: str) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            raise RemoteConnectionError(f"Download of {path} was interrupted: {exc}") from exc

    def _ensure_success(self, response: object, path: str) -> None:
        status = getattr(response, "status_code", None)
        if status == 404:
            raise RemoteNotFoundError(f"Remote path {path} does not exist.")
        if status in (401, 403):
            raise RemoteConnectionError(
                f"WebDAV server refused access to {path} (status code {status}); check the credentials."
            )
        if status is None or status >= 400:
            raise RemoteConnectionError(f"WebDAV request for {path} failed with status code {status}.")

    def _parse_multistatus(self, content: bytes, path: str) -> List[RemoteEntry]:
        try:
            root = etree.fromstring(content)
        except etree.XMLSyntaxError as exc:
            raise RemoteConnectionError(f"Received an invalid PROPFIND response for {path}") from exc

        own_path = unquote(urlsplit(self.url_for(path)).path).rstrip("/")
        entries: List[RemoteEntry] = []
        for response in root.iter(f"{{{DAV_NS}}}response"):
            href = response.findtext(f"{{{DAV_NS}}}href") or ""
            href_path = unquote(urlsplit(href).path).rstrip("/")
            if href_path == own_path:
                continue
            basename = href_path.rsplit("/", 1)[-1]
            is_dir = response.find(f".//{{{DAV_NS}}}resourcetype/{{{DAV_NS}}}collection") is not None
            size_text = response.findtext(f".//{{{DAV_NS}}}getcontentlength") or "0"
            entries.append(
                RemoteEntry(
                    basename=basename,
                    type="directory" if is_dir else "file",
                    size=int(size_text) if size_text.isdigit() else 0,
                )
            )
        return entries
