"""Configuration helpers for the library synchroniser."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_REMOTE_ROOT = "Library"
DEFAULT_PAGE_CHARS = 600


@dataclass
class SyncConfig:
    """Holds configuration for the local library and its WebDAV mirror."""

    library_root: Path = Path("./library")
    webdav_url: Optional[str] = None
    webdav_user: Optional[str] = None
    webdav_password: Optional[str] = None
    remote_root: str = DEFAULT_REMOTE_ROOT
    page_chars: int = DEFAULT_PAGE_CHARS
    timeout: float = 30.0

    @property
    def has_remote(self) -> bool:
        return bool(self.webdav_url)

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "SyncConfig":
        kwargs: Dict[str, Any] = {}
        if "library_root" in data and data["library_root"]:
            kwargs["library_root"] = Path(data["library_root"])
        if "webdav_url" in data and data["webdav_url"]:
            kwargs["webdav_url"] = str(data["webdav_url"])
        if "webdav_user" in data and data["webdav_user"]:
            kwargs["webdav_user"] = str(data["webdav_user"])
        if "webdav_password" in data and data["webdav_password"]:
            kwargs["webdav_password"] = str(data["webdav_password"])
        if "remote_root" in data and data["remote_root"]:
            kwargs["remote_root"] = str(data["remote_root"]).strip("/")
        if "page_chars" in data and data["page_chars"]:
            kwargs["page_chars"] = int(data["page_chars"])
        if "timeout" in data and data["timeout"]:
            kwargs["timeout"] = float(data["timeout"])
        return cls(**kwargs)


def load_config(path: Optional[Path]) -> Dict[str, Any]:
    """Load a JSON configuration file if provided."""

    if path is None:
        return {}
    with path.expanduser().resolve().open("r", encoding="utf-8") as handle:
        return json.load(handle)
