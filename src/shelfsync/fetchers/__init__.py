"""Remote stores the library can be mirrored to."""
from .webdav import RemoteEntry, RemoteStore, WebDAVClient

__all__ = ["RemoteEntry", "RemoteStore", "WebDAVClient"]
