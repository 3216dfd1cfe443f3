"""Keeps an EPUB library and its reading state in sync with a WebDAV mirror."""

from .config import SyncConfig
from .library import Library
from .models import Book, BookConfig, BookNote, Bookshelf

__all__ = ["SyncConfig", "Library", "Book", "BookConfig", "BookNote", "Bookshelf"]
