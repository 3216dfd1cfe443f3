"""Exceptions and failure records raised by the library synchroniser."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ShelfSyncError(RuntimeError):
    """Base class for every error raised by :mod:`shelfsync`."""


class RemoteConnectionError(ShelfSyncError):
    """Raised when the remote store is unreachable or rejects a request."""


class RemoteNotFoundError(RemoteConnectionError):
    """Raised when a remote path does not exist."""


class PreconditionError(ShelfSyncError):
    """Raised when an operation cannot start because its inputs are invalid."""


class PartialSyncError(ShelfSyncError):
    """Raised when pushing to the remote fails after local state was saved."""


@dataclass(frozen=True)
class LookupFailure:
    """An imported annotation whose text could not be found in the book."""

    heading: str
    text: str
    annotation: Optional[str] = None

    def describe(self) -> str:
        description = f"{self.heading} highlight: {self.text}"
        if self.annotation:
            description += f" note: {self.annotation}"
        return description

    def __str__(self) -> str:
        return self.describe()
