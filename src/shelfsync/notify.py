"""User notification sinks."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

INFO = "info"
WARNING = "warning"
ERROR = "error"

_LEVELS = {INFO: logging.INFO, WARNING: logging.WARNING, ERROR: logging.ERROR}

ProgressCallback = Callable[[str], None]


class Notifier(Protocol):
    def show(self, message: str, level: str = INFO) -> None:
        ...


class LoggingNotifier:
    """Sends notifications to the ``shelfsync`` logger."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def show(self, message: str, level: str = INFO) -> None:
        self._log.log(_LEVELS.get(level, logging.INFO), message)


def percent(loaded: int, total: Optional[int]) -> int:
    if not total:
        return 100
    return int(loaded * 100 // total)


def ignore_progress(_message: str) -> None:
    return None
