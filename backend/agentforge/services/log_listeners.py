"""Logging setup and a listener fan-out for log records.

Components that want to observe log output (a UI log panel, a session
recorder) register a plain callable on LogListenerHandler instead of wrapping
loggers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from agentforge.config import settings

LogListener = Callable[[dict[str, Any]], None]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class LogListenerHandler(logging.Handler):
    def __init__(self, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._listeners: list[LogListener] = []

    def add_listener(self, listener: LogListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: LogListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, record: logging.LogRecord) -> None:
        entry = {
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
        }
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                self.handleError(record)


listener_handler = LogListenerHandler()


def configure_logging(level: str | int | None = None) -> None:
    """Configure the root logger once; later calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level or settings.LOG_LEVEL)
    if listener_handler not in root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
        root.addHandler(listener_handler)
