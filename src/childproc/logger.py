from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

import structlog

LOGGER_NAME = "childproc"


@dataclass
class LogRecordEntry:
    logger_name: str
    level: int
    level_name: str
    message: str
    created: float


class LogManager:
    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._max_entries = max_entries
        self._records: list[LogRecordEntry] = []
        # Stream worker threads and spawning threads log concurrently.
        self._lock = threading.Lock()

    def add_record(self, record: logging.LogRecord) -> None:
        entry = LogRecordEntry(
            logger_name=record.name,
            level=record.levelno,
            level_name=record.levelname,
            message=record.getMessage(),
            created=record.created,
        )
        with self._lock:
            self._records.append(entry)
            if self._max_entries is not None and len(self._records) > self._max_entries:
                overflow = len(self._records) - self._max_entries
                del self._records[0:overflow]

    def get_records(self) -> list[LogRecordEntry]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class _InMemoryLogHandler(logging.Handler):
    def __init__(self, manager: LogManager) -> None:
        super().__init__()
        self._manager = manager

    def emit(self, record: logging.LogRecord) -> None:
        self._manager.add_record(record)


_log_manager: Optional[LogManager] = None
_log_handler: Optional[_InMemoryLogHandler] = None


def init_log_manager(max_entries: Optional[int] = None) -> LogManager:
    """Attach an in-memory handler to the childproc logger and return its manager.

    Calling it again returns the same manager; the handler is attached once.
    """
    global _log_manager, _log_handler
    if _log_manager is None:
        _log_manager = LogManager(max_entries=max_entries)
        _log_handler = _InMemoryLogHandler(_log_manager)

    pkg_logger = logging.getLogger(LOGGER_NAME)
    if _log_handler is not None and _log_handler not in pkg_logger.handlers:
        pkg_logger.addHandler(_log_handler)
    return _log_manager


def get_log_manager() -> Optional[LogManager]:
    return _log_manager


# The processor chain is bound to our logger only; the application's global
# structlog configuration is left untouched.
PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.dev.set_exc_info,
    structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
    structlog.dev.ConsoleRenderer(colors=False),
]

# Library: leave handler installation to the application.
logging.getLogger(LOGGER_NAME).addHandler(logging.NullHandler())

logger: structlog.stdlib.BoundLogger = structlog.wrap_logger(
    logging.getLogger(LOGGER_NAME),
    processors=PROCESSORS,
    wrapper_class=structlog.stdlib.BoundLogger,
)
