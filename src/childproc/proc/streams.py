from __future__ import annotations

import asyncio
import contextlib
import os
import threading
from dataclasses import dataclass
from typing import IO, Any, Callable, Optional, Union

from childproc.errors import ResultAlreadyConsumed

from .base import StreamKind


@dataclass(frozen=True)
class Success:
    """The bridging callback returned normally."""


@dataclass(frozen=True)
class Failure:
    """The bridging callback (or closing its stream) raised ``error``."""

    error: BaseException


Outcome = Union[Success, Failure]

StreamCallback = Callable[[IO[Any]], Any]


def _open_stream(
    fd: int, kind: StreamKind, text: bool, encoding: str, errors: str
) -> IO[Any]:
    mode = "w" if kind.parent_writes else "r"
    try:
        if text:
            return open(fd, mode, encoding=encoding, errors=errors, closefd=True)
        return open(fd, mode + "b", closefd=True)
    except BaseException:
        with contextlib.suppress(OSError):
            os.close(fd)
        raise


class StreamWorker:
    """
    Deferred result of one bridging task between a pipe end and a callback.

    The task runs on its own thread. Whatever the callback raises is kept and
    re-raised by get(), which may be called exactly once. The descriptor is
    closed when the task ends, whatever its outcome.
    """

    def __init__(
        self,
        kind: StreamKind,
        fd: int,
        fn: StreamCallback,
        *,
        text: bool = False,
        encoding: str = "utf-8",
        errors: str = "strict",
        name: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self._outcome: Optional[Outcome] = None
        self._consumed = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(
            target=self._run,
            args=(fd, fn, text, encoding, errors),
            name=name or f"childproc-{kind}",
            daemon=True,
        )

    def start(self) -> "StreamWorker":
        self._thread.start()
        return self

    def _run(
        self, fd: int, fn: StreamCallback, text: bool, encoding: str, errors: str
    ) -> None:
        try:
            stream = _open_stream(fd, self.kind, text, encoding, errors)
            try:
                fn(stream)
            except BaseException:
                # Keep the callback's error, not a secondary one from flushing.
                with contextlib.suppress(OSError):
                    stream.close()
                raise
            stream.close()
        except BaseException as exc:
            self._outcome = Failure(exc)
        else:
            self._outcome = Success()

    def done(self) -> bool:
        return self._outcome is not None and not self._thread.is_alive()

    @property
    def outcome(self) -> Optional[Outcome]:
        """Outcome without consuming it; None while the task is running."""
        if not self.done():
            return None
        return self._outcome

    def get(self, timeout: Optional[float] = None) -> None:
        """Block until the task ends, then return or raise its callback's error."""
        self._thread.join(timeout)
        if self._thread.is_alive():
            raise TimeoutError(f"{self.kind} worker still running after {timeout}s")

        with self._lock:
            if self._consumed:
                raise ResultAlreadyConsumed(f"{self.kind} worker result already consumed")
            self._consumed = True

        outcome = self._outcome
        if isinstance(outcome, Failure):
            raise outcome.error

    async def aget(self, timeout: Optional[float] = None) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._thread.join, timeout)
        self.get(timeout=0)
