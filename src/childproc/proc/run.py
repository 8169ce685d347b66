"""Spawn, feed and capture in one call."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from os import PathLike
from typing import IO, Any, Callable, Optional, Sequence, Union

from childproc.settings import ProcessSettings

from .base import Redirect
from .handle import ProcessHandle
from .streams import StreamWorker


@dataclass
class Result:
    returncode: Optional[int]
    stdout: bytes
    stderr: bytes


def run(
    exe: Union[str, PathLike[str]],
    args: Sequence[str] = (),
    input: Optional[bytes] = None,
    init: Optional[Callable[[], None]] = None,
    settings: Optional[ProcessSettings] = None,
) -> Result:
    """Run a program to completion and capture its output.

    ``input`` is written to stdin when given; otherwise stdin is inherited.
    A child that exits without reading all of it is not an error.
    A failing stream worker is re-raised after the process has been reaped.
    """
    redirect = Redirect.STDOUT | Redirect.STDERR
    if input is not None:
        redirect |= Redirect.STDIN

    out: list[bytes] = []
    err: list[bytes] = []

    def _collect(sink: list[bytes]) -> Callable[[IO[Any]], None]:
        def _read(stream: IO[Any]) -> None:
            sink.append(stream.read())

        return _read

    def _feed(data: bytes) -> Callable[[IO[Any]], None]:
        def _write(stream: IO[Any]) -> None:
            # Write through the raw file so nothing is left buffered for close()
            # to flush into a pipe the child has already abandoned.
            raw = stream.raw  # type: ignore[attr-defined]
            view = memoryview(data)
            with contextlib.suppress(BrokenPipeError):
                while view:
                    view = view[raw.write(view):]

        return _write

    with ProcessHandle(exe, args, redirect, init, settings=settings) as chld:
        workers: list[StreamWorker] = []
        if input is not None:
            workers.append(chld.make_stdin(_feed(input)))
        workers.append(chld.get_stdout(_collect(out)))
        workers.append(chld.get_stderr(_collect(err)))

        first_error: Optional[BaseException] = None
        for worker in workers:
            try:
                worker.get()
            except BaseException as exc:
                if first_error is None:
                    first_error = exc
        returncode = chld.wait()

    if first_error is not None:
        raise first_error
    return Result(returncode=returncode, stdout=b"".join(out), stderr=b"".join(err))
