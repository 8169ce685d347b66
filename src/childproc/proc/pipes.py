from __future__ import annotations

import contextlib
import fcntl
import os
from typing import Dict, Optional, Tuple

from childproc.errors import PipeCreationFailed, PipeEndUnavailable, RedirectionNotRequested

from .base import Redirect, StreamKind

_CLOSED = -1


def _parent_index(kind: StreamKind) -> int:
    # The parent keeps the write end of stdin and the read end of stdout/stderr.
    return 1 if kind.parent_writes else 0


def _close(fd: int) -> None:
    if fd >= 0:
        with contextlib.suppress(OSError):
            os.close(fd)


class PipeSet:
    """
    Zero to three pipe pairs, one per redirected standard stream.

    Each pair is stored as [read_end, write_end]; ends that have been closed
    or handed over to someone else are set to -1.
    """

    def __init__(self, redirect: Redirect = Redirect.NONE) -> None:
        self.redirect = Redirect(redirect)
        self._fds: Dict[StreamKind, list[int]] = {}

    @classmethod
    def create(cls, redirect: Redirect) -> "PipeSet":
        pipes = cls(redirect)
        try:
            for kind in StreamKind:
                if pipes.redirect & kind.redirect:
                    # os.pipe() descriptors are non-inheritable, so only the
                    # slots dup'ed onto 0/1/2 survive exec.
                    read_end, write_end = os.pipe()
                    pipes._fds[kind] = [read_end, write_end]
        except OSError as e:
            pipes.close_all()
            raise PipeCreationFailed(e.errno or 0) from e
        return pipes

    def pair(self, kind: StreamKind) -> Optional[Tuple[int, int]]:
        fds = self._fds.get(kind)
        if fds is None:
            return None
        return fds[0], fds[1]

    def close_child_ends(self) -> None:
        """Parent side, after fork: drop the ends that belong to the child."""
        for kind, fds in self._fds.items():
            idx = 1 - _parent_index(kind)
            _close(fds[idx])
            fds[idx] = _CLOSED

    def attach_child_ends(self) -> None:
        """Child side, after fork: drop the parent ends and wire 0/1/2."""
        for kind, fds in self._fds.items():
            parent_idx = _parent_index(kind)
            _close(fds[parent_idx])
            fds[parent_idx] = _CLOSED

        # Lift every child end above 2 first so no dup2 below can clobber
        # another stream's end that happened to land on a standard slot.
        for kind, fds in self._fds.items():
            child_idx = 1 - _parent_index(kind)
            lifted = fcntl.fcntl(fds[child_idx], fcntl.F_DUPFD_CLOEXEC, 3)
            _close(fds[child_idx])
            fds[child_idx] = lifted

        for kind, fds in self._fds.items():
            os.dup2(fds[1 - _parent_index(kind)], kind.fileno)

    def stream_fd(self, kind: StreamKind) -> int:
        """Return the descriptor the parent keeps for ``kind``."""
        fds = self._fds.get(kind)
        if fds is None:
            raise RedirectionNotRequested(kind)
        fd = fds[_parent_index(kind)]
        if fd < 0:
            raise PipeEndUnavailable(kind)
        return fd

    def take(self, kind: StreamKind) -> int:
        """Like stream_fd(), but the caller becomes responsible for closing it."""
        fd = self.stream_fd(kind)
        self._fds[kind][_parent_index(kind)] = _CLOSED
        return fd

    def open_fds(self) -> list[int]:
        return [fd for fds in self._fds.values() for fd in fds if fd >= 0]

    def close_all(self) -> None:
        for fds in self._fds.values():
            for idx, fd in enumerate(fds):
                _close(fd)
                fds[idx] = _CLOSED

    def move(self) -> "PipeSet":
        """Transfer every descriptor into a new PipeSet; this one becomes empty."""
        other = PipeSet(self.redirect)
        other._fds = self._fds
        self._fds = {}
        self.redirect = Redirect.NONE
        return other
