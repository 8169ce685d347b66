from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional, Protocol, Sequence

from childproc.settings import ProcessSettings

if TYPE_CHECKING:
    from .handle import ProcessHandle


class Redirect(enum.IntFlag):
    """Standard streams to bridge through pipes instead of inheriting them."""

    NONE = 0
    STDIN = 1 << 0
    STDOUT = 1 << 1
    STDERR = 1 << 2
    ALL = STDIN | STDOUT | STDERR


class StreamKind(enum.Enum):
    STDIN = "stdin"
    STDOUT = "stdout"
    STDERR = "stderr"

    @property
    def redirect(self) -> Redirect:
        return _KIND_REDIRECT[self]

    @property
    def fileno(self) -> int:
        # Descriptor slot the child sees the stream on.
        return _KIND_FILENO[self]

    @property
    def parent_writes(self) -> bool:
        return self is StreamKind.STDIN

    def __str__(self) -> str:
        return self.value


_KIND_REDIRECT: Dict[StreamKind, Redirect] = {
    StreamKind.STDIN: Redirect.STDIN,
    StreamKind.STDOUT: Redirect.STDOUT,
    StreamKind.STDERR: Redirect.STDERR,
}

_KIND_FILENO: Dict[StreamKind, int] = {
    StreamKind.STDIN: 0,
    StreamKind.STDOUT: 1,
    StreamKind.STDERR: 2,
}


def _noop() -> None:
    return None


@dataclass
class SpawnOptions:
    exe: str
    args: Sequence[str] = ()
    redirect: Redirect = Redirect.NONE
    # Runs in the child after fork and before exec. May raise.
    init: Callable[[], None] = _noop


class ProcessBackend(Protocol):
    settings: ProcessSettings

    def spawn(self, opts: SpawnOptions) -> "ProcessHandle": ...


# Backend registry
_BACKENDS: dict[str, Callable[[], ProcessBackend]] = {}


def register_backend(name: str, factory: Callable[[], ProcessBackend]) -> None:
    _BACKENDS[name] = factory


def get_backend(name: str, settings: Optional[ProcessSettings] = None) -> ProcessBackend:
    if name not in _BACKENDS:
        raise ValueError(f"Unknown process backend: {name!r}")
    backend = _BACKENDS[name]()
    if settings is not None:
        backend.settings = settings
    return backend
