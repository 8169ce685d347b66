from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from os import PathLike
from typing import Callable, Dict, Optional, Sequence, Union

from childproc.logger import logger
from childproc.settings import ProcessSettings

from .base import ProcessBackend, Redirect, SpawnOptions, _noop, get_backend
from .handle import ProcessHandle


class ProcessManager:
    """Keeps the handles spawned for one owner and shuts them all down together."""

    def __init__(
        self,
        *,
        backend_name: str = "fork",
        settings: Optional[ProcessSettings] = None,
    ) -> None:
        self._settings = settings or ProcessSettings()
        self._backend: ProcessBackend = get_backend(backend_name, self._settings)
        self._procs: Dict[int, ProcessHandle] = {}
        self._lock = threading.Lock()

    @property
    def settings(self) -> ProcessSettings:
        return self._settings

    def _prune(self) -> None:
        # Drop handles that have been waited on; their pid may be reused.
        for pid in [pid for pid, h in self._procs.items() if h.pid is None]:
            del self._procs[pid]

    def list(self) -> list[ProcessHandle]:
        """Handles whose process has not been reaped yet."""
        with self._lock:
            self._prune()
            return list(self._procs.values())

    def get(self, pid: int) -> Optional[ProcessHandle]:
        with self._lock:
            return self._procs.get(pid)

    def spawn(
        self,
        exe: Union[str, PathLike[str]],
        args: Sequence[str] = (),
        redirect: Redirect = Redirect.NONE,
        init: Optional[Callable[[], None]] = None,
    ) -> ProcessHandle:
        opts = SpawnOptions(
            exe=str(exe),
            args=list(args),
            redirect=Redirect(redirect),
            init=init or _noop,
        )
        handle = self._backend.spawn(opts)
        assert handle.pid is not None
        with self._lock:
            self._prune()
            self._procs[handle.pid] = handle
        return handle

    def forget(self, pid: int) -> Optional[ProcessHandle]:
        """Stop tracking ``pid`` and hand its handle back to the caller."""
        with self._lock:
            return self._procs.pop(pid, None)

    def shutdown(self, *, grace_s: Optional[float] = None) -> None:
        with self._lock:
            handles = list(self._procs.values())
            self._procs.clear()
        if not handles:
            return

        logger.debug("shutting down processes", count=len(handles))

        def _stop(handle: ProcessHandle) -> None:
            if grace_s is not None:
                try:
                    handle.terminate(grace_s=grace_s)
                except Exception as exc:
                    logger.warning("terminate failed", pid=handle.pid, err=exc)
            handle.close()

        # Each handle may spend its whole grace period; run them side by side.
        with ThreadPoolExecutor(max_workers=len(handles)) as pool:
            list(pool.map(_stop, handles))

    def __enter__(self) -> "ProcessManager":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
