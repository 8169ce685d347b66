from __future__ import annotations

import contextlib
import os
import signal
import threading
import time
from os import PathLike
from typing import Any, Callable, NoReturn, Optional, Sequence, Union

from childproc.errors import ExecutableNotFound, ForkFailed
from childproc.logger import logger
from childproc.settings import ProcessSettings

from .base import ProcessBackend, Redirect, SpawnOptions, StreamKind, _noop
from .pipes import PipeSet
from .streams import StreamCallback, StreamWorker

# Creating the pipes and forking must never overlap between threads: a fork
# taken while another thread is halfway through its own pipe+fork sequence
# copies a descriptor table that is not in a consistent state. Every spawn in
# the process goes through this one lock; it guards no data, only that
# sequence.
_FORK_LOCK = threading.Lock()


def _write_stderr(text: str) -> None:
    with contextlib.suppress(OSError):
        os.write(2, text.encode("utf-8", errors="replace"))


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


def _child_main(
    pipes: PipeSet,
    exe: str,
    argv: list[str],
    init: Callable[[], None],
    settings: ProcessSettings,
) -> NoReturn:
    # Runs between fork and exec. Nothing here may return into caller code,
    # so every path ends in os._exit().
    try:
        pipes.attach_child_ends()
        # Python ignores SIGPIPE; the new program should get the default.
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)
    except BaseException as exc:
        _write_stderr(f"childproc: error preparing child process: {_describe(exc)}\n")
        os._exit(settings.exec_failure_exit_code)

    try:
        init()
    except BaseException as exc:
        _write_stderr(
            f"childproc: exception in initialization function: {_describe(exc)}\n"
        )
        os._exit(settings.init_failure_exit_code)

    try:
        os.execv(exe, argv)
    except OSError as exc:
        _write_stderr(f"childproc: error {exc.errno} executing {exe}: {exc.strerror}\n")
    except BaseException as exc:
        _write_stderr(f"childproc: error executing {exe}: {_describe(exc)}\n")
    os._exit(settings.exec_failure_exit_code)


class ProcessHandle:
    """
    Runs an executable in a child process and owns it until it is reaped.

    The child is started by the constructor (pipes, fork, exec). No shell is
    involved: ``args`` are handed to the new program verbatim; to run a shell
    command spawn ``/bin/sh`` with ``["-c", "..."]``.

    ``redirect`` selects which standard streams are connected to pipes; use
    make_stdin(), get_stdout() and get_stderr() to talk to them. ``init`` runs
    in the child before exec (e.g. to chdir or set environment variables). If
    it raises, a message is written to the child's stderr and the child exits
    with a non-zero status; the constructor has already returned by then.

    close() (also called on context exit and garbage collection) sends
    SIGTERM, waits up to the grace period, then SIGKILLs and reaps. Handles
    can be moved with move() but not copied.
    """

    def __init__(
        self,
        exe: Union[str, PathLike[str]],
        args: Sequence[str] = (),
        redirect: Redirect = Redirect.NONE,
        init: Optional[Callable[[], None]] = None,
        *,
        settings: Optional[ProcessSettings] = None,
    ) -> None:
        self._init_state(os.fspath(exe), list(args), Redirect(redirect), settings)

        if not os.path.exists(self.exe):
            raise ExecutableNotFound(self.exe)

        self._spawn(init or _noop)

    def _init_state(
        self,
        exe: str,
        args: list[str],
        redirect: Redirect,
        settings: Optional[ProcessSettings],
    ) -> None:
        self.pid: Optional[int] = None
        self.exe = exe
        self.args = args
        self.redirect = redirect
        self.settings = settings or ProcessSettings()
        self.returncode: Optional[int] = None
        self._pipes = PipeSet()
        # Only the process that spawned the child may signal or reap it; a
        # forked copy of this object must leave it alone.
        self._owner_pid = os.getpid()

    def _spawn(self, init: Callable[[], None]) -> None:
        argv = [self.exe, *self.args]

        with _FORK_LOCK:
            pipes = PipeSet.create(self.redirect)
            try:
                pid = os.fork()
            except OSError as e:
                pipes.close_all()
                raise ForkFailed(e.errno or 0) from e

            if pid == 0:
                _child_main(pipes, self.exe, argv, init, self.settings)

            pipes.close_child_ends()
            self._pipes = pipes
            self.pid = pid

        logger.debug(
            "process spawned",
            pid=pid,
            exe=self.exe,
            args=self.args,
            redirect=self.redirect.name,
        )

    def __repr__(self) -> str:
        return f"<ProcessHandle pid={self.pid} exe={self.exe!r}>"

    # Ownership

    def __copy__(self) -> NoReturn:
        raise TypeError("ProcessHandle cannot be copied; use move()")

    def __deepcopy__(self, memo: Any) -> NoReturn:
        raise TypeError("ProcessHandle cannot be copied; use move()")

    def move(self) -> "ProcessHandle":
        """Return a new handle owning this process and its pipes; this one is left empty."""
        other = type(self).__new__(type(self))
        other._init_state(self.exe, self.args, self.redirect, self.settings)
        other.pid, self.pid = self.pid, None
        other.returncode = self.returncode
        other._owner_pid = self._owner_pid
        other._pipes = self._pipes.move()
        self.redirect = Redirect.NONE
        return other

    @property
    def pipes(self) -> PipeSet:
        return self._pipes

    def alive(self) -> bool:
        return self.pid is not None

    def _owns_process(self) -> bool:
        return self.pid is not None and os.getpid() == self._owner_pid

    # Reaping

    def _reaped(self, pid: int, status: int) -> int:
        self.pid = None
        code = os.waitstatus_to_exitcode(status)
        self.returncode = code
        logger.debug("process reaped", pid=pid, returncode=code)
        return code

    def _forget(self, pid: int) -> None:
        # Someone else reaped it.
        self.pid = None
        logger.debug("process already reaped elsewhere", pid=pid)

    def wait(self) -> Optional[int]:
        """
        Block until the child exits and return its exit code (``-N`` if it was
        killed by signal N). Returns None once the child has been reaped.
        """
        pid = self.pid
        if pid is None or not self._owns_process():
            return None
        try:
            _, status = os.waitpid(pid, 0)
        except ChildProcessError:
            self._forget(pid)
            return None
        return self._reaped(pid, status)

    join = wait

    def poll(self) -> Optional[int]:
        """Reap the child if it has exited, without blocking."""
        pid = self.pid
        if pid is None or not self._owns_process():
            return None
        try:
            wpid, status = os.waitpid(pid, os.WNOHANG)
        except ChildProcessError:
            self._forget(pid)
            return None
        if wpid == 0:
            return None
        return self._reaped(pid, status)

    def terminate(self, grace_s: Optional[float] = None) -> Optional[int]:
        """
        SIGTERM the child, give it ``grace_s`` seconds (default from settings)
        to exit, then SIGKILL it. Always reaps. Returns the exit code, or None
        when no process is tracked.
        """
        pid = self.pid
        if pid is None or not self._owns_process():
            return None
        grace = self.settings.grace_period_s if grace_s is None else grace_s

        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("SIGTERM target already gone", pid=pid)

        deadline = time.monotonic() + grace
        while True:
            code = self.poll()
            if self.pid is None:
                return code
            if time.monotonic() >= deadline:
                break
            time.sleep(self.settings.poll_interval_s)

        logger.debug("grace period elapsed, sending SIGKILL", pid=pid, grace_s=grace)
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("SIGKILL target already gone", pid=pid)

        # Zombie trap
        return self.wait()

    def close(self) -> None:
        """Terminate and reap the child, then close any pipe ends still held. Never raises."""
        try:
            self.terminate()
        except Exception as exc:
            logger.warning("failed to terminate child process", pid=self.pid, err=exc)
        finally:
            self._pipes.close_all()

    def __enter__(self) -> "ProcessHandle":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __del__(self) -> None:
        if "_pipes" not in self.__dict__:
            return
        self.close()

    # Pipes

    def stream_fd(self, kind: StreamKind) -> int:
        return self._pipes.stream_fd(kind)

    def _bridge(
        self,
        kind: StreamKind,
        fn: StreamCallback,
        text: bool,
        encoding: str,
        errors: str,
    ) -> StreamWorker:
        fd = self._pipes.take(kind)
        logger.debug("stream worker started", pid=self.pid, stream=str(kind), fd=fd)
        return StreamWorker(
            kind,
            fd,
            fn,
            text=text,
            encoding=encoding,
            errors=errors,
            name=f"childproc-{kind}-{self.pid}",
        ).start()

    def make_stdin(
        self,
        fn: StreamCallback,
        *,
        text: bool = False,
        encoding: str = "utf-8",
        errors: str = "strict",
    ) -> StreamWorker:
        """
        Write into the child's stdin from a new thread. ``fn`` receives a
        writable stream; it is closed when ``fn`` returns or raises, which
        gives the child end-of-file.

            with ProcessHandle("/bin/cat", redirect=Redirect.STDIN) as chld:
                w = chld.make_stdin(lambda f: f.write(b"hello\\n"))
                w.get()  # raises what fn raised
                chld.wait()
        """
        return self._bridge(StreamKind.STDIN, fn, text, encoding, errors)

    def get_stdout(
        self,
        fn: StreamCallback,
        *,
        text: bool = False,
        encoding: str = "utf-8",
        errors: str = "strict",
    ) -> StreamWorker:
        """Read the child's stdout from a new thread; ``fn`` receives a readable stream."""
        return self._bridge(StreamKind.STDOUT, fn, text, encoding, errors)

    def get_stderr(
        self,
        fn: StreamCallback,
        *,
        text: bool = False,
        encoding: str = "utf-8",
        errors: str = "strict",
    ) -> StreamWorker:
        return self._bridge(StreamKind.STDERR, fn, text, encoding, errors)


class ForkExecBackend(ProcessBackend):
    def __init__(self, settings: Optional[ProcessSettings] = None) -> None:
        self.settings: ProcessSettings = settings or ProcessSettings()

    def spawn(self, opts: SpawnOptions) -> ProcessHandle:
        return ProcessHandle(
            opts.exe,
            opts.args,
            opts.redirect,
            opts.init,
            settings=self.settings,
        )
