import copy
import os
import random
import signal
import sys
import time
from pathlib import Path

import pytest

from childproc.errors import ExecutableNotFound
from childproc.proc import ProcessHandle, Redirect, StreamKind
from childproc.settings import ProcessSettings

pytestmark = pytest.mark.skipif(os.name != "posix", reason="POSIX-only tests")


def _read_all(chld: ProcessHandle, kind: StreamKind) -> str:
    chunks: list[str] = []
    if kind is StreamKind.STDOUT:
        worker = chld.get_stdout(lambda s: chunks.append(s.read()), text=True)
    else:
        worker = chld.get_stderr(lambda s: chunks.append(s.read()), text=True)
    worker.get()
    return "".join(chunks)


def _is_reaped(pid: int) -> bool:
    try:
        os.waitpid(pid, os.WNOHANG)
    except ChildProcessError:
        return True
    return False


def test_exec_writes_file_and_wait_returns_status_once(sh_exe: str, tmp_path: Path) -> None:
    data = random.randint(0, 1_000_000)
    out = tmp_path / "out.txt"

    chld = ProcessHandle(sh_exe, ["-c", f"echo {data} >{out} 2>&1"])

    assert chld.wait() == 0
    # Already reaped: sentinel, no blocking.
    assert chld.wait() is None
    assert chld.join() is None
    assert chld.returncode == 0
    assert not chld.alive()

    assert int(out.read_text().strip()) == data


def test_wait_returns_real_exit_code(sh_exe: str) -> None:
    chld = ProcessHandle(sh_exe, ["-c", "exit 42"])
    assert chld.wait() == 42


def test_wait_reports_signal_as_negative(sh_exe: str) -> None:
    chld = ProcessHandle(sh_exe, ["-c", "kill -KILL $$"])
    assert chld.wait() == -signal.SIGKILL


def test_missing_executable_raises_before_spawn(tmp_path: Path) -> None:
    missing = tmp_path / "does-not-exist"
    with pytest.raises(ExecutableNotFound) as ei:
        ProcessHandle(missing)
    assert ei.value.path == str(missing)


def test_arguments_are_not_shell_interpreted(tmp_path: Path) -> None:
    echo = "/bin/echo" if os.path.exists("/bin/echo") else "/usr/bin/echo"
    target = tmp_path / "redirected"
    chld = ProcessHandle(echo, ["*", f">{target}", "$HOME"], Redirect.STDOUT)
    text = _read_all(chld, StreamKind.STDOUT)
    assert chld.wait() == 0
    assert text == f"* >{target} $HOME\n"
    assert not target.exists()


def test_init_changes_child_state_only(tmp_path: Path) -> None:
    pwd = "/bin/pwd" if os.path.exists("/bin/pwd") else "/usr/bin/pwd"
    parent_cwd = os.getcwd()

    chld = ProcessHandle(pwd, redirect=Redirect.STDOUT, init=lambda: os.chdir(tmp_path))
    text = _read_all(chld, StreamKind.STDOUT)

    assert chld.wait() == 0
    assert Path(text.strip()).resolve() == tmp_path.resolve()
    assert os.getcwd() == parent_cwd


def test_init_environment_reaches_program(sh_exe: str) -> None:
    def _init() -> None:
        os.environ["CHILDPROC_TEST_VALUE"] = "from-init"

    chld = ProcessHandle(
        sh_exe, ["-c", 'printf %s "$CHILDPROC_TEST_VALUE"'], Redirect.STDOUT, _init
    )
    assert _read_all(chld, StreamKind.STDOUT) == "from-init"
    assert chld.wait() == 0
    assert "CHILDPROC_TEST_VALUE" not in os.environ


def test_failing_init_reports_on_stderr(true_exe: str) -> None:
    def _boom() -> None:
        raise RuntimeError("boom-123")

    chld = ProcessHandle(true_exe, redirect=Redirect.STDERR, init=_boom)
    err = _read_all(chld, StreamKind.STDERR)
    status = chld.wait()

    assert "boom-123" in err
    assert status == 1


def test_failing_init_uses_configured_exit_code(true_exe: str) -> None:
    class Payload(BaseException):
        pass

    def _boom() -> None:
        raise Payload()

    settings = ProcessSettings(init_failure_exit_code=7)
    chld = ProcessHandle(true_exe, redirect=Redirect.STDERR, init=_boom, settings=settings)
    err = _read_all(chld, StreamKind.STDERR)

    assert chld.wait() == 7
    assert "Payload" in err


def test_exec_failure_reports_on_stderr(tmp_path: Path) -> None:
    script = tmp_path / "not-executable"
    script.write_text("#!/bin/sh\nexit 0\n")
    script.chmod(0o644)

    chld = ProcessHandle(script, redirect=Redirect.STDERR)
    err = _read_all(chld, StreamKind.STDERR)

    assert chld.wait() == 1
    assert "executing" in err
    assert str(script) in err


def test_handle_cannot_be_copied(true_exe: str) -> None:
    chld = ProcessHandle(true_exe)
    with pytest.raises(TypeError):
        copy.copy(chld)
    with pytest.raises(TypeError):
        copy.deepcopy(chld)
    chld.wait()


def test_move_transfers_process_and_pipes(cat_exe: str) -> None:
    src = ProcessHandle(cat_exe, redirect=Redirect.STDIN | Redirect.STDOUT)
    pid = src.pid

    dst = src.move()

    assert dst.pid == pid
    assert src.pid is None
    assert src.wait() is None
    assert src.pipes.open_fds() == []
    src.close()  # empty handle: must not touch the moved process

    chunks: list[bytes] = []
    w = dst.make_stdin(lambda s: s.write(b"moved\n"))
    r = dst.get_stdout(lambda s: chunks.append(s.read()))
    w.get()
    r.get()
    assert dst.wait() == 0
    assert chunks == [b"moved\n"]


def test_close_terminates_running_process(sh_exe: str) -> None:
    chld = ProcessHandle(sh_exe, ["-c", "exec sleep 60"])
    pid = chld.pid
    assert pid is not None

    start = time.monotonic()
    chld.close()

    assert time.monotonic() - start < 3.0
    assert chld.pid is None
    assert chld.returncode == -signal.SIGTERM
    assert _is_reaped(pid)
    # Idempotent
    chld.close()


def test_context_manager_closes(sh_exe: str) -> None:
    with ProcessHandle(sh_exe, ["-c", "exec sleep 60"]) as chld:
        pid = chld.pid
        assert chld.alive()
    assert chld.pid is None
    assert _is_reaped(pid)


def test_close_kills_process_ignoring_sigterm(fast_settings: ProcessSettings) -> None:
    code = (
        "import signal, sys, time\n"
        "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
        "sys.stdout.write('ready\\n'); sys.stdout.flush()\n"
        "time.sleep(60)\n"
    )
    chld = ProcessHandle(
        sys.executable, ["-c", code], Redirect.STDOUT, settings=fast_settings
    )
    pid = chld.pid
    # Wait until the handler is installed.
    assert os.read(chld.stream_fd(StreamKind.STDOUT), 6) == b"ready\n"

    start = time.monotonic()
    chld.close()
    elapsed = time.monotonic() - start

    assert fast_settings.grace_period_s <= elapsed < fast_settings.grace_period_s + 5.0
    assert chld.returncode == -signal.SIGKILL
    assert _is_reaped(pid)
    assert chld.pipes.open_fds() == []


def test_terminate_returns_status_of_exited_process(sh_exe: str) -> None:
    chld = ProcessHandle(sh_exe, ["-c", "exit 3"])
    # Block until it has exited without reaping it; SIGTERM then hits a zombie.
    os.waitid(os.P_PID, chld.pid, os.WEXITED | os.WNOWAIT)
    assert chld.terminate(grace_s=1.0) == 3
    assert chld.terminate() is None


def test_poll_does_not_block(sh_exe: str) -> None:
    chld = ProcessHandle(sh_exe, ["-c", "exec sleep 60"])
    assert chld.poll() is None
    assert chld.alive()
    chld.close()
    assert chld.poll() is None
