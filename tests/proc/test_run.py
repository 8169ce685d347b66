import os

import pytest

from childproc.errors import ExecutableNotFound
from childproc.proc import ProcessHandle, Result, run

pytestmark = pytest.mark.skipif(os.name != "posix", reason="POSIX-only tests")


def test_run_feeds_input_and_captures_output(cat_exe: str) -> None:
    result = run(cat_exe, input=b"hello\nworld\n")
    assert result == Result(returncode=0, stdout=b"hello\nworld\n", stderr=b"")


def test_run_captures_stderr_and_status(sh_exe: str) -> None:
    result = run(sh_exe, ["-c", "echo out; echo err >&2; exit 3"])
    assert result.returncode == 3
    assert result.stdout == b"out\n"
    assert result.stderr == b"err\n"


def test_run_reports_init_failure(true_exe: str) -> None:
    def _boom() -> None:
        raise RuntimeError("boom-123")

    result = run(true_exe, init=_boom)
    assert result.returncode == 1
    assert b"boom-123" in result.stderr


def test_run_missing_executable(tmp_path) -> None:
    with pytest.raises(ExecutableNotFound):
        run(tmp_path / "missing")


def test_run_child_ignoring_input(true_exe: str) -> None:
    # true never reads stdin; the rest of the input goes nowhere.
    result = run(true_exe, input=b"x" * 1_000_000)
    assert result == Result(returncode=0, stdout=b"", stderr=b"")


def test_run_init_failure_with_unread_input(true_exe: str) -> None:
    def _boom() -> None:
        raise RuntimeError("boom-123")

    result = run(true_exe, input=b"x" * 1_000_000, init=_boom)
    assert result.returncode == 1
    assert b"boom-123" in result.stderr


def test_run_reraises_reader_failure(cat_exe: str, monkeypatch: pytest.MonkeyPatch) -> None:
    class ReaderFailed(Exception):
        pass

    real_get_stdout = ProcessHandle.get_stdout

    def failing_get_stdout(self, fn, **kwargs):
        def _read(stream):
            stream.read()
            raise ReaderFailed()

        return real_get_stdout(self, _read, **kwargs)

    monkeypatch.setattr(ProcessHandle, "get_stdout", failing_get_stdout)
    with pytest.raises(ReaderFailed):
        run(cat_exe, input=b"data\n")
