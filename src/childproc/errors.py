from __future__ import annotations

import os
from typing import Any


class ChildProcError(Exception):
    """Base class for every error raised by childproc in the calling process."""


class ExecutableNotFound(ChildProcError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Executable not found: {path}")
        self.path = path


class PipeCreationFailed(ChildProcError):
    def __init__(self, code: int) -> None:
        super().__init__(f"Error {code} creating the pipe: {os.strerror(code)}")
        self.code = code


class ForkFailed(ChildProcError):
    def __init__(self, code: int) -> None:
        super().__init__(f"Error {code} forking a new process: {os.strerror(code)}")
        self.code = code


class RedirectionNotRequested(ChildProcError):
    def __init__(self, kind: Any) -> None:
        super().__init__(f"Pipe for {kind} was not requested at construction")
        self.kind = kind


class PipeEndUnavailable(ChildProcError):
    def __init__(self, kind: Any) -> None:
        super().__init__(f"Pipe end for {kind} is closed or already taken")
        self.kind = kind


class ResultAlreadyConsumed(ChildProcError):
    pass
