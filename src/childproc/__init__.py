from childproc.errors import (
    ChildProcError,
    ExecutableNotFound,
    ForkFailed,
    PipeCreationFailed,
    PipeEndUnavailable,
    RedirectionNotRequested,
    ResultAlreadyConsumed,
)
from childproc.proc import (
    Failure,
    PipeSet,
    ProcessHandle,
    ProcessManager,
    Redirect,
    Result,
    StreamKind,
    StreamWorker,
    Success,
    run,
)
from childproc.settings import ProcessSettings, Settings, load_settings

__all__ = [
    "ChildProcError",
    "ExecutableNotFound",
    "Failure",
    "ForkFailed",
    "PipeCreationFailed",
    "PipeEndUnavailable",
    "PipeSet",
    "ProcessHandle",
    "ProcessManager",
    "ProcessSettings",
    "Redirect",
    "RedirectionNotRequested",
    "Result",
    "ResultAlreadyConsumed",
    "Settings",
    "StreamKind",
    "StreamWorker",
    "Success",
    "load_settings",
    "run",
]
