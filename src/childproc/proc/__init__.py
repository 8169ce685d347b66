from .base import Redirect, SpawnOptions, StreamKind, get_backend, register_backend
from .handle import ForkExecBackend, ProcessHandle
from .manager import ProcessManager
from .pipes import PipeSet
from .run import Result, run
from .streams import Failure, StreamWorker, Success

register_backend("fork", lambda: ForkExecBackend())

__all__ = [
    "Failure",
    "ForkExecBackend",
    "PipeSet",
    "ProcessHandle",
    "ProcessManager",
    "Redirect",
    "Result",
    "SpawnOptions",
    "StreamKind",
    "StreamWorker",
    "Success",
    "get_backend",
    "register_backend",
    "run",
]
