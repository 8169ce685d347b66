from __future__ import annotations

import logging
from enum import Enum
from os import PathLike
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

import json5  # type: ignore
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from childproc.logger import LOGGER_NAME


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"
    disabled = "disabled"


LOG_LEVELS: Dict[LogLevel, int] = {
    LogLevel.debug: logging.DEBUG,
    LogLevel.info: logging.INFO,
    LogLevel.warning: logging.WARNING,
    LogLevel.error: logging.ERROR,
    LogLevel.critical: logging.CRITICAL,
    LogLevel.disabled: logging.CRITICAL + 1,
}


class LoggingSettings(BaseModel):
    # Level for the childproc logger unless overridden below.
    default_level: LogLevel = LogLevel.warning
    # Mapping of logger name -> level override (e.g., {"childproc.proc": "debug"})
    enabled_loggers: Dict[str, LogLevel] = Field(default_factory=dict)


class ProcessSettings(BaseModel):
    # Backend key in the process backend registry.
    backend: Literal["fork"] = "fork"
    # How long close()/terminate() waits after SIGTERM before sending SIGKILL.
    grace_period_s: float = 3.0
    # Interval between non-blocking reap attempts during the grace period.
    poll_interval_s: float = 0.01
    # Exit status of a child whose init callback raised.
    init_failure_exit_code: int = 1
    # Exit status of a child whose execv call failed.
    exec_failure_exit_code: int = 1

    @field_validator("grace_period_s", "poll_interval_s")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator("init_failure_exit_code", "exec_failure_exit_code")
    @classmethod
    def _exit_code_range(cls, v: int) -> int:
        if not 1 <= v <= 255:
            raise ValueError("child failure exit codes must be in 1..255")
        return v

    @model_validator(mode="after")
    def _poll_within_grace(self) -> "ProcessSettings":
        if self.poll_interval_s == 0 and self.grace_period_s > 0:
            raise ValueError("poll_interval_s must be > 0 when grace_period_s > 0")
        return self


class Settings(BaseModel):
    process: ProcessSettings = Field(default_factory=ProcessSettings)
    logging: Optional[LoggingSettings] = Field(default=None)


def _read_mapping(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return yaml.safe_load(text)
    if suffix in (".json", ".json5"):
        return json5.loads(text)
    raise ValueError(f"Unsupported settings file type: {path.suffix!r}")


def load_settings(path: Union[str, PathLike[str]]) -> Settings:
    """Load Settings from a YAML or JSON5 file. An empty file yields defaults."""
    data = _read_mapping(Path(path))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return Settings.model_validate(data)


def apply_logging_settings(logging_settings: Optional[LoggingSettings]) -> None:
    if logging_settings is None:
        logging_settings = LoggingSettings()

    default_level = LOG_LEVELS.get(logging_settings.default_level, logging.WARNING)
    logging.getLogger(LOGGER_NAME).setLevel(default_level)

    for logger_name, level in logging_settings.enabled_loggers.items():
        override_level = LOG_LEVELS.get(level, default_level)
        logging.getLogger(logger_name).setLevel(override_level)
