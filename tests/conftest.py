import logging
import shutil

import pytest

from childproc.logger import LOGGER_NAME
from childproc.settings import ProcessSettings


def _which(name: str) -> str:
    path = shutil.which(name)
    if path is None:
        pytest.skip(f"{name} not available")
    return path


@pytest.fixture
def sh_exe() -> str:
    return _which("sh")


@pytest.fixture
def cat_exe() -> str:
    return _which("cat")


@pytest.fixture
def grep_exe() -> str:
    return _which("grep")


@pytest.fixture
def true_exe() -> str:
    return _which("true")


@pytest.fixture
def fast_settings() -> ProcessSettings:
    """Short grace period so termination tests stay quick."""
    return ProcessSettings(grace_period_s=0.5, poll_interval_s=0.01)


@pytest.fixture
def restore_log_levels():
    pkg_logger = logging.getLogger(LOGGER_NAME)
    saved = pkg_logger.level
    yield pkg_logger
    pkg_logger.setLevel(saved)
