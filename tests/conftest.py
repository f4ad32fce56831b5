"""
Pytest fixtures for fswatcher tests
"""
import logging
from pathlib import Path

import pytest

from fswatcher.utils.file_utils import normalize_path
from fswatcher.watcher.ledger import SelfModificationLedger
from tests.helpers import FakeClock, FakeSleep


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Only errors reach the console during tests"""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(logging.ERROR)
    handler.setFormatter(logging.Formatter('%(asctime)s | %(levelname)-8s | %(name)s - %(message)s'))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield


@pytest.fixture
def root(tmp_path) -> Path:
    """Empty watched directory, as an absolute canonical path"""
    directory = tmp_path / "watched"
    directory.mkdir()
    return Path(normalize_path(directory))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def ledger(clock) -> SelfModificationLedger:
    return SelfModificationLedger(window=10.0, clock=clock)
