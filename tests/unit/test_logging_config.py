"""Test logging setup"""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from irlab.logging_config import setup_logging

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_console_only():
    setup_logging(log_file=None, console_level=logging.WARNING)
    handlers = logging.getLogger().handlers
    assert len(handlers) == 1
    assert handlers[0].level == logging.WARNING


def test_session_file_created(tmp_path):
    setup_logging(log_file=str(tmp_path / "logs" / "ir-lab.log"))

    file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert list((tmp_path / "logs").glob("ir-lab_*.log"))


def test_old_sessions_cleaned_up(tmp_path):
    for i in range(6):
        (tmp_path / f"ir-lab_20240101_00000{i}.log").write_text("old")

    setup_logging(log_file=str(tmp_path / "ir-lab.log"), keep_sessions=3)

    remaining = sorted(p.name for p in tmp_path.glob("ir-lab_*.log"))
    assert len(remaining) == 3
    assert "ir-lab_20240101_000005.log" in remaining
    assert "ir-lab_20240101_000000.log" not in remaining
