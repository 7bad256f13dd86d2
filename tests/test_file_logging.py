"""Tests for console plus rotating file logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from session_assistant.app.logging_setup import configure_logging
from session_assistant.config.settings import LoggingSettings


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_configure_logging_writes_to_rotating_file(tmp_path, restore_root_logger):
    settings = LoggingSettings(level="DEBUG", file_name="assistant.log")
    handler = configure_logging(settings, log_dir=tmp_path / "logs")

    assert isinstance(handler, RotatingFileHandler)
    logging.getLogger("session_assistant.test").info("[Test] hello file")
    handler.flush()

    content = (tmp_path / "logs" / "assistant.log").read_text(encoding="utf-8")
    assert "[INFO] session_assistant.test: [Test] hello file" in content
    assert restore_root_logger.level == logging.DEBUG


def test_configure_logging_is_idempotent_per_file(tmp_path, restore_root_logger):
    settings = LoggingSettings(file_name="assistant.log")
    first = configure_logging(settings, log_dir=tmp_path)
    second = configure_logging(settings, log_dir=tmp_path)

    assert first is second
    rotating = [h for h in restore_root_logger.handlers if isinstance(h, RotatingFileHandler)]
    assert rotating.count(first) == 1


def test_configure_logging_without_dir_adds_no_file_handler(restore_root_logger):
    assert configure_logging(LoggingSettings(), log_dir=None) is None
