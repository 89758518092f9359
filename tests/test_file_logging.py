"""Tests for configure_logging."""

import logging
from logging.handlers import RotatingFileHandler

from fitcoach_voice.app.log_setup import configure_logging


def _restore_root(handlers, level):
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_configure_logging_writes_to_rotating_file(tmp_path):
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    log_file = tmp_path / "logs" / "voice.log"
    try:
        configure_logging(logging.INFO, log_file)
        file_handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].backupCount == 0

        logging.getLogger("fitcoach_voice.test").info("[Server] hello")
        file_handlers[0].flush()
        content = log_file.read_text(encoding="utf-8")
        assert "[INFO] fitcoach_voice.test: [Server] hello" in content
    finally:
        _restore_root(saved, level)


def test_configure_logging_without_file_has_single_stream_handler():
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    try:
        configure_logging(logging.DEBUG)
        configure_logging(logging.DEBUG)
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert logging.getLogger("websockets").level == logging.WARNING
    finally:
        _restore_root(saved, level)
