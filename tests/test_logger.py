"""Tests for console and file logging setup."""
import logging
import os

from skiff.core.logger import default_log_file, get_logger, setup_file_logging


def test_default_log_file_is_per_project(tmp_path):
    assert default_log_file(tmp_path) == tmp_path / ".skiff" / "skiff.log"


def test_records_reach_project_log(tmp_path):
    path = setup_file_logging(working_dir=tmp_path)

    get_logger("skiff.tests.logger").info("reconciled dev")
    for handler in logging.getLogger("skiff").handlers:
        handler.flush()

    assert path == tmp_path / ".skiff" / "skiff.log"
    assert "reconciled dev" in path.read_text()


def test_verbose_keeps_debug_records(tmp_path):
    path = setup_file_logging(log_file=str(tmp_path / "debug.log"), verbose=True)
    try:
        get_logger("skiff.tests.logger").debug("staged 3 parameters")
        for handler in logging.getLogger("skiff").handlers:
            handler.flush()
        assert "staged 3 parameters" in path.read_text()
    finally:
        setup_file_logging(log_file=str(tmp_path / "quiet.log"))


def test_new_target_replaces_handler(tmp_path):
    setup_file_logging(log_file=str(tmp_path / "a.log"))
    setup_file_logging(log_file=str(tmp_path / "b.log"))

    files = [
        h.baseFilename for h in logging.getLogger("skiff").handlers
        if isinstance(h, logging.FileHandler)
    ]
    assert files == [os.path.abspath(tmp_path / "b.log")]


def test_console_handler_added_once():
    logger = get_logger("skiff.tests.once")
    get_logger("skiff.tests.once")
    assert len(logger.handlers) == 1
