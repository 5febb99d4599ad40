"""Tests for the logging module."""

import logging
import os

from log import get_logger, LOG_PATH, _resolve_log_dir, _writable


class TestGetLogger:
  def test_returns_logger(self):
    logger = get_logger("test_module")
    assert isinstance(logger, logging.Logger)

  def test_logger_has_handlers(self):
    logger = get_logger("test_handlers")
    assert len(logger.handlers) > 0

  def test_logger_name_prefixed(self):
    logger = get_logger("mymodule")
    assert logger.name == "snapmark.mymodule"

  def test_same_logger_returned_on_repeat(self):
    a = get_logger("same")
    b = get_logger("same")
    assert a is b

  def test_no_duplicate_handlers(self):
    name = "no_dupes"
    get_logger(name)
    get_logger(name)
    logger = get_logger(name)
    assert len(logger.handlers) <= 2  # file + console at most

  def test_does_not_propagate(self):
    assert get_logger("quiet").propagate is False

  def test_log_path_is_string(self):
    assert isinstance(LOG_PATH, str)
    assert LOG_PATH.endswith("snapmark.log")


class TestResolveLogDir:
  def test_returns_writable_directory(self):
    log_dir = _resolve_log_dir()
    assert os.path.isdir(log_dir)
    assert os.access(log_dir, os.W_OK)

  def test_writable_false_for_missing_directory(self, tmp_path):
    assert _writable(str(tmp_path / "missing" / "dir")) is False

  def test_writable_true_for_temp_directory(self, tmp_path):
    assert _writable(str(tmp_path)) is True
