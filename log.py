"""Centralized logging for Snapmark."""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from logging.handlers import RotatingFileHandler

LOG_FILENAME = "snapmark.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 3


def _writable(directory: str) -> bool:
  try:
    with open(os.path.join(directory, LOG_FILENAME), "a"):
      pass
  except OSError:
    return False
  return True


def _resolve_log_dir() -> str:
  """Pick a writable directory for the log file.

  Priority: app dir > per-user state dir > temp dir.
  """
  if getattr(sys, "frozen", False):
    app_dir = os.path.dirname(sys.executable)
  else:
    app_dir = os.path.dirname(os.path.abspath(__file__))
  if _writable(app_dir):
    return app_dir

  if sys.platform == "win32":
    base = os.environ.get("APPDATA", "")
    state_dir = os.path.join(base, "Snapmark") if base else ""
  else:
    base = os.environ.get("XDG_STATE_HOME", os.path.expanduser("~/.local/state"))
    state_dir = os.path.join(base, "snapmark")
  if state_dir:
    try:
      os.makedirs(state_dir, exist_ok=True)
      return state_dir
    except OSError:
      pass

  return tempfile.gettempdir()


LOG_PATH = os.path.join(_resolve_log_dir(), LOG_FILENAME)

_formatter = logging.Formatter(
  "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
  datefmt="%Y-%m-%d %H:%M:%S",
)

try:
  _file_handler = RotatingFileHandler(
    LOG_PATH, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8",
  )
  _file_handler.setFormatter(_formatter)
except OSError:
  _file_handler = None

_console_handler = logging.StreamHandler()
_console_handler.setFormatter(_formatter)


def get_logger(name: str) -> logging.Logger:
  """Get a named ``snapmark.*`` logger with file and console handlers."""
  logger = logging.getLogger(f"snapmark.{name}")
  if not logger.handlers:
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    if _file_handler:
      logger.addHandler(_file_handler)
    logger.addHandler(_console_handler)
  return logger
