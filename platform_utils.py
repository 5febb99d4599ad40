"""Platform-specific utilities for clipboard, DPI handling, and saving results."""

from __future__ import annotations

import os
import platform
from datetime import datetime

from PySide6.QtGui import QGuiApplication, QImage

from log import get_logger

log = get_logger("platform")

SYSTEM = platform.system()


def set_dpi_awareness():
  """Set DPI awareness on Windows so coordinates match screen pixels."""
  if SYSTEM == "Windows":
    import ctypes
    try:
      ctypes.windll.shcore.SetProcessDpiAwareness(2)
    except OSError as e:
      log.warning("Could not set DPI awareness: %s", e)


def copy_image_to_clipboard(image: QImage) -> bool:
  """Put ``image`` on the system clipboard. Returns False if there is no clipboard."""
  if QGuiApplication.instance() is None:
    log.warning("No QGuiApplication; clipboard unavailable")
    return False
  try:
    clipboard = QGuiApplication.clipboard()
    if clipboard is None:
      return False
    clipboard.setImage(image)
  except RuntimeError as e:
    log.error("Clipboard copy failed: %s", e)
    return False
  log.debug("Copied %dx%d image to clipboard", image.width(), image.height())
  return True


def default_save_folder():
  """Return a sensible default screenshot folder per platform."""
  home = os.path.expanduser("~")

  if SYSTEM == "Windows":
    # Check OneDrive first, then local
    onedrive = os.path.join(home, "OneDrive", "Pictures", "Screenshots")
    if os.path.isdir(onedrive):
      return "~/OneDrive/Pictures/Screenshots"
    return "~/Pictures/Screenshots"
  elif SYSTEM == "Darwin":
    return "~/Desktop"
  return "~/Pictures/Screenshots"


def build_filename(prefix: str, suffix: str, when: datetime | None = None) -> str:
  """``prefix_<strftime(suffix)>.png``; either part may be empty."""
  when = when or datetime.now()
  stamp = when.strftime(suffix) if suffix else ""
  parts = [p for p in (prefix, stamp) if p]
  return "_".join(parts or ["snapmark"]) + ".png"


def save_image(encoded: bytes, folder: str, prefix: str = "snapmark",
               suffix: str = "%Y-%m-%d_%H-%M-%S") -> str | None:
  """Write an encoded PNG into ``folder``. Returns the path, or None on failure.

  An existing file of the same name is not overwritten; a counter is appended.
  """
  folder = os.path.expanduser(folder)
  try:
    os.makedirs(folder, exist_ok=True)
  except OSError as e:
    log.error("Cannot create save folder '%s': %s", folder, e)
    return None

  name = build_filename(prefix, suffix)
  path = os.path.join(folder, name)
  stem, ext = os.path.splitext(path)
  counter = 1
  while os.path.exists(path):
    path = f"{stem}_{counter}{ext}"
    counter += 1

  try:
    with open(path, "wb") as f:
      f.write(encoded)
  except OSError as e:
    log.error("Failed to save image to '%s': %s", path, e)
    return None
  log.info("Saved %s (%d bytes)", path, len(encoded))
  return path
