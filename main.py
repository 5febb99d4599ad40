from __future__ import annotations

import asyncio
import functools
import json
import os
import platform
import subprocess
import sys
from typing import Any

from PySide6.QtCore import Qt, QObject, Signal
from PySide6.QtGui import QIcon, QImage, QPixmap, QPainter, QColor
from PySide6.QtWidgets import QApplication, QSystemTrayIcon, QMenu
from pynput import keyboard

from annotations import DEFAULT_COLOR, DEFAULT_STROKE_WIDTH
from annotator import Annotator
from capture import DEFAULT_OVERLAY_NAMES, ScreenCaptureBackend, ScreenshotProcessor
from errors import CaptureError, LoadError
from log import get_logger
from platform_utils import (
  copy_image_to_clipboard, default_save_folder, save_image, set_dpi_awareness,
)

log = get_logger("main")

MAX_HISTORY = 5
APP_NAME = "Snapmark"

# When frozen as exe, config lives next to the executable
if getattr(sys, "frozen", False):
  APP_DIR = os.path.dirname(sys.executable)
else:
  APP_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.path.join(APP_DIR, "config.json")


CONFIG_VERSION = 1

DEFAULT_CONFIG = {
  "config_version": CONFIG_VERSION,
  "save_folder": default_save_folder(),
  "save_to_disk": True,
  "copy_to_clipboard": True,
  "filename_prefix": "snapmark",
  "filename_suffix": "%Y-%m-%d_%H-%M-%S",
  "hotkey_capture": "<ctrl>+<alt>+<shift>+s",
  "capture_monitor": 1,
  "settle_delay_ms": 250,
  "overlay_object_names": list(DEFAULT_OVERLAY_NAMES),
  "default_tool": "freehand",
  "default_color": DEFAULT_COLOR,
  "stroke_width": DEFAULT_STROKE_WIDTH,
  "max_undo_levels": 50,
  "min_zoom": 0.1,
  "max_zoom": 5.0,
  "zoom_step": 0.2,
  "resize_debounce_ms": 300,
  "fit_margin": 20,
}


def migrate_config(config: dict[str, Any]) -> bool:
  """Fill in missing keys from defaults and bump version. Returns True if changed."""
  version = config.get("config_version", 1)
  changed = False

  for key, default_val in DEFAULT_CONFIG.items():
    if key not in config:
      config[key] = default_val
      log.info("Config migration: added '%s' = %r", key, default_val)
      changed = True

  if version < CONFIG_VERSION:
    config["config_version"] = CONFIG_VERSION
    changed = True
    log.info("Config migrated from v%d to v%d", version, CONFIG_VERSION)

  return changed


def load_config() -> dict[str, Any]:
  if not os.path.exists(CONFIG_PATH):
    log.info("No config found, creating defaults at %s", CONFIG_PATH)
    save_config(DEFAULT_CONFIG)
    return dict(DEFAULT_CONFIG)
  try:
    with open(CONFIG_PATH) as f:
      config = json.load(f)
  except json.JSONDecodeError as e:
    log.error("Corrupted config file, resetting to defaults: %s", e)
    save_config(DEFAULT_CONFIG)
    return dict(DEFAULT_CONFIG)
  except OSError as e:
    log.error("Cannot read config file: %s", e)
    return dict(DEFAULT_CONFIG)

  if migrate_config(config):
    save_config(config)
  return config


def save_config(config: dict[str, Any]) -> None:
  try:
    with open(CONFIG_PATH, "w") as f:
      json.dump(config, f, indent=2)
      f.write("\n")
  except OSError as e:
    log.error("Failed to save config: %s", e)


# Tray icon geometry (64x64 canvas)
_ICON_SIZE = 64
_ICON_BODY_COLOR = "#ef4444"
_ICON_LENS_OUTER_COLOR = "white"
_ICON_LENS_INNER_COLOR = "#7f1d1d"
_ICON_BODY_RECT = (4, 16, 56, 40)
_ICON_BODY_RADIUS = 8
_ICON_LENS_OUTER = (22, 24, 20, 24)
_ICON_LENS_INNER = (27, 29, 10, 14)
_ICON_FLASH_RECT = (24, 10, 16, 8)
_ICON_MARK_COLOR = "#facc15"
_ICON_MARK_LINE = (44, 52, 60, 36)


def create_tray_icon() -> QIcon:
  """Camera glyph with a pen stroke across the corner."""
  pixmap = QPixmap(_ICON_SIZE, _ICON_SIZE)
  pixmap.fill(QColor(0, 0, 0, 0))

  painter = QPainter(pixmap)
  painter.setRenderHint(QPainter.RenderHint.Antialiasing)
  painter.setPen(Qt.PenStyle.NoPen)

  # Camera body
  painter.setBrush(QColor(_ICON_BODY_COLOR))
  painter.drawRoundedRect(*_ICON_BODY_RECT, _ICON_BODY_RADIUS, _ICON_BODY_RADIUS)

  # Lens
  painter.setBrush(QColor(_ICON_LENS_OUTER_COLOR))
  painter.drawEllipse(*_ICON_LENS_OUTER)
  painter.setBrush(QColor(_ICON_LENS_INNER_COLOR))
  painter.drawEllipse(*_ICON_LENS_INNER)

  # Flash bump
  painter.setBrush(QColor(_ICON_BODY_COLOR))
  painter.drawRect(*_ICON_FLASH_RECT)

  # Annotation mark
  pen = painter.pen()
  pen.setStyle(Qt.PenStyle.SolidLine)
  pen.setColor(QColor(_ICON_MARK_COLOR))
  pen.setWidth(5)
  pen.setCapStyle(Qt.PenCapStyle.RoundCap)
  painter.setPen(pen)
  painter.drawLine(*_ICON_MARK_LINE)

  painter.end()
  return QIcon(pixmap)


class HotkeyBridge(QObject):
  """Bridge pynput hotkey events to Qt's main thread via signals."""
  capture_triggered = Signal()


def format_hotkey_display(pynput_str: str) -> str:
  """Convert pynput hotkey format to user-friendly display format.

  '<ctrl>+<alt>+<shift>+s' -> 'Ctrl + Alt + Shift + S'
  """
  if not pynput_str:
    return ""
  parts = pynput_str.split("+")
  nice = []
  for p in parts:
    p = p.strip()
    if p.startswith("<") and p.endswith(">"):
      nice.append(p[1:-1].capitalize())
    else:
      nice.append(p.upper())
  return " + ".join(nice)


class Snapmark:
  def __init__(self) -> None:
    self.config: dict[str, Any] = load_config()
    self.capturing: bool = False
    self.tray_icon: QSystemTrayIcon | None = None
    self.capture_history: list[str] = []
    self._annotator: Annotator | None = None
    self._last_capture_path: str | None = None

    folder = os.path.expanduser(self.config.get("save_folder", ""))
    if folder and self.config.get("save_to_disk", True):
      try:
        os.makedirs(folder, exist_ok=True)
      except OSError as e:
        log.warning("Cannot create save folder '%s': %s", folder, e)

  @property
  def annotator(self) -> Annotator:
    """Created on first use so it is built after the QApplication."""
    if self._annotator is None:
      self._annotator = self._create_annotator()
    return self._annotator

  def _create_annotator(self) -> Annotator:
    cfg = self.config
    processor = ScreenshotProcessor(
      ScreenCaptureBackend(monitor=cfg.get("capture_monitor", 1)),
      overlay_names=cfg.get("overlay_object_names", DEFAULT_OVERLAY_NAMES),
      settle_delay=cfg.get("settle_delay_ms", 250) / 1000.0,
    )
    return Annotator(
      processor=processor,
      on_done=self._on_annotator_done,
      default_tool=cfg.get("default_tool", "freehand"),
      default_color=cfg.get("default_color", DEFAULT_COLOR),
      stroke_width=cfg.get("stroke_width", DEFAULT_STROKE_WIDTH),
      max_undo_levels=cfg.get("max_undo_levels", 50),
      min_zoom=cfg.get("min_zoom", 0.1),
      max_zoom=cfg.get("max_zoom", 5.0),
      zoom_step=cfg.get("zoom_step", 0.2),
      fit_margin=cfg.get("fit_margin", 20),
      resize_debounce_ms=cfg.get("resize_debounce_ms", 300),
    )

  def trigger_capture(self) -> None:
    """Capture the screen and open the annotator on the result."""
    if self.capturing:
      return
    self.capturing = True

    annotator = self.annotator
    try:
      asyncio.run(annotator.capture())
    except (CaptureError, LoadError) as e:
      self._on_annotator_done(None, error=str(e))
      return

    annotator.showMaximized()
    annotator.raise_()
    annotator.activateWindow()
    annotator.setFocus()

  def _on_annotator_done(self, encoded: bytes | None, error: str | None = None) -> None:
    self.capturing = False

    # User cancelled -- reset state silently, no notification
    if error == "cancelled":
      return

    if error or not encoded:
      error = error or "Nothing was captured"
      log.error("Capture error: %s", error)
      self._notify(error, QSystemTrayIcon.MessageIcon.Critical, 4000)
      return

    filepath = None
    if self.config.get("save_to_disk", True):
      filepath = save_image(
        encoded, self.config["save_folder"],
        prefix=self.config.get("filename_prefix", "snapmark"),
        suffix=self.config.get("filename_suffix", "%Y-%m-%d_%H-%M-%S"),
      )

    copied = False
    if self.config.get("copy_to_clipboard", True):
      copied = copy_image_to_clipboard(QImage.fromData(encoded))

    if not filepath and not copied:
      self._notify("Could not save or copy the annotated image",
                   QSystemTrayIcon.MessageIcon.Critical, 4000)
      return

    if filepath:
      self.capture_history.append(filepath)
      if len(self.capture_history) > MAX_HISTORY:
        self.capture_history = self.capture_history[-MAX_HISTORY:]
      self._last_capture_path = filepath
      log.info("Captured: %s", filepath)

    msg = os.path.basename(filepath) if filepath else "Copied to clipboard"
    self._notify(msg, QSystemTrayIcon.MessageIcon.Information, 3000)

  def _notify(self, message: str, icon: QSystemTrayIcon.MessageIcon, msecs: int) -> None:
    if self.tray_icon:
      self.tray_icon.showMessage(APP_NAME, message, icon, msecs)

  def _on_notification_clicked(self) -> None:
    """Open the most recent capture in file explorer."""
    if self._last_capture_path and os.path.exists(self._last_capture_path):
      self._show_in_explorer(self._last_capture_path)

  @staticmethod
  def _show_in_explorer(filepath: str) -> None:
    try:
      system = platform.system()
      if system == "Windows":
        subprocess.Popen(["explorer", "/select,", os.path.normpath(filepath)])
      elif system == "Darwin":
        subprocess.Popen(["open", "-R", filepath])
      else:
        subprocess.Popen(["xdg-open", os.path.dirname(filepath)])
    except OSError as e:
      log.warning("Failed to open file explorer: %s", e)

  def _start_hotkey_listener(self) -> None:
    default_str = DEFAULT_CONFIG["hotkey_capture"]
    hotkey_str = self.config.get("hotkey_capture", default_str)
    try:
      hotkey = keyboard.HotKey(keyboard.HotKey.parse(hotkey_str),
                               self.hotkey_bridge.capture_triggered.emit)
    except ValueError as e:
      log.error("Invalid hotkey '%s': %s -- using default '%s'", hotkey_str, e, default_str)
      hotkey = keyboard.HotKey(keyboard.HotKey.parse(default_str),
                               self.hotkey_bridge.capture_triggered.emit)

    def on_press(k):
      hotkey.press(self._listener.canonical(k))

    def on_release(k):
      hotkey.release(self._listener.canonical(k))

    self._listener = keyboard.Listener(on_press=on_press, on_release=on_release)
    self._listener.start()
    log.debug("Hotkey listener started (capture=%s)", hotkey_str)

  def _rebuild_tray_menu(self) -> None:
    self.tray_menu.clear()

    capture_hk = format_hotkey_display(self.config.get("hotkey_capture", ""))
    capture_action = self.tray_menu.addAction("Capture  (%s)" % capture_hk)
    capture_action.triggered.connect(self.trigger_capture)

    if self.capture_history:
      self.tray_menu.addSeparator()
      for path in reversed(self.capture_history):
        action = self.tray_menu.addAction(os.path.basename(path))
        action.triggered.connect(functools.partial(self._show_in_explorer, path))

    self.tray_menu.addSeparator()
    exit_action = self.tray_menu.addAction("Exit")
    exit_action.triggered.connect(self.app.quit)

  def run(self) -> None:
    set_dpi_awareness()
    self.app = QApplication(sys.argv)
    self.app.setQuitOnLastWindowClosed(False)

    # Hotkey bridge: pynput thread -> Qt main thread
    self.hotkey_bridge = HotkeyBridge()
    self.hotkey_bridge.capture_triggered.connect(
      self.trigger_capture, Qt.ConnectionType.QueuedConnection,
    )

    self._start_hotkey_listener()

    self.tray_icon = QSystemTrayIcon(create_tray_icon(), self.app)
    self.tray_icon.setToolTip(APP_NAME)

    self.tray_menu = QMenu()
    self.tray_menu.aboutToShow.connect(self._rebuild_tray_menu)
    self.tray_icon.setContextMenu(self.tray_menu)

    self.tray_icon.messageClicked.connect(self._on_notification_clicked)
    self.tray_icon.show()

    self.app.aboutToQuit.connect(self._shutdown)

    log.info("Snapmark running (capture=%s)", self.config.get("hotkey_capture"))

    exit_code = self.app.exec()
    sys.exit(exit_code)

  def _shutdown(self) -> None:
    """Clean up resources before the application exits."""
    try:
      self._listener.stop()
    except Exception as e:
      log.warning("Failed to stop hotkey listener on shutdown: %s", e)
    log.info("Snapmark exiting")


def main() -> None:
  Snapmark().run()


if __name__ == "__main__":
  main()
