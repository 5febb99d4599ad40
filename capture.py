"""Viewport capture with the app's own overlays hidden."""

from __future__ import annotations

import asyncio
import base64
import dataclasses
from collections.abc import Sequence
from typing import Protocol

import mss
from mss.exception import ScreenShotError
from PySide6.QtCore import QCoreApplication, QRect
from PySide6.QtGui import QImage
from PySide6.QtWidgets import QApplication, QScrollArea, QWidget

from canvas_manager import decode_image, encode_png
from errors import AlreadyInProgressError, CaptureError
from log import get_logger

log = get_logger("capture")

SETTLE_DELAY = 0.25
SETTLE_POLL_INTERVAL = 0.01
DEFAULT_OVERLAY_NAMES = ("snapmarkAnnotator", "snapmarkToolbar", "snapmarkLoading")


@dataclasses.dataclass(frozen=True)
class Viewport:
  """Visible rectangle in the pixel space of the full capture."""
  x: int
  y: int
  width: int
  height: int

  def rect(self) -> QRect:
    return QRect(self.x, self.y, self.width, self.height)


@dataclasses.dataclass(frozen=True)
class CaptureResult:
  image: QImage
  encoded: bytes
  width: int
  height: int

  @property
  def data_url(self) -> str:
    return "data:image/png;base64," + base64.b64encode(self.encoded).decode("ascii")


@dataclasses.dataclass
class HiddenWidget:
  """A widget hidden for the capture and the state to put back afterwards."""
  widget: QWidget
  name: str
  was_hidden: bool
  geometry: QRect


class CaptureBackend(Protocol):
  def viewport(self) -> Viewport: ...

  def grab_full(self) -> QImage: ...


# -- Backends -----------------------------------------------------------------

class WidgetCaptureBackend:
  """Render a widget's full content; for a QScrollArea, crop to what is scrolled into view."""

  def __init__(self, target: QWidget):
    self.target = target

  def _content(self) -> QWidget:
    if isinstance(self.target, QScrollArea) and self.target.widget() is not None:
      return self.target.widget()
    return self.target

  def viewport(self) -> Viewport:
    dpr = self.target.devicePixelRatioF()
    if isinstance(self.target, QScrollArea) and self.target.widget() is not None:
      view = self.target.viewport()
      return Viewport(
        round(self.target.horizontalScrollBar().value() * dpr),
        round(self.target.verticalScrollBar().value() * dpr),
        round(view.width() * dpr),
        round(view.height() * dpr),
      )
    return Viewport(0, 0, round(self.target.width() * dpr), round(self.target.height() * dpr))

  def grab_full(self) -> QImage:
    return self._content().grab().toImage()


class ScreenCaptureBackend:
  """Grab every monitor with mss and crop to one of them."""

  def __init__(self, monitor: int = 1):
    self.monitor = monitor

  def viewport(self) -> Viewport:
    with mss.mss() as sct:
      desktop = sct.monitors[0]
      index = self.monitor if 0 <= self.monitor < len(sct.monitors) else 0
      mon = sct.monitors[index]
    return Viewport(
      mon["left"] - desktop["left"], mon["top"] - desktop["top"],
      mon["width"], mon["height"],
    )

  def grab_full(self) -> QImage:
    with mss.mss() as sct:
      raw = sct.grab(sct.monitors[0])
      return QImage(
        bytes(raw.bgra), raw.width, raw.height, QImage.Format.Format_ARGB32,
      ).copy()


# -- Helpers ------------------------------------------------------------------

def crop_to_viewport(full: QImage, viewport: Viewport) -> QImage:
  """Pixel-for-pixel copy of the viewport; parts outside ``full`` are transparent."""
  return full.copy(viewport.rect())


def find_overlays(names: Sequence[str]) -> list[tuple[str, QWidget]]:
  app = QApplication.instance()
  if app is None:
    return []
  found = []
  seen = set()
  for top in QApplication.topLevelWidgets():
    candidates = [top] + top.findChildren(QWidget)
    for widget in candidates:
      name = widget.objectName()
      if name in names and id(widget) not in seen:
        seen.add(id(widget))
        found.append((name, widget))
  return found


def hide_overlays(names: Sequence[str]) -> list[HiddenWidget]:
  """Hide matching widgets and return what is needed to restore them."""
  hidden = []
  for name, widget in find_overlays(names):
    try:
      record = HiddenWidget(widget, name, widget.isHidden(), widget.geometry())
      widget.hide()
    except RuntimeError as e:
      log.warning("Could not hide overlay '%s': %s", name, e)
      continue
    hidden.append(record)
    log.debug("Overlay '%s' hidden (was hidden: %s)", name, record.was_hidden)
  return hidden


def restore_overlays(hidden: Sequence[HiddenWidget]) -> None:
  """Put every widget back as it was; one failure does not stop the rest."""
  for record in hidden:
    widget = record.widget
    try:
      widget.setHidden(record.was_hidden)
      # the window manager owns maximized and fullscreen geometry
      if not (widget.isMaximized() or widget.isFullScreen()):
        widget.setGeometry(record.geometry)
    except RuntimeError as e:
      log.warning("Could not restore overlay '%s': %s", record.name, e)


# -- Processor ----------------------------------------------------------------

class ScreenshotProcessor:
  """Runs one capture at a time: hide, settle, grab, crop, restore, encode."""

  def __init__(self, backend: CaptureBackend | None,
               overlay_names: Sequence[str] = DEFAULT_OVERLAY_NAMES,
               settle_delay: float = SETTLE_DELAY):
    self.backend = backend
    self.overlay_names = tuple(overlay_names)
    self.settle_delay = settle_delay
    self.original_screenshot = b""
    self._processing = False

  @property
  def is_processing(self) -> bool:
    return self._processing

  async def capture(self) -> CaptureResult:
    """Capture the current viewport.

    Raises AlreadyInProgressError if another capture is running and
    CaptureError if the backend is missing or fails.
    """
    if self._processing:
      raise AlreadyInProgressError("Screenshot already in progress")
    if self.backend is None:
      raise CaptureError("No capture backend available")
    self._processing = True
    log.debug("Capture started")
    try:
      hidden = hide_overlays(self.overlay_names)
      try:
        await self._settle()
        image = self._grab_viewport()
      finally:
        restore_overlays(hidden)
      self.original_screenshot = encode_png(image)
    finally:
      self._processing = False

    log.info("Captured %dx%d viewport", image.width(), image.height())
    return CaptureResult(image, self.original_screenshot, image.width(), image.height())

  async def _settle(self) -> None:
    """Wait for layout to settle, letting Qt repaint while we wait."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + self.settle_delay
    while True:
      if QCoreApplication.instance() is not None:
        QCoreApplication.processEvents()
      remaining = deadline - loop.time()
      if remaining <= 0:
        return
      await asyncio.sleep(min(remaining, SETTLE_POLL_INTERVAL))

  def _grab_viewport(self) -> QImage:
    try:
      viewport = self.backend.viewport()
      full = self.backend.grab_full()
    except ScreenShotError as e:
      log.error("Screen capture failed: %s", e)
      raise CaptureError(f"Screen capture failed: {e}") from e
    except Exception as e:
      log.error("Capture backend failed: %s", e)
      raise CaptureError(f"Capture backend failed: {e}") from e
    if full is None or full.isNull():
      raise CaptureError("Capture backend returned an empty image")
    log.debug("Full capture %dx%d, cropping to %s", full.width(), full.height(), viewport)
    return crop_to_viewport(full, viewport)

  def decode_image(self, data: bytes | str) -> QImage:
    """Decode an encoded capture back into an image (raises LoadError)."""
    return decode_image(data)

  def clear(self) -> None:
    self.original_screenshot = b""
