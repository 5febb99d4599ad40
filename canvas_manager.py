"""Drawing surface: the captured base layer, a working copy, and fit-to-container scaling."""

from __future__ import annotations

import base64
import binascii
import contextlib
from collections.abc import Iterable, Iterator
from typing import Callable, TypeVar

from PySide6.QtCore import QBuffer, QByteArray, QIODevice, QObject, QSize, QTimer, Signal
from PySide6.QtGui import QImage, QPainter

from errors import LoadError
from log import get_logger

log = get_logger("canvas")

DEFAULT_FIT_MARGIN = 20
RESIZE_DEBOUNCE_MS = 300
SURFACE_FORMAT = QImage.Format.Format_ARGB32_Premultiplied

T = TypeVar("T")


def decode_image(data: bytes | str | QImage) -> QImage:
  """Decode PNG/JPEG bytes, a base64 data URL, or pass a QImage through."""
  if isinstance(data, QImage):
    image = QImage(data)
  else:
    if isinstance(data, str):
      if not data.startswith("data:"):
        raise LoadError("Expected a data URL")
      _, _, payload = data.partition(",")
      try:
        data = base64.b64decode(payload, validate=True)
      except (binascii.Error, ValueError) as e:
        raise LoadError(f"Corrupt data URL: {e}") from e
    image = QImage()
    image.loadFromData(data)
  if image.isNull() or image.width() <= 0 or image.height() <= 0:
    raise LoadError("Failed to decode image")
  return image


def encode_png(image: QImage) -> bytes:
  array = QByteArray()
  buf = QBuffer(array)
  buf.open(QIODevice.OpenModeFlag.WriteOnly)
  ok = image.save(buf, "PNG")
  buf.close()
  if not ok:
    raise LoadError("Failed to encode image as PNG")
  return bytes(array.data())


def _size_of(container) -> tuple[int, int]:
  if isinstance(container, QSize):
    return container.width(), container.height()
  if hasattr(container, "size") and callable(container.size):
    size = container.size()
    return size.width(), size.height()
  width, height = container
  return int(width), int(height)


class CanvasManager(QObject):
  """Owns the pixel buffers annotations are drawn on.

  ``base`` is the decoded capture and is never painted on. ``surface`` is the
  working layer: redraw copies the base into it and paints annotations on top.
  """

  ready_changed = Signal(bool)
  fitted = Signal(float)

  def __init__(self, fit_margin: int = DEFAULT_FIT_MARGIN,
               resize_debounce_ms: int = RESIZE_DEBOUNCE_MS,
               parent: QObject | None = None):
    super().__init__(parent)
    self.fit_margin = fit_margin
    self._base: QImage | None = None
    self._surface: QImage | None = None
    self._ready = False
    self._fit_scale = 1.0
    self._pending_container: tuple[int, int] | None = None

    self._resize_timer = QTimer(self)
    self._resize_timer.setSingleShot(True)
    self._resize_timer.setInterval(resize_debounce_ms)
    self._resize_timer.timeout.connect(self._flush_fit)

  # -- State ------------------------------------------------------------------

  @property
  def is_ready(self) -> bool:
    return self._ready

  @property
  def fit_scale(self) -> float:
    return self._fit_scale

  @property
  def original_size(self) -> tuple[int, int]:
    if self._base is None:
      return 0, 0
    return self._base.width(), self._base.height()

  @property
  def backing_size(self) -> tuple[int, int]:
    if self._surface is None:
      return 0, 0
    return self._surface.width(), self._surface.height()

  @property
  def display_size(self) -> tuple[float, float]:
    w, h = self.original_size
    return w * self._fit_scale, h * self._fit_scale

  @property
  def base(self) -> QImage | None:
    return self._base

  @property
  def surface(self) -> QImage | None:
    return self._surface

  def dimensions_text(self) -> str:
    w, h = self.original_size
    text = f"{w}×{h}px"
    if self._fit_scale < 1:
      text += f" ({round(self._fit_scale * 100)}% scale)"
    return text

  # -- Loading ----------------------------------------------------------------

  def load(self, data: bytes | str | QImage) -> tuple[int, int]:
    """Decode ``data`` into the base layer. Raises LoadError."""
    self._set_ready(False)
    try:
      image = decode_image(data)
    except LoadError:
      log.error("Failed to load image onto the canvas")
      raise
    self._base = image.convertToFormat(SURFACE_FORMAT)
    self._surface = self._base.copy()
    self._fit_scale = 1.0
    self._set_ready(True)
    log.debug("Canvas loaded: %dx%d", self._base.width(), self._base.height())
    return self._base.width(), self._base.height()

  def _set_ready(self, ready: bool) -> None:
    if ready != self._ready:
      self._ready = ready
      self.ready_changed.emit(ready)

  # -- Fit --------------------------------------------------------------------

  def fit(self, container) -> float:
    """Scale the capture to fit ``container`` (QSize, widget, or (w, h)) without upscaling."""
    if not self._ready:
      return self._fit_scale
    cw, ch = _size_of(container)
    ow, oh = self.original_size
    available_w = cw - self.fit_margin
    available_h = ch - self.fit_margin
    if available_w > 0 and available_h > 0:
      scale = min(available_w / ow, available_h / oh, 1.0)
    else:
      scale = 1.0
    self._fit_scale = scale
    log.debug("Fit %dx%d into %dx%d: scale %.3f", ow, oh, cw, ch, scale)
    self.fitted.emit(scale)
    return scale

  def schedule_fit(self, container) -> None:
    """Debounced fit: only the last call in a burst of resizes is applied."""
    self._pending_container = _size_of(container)
    self._resize_timer.start()

  def _flush_fit(self) -> None:
    if self._pending_container is not None:
      container, self._pending_container = self._pending_container, None
      self.fit(container)

  # -- Painting ---------------------------------------------------------------

  @contextlib.contextmanager
  def painter(self) -> Iterator[QPainter]:
    if self._surface is None:
      raise RuntimeError("Canvas has no surface to paint on")
    p = QPainter(self._surface)
    p.setRenderHint(QPainter.RenderHint.Antialiasing)
    try:
      yield p
    finally:
      p.end()

  def snapshot(self) -> QImage | None:
    return self._surface.copy() if self._surface is not None else None

  def restore(self, snapshot: QImage) -> None:
    with self.painter() as p:
      p.setCompositionMode(QPainter.CompositionMode.CompositionMode_Source)
      p.drawImage(0, 0, snapshot)

  def redraw(self, annotations: Iterable[T],
             draw_fn: Callable[[QPainter, T], None]) -> bool:
    """Restore the clean base layer, then draw each annotation in order."""
    if not self._ready:
      return False
    self.restore(self._base)
    with self.painter() as p:
      for ann in annotations:
        draw_fn(p, ann)
    return True

  def encoded_result(self) -> bytes:
    """PNG of the base layer with annotations flattened on top."""
    if not self._ready:
      raise LoadError("Canvas is not ready")
    return encode_png(self._surface)

  def reset(self) -> None:
    self._resize_timer.stop()
    self._pending_container = None
    self._base = None
    self._surface = None
    self._fit_scale = 1.0
    self._set_ready(False)
