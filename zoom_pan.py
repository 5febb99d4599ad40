"""User zoom and pan layered on top of the canvas fit scale."""

from __future__ import annotations

from PySide6.QtCore import QObject, QPointF, Qt, Signal

from log import get_logger

log = get_logger("zoompan")

MIN_ZOOM = 0.1
MAX_ZOOM = 5.0
ZOOM_STEP = 0.2
PINCH_IN_FACTOR = 1.02
PINCH_OUT_FACTOR = 0.98


class ZoomPanController(QObject):
  """Tracks zoom level and pan offset, and the pan gesture state machine.

  Pan is unbounded; content may be dragged past the view edge and brought
  back with ``center()`` or ``reset_view()``.
  """

  zoom_changed = Signal(float)
  transform_changed = Signal()

  def __init__(self, min_zoom: float = MIN_ZOOM, max_zoom: float = MAX_ZOOM,
               zoom_step: float = ZOOM_STEP, parent: QObject | None = None):
    super().__init__(parent)
    if not 0 < min_zoom <= 1.0 <= max_zoom:
      raise ValueError("zoom bounds must satisfy 0 < min_zoom <= 1 <= max_zoom")
    self.min_zoom = min_zoom
    self.max_zoom = max_zoom
    self.zoom_factor = 1.0 + zoom_step

    self._zoom = 1.0
    self._pan = QPointF(0, 0)
    self._panning = False
    self._last_pan_pos: QPointF | None = None
    self._last_pinch_distance: float | None = None

  @property
  def zoom(self) -> float:
    return self._zoom

  @property
  def pan_offset(self) -> QPointF:
    return QPointF(self._pan)

  @property
  def is_panning(self) -> bool:
    return self._panning

  def zoom_text(self) -> str:
    return f"{round(self._zoom * 100)}%"

  def _clamp(self, level: float) -> float:
    return max(self.min_zoom, min(self.max_zoom, level))

  # -- Zoom -------------------------------------------------------------------

  def set_zoom(self, level: float, anchor: QPointF | None = None) -> float:
    """Clamp and apply ``level``; keep the content under ``anchor`` fixed."""
    new_zoom = self._clamp(level)
    if new_zoom == self._zoom:
      return self._zoom
    if anchor is not None:
      ratio = new_zoom / self._zoom
      self._pan = QPointF(
        anchor.x() - (anchor.x() - self._pan.x()) * ratio,
        anchor.y() - (anchor.y() - self._pan.y()) * ratio,
      )
    self._zoom = new_zoom
    self.zoom_changed.emit(self._zoom)
    self.transform_changed.emit()
    return self._zoom

  def zoom_by(self, factor: float, anchor: QPointF | None = None) -> float:
    return self.set_zoom(self._zoom * factor, anchor)

  def zoom_in(self, anchor: QPointF | None = None) -> float:
    return self.zoom_by(self.zoom_factor, anchor)

  def zoom_out(self, anchor: QPointF | None = None) -> float:
    return self.zoom_by(1.0 / self.zoom_factor, anchor)

  def wheel(self, delta_y: float, anchor: QPointF) -> float:
    """Mouse wheel: scroll up zooms in toward the pointer."""
    if delta_y == 0:
      return self._zoom
    return self.zoom_in(anchor) if delta_y > 0 else self.zoom_out(anchor)

  def pinch(self, distance: float, center: QPointF) -> float:
    """Two-finger pinch; the first call only records the finger distance."""
    if self._last_pinch_distance is None:
      self._last_pinch_distance = distance
      return self._zoom
    delta = distance - self._last_pinch_distance
    self._last_pinch_distance = distance
    if delta == 0:
      return self._zoom
    factor = PINCH_IN_FACTOR if delta > 0 else PINCH_OUT_FACTOR
    return self.zoom_by(factor, center)

  def end_pinch(self) -> None:
    self._last_pinch_distance = None

  # -- Pan --------------------------------------------------------------------

  def pan(self, dx: float, dy: float) -> None:
    if dx == 0 and dy == 0:
      return
    self._pan = QPointF(self._pan.x() + dx, self._pan.y() + dy)
    self.transform_changed.emit()

  def set_pan(self, x: float, y: float) -> None:
    self._pan = QPointF(x, y)
    self.transform_changed.emit()

  @staticmethod
  def is_pan_trigger(button: Qt.MouseButton, modifiers: Qt.KeyboardModifier) -> bool:
    """Secondary/middle button, or Ctrl + primary button."""
    if button in (Qt.MouseButton.RightButton, Qt.MouseButton.MiddleButton):
      return True
    return (button == Qt.MouseButton.LeftButton
            and bool(modifiers & Qt.KeyboardModifier.ControlModifier))

  def start_pan(self, pos: QPointF) -> None:
    self._panning = True
    self._last_pan_pos = QPointF(pos)

  def continue_pan(self, pos: QPointF) -> bool:
    if not self._panning or self._last_pan_pos is None:
      return False
    self.pan(pos.x() - self._last_pan_pos.x(), pos.y() - self._last_pan_pos.y())
    self._last_pan_pos = QPointF(pos)
    return True

  def end_pan(self) -> None:
    self._panning = False
    self._last_pan_pos = None

  # -- Reset ------------------------------------------------------------------

  def center(self) -> None:
    self.set_pan(0, 0)

  def reset_view(self) -> None:
    self._zoom = 1.0
    self._pan = QPointF(0, 0)
    self.end_pan()
    self.end_pinch()
    self.zoom_changed.emit(self._zoom)
    self.transform_changed.emit()
    log.debug("View reset")
