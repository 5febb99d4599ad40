"""Coordinate mapping between device, display, and original-image space.

Three transforms stack on top of the captured image:

* ``fit_scale`` (CanvasManager) shrinks the capture to fit its container.
* ``zoom`` and ``pan`` (ZoomPanController) are applied on top of that.

Device space is the pointer position relative to the view widget. A
``TransformState`` is a snapshot of all three values; build a fresh one for
every pointer event rather than holding on to an old one.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from PySide6.QtCore import QPointF
from PySide6.QtGui import QTransform

from annotations import Point

if TYPE_CHECKING:
  from canvas_manager import CanvasManager
  from zoom_pan import ZoomPanController


@dataclasses.dataclass(frozen=True)
class TransformState:
  fit_scale: float = 1.0
  zoom: float = 1.0
  pan_x: float = 0.0
  pan_y: float = 0.0
  original_width: int = 0
  original_height: int = 0
  backing_width: int = 0
  backing_height: int = 0

  @classmethod
  def compose(cls, canvas: CanvasManager, zoom_pan: ZoomPanController) -> TransformState:
    """Read the current transform values from the components that own them."""
    ow, oh = canvas.original_size
    bw, bh = canvas.backing_size
    pan = zoom_pan.pan_offset
    return cls(
      fit_scale=canvas.fit_scale,
      zoom=zoom_pan.zoom,
      pan_x=pan.x(),
      pan_y=pan.y(),
      original_width=ow,
      original_height=oh,
      backing_width=bw,
      backing_height=bh,
    )

  def _backing_ratio(self) -> tuple[float, float]:
    """Backing pixels per display pixel on each axis."""
    if self.original_width <= 0 or self.original_height <= 0:
      return 1.0 / self.fit_scale, 1.0 / self.fit_scale
    display_w = self.original_width * self.fit_scale
    display_h = self.original_height * self.fit_scale
    return self.backing_width / display_w, self.backing_height / display_h

  def device_to_display(self, pos: QPointF) -> QPointF:
    """Undo pan and zoom only."""
    return QPointF(
      (pos.x() - self.pan_x) / self.zoom,
      (pos.y() - self.pan_y) / self.zoom,
    )

  def device_to_original(self, pos: QPointF) -> Point:
    display = self.device_to_display(pos)
    sx, sy = self._backing_ratio()
    return Point(display.x() * sx, display.y() * sy)

  def original_to_device(self, point: Point) -> QPointF:
    sx, sy = self._backing_ratio()
    return QPointF(
      point.x / sx * self.zoom + self.pan_x,
      point.y / sy * self.zoom + self.pan_y,
    )

  def visual_transform(self) -> QTransform:
    """Transform that paints the backing surface into device space."""
    sx, sy = self._backing_ratio()
    t = QTransform()
    t.translate(self.pan_x, self.pan_y)
    t.scale(self.zoom / sx, self.zoom / sy)
    return t
