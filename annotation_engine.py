"""Turns pointer gestures into annotations on the canvas surface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from PySide6.QtCore import QPointF
from PySide6.QtGui import QImage, QPainter

from annotations import (
  DEFAULT_COLOR, DEFAULT_STROKE_WIDTH, TOOLS, Annotation, ArrowAnnotation,
  FreehandAnnotation, Point, RectangleAnnotation, paint_annotation, paint_segment,
  paint_shape,
)
from errors import ValidationError
from log import get_logger

if TYPE_CHECKING:
  from annotation_storage import AnnotationStorage
  from canvas_manager import CanvasManager
  from transform import TransformState
  from zoom_pan import ZoomPanController

log = get_logger("engine")


class AnnotationEngine:
  """Pointer state machine: idle -> drawing -> idle.

  Every pointer handler takes the current ``TransformState`` and maps the
  device position through it; nothing about the transform is remembered
  between events.
  """

  def __init__(self, canvas: CanvasManager, storage: AnnotationStorage,
               zoom_pan: ZoomPanController | None = None,
               stroke_width: float = DEFAULT_STROKE_WIDTH,
               tool: str = "freehand", color: str = DEFAULT_COLOR):
    self._canvas = canvas
    self._storage = storage
    self._zoom_pan = zoom_pan
    self.stroke_width = stroke_width
    self._tool = "freehand"
    self.set_tool(tool)
    self._color = color

    self._drawing = False
    self._gesture_tool = self._tool
    self._gesture_color = self._color
    self._start: Point | None = None
    self._last: Point | None = None
    self._path: list[Point] | None = None
    self._preview_snapshot: QImage | None = None

  # -- Tool state -------------------------------------------------------------

  @property
  def tool(self) -> str:
    return self._tool

  @property
  def color(self) -> str:
    return self._color

  @property
  def is_drawing(self) -> bool:
    return self._drawing

  def set_tool(self, tool: str) -> None:
    if tool not in TOOLS:
      raise ValueError(f"Unknown tool: {tool}")
    self._tool = tool

  def set_color(self, color: str) -> None:
    self._color = color

  def drawing_state(self) -> dict[str, Any]:
    return {"is_drawing": self._drawing, "tool": self._tool, "color": self._color}

  def draw_annotation(self, painter: QPainter, ann: Annotation) -> None:
    paint_annotation(painter, ann, self.stroke_width)

  # -- Pointer events ---------------------------------------------------------

  def on_pointer_down(self, pos: QPointF, state: TransformState) -> bool:
    """Begin a gesture. Returns False if drawing cannot start right now."""
    if self._drawing or not self._canvas.is_ready:
      return False
    if self._zoom_pan is not None and self._zoom_pan.is_panning:
      return False

    point = state.device_to_original(pos)
    self._drawing = True
    self._gesture_tool = self._tool
    self._gesture_color = self._color
    self._start = point
    self._last = point
    if self._gesture_tool == "freehand":
      self._path = [point]
    else:
      self._preview_snapshot = self._canvas.snapshot()
    return True

  def on_pointer_move(self, pos: QPointF, state: TransformState) -> bool:
    if not self._drawing or not self._canvas.is_ready:
      return False
    point = state.device_to_original(pos)

    if self._gesture_tool == "freehand":
      with self._canvas.painter() as p:
        paint_segment(p, self._gesture_color, self._last, point, self.stroke_width)
      self._path.append(point)
    else:
      self._canvas.restore(self._preview_snapshot)
      with self._canvas.painter() as p:
        paint_shape(p, self._gesture_tool, self._gesture_color, self._start, point,
                    self.stroke_width)
    self._last = point
    return True

  def on_pointer_up(self, pos: QPointF, state: TransformState) -> Annotation | None:
    """Finish the gesture and commit it to storage."""
    if not self._drawing:
      return None
    if not self._canvas.is_ready:
      self._discard()
      return None

    if self._gesture_tool == "freehand":
      record = FreehandAnnotation(color=self._gesture_color, path=tuple(self._path))
    else:
      end = state.device_to_original(pos)
      cls = RectangleAnnotation if self._gesture_tool == "rectangle" else ArrowAnnotation
      record = cls(
        color=self._gesture_color,
        start_x=self._start.x, start_y=self._start.y,
        end_x=end.x, end_y=end.y,
      )

    self._discard()
    try:
      stored = self._storage.add(record)
    except ValidationError as e:
      log.warning("Rejected %s annotation: %s", record.type, e)
      self._canvas.redraw(self._storage.annotations, self.draw_annotation)
      return None
    log.debug("Committed %s annotation %s", stored.type, stored.id)
    return stored

  def cancel(self) -> None:
    """Abort the gesture in progress and repaint committed annotations only."""
    if not self._drawing:
      return
    self._discard()
    self._canvas.redraw(self._storage.annotations, self.draw_annotation)

  def _discard(self) -> None:
    self._drawing = False
    self._start = None
    self._last = None
    self._path = None
    self._preview_snapshot = None
