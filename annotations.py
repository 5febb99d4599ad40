"""Annotation records, validation, and painting."""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Mapping
from typing import Any, ClassVar, NamedTuple, Union

from PySide6.QtCore import QPointF, QRectF, Qt
from PySide6.QtGui import QColor, QPainter, QPainterPath, QPen

from errors import ValidationError

TOOLS = ("freehand", "rectangle", "arrow")

DEFAULT_COLOR = "#ef4444"
COLOR_PALETTE = (
  "#ef4444",  # red
  "#3b82f6",  # blue
  "#10b981",  # green
  "#f59e0b",  # amber
  "#8b5cf6",  # violet
  "#000000",  # black
)
DEFAULT_STROKE_WIDTH = 3
ARROW_HEAD_LENGTH = 15.0
ARROW_HEAD_ANGLE = math.pi / 6

_SHAPE_COORDS = ("start_x", "start_y", "end_x", "end_y")


class Point(NamedTuple):
  """A position in original-image space."""
  x: float
  y: float


# -- Data model ---------------------------------------------------------------

@dataclasses.dataclass(frozen=True)
class FreehandAnnotation:
  color: str
  path: tuple[Point, ...]
  id: str = ""
  timestamp: float = 0.0
  last_modified: float | None = None

  type: ClassVar[str] = "freehand"


@dataclasses.dataclass(frozen=True)
class ShapeAnnotation:
  color: str
  start_x: float
  start_y: float
  end_x: float
  end_y: float
  id: str = ""
  timestamp: float = 0.0
  last_modified: float | None = None

  type: ClassVar[str] = ""

  @property
  def start(self) -> Point:
    return Point(self.start_x, self.start_y)

  @property
  def end(self) -> Point:
    return Point(self.end_x, self.end_y)


@dataclasses.dataclass(frozen=True)
class RectangleAnnotation(ShapeAnnotation):
  type: ClassVar[str] = "rectangle"


@dataclasses.dataclass(frozen=True)
class ArrowAnnotation(ShapeAnnotation):
  type: ClassVar[str] = "arrow"


Annotation = Union[FreehandAnnotation, RectangleAnnotation, ArrowAnnotation]

_SHAPE_CLASSES = {
  "rectangle": RectangleAnnotation,
  "arrow": ArrowAnnotation,
}


# -- Conversion ---------------------------------------------------------------

def _is_number(value: Any) -> bool:
  return isinstance(value, (int, float)) and not isinstance(value, bool)


def _point_xy(entry: Any) -> tuple[float, float] | None:
  """Extract (x, y) from a Point, an {"x", "y"} mapping, or a pair."""
  if isinstance(entry, Mapping):
    x, y = entry.get("x"), entry.get("y")
  elif isinstance(entry, (tuple, list)) and len(entry) == 2:
    x, y = entry
  else:
    return None
  if not (_is_number(x) and _is_number(y)):
    return None
  return float(x), float(y)


def to_dict(annotation: Annotation) -> dict[str, Any]:
  """Serialize an annotation record into a JSON-friendly dict."""
  data: dict[str, Any] = {"type": annotation.type}
  for f in dataclasses.fields(annotation):
    value = getattr(annotation, f.name)
    if f.name == "path":
      value = [{"x": p.x, "y": p.y} for p in value]
    elif f.name == "last_modified" and value is None:
      continue
    data[f.name] = value
  return data


def validate(annotation: Annotation | Mapping[str, Any]) -> ValidationError | None:
  """Check an annotation record or dict; return the problem, never raise it."""
  data = annotation if isinstance(annotation, Mapping) else to_dict(annotation)

  for field in ("type", "color"):
    if not data.get(field):
      return ValidationError(f"Missing required field: {field}", field)

  kind = data["type"]
  if kind not in TOOLS:
    return ValidationError(f"Invalid annotation type: {kind}", "type")

  if kind == "freehand":
    path = data.get("path")
    if not isinstance(path, (list, tuple)) or not path:
      return ValidationError("Freehand annotation requires a non-empty path", "path")
    for i, entry in enumerate(path):
      if _point_xy(entry) is None:
        return ValidationError(f"Invalid path point at index {i}", "path")
  else:
    for coord in _SHAPE_COORDS:
      if not _is_number(data.get(coord)):
        return ValidationError(f"Missing or invalid coordinate: {coord}", coord)

  return None


def from_dict(data: Mapping[str, Any]) -> Annotation:
  """Build an annotation record from a dict, raising ValidationError if malformed."""
  error = validate(data)
  if error is not None:
    raise error

  common = {
    "color": str(data["color"]),
    "id": str(data.get("id") or ""),
    "timestamp": float(data.get("timestamp") or 0.0),
    "last_modified": data.get("last_modified"),
  }
  if data["type"] == "freehand":
    path = tuple(Point(*_point_xy(entry)) for entry in data["path"])
    return FreehandAnnotation(path=path, **common)

  coords = {name: float(data[name]) for name in _SHAPE_COORDS}
  return _SHAPE_CLASSES[data["type"]](**coords, **common)


def coerce(annotation: Annotation | Mapping[str, Any]) -> Annotation:
  """Return a validated record from either a record or a dict."""
  if isinstance(annotation, Mapping):
    return from_dict(annotation)
  if not isinstance(annotation, (FreehandAnnotation, ShapeAnnotation)):
    raise ValidationError(f"Unsupported annotation object: {annotation!r}")
  error = validate(annotation)
  if error is not None:
    raise error
  return annotation


# -- Painting -----------------------------------------------------------------

def make_pen(color: str, width: float = DEFAULT_STROKE_WIDTH) -> QPen:
  return QPen(QColor(color), width, Qt.PenStyle.SolidLine,
              Qt.PenCapStyle.RoundCap, Qt.PenJoinStyle.RoundJoin)


def paint_segment(painter: QPainter, color: str, a: Point, b: Point,
                  width: float = DEFAULT_STROKE_WIDTH) -> None:
  """Stroke a single freehand segment (incremental drawing)."""
  painter.setPen(make_pen(color, width))
  painter.drawLine(QPointF(a.x, a.y), QPointF(b.x, b.y))


def paint_freehand(painter: QPainter, ann: FreehandAnnotation,
                   width: float = DEFAULT_STROKE_WIDTH) -> None:
  painter.setPen(make_pen(ann.color, width))
  painter.setBrush(Qt.BrushStyle.NoBrush)
  first = ann.path[0]
  if len(ann.path) == 1:
    painter.drawPoint(QPointF(first.x, first.y))
    return
  path = QPainterPath()
  path.moveTo(first.x, first.y)
  for pt in ann.path[1:]:
    path.lineTo(pt.x, pt.y)
  painter.drawPath(path)


def paint_rectangle(painter: QPainter, color: str, start: Point, end: Point,
                    width: float = DEFAULT_STROKE_WIDTH) -> None:
  painter.setPen(make_pen(color, width))
  painter.setBrush(Qt.BrushStyle.NoBrush)
  painter.drawRect(QRectF(QPointF(start.x, start.y), QPointF(end.x, end.y)).normalized())


def paint_arrow(painter: QPainter, color: str, start: Point, end: Point,
                width: float = DEFAULT_STROKE_WIDTH) -> None:
  """Draw a shaft with an open two-stroke head at ``end``."""
  painter.setPen(make_pen(color, width))
  tip = QPointF(end.x, end.y)
  painter.drawLine(QPointF(start.x, start.y), tip)

  angle = math.atan2(end.y - start.y, end.x - start.x)
  for side in (-ARROW_HEAD_ANGLE, ARROW_HEAD_ANGLE):
    painter.drawLine(tip, QPointF(
      end.x - ARROW_HEAD_LENGTH * math.cos(angle + side),
      end.y - ARROW_HEAD_LENGTH * math.sin(angle + side),
    ))


def paint_shape(painter: QPainter, tool: str, color: str, start: Point, end: Point,
                width: float = DEFAULT_STROKE_WIDTH) -> None:
  """Paint a rectangle or arrow between two points (used for previews)."""
  if tool == "rectangle":
    paint_rectangle(painter, color, start, end, width)
  elif tool == "arrow":
    paint_arrow(painter, color, start, end, width)
  else:
    raise ValueError(f"Not a shape tool: {tool}")


def paint_annotation(painter: QPainter, ann: Annotation,
                     width: float = DEFAULT_STROKE_WIDTH) -> None:
  if isinstance(ann, FreehandAnnotation):
    paint_freehand(painter, ann, width)
  elif isinstance(ann, RectangleAnnotation):
    paint_rectangle(painter, ann.color, ann.start, ann.end, width)
  elif isinstance(ann, ArrowAnnotation):
    paint_arrow(painter, ann.color, ann.start, ann.end, width)
  else:
    raise TypeError(f"Unknown annotation: {ann!r}")
