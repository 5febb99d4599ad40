"""Annotation window: wires capture, canvas, zoom/pan, engine, and storage together."""

from __future__ import annotations

import math
from typing import Any, Callable, TYPE_CHECKING

from PySide6.QtCore import QEvent, QPointF, QSize, Qt, Signal
from PySide6.QtGui import QColor, QIcon, QPainter, QPainterPath, QPen, QPixmap, QPolygonF
from PySide6.QtWidgets import (
  QButtonGroup, QHBoxLayout, QLabel, QPushButton, QVBoxLayout, QWidget,
)

from annotation_engine import AnnotationEngine
from annotation_storage import DEFAULT_MAX_UNDO_LEVELS, AnnotationStorage
from annotations import COLOR_PALETTE, DEFAULT_COLOR, DEFAULT_STROKE_WIDTH, TOOLS, Annotation
from canvas_manager import DEFAULT_FIT_MARGIN, RESIZE_DEBOUNCE_MS, CanvasManager
from capture import CaptureResult, ScreenshotProcessor
from errors import AlreadyInProgressError, CaptureError, LoadError
from log import get_logger
from transform import TransformState
from zoom_pan import MAX_ZOOM, MIN_ZOOM, ZOOM_STEP, ZoomPanController

if TYPE_CHECKING:
  from PySide6.QtGui import (
    QCloseEvent, QKeyEvent, QMouseEvent, QNativeGestureEvent, QPaintEvent,
    QResizeEvent, QWheelEvent,
  )

log = get_logger("annotator")

ICON_SIZE = 24
BACKGROUND_COLOR = QColor(40, 40, 40)
TOOL_LABELS = {"freehand": "Pen", "rectangle": "Rectangle", "arrow": "Arrow"}


# -- Icon drawing helpers -----------------------------------------------------

def _make_icon(draw_fn) -> QIcon:
  pixmap = QPixmap(ICON_SIZE, ICON_SIZE)
  pixmap.fill(QColor(0, 0, 0, 0))
  painter = QPainter(pixmap)
  painter.setRenderHint(QPainter.RenderHint.Antialiasing)
  painter.setPen(QPen(QColor(200, 200, 200), 2))
  painter.setBrush(Qt.BrushStyle.NoBrush)
  draw_fn(painter, ICON_SIZE)
  painter.end()
  return QIcon(pixmap)


def _draw_freehand_icon(painter: QPainter, size: int) -> None:
  path = QPainterPath()
  path.moveTo(3, size * 0.7)
  path.cubicTo(size * 0.25, size * 0.2, size * 0.5, size * 0.8, size - 3, size * 0.3)
  painter.drawPath(path)


def _draw_rectangle_icon(painter: QPainter, size: int) -> None:
  painter.drawRect(3, 5, size - 6, size - 10)


def _draw_arrow_icon(painter: QPainter, size: int) -> None:
  painter.drawLine(4, size - 4, size - 6, 6)
  painter.setBrush(QColor(200, 200, 200))
  painter.drawPolygon(QPolygonF([
    QPointF(size - 4, 4), QPointF(size - 10, 6), QPointF(size - 6, 12),
  ]))


_TOOL_ICONS = {
  "freehand": _draw_freehand_icon,
  "rectangle": _draw_rectangle_icon,
  "arrow": _draw_arrow_icon,
}


# -- Toolbar ------------------------------------------------------------------

class AnnotationToolbar(QWidget):
  """Tool, colour, history, and zoom controls."""

  tool_changed = Signal(str)
  color_changed = Signal(str)
  action_requested = Signal(str)

  _BUTTON_STYLE = (
    "QPushButton { color: #ccc; background: transparent; border: 1px solid #555;"
    " border-radius: 4px; font-size: 11px; padding: 2px 6px; }"
    "QPushButton:checked { background: rgba(255, 255, 255, 40); border-color: #aaa; }"
    "QPushButton:hover { background: rgba(255, 255, 255, 20); }"
    "QPushButton:disabled { color: #555; border-color: #444; }"
  )

  def __init__(self, parent: QWidget | None = None):
    super().__init__(parent)
    self.setObjectName("snapmarkToolbar")
    self.setAttribute(Qt.WidgetAttribute.WA_StyledBackground, True)
    self.setStyleSheet(
      "AnnotationToolbar { background: rgba(40, 40, 40, 230); }"
      "QLabel { color: #aaa; font-size: 11px; }"
      + self._BUTTON_STYLE
    )

    layout = QHBoxLayout(self)
    layout.setContentsMargins(8, 4, 8, 4)
    layout.setSpacing(4)

    self._tool_group = QButtonGroup(self)
    self._tool_group.setExclusive(True)
    self._tool_buttons: dict[str, QPushButton] = {}
    for tool in TOOLS:
      btn = QPushButton()
      btn.setIcon(_make_icon(_TOOL_ICONS[tool]))
      btn.setFixedSize(32, 32)
      btn.setCheckable(True)
      btn.setToolTip(TOOL_LABELS[tool])
      btn.clicked.connect(lambda _checked=False, t=tool: self.tool_changed.emit(t))
      self._tool_group.addButton(btn)
      self._tool_buttons[tool] = btn
      layout.addWidget(btn)

    layout.addWidget(QLabel("|"))

    self._color_group = QButtonGroup(self)
    self._color_group.setExclusive(True)
    self._color_buttons: dict[str, QPushButton] = {}
    for color in COLOR_PALETTE:
      swatch = QPushButton()
      swatch.setCheckable(True)
      swatch.setFixedSize(22, 22)
      swatch.setToolTip(color)
      swatch.setStyleSheet(
        "QPushButton { background-color: %s; border: 2px solid #555; border-radius: 11px; }"
        "QPushButton:checked { border-color: #fff; }" % color
      )
      swatch.clicked.connect(lambda _checked=False, c=color: self.color_changed.emit(c))
      self._color_group.addButton(swatch)
      self._color_buttons[color] = swatch
      layout.addWidget(swatch)

    layout.addWidget(QLabel("|"))

    self._undo_btn = self._action_button(layout, "Undo", "undo", "Undo (Ctrl+Z)")
    self._redo_btn = self._action_button(layout, "Redo", "redo", "Redo (Ctrl+Shift+Z)")
    self._action_button(layout, "Clear", "clear", "Remove all annotations")
    self._undo_btn.setEnabled(False)
    self._redo_btn.setEnabled(False)

    layout.addWidget(QLabel("|"))

    self._action_button(layout, "-", "zoom-out", "Zoom out (-)")
    self._zoom_label = QLabel("100%")
    self._zoom_label.setFixedWidth(40)
    self._zoom_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
    layout.addWidget(self._zoom_label)
    self._action_button(layout, "+", "zoom-in", "Zoom in (+)")
    self._action_button(layout, "1:1", "zoom-reset", "Reset zoom (0)")
    self._action_button(layout, "Center", "center", "Center screenshot view")

    layout.addStretch(1)
    self._dimensions_label = QLabel("")
    layout.addWidget(self._dimensions_label)

    done_btn = self._action_button(layout, "Done", "done", "Finish (Enter)")
    done_btn.setStyleSheet("QPushButton { color: #8f8; }")
    cancel_btn = self._action_button(layout, "Cancel", "cancel", "Discard (Esc)")
    cancel_btn.setStyleSheet("QPushButton { color: #f88; }")

  def _action_button(self, layout: QHBoxLayout, text: str, action: str,
                     tooltip: str) -> QPushButton:
    btn = QPushButton(text)
    btn.setFixedHeight(28)
    btn.setToolTip(tooltip)
    btn.clicked.connect(lambda _checked=False, a=action: self.action_requested.emit(a))
    layout.addWidget(btn)
    return btn

  def set_active_tool(self, tool: str) -> None:
    btn = self._tool_buttons.get(tool)
    if btn:
      btn.setChecked(True)

  def set_active_color(self, color: str) -> None:
    btn = self._color_buttons.get(color)
    if btn:
      btn.setChecked(True)

  def set_zoom_text(self, text: str) -> None:
    self._zoom_label.setText(text)

  def set_dimensions_text(self, text: str) -> None:
    self._dimensions_label.setText(text)

  def set_undo_enabled(self, enabled: bool) -> None:
    self._undo_btn.setEnabled(enabled)

  def set_redo_enabled(self, enabled: bool) -> None:
    self._redo_btn.setEnabled(enabled)


# -- Surface view -------------------------------------------------------------

class SurfaceView(QWidget):
  """Paints the canvas surface and routes pointer input to pan or draw."""

  def __init__(self, annotator: Annotator):
    super().__init__(annotator)
    self._annotator = annotator
    self.setMouseTracking(False)
    self.setMinimumSize(QSize(200, 150))
    self.setAttribute(Qt.WidgetAttribute.WA_AcceptTouchEvents)
    self.setCursor(Qt.CursorShape.CrossCursor)

  def paintEvent(self, event: QPaintEvent) -> None:
    painter = QPainter(self)
    painter.fillRect(self.rect(), BACKGROUND_COLOR)
    canvas = self._annotator.canvas
    if canvas.is_ready:
      painter.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
      painter.setTransform(self._annotator.transform_state().visual_transform())
      painter.drawImage(0, 0, canvas.surface)
    painter.end()

  def mousePressEvent(self, event: QMouseEvent) -> None:
    zoom_pan = self._annotator.zoom_pan
    engine = self._annotator.engine
    pos = event.position()
    if zoom_pan.is_pan_trigger(event.button(), event.modifiers()):
      if not engine.is_drawing:
        zoom_pan.start_pan(pos)
        self.setCursor(Qt.CursorShape.ClosedHandCursor)
      return
    if event.button() == Qt.MouseButton.LeftButton:
      if engine.on_pointer_down(pos, self._annotator.transform_state()):
        self.update()

  def mouseMoveEvent(self, event: QMouseEvent) -> None:
    zoom_pan = self._annotator.zoom_pan
    if zoom_pan.is_panning:
      zoom_pan.continue_pan(event.position())
      return
    if self._annotator.engine.on_pointer_move(event.position(),
                                              self._annotator.transform_state()):
      self.update()

  def mouseReleaseEvent(self, event: QMouseEvent) -> None:
    zoom_pan = self._annotator.zoom_pan
    if zoom_pan.is_panning:
      zoom_pan.end_pan()
      self.setCursor(Qt.CursorShape.CrossCursor)
      return
    if event.button() == Qt.MouseButton.LeftButton:
      self._annotator.engine.on_pointer_up(event.position(),
                                           self._annotator.transform_state())
      self.update()

  def wheelEvent(self, event: QWheelEvent) -> None:
    self._annotator.zoom_pan.wheel(event.angleDelta().y(), event.position())
    event.accept()

  def event(self, event: QEvent) -> bool:
    kind = event.type()
    if kind == QEvent.Type.NativeGesture:
      return self._native_gesture(event)
    if kind in (QEvent.Type.TouchBegin, QEvent.Type.TouchUpdate):
      if self.touch_pinch([p.position() for p in event.points()]):
        event.accept()
        return True
    elif kind in (QEvent.Type.TouchEnd, QEvent.Type.TouchCancel):
      self._annotator.zoom_pan.end_pinch()
    return super().event(event)

  def touch_pinch(self, positions: list[QPointF]) -> bool:
    """Zoom by two touch points; anything but two fingers ends the pinch."""
    zoom_pan = self._annotator.zoom_pan
    if len(positions) != 2:
      zoom_pan.end_pinch()
      return False
    first, second = positions
    self._annotator.engine.cancel()
    distance = math.hypot(second.x() - first.x(), second.y() - first.y())
    center = QPointF((first.x() + second.x()) / 2, (first.y() + second.y()) / 2)
    zoom_pan.pinch(distance, center)
    self.update()
    return True

  def _native_gesture(self, event: QNativeGestureEvent) -> bool:
    """Trackpad pinch: ``value()`` is the scale delta since the previous event."""
    zoom_pan = self._annotator.zoom_pan
    gesture = event.gestureType()
    if gesture == Qt.NativeGestureType.ZoomNativeGesture:
      zoom_pan.zoom_by(1.0 + event.value(), event.position())
    elif gesture == Qt.NativeGestureType.EndNativeGesture:
      zoom_pan.end_pinch()
    event.accept()
    return True

  def resizeEvent(self, event: QResizeEvent) -> None:
    super().resizeEvent(event)
    self._annotator.canvas.schedule_fit(event.size())


# -- Annotator ----------------------------------------------------------------

class Annotator(QWidget):
  """Capture-and-annotate window.

  ``on_done(encoded_png, error=None)`` is called when the user finishes;
  ``error`` is "cancelled" when they discard the capture.
  """

  def __init__(self, processor: ScreenshotProcessor | None = None,
               on_done: Callable[..., None] | None = None,
               default_tool: str = "freehand",
               default_color: str = DEFAULT_COLOR,
               stroke_width: float = DEFAULT_STROKE_WIDTH,
               max_undo_levels: int = DEFAULT_MAX_UNDO_LEVELS,
               min_zoom: float = MIN_ZOOM, max_zoom: float = MAX_ZOOM,
               zoom_step: float = ZOOM_STEP,
               fit_margin: int = DEFAULT_FIT_MARGIN,
               resize_debounce_ms: int = RESIZE_DEBOUNCE_MS,
               parent: QWidget | None = None):
    super().__init__(parent)
    self.setObjectName("snapmarkAnnotator")
    self.setWindowTitle("Snapmark")
    self.setFocusPolicy(Qt.FocusPolicy.StrongFocus)
    self.processor = processor
    self.on_done = on_done
    self._capturing = False
    self._finished = True

    self.canvas = CanvasManager(fit_margin=fit_margin,
                                resize_debounce_ms=resize_debounce_ms, parent=self)
    self.zoom_pan = ZoomPanController(min_zoom=min_zoom, max_zoom=max_zoom,
                                      zoom_step=zoom_step, parent=self)
    self.storage = AnnotationStorage(max_undo_levels=max_undo_levels,
                                     on_change=self._on_annotations_changed)
    self.engine = AnnotationEngine(self.canvas, self.storage, zoom_pan=self.zoom_pan,
                                   stroke_width=stroke_width, tool=default_tool,
                                   color=default_color)

    self._toolbar = AnnotationToolbar(self)
    self._toolbar.set_active_tool(self.engine.tool)
    self._toolbar.set_active_color(self.engine.color)
    self._toolbar.tool_changed.connect(self.set_tool)
    self._toolbar.color_changed.connect(self.set_color)
    self._toolbar.action_requested.connect(self.handle_action)

    self._view = SurfaceView(self)

    layout = QVBoxLayout(self)
    layout.setContentsMargins(0, 0, 0, 0)
    layout.setSpacing(0)
    layout.addWidget(self._toolbar)
    layout.addWidget(self._view, 1)

    self.canvas.fitted.connect(self._on_fitted)
    self.zoom_pan.transform_changed.connect(self._view.update)
    self.zoom_pan.zoom_changed.connect(
      lambda _zoom: self._toolbar.set_zoom_text(self.zoom_pan.zoom_text()))

  @property
  def view(self) -> SurfaceView:
    return self._view

  @property
  def toolbar(self) -> AnnotationToolbar:
    return self._toolbar

  def transform_state(self) -> TransformState:
    return TransformState.compose(self.canvas, self.zoom_pan)

  # -- Capture and load -------------------------------------------------------

  async def capture(self) -> CaptureResult:
    """Capture the viewport and load it as a fresh annotation session."""
    if self.processor is None:
      raise CaptureError("No screenshot processor configured")
    if self._capturing or self.processor.is_processing:
      raise AlreadyInProgressError("Screenshot already in progress")
    self.engine.cancel()
    self._capturing = True
    self._view.setEnabled(False)
    try:
      result = await self.processor.capture()
    finally:
      self._capturing = False
      self._view.setEnabled(True)
    self.load(result.encoded)
    return result

  def load(self, encoded: bytes | str) -> tuple[int, int]:
    """Start a new session on ``encoded``. Raises LoadError."""
    self.engine.cancel()
    self.storage.reset()
    size = self.canvas.load(encoded)
    self.zoom_pan.reset_view()
    self.fit()
    self.redraw()
    self._finished = False
    self._toolbar.set_dimensions_text(self.canvas.dimensions_text())
    self._update_history_buttons()
    return size

  def fit(self, bounds: QSize | tuple[int, int] | None = None) -> float:
    return self.canvas.fit(bounds if bounds is not None else self._view.size())

  def redraw(self) -> None:
    self.canvas.redraw(self.storage.annotations, self.engine.draw_annotation)
    self._view.update()

  def reset(self) -> None:
    self.engine.cancel()
    self.storage.reset()
    self.canvas.reset()
    self.zoom_pan.reset_view()
    if self.processor is not None:
      self.processor.clear()
    self._toolbar.set_dimensions_text("")
    self._update_history_buttons()
    self._view.update()

  def get_encoded_result(self) -> bytes:
    return self.canvas.encoded_result()

  # -- Tools and view ---------------------------------------------------------

  def set_tool(self, tool: str) -> None:
    self.engine.set_tool(tool)
    self._toolbar.set_active_tool(tool)

  def set_color(self, color: str) -> None:
    self.engine.set_color(color)
    self._toolbar.set_active_color(color)

  def zoom_in(self) -> float:
    return self.zoom_pan.zoom_in()

  def zoom_out(self) -> float:
    return self.zoom_pan.zoom_out()

  def set_zoom(self, level: float) -> float:
    return self.zoom_pan.set_zoom(level)

  def reset_view(self) -> None:
    self.zoom_pan.reset_view()

  def pan(self, dx: float, dy: float) -> None:
    self.zoom_pan.pan(dx, dy)

  # -- Annotations ------------------------------------------------------------

  def get_annotations(self) -> tuple[Annotation, ...]:
    return self.storage.annotations

  def undo(self) -> bool:
    if self.engine.is_drawing:
      return False
    return self.storage.undo()

  def redo(self) -> bool:
    if self.engine.is_drawing:
      return False
    return self.storage.redo()

  def clear(self) -> bool:
    if self.engine.is_drawing:
      return False
    return self.storage.clear()

  def status(self) -> dict[str, Any]:
    return {
      "ready": self.canvas.is_ready,
      "capturing": self._capturing,
      "tool": self.engine.tool,
      "color": self.engine.color,
      "zoom": self.zoom_pan.zoom,
      "annotations": self.storage.count,
    }

  def handle_action(self, action: str) -> None:
    handlers = {
      "undo": self.undo,
      "redo": self.redo,
      "clear": self.clear,
      "zoom-in": self.zoom_in,
      "zoom-out": self.zoom_out,
      "zoom-reset": self.reset_view,
      "center": self.zoom_pan.center,
      "done": self.finish,
      "cancel": self.cancel,
    }
    handler = handlers.get(action)
    if handler is None:
      log.warning("Unknown toolbar action: %s", action)
      return
    handler()

  def _on_annotations_changed(self, annotations: tuple[Annotation, ...]) -> None:
    self.canvas.redraw(annotations, self.engine.draw_annotation)
    self._update_history_buttons()
    self._view.update()

  def _on_fitted(self, _scale: float) -> None:
    self._toolbar.set_dimensions_text(self.canvas.dimensions_text())
    self._view.update()

  def _update_history_buttons(self) -> None:
    self._toolbar.set_undo_enabled(self.storage.can_undo())
    self._toolbar.set_redo_enabled(self.storage.can_redo())

  # -- Finish / cancel --------------------------------------------------------

  def finish(self) -> None:
    """Hand the flattened image to ``on_done`` and hide."""
    if self._finished:
      return
    try:
      encoded = self.get_encoded_result()
      error = None
    except LoadError as e:
      log.error("Cannot export annotated image: %s", e)
      encoded, error = None, str(e)
    self._finished = True
    self.hide()
    if self.on_done:
      self.on_done(encoded, error=error)

  def cancel(self) -> None:
    self.engine.cancel()
    if self._finished:
      self.hide()
      return
    self._finished = True
    self.hide()
    if self.on_done:
      self.on_done(None, error="cancelled")

  # -- Keyboard ---------------------------------------------------------------

  def keyPressEvent(self, event: QKeyEvent) -> None:
    key = event.key()
    mods = event.modifiers() & (
      Qt.KeyboardModifier.ControlModifier
      | Qt.KeyboardModifier.ShiftModifier
      | Qt.KeyboardModifier.AltModifier
    )
    ctrl = Qt.KeyboardModifier.ControlModifier
    ctrl_shift = ctrl | Qt.KeyboardModifier.ShiftModifier

    if key == Qt.Key.Key_Escape:
      self.cancel()
    elif key in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
      self.finish()
    elif key == Qt.Key.Key_Z and mods == ctrl:
      self.undo()
    elif (key == Qt.Key.Key_Z and mods == ctrl_shift) or (key == Qt.Key.Key_Y and mods == ctrl):
      self.redo()
    elif key in (Qt.Key.Key_Plus, Qt.Key.Key_Equal):
      self.zoom_in()
    elif key == Qt.Key.Key_Minus:
      self.zoom_out()
    elif key == Qt.Key.Key_0:
      self.reset_view()
    else:
      super().keyPressEvent(event)

  def closeEvent(self, event: QCloseEvent) -> None:
    if not self._finished:
      # Closed by the window manager -- treat as cancel
      self._finished = True
      if self.on_done:
        self.on_done(None, error="cancelled")
    super().closeEvent(event)
