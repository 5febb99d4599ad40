"""Tests for the annotation window: wiring, input routing, and completion."""

import asyncio

import pytest
from PySide6.QtCore import QEvent, QPointF, QSize, Qt
from PySide6.QtGui import QColor, QImage, QKeyEvent, QMouseEvent, QResizeEvent
from PySide6.QtWidgets import QApplication

app = QApplication.instance() or QApplication([])

from annotations import RectangleAnnotation
from annotator import Annotator
from canvas_manager import decode_image, encode_png
from capture import ScreenshotProcessor, Viewport
from errors import AlreadyInProgressError, CaptureError, LoadError

WHITE = QColor(255, 255, 255)


def make_png(w=1000, h=800):
  img = QImage(w, h, QImage.Format.Format_ARGB32)
  img.fill(WHITE)
  return encode_png(img)


class FakeBackend:
  def __init__(self, w=1000, h=800):
    self.image = QImage(w, h, QImage.Format.Format_ARGB32)
    self.image.fill(WHITE)

  def viewport(self):
    return Viewport(0, 0, self.image.width(), self.image.height())

  def grab_full(self):
    return self.image


class Recorder:
  def __init__(self):
    self.calls = []

  def __call__(self, encoded, error=None):
    self.calls.append((encoded, error))


def mouse(kind, x, y, button=Qt.MouseButton.LeftButton,
          modifiers=Qt.KeyboardModifier.NoModifier):
  pos = QPointF(x, y)
  buttons = Qt.MouseButton.NoButton if kind == QEvent.Type.MouseButtonRelease else button
  return QMouseEvent(kind, pos, pos, button, buttons, modifiers)


def drag(view, points, button=Qt.MouseButton.LeftButton,
         modifiers=Qt.KeyboardModifier.NoModifier):
  first, *rest = points
  view.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, *first, button, modifiers))
  for p in rest:
    view.mouseMoveEvent(mouse(QEvent.Type.MouseMove, *p, button, modifiers))
  last = rest[-1] if rest else first
  view.mouseReleaseEvent(mouse(QEvent.Type.MouseButtonRelease, *last, button, modifiers))


def key(annotator, k, modifiers=Qt.KeyboardModifier.NoModifier):
  annotator.keyPressEvent(QKeyEvent(QEvent.Type.KeyPress, k, modifiers))


@pytest.fixture
def recorder():
  return Recorder()


@pytest.fixture
def annotator(recorder):
  widget = Annotator(processor=ScreenshotProcessor(FakeBackend(), settle_delay=0.02),
                     on_done=recorder)
  yield widget
  widget.deleteLater()


@pytest.fixture
def loaded(annotator):
  annotator.load(make_png())
  annotator.fit((5000, 5000))
  return annotator


# -- Loading ------------------------------------------------------------------

class TestLoad:
  def test_load_reports_size_and_ready(self, annotator):
    assert annotator.load(make_png(1000, 800)) == (1000, 800)
    status = annotator.status()
    assert status["ready"] is True
    assert status["annotations"] == 0
    assert status["zoom"] == 1.0

  def test_load_fits_view(self, annotator):
    annotator.load(make_png(1000, 800))
    assert annotator.canvas.fit_scale < 1.0

  def test_bad_data_raises(self, annotator):
    with pytest.raises(LoadError):
      annotator.load(b"not a png")
    assert annotator.status()["ready"] is False

  def test_new_load_discards_annotations(self, loaded):
    loaded.storage.add(RectangleAnnotation(color="#000", start_x=0, start_y=0, end_x=5, end_y=5))
    loaded.load(make_png(50, 50))
    assert loaded.get_annotations() == ()
    assert loaded.undo() is False

  def test_reset(self, loaded):
    loaded.reset()
    assert loaded.status()["ready"] is False
    with pytest.raises(LoadError):
      loaded.get_encoded_result()


# -- Capture ------------------------------------------------------------------

class TestCapture:
  def test_capture_loads_result(self, annotator):
    result = asyncio.run(annotator.capture())
    assert (result.width, result.height) == (1000, 800)
    assert annotator.status()["ready"] is True

  def test_second_capture_rejected(self, annotator):
    async def both():
      return await asyncio.gather(annotator.capture(), annotator.capture(),
                                  return_exceptions=True)

    first, second = asyncio.run(both())
    assert isinstance(second, AlreadyInProgressError)
    assert first.width == 1000
    assert annotator.view.isEnabled()

  def test_input_disabled_while_capturing(self, annotator):
    async def scenario():
      task = asyncio.ensure_future(annotator.capture())
      await asyncio.sleep(0)
      during = (annotator.view.isEnabled(), annotator.status()["capturing"])
      await task
      return during

    assert asyncio.run(scenario()) == (False, True)
    assert annotator.view.isEnabled()
    assert annotator.status()["capturing"] is False

  def test_without_processor(self, recorder):
    widget = Annotator(on_done=recorder)
    with pytest.raises(CaptureError):
      asyncio.run(widget.capture())
    widget.deleteLater()


# -- Drawing ------------------------------------------------------------------

class TestDrawing:
  def test_rectangle_scenario(self, loaded):
    loaded.set_tool("rectangle")
    drag(loaded.view, [(10, 10), (120, 90), (200, 150)])
    anns = loaded.get_annotations()
    assert len(anns) == 1
    ann = anns[0]
    assert ann.type == "rectangle"
    assert (ann.start_x, ann.start_y, ann.end_x, ann.end_y) == (10, 10, 200, 150)

  def test_zoom_and_pan_mapping(self, loaded):
    loaded.set_zoom(2.0)
    loaded.pan(50, 50)
    pt = loaded.transform_state().device_to_original(QPointF(150, 150))
    assert (pt.x, pt.y) == (50, 50)
    drag(loaded.view, [(150, 150), (160, 150)])
    assert loaded.get_annotations()[0].path[0] == (50, 50)

  def test_fit_scale_applied_after_zoom_and_pan(self, loaded):
    loaded.fit((520, 420))  # scale 0.5
    loaded.set_zoom(2.0)
    loaded.pan(50, 50)
    pt = loaded.transform_state().device_to_original(QPointF(150, 150))
    assert pt.x == pytest.approx(100)
    assert pt.y == pytest.approx(100)

  def test_right_drag_pans_instead_of_drawing(self, loaded):
    drag(loaded.view, [(10, 10), (40, 30)], button=Qt.MouseButton.RightButton)
    assert loaded.get_annotations() == ()
    offset = loaded.zoom_pan.pan_offset
    assert (offset.x(), offset.y()) == (30, 20)
    assert not loaded.zoom_pan.is_panning

  def test_ctrl_drag_pans(self, loaded):
    drag(loaded.view, [(0, 0), (5, 5)], modifiers=Qt.KeyboardModifier.ControlModifier)
    assert loaded.get_annotations() == ()
    assert loaded.zoom_pan.pan_offset.x() == 5

  def test_drawing_before_load_is_ignored(self, annotator):
    drag(annotator.view, [(10, 10), (20, 20)])
    assert annotator.get_annotations() == ()

  def test_flattened_result(self, loaded, recorder):
    loaded.set_color("#ff0000")
    loaded.set_tool("rectangle")
    drag(loaded.view, [(10, 10), (200, 150)])
    img = decode_image(loaded.get_encoded_result())
    assert (img.width(), img.height()) == (1000, 800)
    assert img.pixelColor(10, 80).red() == 255
    assert img.pixelColor(10, 80).green() < 50
    assert img.pixelColor(100, 80) == WHITE

  def test_rejected_stroke_leaves_no_pixels(self, loaded):
    loaded.set_color("")
    drag(loaded.view, [(10, 50), (50, 50), (90, 50)])
    assert loaded.get_annotations() == ()
    assert not loaded.engine.is_drawing
    img = decode_image(loaded.get_encoded_result())
    assert img.pixelColor(50, 50) == WHITE


# -- History ------------------------------------------------------------------

class TestHistory:
  def test_undo_redo_repaints(self, loaded):
    loaded.set_tool("rectangle")
    loaded.set_color("#ff0000")
    drag(loaded.view, [(10, 10), (200, 150)])
    assert loaded.undo() is True
    assert loaded.canvas.surface.pixelColor(10, 80) == WHITE
    assert loaded.redo() is True
    assert loaded.canvas.surface.pixelColor(10, 80).red() == 255

  def test_clear(self, loaded):
    drag(loaded.view, [(10, 10), (20, 20)])
    loaded.clear()
    assert loaded.get_annotations() == ()
    loaded.undo()
    assert len(loaded.get_annotations()) == 1


# -- Keyboard and toolbar -----------------------------------------------------

class TestShortcuts:
  def test_undo_redo_keys(self, loaded):
    drag(loaded.view, [(10, 10), (20, 20)])
    key(loaded, Qt.Key.Key_Z, Qt.KeyboardModifier.ControlModifier)
    assert loaded.get_annotations() == ()
    key(loaded, Qt.Key.Key_Z, Qt.KeyboardModifier.ControlModifier | Qt.KeyboardModifier.ShiftModifier)
    assert len(loaded.get_annotations()) == 1
    key(loaded, Qt.Key.Key_Z, Qt.KeyboardModifier.ControlModifier)
    key(loaded, Qt.Key.Key_Y, Qt.KeyboardModifier.ControlModifier)
    assert len(loaded.get_annotations()) == 1

  def test_zoom_keys(self, loaded):
    key(loaded, Qt.Key.Key_Plus)
    assert loaded.status()["zoom"] == pytest.approx(1.2)
    key(loaded, Qt.Key.Key_Minus)
    key(loaded, Qt.Key.Key_Minus)
    assert loaded.status()["zoom"] < 1.0
    key(loaded, Qt.Key.Key_0)
    assert loaded.status()["zoom"] == 1.0

  def test_enter_finishes(self, loaded, recorder):
    key(loaded, Qt.Key.Key_Return)
    assert len(recorder.calls) == 1
    encoded, error = recorder.calls[0]
    assert error is None
    assert decode_image(encoded).width() == 1000

  def test_escape_cancels(self, loaded, recorder):
    key(loaded, Qt.Key.Key_Escape)
    assert recorder.calls == [(None, "cancelled")]

  def test_finish_only_reports_once(self, loaded, recorder):
    loaded.finish()
    loaded.finish()
    loaded.cancel()
    assert len(recorder.calls) == 1

  def test_toolbar_tool_and_color(self, loaded):
    loaded.toolbar._tool_buttons["arrow"].click()
    assert loaded.status()["tool"] == "arrow"
    loaded.toolbar._color_buttons["#3b82f6"].click()
    assert loaded.status()["color"] == "#3b82f6"

  def test_toolbar_actions(self, loaded):
    loaded.handle_action("zoom-in")
    assert loaded.status()["zoom"] == pytest.approx(1.2)
    loaded.pan(10, 10)
    loaded.handle_action("center")
    assert loaded.zoom_pan.pan_offset.x() == 0
    loaded.handle_action("zoom-reset")
    assert loaded.status()["zoom"] == 1.0
    loaded.handle_action("bogus")

  def test_unknown_tool_rejected(self, loaded):
    with pytest.raises(ValueError):
      loaded.set_tool("laser")


# -- View ---------------------------------------------------------------------

class TestView:
  def test_paints_capture_under_transform(self, loaded):
    img = loaded.view.grab().toImage()
    assert img.pixelColor(1, 1) == WHITE
    loaded.pan(50, 50)
    img = loaded.view.grab().toImage()
    assert img.pixelColor(10, 10) != WHITE
    assert img.pixelColor(60, 60) == WHITE

  def test_resize_schedules_fit(self, loaded):
    loaded.view.resizeEvent(QResizeEvent(QSize(600, 500), QSize(200, 150)))
    assert loaded.canvas._resize_timer.isActive()
    loaded.canvas._resize_timer.stop()
    loaded.canvas._flush_fit()
    assert loaded.canvas.fit_scale < 1.0

  def test_two_finger_pinch_zooms(self, loaded):
    view = loaded.view
    assert view.touch_pinch([QPointF(0, 0), QPointF(100, 0)])
    assert loaded.zoom_pan.zoom == 1.0
    assert view.touch_pinch([QPointF(0, 0), QPointF(120, 0)])
    assert loaded.zoom_pan.zoom == pytest.approx(1.02)
    assert view.touch_pinch([QPointF(0, 0), QPointF(110, 0)])
    assert loaded.zoom_pan.zoom == pytest.approx(1.02 * 0.98)

  def test_lifting_a_finger_ends_pinch(self, loaded):
    view = loaded.view
    view.touch_pinch([QPointF(0, 0), QPointF(100, 0)])
    assert view.touch_pinch([QPointF(0, 0)]) is False
    # next two-finger contact only records the distance
    view.touch_pinch([QPointF(0, 0), QPointF(300, 0)])
    assert loaded.zoom_pan.zoom == 1.0

  def test_pinch_cancels_stroke_in_progress(self, loaded):
    loaded.view.mousePressEvent(mouse(QEvent.Type.MouseButtonPress, 10, 10))
    assert loaded.engine.is_drawing
    loaded.view.touch_pinch([QPointF(0, 0), QPointF(100, 0)])
    assert not loaded.engine.is_drawing
    assert loaded.get_annotations() == ()
