"""Annotation list with bounded, whole-list undo/redo."""

from __future__ import annotations

import dataclasses
import json
import time
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any, Callable
from uuid import uuid4

from annotations import Annotation, coerce, from_dict, to_dict, validate
from errors import ValidationError
from log import get_logger

log = get_logger("storage")

DEFAULT_MAX_UNDO_LEVELS = 50
EXPORT_VERSION = "1.0"

Snapshot = tuple[Annotation, ...]


def generate_annotation_id() -> str:
  return f"annotation_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


class AnnotationStorage:
  """Owns the live annotation list and its undo/redo history.

  Every mutation pushes the pre-mutation list onto the undo stack and clears
  the redo stack. Records are frozen dataclasses, so a tuple of them is a
  complete snapshot and undo/redo always swap whole lists.
  """

  def __init__(self, max_undo_levels: int = DEFAULT_MAX_UNDO_LEVELS,
               on_change: Callable[[Snapshot], None] | None = None):
    if max_undo_levels < 1:
      raise ValueError("max_undo_levels must be at least 1")
    self.max_undo_levels = max_undo_levels
    self.on_change = on_change
    self._annotations: list[Annotation] = []
    self._undo_stack: deque[Snapshot] = deque(maxlen=max_undo_levels)
    self._redo_stack: deque[Snapshot] = deque(maxlen=max_undo_levels)

  # -- Queries ----------------------------------------------------------------

  @property
  def annotations(self) -> Snapshot:
    return tuple(self._annotations)

  def get_annotations(self) -> Snapshot:
    return self.annotations

  @property
  def count(self) -> int:
    return len(self._annotations)

  def get(self, annotation_id: str) -> Annotation | None:
    for ann in self._annotations:
      if ann.id == annotation_id:
        return ann
    return None

  def by_type(self, kind: str) -> list[Annotation]:
    return [ann for ann in self._annotations if ann.type == kind]

  def by_color(self, color: str) -> list[Annotation]:
    return [ann for ann in self._annotations if ann.color == color]

  def can_undo(self) -> bool:
    return bool(self._undo_stack)

  def can_redo(self) -> bool:
    return bool(self._redo_stack)

  def statistics(self) -> dict[str, Any]:
    by_type: dict[str, int] = {}
    by_color: dict[str, int] = {}
    stamps = []
    for ann in self._annotations:
      by_type[ann.type] = by_type.get(ann.type, 0) + 1
      by_color[ann.color] = by_color.get(ann.color, 0) + 1
      if ann.timestamp:
        stamps.append(ann.timestamp)
    return {
      "total": len(self._annotations),
      "by_type": by_type,
      "by_color": by_color,
      "oldest_timestamp": min(stamps) if stamps else None,
      "newest_timestamp": max(stamps) if stamps else None,
    }

  @staticmethod
  def validate(annotation: Annotation | Mapping[str, Any]) -> ValidationError | None:
    return validate(annotation)

  # -- Mutations --------------------------------------------------------------

  def _commit(self, new_list: list[Annotation], action: str) -> None:
    self._undo_stack.append(tuple(self._annotations))
    self._annotations = new_list
    self._redo_stack.clear()
    log.debug("%s: %d annotation(s), undo depth %d",
      action, len(new_list), len(self._undo_stack))
    self._notify()

  def _notify(self) -> None:
    if self.on_change:
      self.on_change(self.annotations)

  def add(self, annotation: Annotation | Mapping[str, Any]) -> Annotation:
    """Validate, stamp with id/timestamp, and append. Raises ValidationError."""
    record = coerce(annotation)
    record = dataclasses.replace(
      record,
      id=generate_annotation_id(),
      timestamp=record.timestamp or time.time(),
    )
    self._commit(self._annotations + [record], "add")
    return record

  def remove(self, annotation_id: str) -> bool:
    remaining = [ann for ann in self._annotations if ann.id != annotation_id]
    if len(remaining) == len(self._annotations):
      return False
    self._commit(remaining, "remove")
    return True

  def update(self, annotation_id: str, patch: Mapping[str, Any]) -> Annotation | None:
    """Apply ``patch`` to one record. Raises ValidationError, leaving the list as is."""
    for index, ann in enumerate(self._annotations):
      if ann.id == annotation_id:
        break
    else:
      return None

    merged = to_dict(ann)
    merged.update(patch)
    merged["id"] = ann.id
    merged["last_modified"] = time.time()
    record = from_dict(merged)

    new_list = list(self._annotations)
    new_list[index] = record
    self._commit(new_list, "update")
    return record

  def clear(self) -> bool:
    if not self._annotations:
      return False
    self._commit([], "clear")
    return True

  def undo(self) -> bool:
    if not self._undo_stack:
      return False
    self._redo_stack.append(tuple(self._annotations))
    self._annotations = list(self._undo_stack.pop())
    self._notify()
    return True

  def redo(self) -> bool:
    if not self._redo_stack:
      return False
    self._undo_stack.append(tuple(self._annotations))
    self._annotations = list(self._redo_stack.pop())
    self._notify()
    return True

  def load(self, items: Iterable[Annotation | Mapping[str, Any]]) -> None:
    """Replace the whole list in one undoable step. Raises ValidationError."""
    records = []
    for item in items:
      record = coerce(item)
      if not record.id:
        record = dataclasses.replace(record, id=generate_annotation_id())
      records.append(record)
    self._commit(records, "load")

  def reset(self) -> None:
    """Drop annotations and history without notifying."""
    self._annotations = []
    self._undo_stack.clear()
    self._redo_stack.clear()

  # -- Transport --------------------------------------------------------------

  def export_json(self) -> str:
    return json.dumps({
      "annotations": [to_dict(ann) for ann in self._annotations],
      "exported_at": time.time(),
      "version": EXPORT_VERSION,
    }, indent=2)

  def import_json(self, text: str) -> bool:
    """Replace the list from exported JSON.

    Returns False if the text is not an export document; raises
    ValidationError if any entry is malformed.
    """
    try:
      data = json.loads(text)
    except json.JSONDecodeError as e:
      log.warning("Cannot import annotations, invalid JSON: %s", e)
      return False
    items = data.get("annotations") if isinstance(data, dict) else None
    if not isinstance(items, list):
      log.warning("Cannot import annotations, no annotation list found")
      return False
    self.load(items)
    return True

  def memory_info(self) -> dict[str, int]:
    size = len(json.dumps([to_dict(a) for a in self._annotations]))
    for stack in (self._undo_stack, self._redo_stack):
      for snapshot in stack:
        size += len(json.dumps([to_dict(a) for a in snapshot]))
    return {
      "annotations": len(self._annotations),
      "undo_depth": len(self._undo_stack),
      "redo_depth": len(self._redo_stack),
      "estimated_kb": round(size / 1024),
    }
