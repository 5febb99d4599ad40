"""Error types raised by the capture-and-annotate pipeline."""

from __future__ import annotations


class SnapmarkError(Exception):
  """Base class for all Snapmark errors."""


class CaptureError(SnapmarkError):
  """The capture backend is unavailable, denied access, or failed."""


class AlreadyInProgressError(CaptureError):
  """A capture was requested while another one is still running."""


class LoadError(SnapmarkError):
  """An image buffer could not be decoded onto the drawing surface."""


class ValidationError(SnapmarkError):
  """A malformed annotation record was rejected."""

  def __init__(self, message: str, field: str | None = None):
    super().__init__(message)
    self.field = field
