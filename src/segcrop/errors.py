"""Error taxonomy for the segment and manifest flows.

Every error is terminal for the current invocation; the CLI reports it and
exits non-zero.
"""


class SegcropError(RuntimeError):
    """Base class for all segcrop failures."""


class ModelLoadError(SegcropError):
    """Model descriptor, checkpoint or builder failure."""


class InputImageError(SegcropError):
    """Source image is missing or cannot be decoded."""


class ValidationError(SegcropError, ValueError):
    """User input has the wrong shape (checked before any model call)."""


class EncodingError(SegcropError):
    """The model rejected an image or prompt submission."""


class NoMaskError(SegcropError):
    """The model produced no usable mask."""


class OutputIOError(SegcropError):
    """Directory creation, listing or file write failure."""
