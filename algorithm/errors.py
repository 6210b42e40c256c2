"""
goal: error types shared by the analysis pipeline. each one maps to a different recovery policy:
empty input fails the single analysis, extraction errors degrade to an all-zero feature vector,
and model errors are always surfaced so no fabricated verdict reaches the UI.
"""

from __future__ import annotations


class EmptyInputError(ValueError):
    """Raised when byte statistics are asked for a zero-length buffer."""


class ExtractionError(RuntimeError):
    """Raised when a buffer cannot be read or decoded during feature extraction."""


class ModelNotLoadedError(RuntimeError):
    """Raised when a classifier is used before load_model() succeeded."""


class FileTooLargeError(ValueError):
    """Raised by the file source when an upload is above the configured cap."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"file is {size} bytes, limit is {limit} bytes")
        self.size = size  # how many bytes we saw before giving up
        self.limit = limit  # configured cap in bytes
