"""Exceptions raised by the reporting pipeline."""

from __future__ import annotations


class ReportingError(RuntimeError):
    """Base class for reporting pipeline errors."""


class MessageFormatError(ReportingError):
    """Raised when a queue message or its object payload has an unexpected shape."""


class CredentialNotFoundError(ReportingError):
    """Raised when no fetching user account maps to a pixel."""

    def __init__(self, pixel_id: str):
        super().__init__(f"No active account token for pixel {pixel_id}")
        self.pixel_id = pixel_id


class DispatchError(ReportingError):
    """Raised when the conversions API rejects or fails a batch."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
