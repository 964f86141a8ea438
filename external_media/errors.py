"""Exception types raised by the validation pipeline."""

from __future__ import annotations

from .models import ReasonCode


class ExternalMediaError(Exception):
    """Base class for errors raised by this package."""


class ValidationError(ExternalMediaError):
    """A URL was rejected; ``reason`` says which check failed."""

    def __init__(self, reason: ReasonCode, message: str = "") -> None:
        self.reason = reason
        super().__init__(message or reason.value)


class AdmissionError(ValidationError):
    """Raised before any network access when a URL is not admissible."""


class ProbeError(ValidationError):
    """Raised when the remote resource is unreachable or not a valid image."""


class RecordCreationError(ExternalMediaError):
    """Raised by record-creation collaborators that cannot persist a record."""
