"""Application-level exception types for the examiner engine."""

from __future__ import annotations

from examiner.types import CaptureErrorKind


class ExaminerError(Exception):
    """Base exception for the examiner engine."""


class ConfigurationError(ExaminerError):
    """Base exception for configuration and startup validation errors."""


class ModelNotConfiguredError(ConfigurationError):
    """Raised when the assessment model configuration is missing."""


class UnknownVariantError(ConfigurationError):
    """Raised when an exam variant name is not registered."""


class ServiceError(ExaminerError):
    """Raised by an assessment service when one request cannot be served."""


class CaptureError(ExaminerError):
    """Raised by a capture provider when listening fails."""

    def __init__(self, kind: CaptureErrorKind, message: str = "") -> None:
        super().__init__(message or kind.value)
        self.kind = kind


class PlaybackInterrupted(ExaminerError):
    """Raised by a playback provider when speech was interrupted."""


class GateBusyError(ExaminerError):
    """Raised when capture and playback would be active at the same time."""


class InvalidTransitionError(ExaminerError):
    """Raised when a control is used from a state that does not accept it."""
