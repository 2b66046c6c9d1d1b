"""
Custom Exceptions Module.

This module defines all custom exceptions used throughout the identity
document extraction system. Each pipeline stage raises its own family of
exceptions so the session manager can decide which failures abort a scan
and which ones degrade gracefully.

Exception Hierarchy:
    IDExtractionError (base)
    ├── ConfigurationError
    ├── InputError
    │   └── DecodeError
    ├── NormalizationError
    │   ├── BoundaryNotFoundError
    │   └── ImageTooSmallError
    ├── RecognitionError
    │   └── RecognitionUnavailableError
    ├── TemplateError
    │   ├── TemplateConfigError
    │   └── TemplateNotRecognizedError
    └── SessionError
        ├── InvalidTransitionError
        └── SessionSupersededError

Propagation policy:
    DecodeError, ImageTooSmallError and an exhausted
    RecognitionUnavailableError end a session as Failed.
    BoundaryNotFoundError and TemplateNotRecognizedError are recovered
    from inside the pipeline.
"""


class IDExtractionError(Exception):
    """
    Base exception for all identity extraction errors.

    All custom exceptions in this system inherit from this class,
    allowing for easy catching of all system-specific errors.

    Attributes:
        message: Human-readable error message.
        details: Optional dictionary with additional error details.
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================

class ConfigurationError(IDExtractionError):
    """
    Raised when settings.yaml holds an out-of-range policy value.

    Example:
        >>> raise ConfigurationError("ocr.max_retries", -1, "must be >= 0")
    """

    def __init__(self, key: str, value=None, reason: str = None):
        message = f"Invalid configuration value for {key}"
        details = {"key": key, "value": value}
        if reason:
            details["reason"] = reason
        super().__init__(message, details)


# =============================================================================
# INPUT ERRORS
# =============================================================================

class InputError(IDExtractionError):
    """Base exception for capture handling errors."""
    pass


class DecodeError(InputError):
    """
    Raised when capture bytes cannot be turned into a raster image.

    Covers zero-byte buffers, unsupported formats and corrupt data.
    Fatal for the session; never retried.

    Example:
        >>> raise DecodeError("jpeg", "buffer is empty")
    """

    def __init__(self, image_format: str, reason: str = None):
        message = f"Could not decode {image_format or 'unknown'} capture"
        details = {"format": image_format, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# NORMALIZATION ERRORS
# =============================================================================

class NormalizationError(IDExtractionError):
    """Base exception for image normalization errors."""
    pass


class BoundaryNotFoundError(NormalizationError):
    """
    Raised when no document-shaped region is found in the frame.

    The image normalizer recovers from this by using the full frame
    and marking the result as degraded.
    """

    def __init__(self, reason: str = None, candidates: int = 0):
        message = "No plausible document boundary found"
        details = {"reason": reason, "candidates": candidates}
        super().__init__(message, details)


class ImageTooSmallError(NormalizationError):
    """
    Raised when a frame is too small to reach a plausible card shape.

    Fatal for the session; never retried.

    Example:
        >>> raise ImageTooSmallError(2, 1, "aspect ratio 1.00 after crop")
    """

    def __init__(self, width: int, height: int, reason: str = None):
        message = f"Image too small to normalize: {width}x{height}"
        details = {"width": width, "height": height, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# RECOGNITION ERRORS
# =============================================================================

class RecognitionError(IDExtractionError):
    """Base exception for text recognition errors."""
    pass


class RecognitionUnavailableError(RecognitionError):
    """
    Raised when the recognition engine cannot be reached or invoked.

    This is the only transient failure in the pipeline; the recognition
    adapter retries it a bounded number of times.
    """

    def __init__(self, engine_name: str, reason: str = None, attempts: int = 1):
        message = f"Recognition engine unavailable: {engine_name}"
        details = {"engine": engine_name, "reason": reason, "attempts": attempts}
        super().__init__(message, details)


# =============================================================================
# TEMPLATE ERRORS
# =============================================================================

class TemplateError(IDExtractionError):
    """Base exception for document template errors."""
    pass


class TemplateConfigError(TemplateError):
    """Raised when the template configuration file is malformed."""

    def __init__(self, source: str, reason: str = None):
        message = f"Invalid template configuration: {source}"
        details = {"source": source, "reason": reason}
        super().__init__(message, details)


class TemplateNotRecognizedError(TemplateError):
    """
    Raised when no known template clears the classification threshold.

    The pipeline recovers by extracting with the generic fallback template.
    """

    def __init__(self, best_template: str = None, best_score: float = 0.0,
                 threshold: float = 0.0):
        message = "Document layout not recognized"
        details = {
            "best_template": best_template,
            "best_score": round(best_score, 3),
            "threshold": threshold,
        }
        super().__init__(message, details)


# =============================================================================
# SESSION ERRORS
# =============================================================================

class SessionError(IDExtractionError):
    """Base exception for scan session errors."""
    pass


class InvalidTransitionError(SessionError):
    """Raised when a session is asked to make an illegal state change."""

    def __init__(self, session_id: str, current: str, requested: str):
        message = f"Illegal transition {current} -> {requested}"
        details = {"session_id": session_id, "current": current, "requested": requested}
        super().__init__(message, details)


class SessionSupersededError(SessionError):
    """Raised inside a session task whose generation is no longer current."""

    def __init__(self, session_id: str, generation: int, current_generation: int):
        message = f"Session {session_id} was superseded"
        details = {
            "generation": generation,
            "current_generation": current_generation,
        }
        super().__init__(message, details)


# Export all exceptions
__all__ = [
    'IDExtractionError',
    'ConfigurationError',
    'InputError',
    'DecodeError',
    'NormalizationError',
    'BoundaryNotFoundError',
    'ImageTooSmallError',
    'RecognitionError',
    'RecognitionUnavailableError',
    'TemplateError',
    'TemplateConfigError',
    'TemplateNotRecognizedError',
    'SessionError',
    'InvalidTransitionError',
    'SessionSupersededError',
]
