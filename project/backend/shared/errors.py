"""
Error handling.

Custom exception classes for consistent error handling across the pipeline.
"""

from enum import Enum
from typing import List, Optional


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(
        self,
        message: str,
        video_id: Optional[str] = None,
        code: Optional[str] = None
    ):
        """
        Initialize pipeline error.

        Args:
            message: Error message
            video_id: Optional video ID associated with the error
            code: Optional error code for categorization
        """
        self.message = message
        self.video_id = video_id
        self.code = code
        super().__init__(self.message)


class ConfigError(PipelineError):
    """Configuration errors (missing env vars, invalid settings)."""
    pass


class ValidationError(PipelineError):
    """Input validation errors."""
    pass


class RetryableError(PipelineError):
    """Error that can be retried."""
    pass


class VideoNotFoundError(PipelineError):
    """Video record does not exist."""
    pass


class MissingScriptError(PipelineError):
    """Asset generation requested before a script was approved."""
    pass


class ConflictError(PipelineError):
    """A run of the same stage is already in flight for this video."""
    pass


class InvalidTransitionError(PipelineError):
    """Status change not permitted by the pipeline state machine."""
    pass


class StaleRunError(PipelineError):
    """A worker's run token no longer matches the persisted record."""
    pass


class FailureKind(str, Enum):
    """Closed set of upstream failure categories."""

    AUTH = "auth"
    QUOTA = "quota"
    TIMEOUT = "timeout"
    CONTENT_POLICY = "content_policy"
    OTHER = "other"


class UpstreamError(PipelineError):
    """Provider call failed."""

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.OTHER,
        provider: Optional[str] = None,
        video_id: Optional[str] = None
    ):
        """
        Initialize upstream error.

        Args:
            message: Error message
            kind: Failure category
            provider: Name of the provider that failed
            video_id: Optional video ID associated with the error
        """
        self.kind = kind
        self.provider = provider
        super().__init__(message, video_id, code=f"UPSTREAM_{kind.value.upper()}")


class PreconditionError(PipelineError):
    """Render requested before its inputs are ready."""

    def __init__(
        self,
        message: str,
        missing: Optional[List[str]] = None,
        video_id: Optional[str] = None
    ):
        """
        Initialize precondition error.

        Args:
            message: Error message
            missing: Names of the missing assets (e.g. "audio", "image:3")
            video_id: Optional video ID associated with the error
        """
        self.missing = missing or []
        super().__init__(message, video_id, code="PRECONDITION_FAILED")


class EncodeError(PipelineError):
    """Media encoder failed."""

    def __init__(
        self,
        message: str,
        output: str = "",
        video_id: Optional[str] = None,
        code: Optional[str] = None
    ):
        self.output = output
        super().__init__(message, video_id, code or "ENCODE_FAILED")


class StageTimeoutError(EncodeError):
    """External process exceeded its deadline."""
    pass


class UploadError(PipelineError):
    """Encode succeeded but the storage write failed."""
    pass


__all__ = [
    "PipelineError",
    "ConfigError",
    "ValidationError",
    "RetryableError",
    "VideoNotFoundError",
    "MissingScriptError",
    "ConflictError",
    "InvalidTransitionError",
    "StaleRunError",
    "FailureKind",
    "UpstreamError",
    "PreconditionError",
    "EncodeError",
    "StageTimeoutError",
    "UploadError",
]
