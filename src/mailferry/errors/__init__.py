"""Centralized error definitions for mailferry.

The hierarchy separates the one expected, per-message failure
(:class:`InvalidMessageError`) from run-level failures that abort an import.

Usage:
    from mailferry.errors import MailferryError, SourceUnavailableError

    try:
        orchestrator.run(source)
    except MailferryError as e:
        print(format_error_for_cli(e))
"""

from __future__ import annotations

from mailferry.errors.user_messages import (
    format_error_for_cli,
    get_recovery_suggestion,
    get_user_message,
)


# =============================================================================
# Base Error
# =============================================================================


class MailferryError(Exception):
    """Base exception for all mailferry errors.

    Attributes:
        code: Error code for categorization
        recoverable: Whether the run may continue after this error
        details: Additional error details for debugging
    """

    code: str = "MAILFERRY_ERROR"
    default_message: str = "An unexpected error occurred"
    recoverable: bool = False

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Get operator-facing message."""
        return get_user_message(self)

    @property
    def recovery_suggestion(self) -> str:
        """Get recovery suggestion."""
        return get_recovery_suggestion(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "recoverable": self.recoverable,
            "details": self.details,
        }


# =============================================================================
# Source Errors
# =============================================================================


class SourceError(MailferryError):
    """Base error for message source operations."""

    code = "SOURCE_ERROR"
    default_message = "Message source operation failed"


class SourceUnavailableError(SourceError):
    """The origin cannot be opened, reached or authenticated."""

    code = "SOURCE_UNAVAILABLE"
    default_message = "Message source is unavailable"

    def __init__(self, source: str, reason: str, *, message: str | None = None) -> None:
        self.source = source
        self.reason = reason
        super().__init__(
            message or f"Cannot open {source}: {reason}",
            details={"source": source, "reason": reason},
        )


class ExhaustedSourceError(SourceError):
    """``next()`` was called on a source with no messages left."""

    code = "SOURCE_EXHAUSTED"
    default_message = "Message source is exhausted"


# =============================================================================
# Message Errors
# =============================================================================


class InvalidMessageError(MailferryError):
    """Raw bytes could not be parsed into a message.

    This is the only per-message error the orchestrator absorbs.
    """

    code = "INVALID_MESSAGE"
    default_message = "Message is malformed"
    recoverable = True


# =============================================================================
# Backend Errors
# =============================================================================


class StorageError(MailferryError):
    """Local content store or index failure."""

    code = "STORAGE_ERROR"
    default_message = "Local storage operation failed"


class RemoteSubmissionError(MailferryError):
    """Transport-level failure talking to the indexing server."""

    code = "REMOTE_SUBMISSION_ERROR"
    default_message = "Remote submission failed"


class ResumeStateError(MailferryError):
    """Resume state could not be persisted."""

    code = "RESUME_STATE_ERROR"
    default_message = "Resume state could not be written"


class ConfigurationError(MailferryError):
    """Invalid settings or conflicting command line options."""

    code = "CONFIGURATION_ERROR"
    default_message = "Configuration is invalid"


__all__ = [
    "MailferryError",
    "SourceError",
    "SourceUnavailableError",
    "ExhaustedSourceError",
    "InvalidMessageError",
    "StorageError",
    "RemoteSubmissionError",
    "ResumeStateError",
    "ConfigurationError",
    "format_error_for_cli",
]
