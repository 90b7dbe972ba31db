"""Operator-facing error messages for mailferry.

Messages are shown by the CLI when a run aborts. They never include message
content or credentials.
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Error Message Catalog
# =============================================================================

ERROR_MESSAGES: dict[str, str] = {
    # Source errors
    "SOURCE_ERROR": "A message source issue occurred.",
    "SOURCE_UNAVAILABLE": "The message source could not be opened.",
    "SOURCE_EXHAUSTED": "The message source has no more messages.",
    # Message errors
    "INVALID_MESSAGE": "The message is malformed and was skipped.",
    # Storage errors
    "STORAGE_ERROR": "Writing to the local mail store failed.",
    # Remote errors
    "REMOTE_SUBMISSION_ERROR": "The indexing server could not be reached.",
    # Resume state errors
    "RESUME_STATE_ERROR": "The resume state file could not be written.",
    # Configuration errors
    "CONFIGURATION_ERROR": "There's a configuration issue.",
    # Generic
    "MAILFERRY_ERROR": "An unexpected error occurred.",
    "UNKNOWN_ERROR": "An unexpected error occurred.",
}


# =============================================================================
# Recovery Suggestions
# =============================================================================

RECOVERY_SUGGESTIONS: dict[str, str] = {
    "SOURCE_ERROR": "Check the source options and try again.",
    "SOURCE_UNAVAILABLE": "Check the path, host and credentials of the source.",
    "SOURCE_EXHAUSTED": "Nothing to do; the source was fully scanned.",
    "INVALID_MESSAGE": "Inspect the message; the rest of the run is unaffected.",
    "STORAGE_ERROR": "Inspect bad-message.txt and check free disk space and permissions.",
    "REMOTE_SUBMISSION_ERROR": "Make sure the server is running, then re-run; seen messages are skipped.",
    "RESUME_STATE_ERROR": "Check that the state file directory is writable.",
    "CONFIGURATION_ERROR": "Check the configuration file and command line flags.",
    "MAILFERRY_ERROR": "Re-run with --verbose for more detail.",
    "UNKNOWN_ERROR": "Re-run with --verbose for more detail.",
}


# =============================================================================
# Helper Functions
# =============================================================================


def _code_for(error: Any) -> str:
    if hasattr(error, "code"):
        return error.code
    if isinstance(error, str):
        return error
    return type(error).__name__.upper()


def get_user_message(error: Any) -> str:
    """Get an operator-facing message for an error or error code."""
    return ERROR_MESSAGES.get(_code_for(error), ERROR_MESSAGES["UNKNOWN_ERROR"])


def get_recovery_suggestion(error: Any) -> str:
    """Get a recovery suggestion for an error or error code."""
    return RECOVERY_SUGGESTIONS.get(
        _code_for(error), RECOVERY_SUGGESTIONS["UNKNOWN_ERROR"]
    )


def format_error_for_cli(error: Any) -> str:
    """Format an error for terminal output.

    Args:
        error: The error to format

    Returns:
        CLI-formatted error message
    """
    code = getattr(error, "code", "ERROR")
    lines = [
        f"Error [{code}]: {get_user_message(error)}",
    ]
    message = getattr(error, "message", None) or str(error)
    if message:
        lines.append(f"  {message}")
    lines.append("")
    lines.append(f"Suggestion: {get_recovery_suggestion(error)}")

    details = getattr(error, "details", None)
    if details:
        lines.append("")
        lines.append("Details:")
        for key, value in details.items():
            if key not in ("message", "password", "token"):
                lines.append(f"  {key}: {value}")

    return "\n".join(lines)


__all__ = [
    "ERROR_MESSAGES",
    "RECOVERY_SUGGESTIONS",
    "format_error_for_cli",
    "get_recovery_suggestion",
    "get_user_message",
]
