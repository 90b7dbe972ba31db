"""Tests for the error hierarchy and CLI formatting."""

from __future__ import annotations

from mailferry.errors import (
    ConfigurationError,
    InvalidMessageError,
    MailferryError,
    RemoteSubmissionError,
    SourceUnavailableError,
    format_error_for_cli,
)


def test_source_unavailable_message_and_details():
    error = SourceUnavailableError("imap.example.com", "connection refused")

    assert isinstance(error, MailferryError)
    assert error.message == "Cannot open imap.example.com: connection refused"
    assert error.to_dict()["details"] == {
        "source": "imap.example.com",
        "reason": "connection refused",
    }
    assert error.to_dict()["code"] == "SOURCE_UNAVAILABLE"


def test_only_invalid_message_is_recoverable():
    assert InvalidMessageError("no headers").recoverable
    assert not RemoteSubmissionError().recoverable
    assert not SourceUnavailableError("x", "y").recoverable


def test_default_message():
    assert ConfigurationError().message == "Configuration is invalid"


def test_format_error_for_cli_hides_secrets():
    """Test CLI output carries code and suggestion but never passwords."""
    error = RemoteSubmissionError(
        "POST failed", details={"endpoint": "http://h:1/message.json", "password": "hunter2"}
    )

    text = format_error_for_cli(error)

    assert text.startswith("Error [REMOTE_SUBMISSION_ERROR]:")
    assert "POST failed" in text
    assert "Suggestion:" in text
    assert "endpoint: http://h:1/message.json" in text
    assert "hunter2" not in text
