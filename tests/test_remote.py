"""Tests for HTTP submission to the indexing server."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
import requests

from mailferry.errors import RemoteSubmissionError
from mailferry.models import Outcome, RouteResult
from mailferry.remote import RemoteSubmissionClient, RetryStrategy


def _response(payload=None, *, status_code=200, not_json=False):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    if not_json:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def sleeps():
    return []


def _client(session, sleeps, **kwargs) -> RemoteSubmissionClient:
    return RemoteSubmissionClient(session=session, sleep=sleeps.append, **kwargs)


# ============================================================================
# Request shape
# ============================================================================


def test_submit_posts_form_fields(session, sleeps):
    """Test the message, labels and state go out as form fields."""
    session.post.return_value = _response({"response": "ok", "status": "indexed"})
    client = _client(session, sleeps, host="mail.local", port=9000, timeout=5.0)

    result = client.submit(b"raw message", labels={"work", "inbox"}, state={"unread"})

    assert result == RouteResult.indexed()
    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args == ("http://mail.local:9000/message.json",)
    assert kwargs["timeout"] == 5.0
    assert kwargs["data"]["message"] == b"raw message"
    assert json.loads(kwargs["data"]["labels"]) == ["inbox", "work"]
    assert json.loads(kwargs["data"]["state"]) == ["unread"]


# ============================================================================
# Response classification
# ============================================================================


def test_seen_response(session, sleeps):
    session.post.return_value = _response({"response": "ok", "status": "seen"})

    assert _client(session, sleeps).submit(b"x", labels=(), state=()) == RouteResult.seen()


def test_error_response_is_bad(session, sleeps):
    session.post.return_value = _response(
        {"response": "error", "error_message": "can't parse"}, status_code=500
    )

    result = _client(session, sleeps).submit(b"x", labels=(), state=())

    assert result == RouteResult.bad("can't parse")


def test_non_json_response_is_bad(session, sleeps):
    session.post.return_value = _response(not_json=True, status_code=502)

    result = _client(session, sleeps).submit(b"x", labels=(), state=())

    assert result.outcome is Outcome.BAD
    assert "502" in result.reason


def test_unexpected_body_is_bad(session, sleeps):
    session.post.return_value = _response(["ok"])

    assert _client(session, sleeps).submit(b"x", labels=(), state=()).outcome is Outcome.BAD


# ============================================================================
# Transport failures and retries
# ============================================================================


def test_transport_failure_raises_without_retries(session, sleeps):
    session.post.side_effect = requests.ConnectionError("connection refused")

    with pytest.raises(RemoteSubmissionError) as excinfo:
        _client(session, sleeps).submit(b"x", labels=(), state=())

    assert session.post.call_count == 1
    assert sleeps == []
    assert excinfo.value.details["retries"] == 0


def test_transport_failure_is_retried(session, sleeps):
    session.post.side_effect = [
        requests.ConnectionError("reset"),
        requests.Timeout("slow"),
        _response({"response": "ok"}),
    ]
    strategy = RetryStrategy(max_retries=3, base_delay=0.5, jitter=False)

    result = _client(session, sleeps, retry_strategy=strategy).submit(b"x", labels=(), state=())

    assert result == RouteResult.indexed()
    assert sleeps == [0.5, 1.0]


def test_retries_exhausted(session, sleeps):
    session.post.side_effect = requests.ConnectionError("down")
    strategy = RetryStrategy(max_retries=2, jitter=False)

    with pytest.raises(RemoteSubmissionError):
        _client(session, sleeps, retry_strategy=strategy).submit(b"x", labels=(), state=())

    assert session.post.call_count == 3


def test_non_transport_errors_are_not_retried(session, sleeps):
    session.post.side_effect = requests.exceptions.InvalidURL("bad url")
    strategy = RetryStrategy(max_retries=5)

    with pytest.raises(RemoteSubmissionError):
        _client(session, sleeps, retry_strategy=strategy).submit(b"x", labels=(), state=())

    assert session.post.call_count == 1


def test_retry_delay_is_capped():
    strategy = RetryStrategy(base_delay=1.0, max_delay=5.0, jitter=False)

    assert [strategy.calculate_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 5.0]
