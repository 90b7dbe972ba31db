"""Shared test fixtures and fakes for mailferry tests."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import pytest
from imapclient.exceptions import IMAPClientError, LoginError

import mailferry.sources.imap as imap_module
from mailferry.credentials import StaticCredentialProvider
from mailferry.models import MessageUnit, RouteResult
from mailferry.sources.base import MessageSource, SourceItem


# ============================================================================
# Message factory
# ============================================================================


def make_message(
    msgid: Optional[str] = "m1@example.com",
    *,
    subject: str = "Hello",
    sender: str = "Alice <alice@example.com>",
    to: str = "Bob <bob@example.com>",
    body: str = "Hi there.\n",
    extra_headers: str = "",
) -> bytes:
    """Build a small RFC822 message."""
    headers = [f"From: {sender}", f"To: {to}", f"Subject: {subject}"]
    headers.append("Date: Mon, 02 Oct 2023 10:00:00 +0000")
    if msgid is not None:
        headers.append(f"Message-ID: <{msgid}>")
    if extra_headers:
        headers.append(extra_headers.rstrip("\n"))
    return ("\n".join(headers) + "\n\n" + body).encode("utf-8")


@pytest.fixture
def message_factory():
    return make_message


# ============================================================================
# Fake source and write path
# ============================================================================


class FakeSource(MessageSource):
    """In-memory source recording every contract call."""

    def __init__(
        self,
        items: Sequence[SourceItem],
        *,
        provides_labels: bool = False,
        fail_load: Optional[Exception] = None,
    ) -> None:
        self._items = list(items)
        self._cursor = 0
        self.provides_labels = provides_labels
        self.fail_load = fail_load
        self.calls: List[str] = []
        self.acknowledged: List[int] = []
        self.finished = False

    @property
    def identity(self) -> str:
        return "fake:test"

    def load(self) -> None:
        self.calls.append("load")
        if self.fail_load is not None:
            raise self.fail_load

    def done(self) -> bool:
        return self._cursor >= len(self._items)

    def _next(self) -> SourceItem:
        self.calls.append("next")
        item = self._items[self._cursor]
        self._cursor += 1
        return item

    @property
    def pulled(self) -> int:
        return self._cursor

    def acknowledge(self) -> None:
        self.calls.append("acknowledge")
        self.acknowledged.append(self._cursor)

    def finish(self) -> None:
        self.calls.append("finish")
        self.finished = True


@pytest.fixture
def fake_source():
    """Factory building a :class:`FakeSource` from message items."""
    return FakeSource


class RecordingWritePath:
    """Write path returning canned results and remembering what it saw."""

    def __init__(self, results: Optional[Dict[bytes, Any]] = None) -> None:
        self.results = results or {}
        self.routed: List[MessageUnit] = []

    def route(self, unit: MessageUnit) -> RouteResult:
        self.routed.append(unit)
        result = self.results.get(unit.raw, RouteResult.indexed())
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def recording_write_path() -> RecordingWritePath:
    return RecordingWritePath()


@pytest.fixture
def write_path_factory():
    return RecordingWritePath


# ============================================================================
# Fake IMAP server
# ============================================================================


class FakeImapServer:
    """In-memory IMAP mailbox shared by all clients a test creates."""

    def __init__(self, *, uidvalidity: int = 1, password: str = "secret") -> None:
        self.uidvalidity = uidvalidity
        self.password = password
        self.folders: Dict[str, Dict[int, Dict[bytes, Any]]] = {}
        self.clients: List["FakeImapClient"] = []
        self.fail_connect: Optional[Exception] = None
        self.fail_fetch: Optional[Exception] = None
        self.vanish_on_fetch: Set[int] = set()

    def add_message(
        self,
        uid: int,
        raw: bytes,
        *,
        folder: str = "INBOX",
        flags: Tuple[bytes, ...] = (b"\\Seen",),
        gmail_labels: Tuple[bytes, ...] = (),
    ) -> None:
        self.folders.setdefault(folder, {})[uid] = {
            b"FLAGS": flags,
            b"BODY[]": raw,
            b"X-GM-LABELS": gmail_labels,
        }

    @property
    def fetch_calls(self) -> List[List[int]]:
        return [call for client in self.clients for call in client.fetch_calls]


class FakeImapClient:
    """Stands in for ``imapclient.IMAPClient`` in unit tests."""

    def __init__(self, server: FakeImapServer, **kwargs: Any) -> None:
        if server.fail_connect is not None:
            raise server.fail_connect
        self.server = server
        self.kwargs = kwargs
        self.selected: Optional[str] = None
        self.readonly: Optional[bool] = None
        self.logged_in = False
        self.logged_out = False
        self.searches: List[list] = []
        self.fetch_calls: List[List[int]] = []
        server.clients.append(self)

    def login(self, username: str, password: str) -> bytes:
        if password != self.server.password:
            raise LoginError("[AUTHENTICATIONFAILED] Invalid credentials")
        self.logged_in = True
        return b"LOGIN completed"

    def select_folder(self, folder: str, readonly: bool = False) -> Dict[bytes, Any]:
        if folder not in self.server.folders:
            raise IMAPClientError(f"select failed: no folder {folder}")
        self.selected = folder
        self.readonly = readonly
        messages = self.server.folders[folder]
        return {
            b"UIDVALIDITY": self.server.uidvalidity,
            b"EXISTS": len(messages),
        }

    def search(self, criteria: list) -> List[int]:
        self.searches.append(criteria)
        uids = sorted(self.server.folders[self.selected])
        start = int(criteria[1].split(":")[0])
        found = [uid for uid in uids if uid >= start]
        if not found and uids:
            # "n:*" always matches the highest UID
            found = [uids[-1]]
        return found

    def fetch(self, uids: List[int], items: List[bytes]) -> Dict[int, Dict[bytes, Any]]:
        self.fetch_calls.append(list(uids))
        if self.server.fail_fetch is not None:
            raise self.server.fail_fetch
        messages = self.server.folders[self.selected]
        response: Dict[int, Dict[bytes, Any]] = {}
        for uid in uids:
            if uid not in messages or uid in self.server.vanish_on_fetch:
                continue
            data = messages[uid]
            entry = {b"SEQ": uid, b"FLAGS": data[b"FLAGS"], b"BODY[]": data[b"BODY[]"]}
            if b"X-GM-LABELS" in items:
                entry[b"X-GM-LABELS"] = data[b"X-GM-LABELS"]
            response[uid] = entry
        return response

    def logout(self) -> bytes:
        self.logged_out = True
        return b"LOGOUT"


@pytest.fixture
def fake_imap(monkeypatch) -> FakeImapServer:
    """Route every IMAPClient created by mailferry to an in-memory server."""
    server = FakeImapServer()
    monkeypatch.setattr(
        imap_module, "IMAPClient", lambda **kwargs: FakeImapClient(server, **kwargs)
    )
    return server


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider(username="alice@example.com", password="secret")
