"""IMAP folder source with resumable UID cursor.

On load the folder is selected read-only and every UID above the stored
cursor is listed. Messages are then fetched in pages of ``page_size``. The
cursor persisted to the resume state is the highest *acknowledged* UID, so a
message that was fetched but never routed is fetched again on the next run.
A UIDVALIDITY change invalidates the stored cursor and restarts the folder.
"""

from __future__ import annotations

import logging
import ssl
from typing import Any, Dict, List, Optional, Sequence, Set

import certifi
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from ..credentials import CredentialProvider
from ..errors import SourceUnavailableError
from ..resume_state import ResumeState, ResumeStateStore
from .base import MessageSource, SourceItem


logger = logging.getLogger(__name__)

BODY_ITEM = b"BODY.PEEK[]"
BODY_KEY = b"BODY[]"
FLAGS_KEY = b"FLAGS"

# IMAP system flag -> state flag set when present
FLAG_STATES = {
    b"\\Flagged": "starred",
    b"\\Deleted": "deleted",
    b"\\Draft": "draft",
    b"\\Answered": "replied",
}


def _as_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def state_from_flags(flags: Sequence[Any]) -> Set[str]:
    present = {_as_bytes(flag) for flag in flags}
    state = {value for flag, value in FLAG_STATES.items() if flag in present}
    if b"\\Seen" not in present:
        state.add("unread")
    return state


def create_ssl_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.load_verify_locations(certifi.where())
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    return context


class ImapSource(MessageSource):
    """Reads one IMAP folder in ascending UID order."""

    provides_labels = True
    protocol = "imap"

    def __init__(
        self,
        host: str,
        *,
        credential_provider: CredentialProvider,
        port: int = 993,
        folder: str = "INBOX",
        username: Optional[str] = None,
        use_ssl: bool = True,
        state_store: Optional[ResumeStateStore] = None,
        page_size: int = 100,
        connection_timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.folder = folder
        self.use_ssl = use_ssl
        self._username = username
        self._credential_provider = credential_provider
        self._state_store = state_store
        self._page_size = max(1, page_size)
        self._connection_timeout = connection_timeout

        self._client: Optional[IMAPClient] = None
        self._uidvalidity: int = 0
        self._uids: List[int] = []
        self._position = 0
        self._page: Dict[int, Dict[bytes, Any]] = {}
        self._requested: Set[int] = set()
        self._last_returned_uid: Optional[int] = None
        self._acked_uid = 0
        self._saved_uid = 0

    # ------------------------------------------------------------------
    @property
    def identity(self) -> str:
        return f"{self.protocol}:{self._username or '?'}@{self.host}:{self.port}/{self.folder}"

    @property
    def resumable(self) -> bool:
        return self._state_store is not None

    @property
    def acknowledged_uid(self) -> int:
        return self._acked_uid

    @property
    def remaining(self) -> int:
        return len(self._uids) - self._position

    def load(self) -> None:
        credentials = self._credential_provider.get(self.host, self._username)
        self._username = credentials.username
        logger.info(
            "Connecting to IMAP server",
            extra={"ingest_source": self.identity, "ingest_ssl": self.use_ssl},
        )
        try:
            self._client = self._connect()
            self._client.login(credentials.username, credentials.password)
            select_info = self._client.select_folder(self.folder, readonly=True)
            self._uidvalidity = int(select_info.get(b"UIDVALIDITY", 0))
            start_uid = self._resume_point()
            found = self._client.search(["UID", f"{start_uid + 1}:*"])
        except (IMAPClientError, OSError) as exc:
            self._logout()
            raise SourceUnavailableError(self.identity, str(exc)) from exc

        # "UID n:*" always matches the highest UID, even when it is below n
        self._uids = sorted(int(uid) for uid in found if int(uid) > start_uid)
        self._position = 0
        self._page, self._requested = {}, set()
        self._acked_uid = self._saved_uid = start_uid
        logger.info(
            "IMAP folder selected",
            extra={
                "ingest_source": self.identity,
                "ingest_uidvalidity": self._uidvalidity,
                "ingest_resume_uid": start_uid,
                "ingest_message_count": len(self._uids),
            },
        )

    def done(self) -> bool:
        return self._position >= len(self._uids)

    def _next(self) -> SourceItem:
        uid = self._uids[self._position]
        if uid not in self._requested:
            self._fetch_page()
        data = self._page.pop(uid, None)
        self._position += 1
        self._last_returned_uid = uid
        description = f"{self.protocol} {self.folder} uid {uid}"
        if data is None:
            logger.warning(
                "Message vanished before fetch",
                extra={"ingest_source": self.identity, "ingest_uid": uid},
            )
            return b"", self._labels_for({}), set(), description + " (vanished)"
        raw = data.get(BODY_KEY) or b""
        return raw, self._labels_for(data), self._state_for(data), description

    def skip(self, n: int) -> int:
        skipped = min(n, self.remaining)
        if skipped <= 0:
            return 0
        for uid in self._uids[self._position : self._position + skipped]:
            self._page.pop(uid, None)
        self._position += skipped
        self._last_returned_uid = self._uids[self._position - 1]
        self.acknowledge()
        return skipped

    def acknowledge(self) -> None:
        if self._last_returned_uid is None:
            return
        self._acked_uid = max(self._acked_uid, self._last_returned_uid)
        self._last_returned_uid = None
        if self._position % self._page_size == 0 or self.done():
            self._save_state()

    def finish(self) -> None:
        try:
            self._save_state()
        finally:
            self._logout()

    # ------------------------------------------------------------------
    def _connect(self) -> IMAPClient:
        if not self.use_ssl:
            logger.warning(
                "IMAP connection without TLS; credentials are sent in clear text",
                extra={"ingest_source": self.identity},
            )
        return IMAPClient(
            host=self.host,
            port=self.port,
            ssl=self.use_ssl,
            ssl_context=create_ssl_context() if self.use_ssl else None,
            timeout=self._connection_timeout,
            use_uid=True,
        )

    def _resume_point(self) -> int:
        if self._state_store is None:
            return 0
        state = self._state_store.load(self.identity)
        if state is None:
            return 0
        if state.uidvalidity != self._uidvalidity:
            logger.warning(
                "UIDVALIDITY changed; rescanning folder from the start",
                extra={
                    "ingest_source": self.identity,
                    "ingest_stored_uidvalidity": state.uidvalidity,
                    "ingest_uidvalidity": self._uidvalidity,
                },
            )
            return 0
        return state.last_uid

    def _fetch_items(self) -> List[bytes]:
        return [FLAGS_KEY, BODY_ITEM]

    def _fetch_page(self) -> None:
        assert self._client is not None
        uids = self._uids[self._position : self._position + self._page_size]
        logger.debug(
            "Fetching IMAP page",
            extra={"ingest_source": self.identity, "ingest_first_uid": uids[0], "ingest_count": len(uids)},
        )
        self._requested = set(uids)
        try:
            response = self._client.fetch(uids, self._fetch_items())
        except (IMAPClientError, OSError) as exc:
            raise SourceUnavailableError(self.identity, f"fetch failed: {exc}") from exc
        self._page = {int(uid): data for uid, data in response.items()}

    def _labels_for(self, data: Dict[bytes, Any]) -> Set[str]:
        name = self.folder.lower()
        return {"inbox" if name == "inbox" else name}

    def _state_for(self, data: Dict[bytes, Any]) -> Set[str]:
        return state_from_flags(data.get(FLAGS_KEY, ()))

    def _save_state(self) -> None:
        if self._state_store is None or self._acked_uid <= self._saved_uid:
            return
        self._state_store.save(
            ResumeState(
                identity=self.identity,
                uidvalidity=self._uidvalidity,
                last_uid=self._acked_uid,
            )
        )
        self._saved_uid = self._acked_uid

    def _logout(self) -> None:
        if self._client is None:
            return
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as exc:
            logger.warning("Error during IMAP logout", exc_info=exc)
        finally:
            self._client = None


__all__ = ["ImapSource", "create_ssl_context", "state_from_flags"]
