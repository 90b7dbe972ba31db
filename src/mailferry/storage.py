"""Local mail storage: content-addressable store plus a SQLite index.

Layout under the storage root::

    store/   raw messages, one file per SHA-256 digest (fanned out by prefix)
    index/   messages.db, one row per message fingerprint
    hooks/   extension callbacks, created empty

The index doubles as the dedup oracle: a fingerprint is "seen" exactly when
it has an index row.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import sqlite3
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from .errors import StorageError
from .parser import ParsedMessage


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------


class ContentStore:
    """Write-once store of raw message bytes addressed by SHA-256."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def path_for(self, location: str) -> Path:
        return self._root / location[:2] / location

    def put(self, raw: bytes) -> str:
        """Store ``raw`` and return its location handle."""

        digest = hashlib.sha256(raw).hexdigest()
        target = self.path_for(digest)
        if target.exists():
            return digest
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, suffix=".tmp")
        except OSError as exc:
            raise StorageError(f"Cannot write message to {target.parent}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(raw)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
        except OSError as exc:
            _discard(tmp_name)
            raise StorageError(f"Cannot write message to {target}: {exc}") from exc
        except BaseException:
            _discard(tmp_name)
            raise
        return digest


def _discard(tmp_name: str) -> None:
    if os.path.exists(tmp_name):
        os.unlink(tmp_name)


# ---------------------------------------------------------------------------
# Message index
# ---------------------------------------------------------------------------


SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    safe_msgid TEXT PRIMARY KEY,
    location TEXT NOT NULL,
    message_id TEXT,
    subject TEXT,
    from_address TEXT,
    date TEXT,
    in_reply_to TEXT,
    refs TEXT NOT NULL DEFAULT '[]',
    labels TEXT NOT NULL DEFAULT '[]',
    state TEXT NOT NULL DEFAULT '[]',
    indexed_at TEXT NOT NULL,
    seq INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_seq ON messages(seq);
"""


@dataclass
class IndexEntry:
    """One committed index row."""

    safe_msgid: str
    location: str
    subject: str
    from_address: str
    labels: List[str]
    state: List[str]
    seq: int


class MessageIndex:
    """SQLite-backed index of committed messages."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)

    def close(self) -> None:
        self._conn.commit()
        self._conn.close()

    def contains(self, safe_msgid: str) -> bool:
        try:
            cur = self._conn.execute(
                "SELECT 1 FROM messages WHERE safe_msgid = ?", (safe_msgid,)
            )
            return cur.fetchone() is not None
        except sqlite3.Error as exc:
            raise StorageError(
                f"Index lookup failed: {exc}", details={"index": str(self._path)}
            ) from exc

    def add(
        self,
        message: ParsedMessage,
        *,
        location: str,
        labels: Iterable[str],
        state: Iterable[str],
    ) -> int:
        """Commit a message; returns its insertion sequence number.

        Raises:
            StorageError: If the index write fails
        """

        try:
            return self._insert(message, location=location, labels=labels, state=state)
        except sqlite3.Error as exc:
            raise StorageError(
                f"Index write failed for {message.safe_msgid}: {exc}",
                details={"index": str(self._path), "safe_msgid": message.safe_msgid},
            ) from exc

    def _insert(
        self,
        message: ParsedMessage,
        *,
        location: str,
        labels: Iterable[str],
        state: Iterable[str],
    ) -> int:
        with self._conn:
            (next_seq,) = self._conn.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM messages"
            ).fetchone()
            self._conn.execute(
                """
                INSERT INTO messages(
                    safe_msgid, location, message_id, subject, from_address, date,
                    in_reply_to, refs, labels, state, indexed_at, seq
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.safe_msgid,
                    location,
                    message.message_id,
                    message.subject,
                    message.from_address,
                    message.date.isoformat() if message.date else None,
                    message.in_reply_to,
                    json.dumps(message.references),
                    json.dumps(sorted(labels)),
                    json.dumps(sorted(state)),
                    datetime.now(timezone.utc).isoformat(),
                    next_seq,
                ),
            )
        return next_seq

    def count(self) -> int:
        (total,) = self._conn.execute("SELECT COUNT(*) FROM messages").fetchone()
        return int(total)

    def fetch(self, safe_msgid: str) -> Optional[IndexEntry]:
        cur = self._conn.execute(
            """
            SELECT safe_msgid, location, subject, from_address, labels, state, seq
            FROM messages WHERE safe_msgid = ?
            """,
            (safe_msgid,),
        )
        row = cur.fetchone()
        if not row:
            return None
        return self._entry(row)

    def iter_all(self) -> Iterator[IndexEntry]:
        cur = self._conn.execute(
            """
            SELECT safe_msgid, location, subject, from_address, labels, state, seq
            FROM messages ORDER BY seq
            """
        )
        for row in cur.fetchall():
            yield self._entry(row)

    @staticmethod
    def _entry(row) -> IndexEntry:
        return IndexEntry(
            safe_msgid=row[0],
            location=row[1],
            subject=row[2] or "",
            from_address=row[3] or "",
            labels=json.loads(row[4]),
            state=json.loads(row[5]),
            seq=int(row[6]),
        )


# ---------------------------------------------------------------------------
# Storage root
# ---------------------------------------------------------------------------


class LocalStorage:
    """Owns the store, index and hooks directories under one root."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).expanduser()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            self.hooks_dir = self.root / "hooks"
            self.hooks_dir.mkdir(exist_ok=True)
            self.store = ContentStore(self.root / "store")
            self.index = MessageIndex(self.root / "index" / "messages.db")
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(
                f"Cannot open local storage at {self.root}: {exc}",
                details={"root": str(self.root)},
            ) from exc
        logger.debug("Local storage ready", extra={"ingest_store_root": str(self.root)})

    def close(self) -> None:
        self.index.close()

    def __enter__(self) -> "LocalStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "ContentStore",
    "IndexEntry",
    "LocalStorage",
    "MessageIndex",
]
