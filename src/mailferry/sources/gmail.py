"""Gmail source: IMAP over ``[Gmail]/All Mail`` with Gmail labels.

Gmail exposes its labels through the ``X-GM-LABELS`` fetch item. System
labels become labels or state flags; user labels are lower-cased as-is.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from ..credentials import CredentialProvider
from ..resume_state import ResumeStateStore
from .imap import ImapSource, state_from_flags


GMAIL_HOST = "imap.gmail.com"
GMAIL_PORT = 993
ALL_MAIL_FOLDER = "[Gmail]/All Mail"
LABELS_KEY = b"X-GM-LABELS"

SYSTEM_LABELS = {
    "\\inbox": "inbox",
    "\\sent": "sent",
    "\\important": "important",
    "\\spam": "spam",
}

SYSTEM_STATES = {
    "\\starred": "starred",
    "\\draft": "draft",
    "\\trash": "deleted",
}


def translate_labels(raw_labels) -> Tuple[Set[str], Set[str]]:
    """Split Gmail labels into (labels, state flags)."""
    labels: Set[str] = set()
    state: Set[str] = set()
    for raw in raw_labels or ():
        name = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
        key = name.lower()
        if key in SYSTEM_LABELS:
            labels.add(SYSTEM_LABELS[key])
        elif key in SYSTEM_STATES:
            state.add(SYSTEM_STATES[key])
        elif key.startswith("\\"):
            continue
        else:
            labels.add(key)
    return labels, state


class GmailSource(ImapSource):
    """All Mail of one Gmail account."""

    protocol = "gmail"

    def __init__(
        self,
        username: str,
        *,
        credential_provider: CredentialProvider,
        state_store: Optional[ResumeStateStore] = None,
        page_size: int = 100,
        connection_timeout: int = 30,
    ) -> None:
        super().__init__(
            GMAIL_HOST,
            port=GMAIL_PORT,
            folder=ALL_MAIL_FOLDER,
            username=username,
            credential_provider=credential_provider,
            use_ssl=True,
            state_store=state_store,
            page_size=page_size,
            connection_timeout=connection_timeout,
        )

    @property
    def identity(self) -> str:
        return f"gmail:{self._username}"

    def _fetch_items(self) -> List[bytes]:
        return super()._fetch_items() + [LABELS_KEY]

    def _labels_for(self, data: Dict[bytes, Any]) -> Set[str]:
        labels, _ = translate_labels(data.get(LABELS_KEY))
        return labels

    def _state_for(self, data: Dict[bytes, Any]) -> Set[str]:
        _, state = translate_labels(data.get(LABELS_KEY))
        return state_from_flags(data.get(b"FLAGS", ())) | state


__all__ = ["GmailSource", "translate_labels"]
