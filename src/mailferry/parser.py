"""RFC822 message parsing and fingerprinting.

Only the envelope is extracted: enough to derive the dedup fingerprint and to
populate the index row. Bodies stay in the content store untouched.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime
from email import message_from_bytes
from email.errors import MessageError
from email.policy import default as email_policy
from email.utils import getaddresses, parsedate_to_datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .errors import InvalidMessageError


logger = logging.getLogger(__name__)

MAX_MSGID_LENGTH = 100
_HEADER_LINE = re.compile(rb"^[!-9;-~]+:")
_MSGID_JUNK = re.compile(r"[^\w.@+-]")
_MSGID_TOKEN = re.compile(r"<([^<>]+)>")

# raised by email.headerregistry while parsing malformed structured headers
_HEADER_ERRORS = (
    MessageError,
    LookupError,
    AttributeError,
    UnicodeError,
    ValueError,
    TypeError,
)


class ParsedMessage(BaseModel):
    """Envelope data of one message."""

    safe_msgid: str = Field(..., description="Content fingerprint used for dedup")
    message_id: Optional[str] = Field(default=None, description="Raw Message-ID value")
    subject: str = Field(default="", description="Decoded subject")
    from_address: str = Field(..., description="Sender as written in From")
    to_addresses: List[str] = Field(default_factory=list)
    cc_addresses: List[str] = Field(default_factory=list)
    date: Optional[datetime] = Field(default=None, description="Date header")
    in_reply_to: Optional[str] = Field(default=None)
    references: List[str] = Field(default_factory=list)


def safe_msgid(message_id: Optional[str], raw: bytes) -> str:
    """Derive the dedup fingerprint of a message.

    Uses the Message-ID stripped to a conservative character set; very long
    ids are hashed, and messages without one fall back to a digest of the raw
    bytes.
    """

    if message_id:
        match = _MSGID_TOKEN.search(message_id)
        token = match.group(1) if match else message_id
        cleaned = _MSGID_JUNK.sub("", "".join(token.split()))
        if cleaned:
            if len(cleaned) > MAX_MSGID_LENGTH:
                return hashlib.sha1(cleaned.encode("utf-8")).hexdigest()
            return cleaned
    return "sha1-" + hashlib.sha1(raw).hexdigest()


class MessageParser:
    """Parses raw bytes into :class:`ParsedMessage`."""

    def parse(self, raw: bytes) -> ParsedMessage:
        if not raw or not raw.strip():
            raise InvalidMessageError("empty message")

        lines = raw.lstrip(b"\n").split(b"\n", 1)
        if lines[0].startswith(b"From ") and len(lines) > 1:
            # mbox envelope line
            raw = lines[1]
            lines = raw.split(b"\n", 1)
        first_line = lines[0]
        if not _HEADER_LINE.match(first_line):
            raise InvalidMessageError("message does not start with a header block")

        try:
            msg = message_from_bytes(raw, policy=email_policy)
            from_value = self._header(msg, "from")
            if not from_value:
                raise InvalidMessageError("missing From header")
            message_id = self._header(msg, "message-id")
            parsed = ParsedMessage(
                safe_msgid=safe_msgid(message_id, raw),
                message_id=message_id,
                subject=self._header(msg, "subject") or "",
                from_address=from_value,
                to_addresses=self._addresses(msg, "to"),
                cc_addresses=self._addresses(msg, "cc"),
                date=self._date(msg),
                in_reply_to=self._header(msg, "in-reply-to"),
                references=_MSGID_TOKEN.findall(self._header(msg, "references") or ""),
            )
        except _HEADER_ERRORS as exc:
            raise InvalidMessageError(f"unparseable headers: {exc}") from exc
        return parsed

    # ------------------------------------------------------------------
    @staticmethod
    def _header(msg, name: str) -> Optional[str]:
        value = msg.get(name)
        if value is None:
            return None
        text = " ".join(str(value).split())
        return text or None

    def _addresses(self, msg, name: str) -> List[str]:
        value = self._header(msg, name)
        if not value:
            return []
        return [addr for _, addr in getaddresses([value]) if addr]

    def _date(self, msg) -> Optional[datetime]:
        value = self._header(msg, "date")
        if not value:
            return None
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            logger.debug("Unparseable Date header", extra={"ingest_date": value})
            return None


__all__ = ["MAX_MSGID_LENGTH", "MessageParser", "ParsedMessage", "safe_msgid"]
