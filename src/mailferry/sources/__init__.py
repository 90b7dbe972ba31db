"""Message sources: one adapter per mail origin behind a common pull contract."""

from .base import MessageSource, SourceItem
from .gmail import GmailSource
from .imap import ImapSource
from .maildir import MaildirSource
from .mbox import MboxSource
from .single import SingleMessageSource

__all__ = [
    "GmailSource",
    "ImapSource",
    "MaildirSource",
    "MboxSource",
    "MessageSource",
    "SingleMessageSource",
    "SourceItem",
]
