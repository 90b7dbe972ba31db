"""mailferry: stream mail from mbox, maildir, IMAP and Gmail into a mail index."""

__version__ = "0.1.0"
