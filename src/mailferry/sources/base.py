"""Abstract message source contract.

Every origin (stdin, mbox, maildir, IMAP, Gmail) implements the same pull
interface so the orchestrator is written once::

    with source:                 # load() ... finish()
        source.skip(n)
        while not source.done():
            raw, labels, state, description = source.next()
            ...
            source.acknowledge()
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Set, Tuple

from ..errors import ExhaustedSourceError


logger = logging.getLogger(__name__)

SourceItem = Tuple[bytes, Set[str], Set[str], str]


class MessageSource(ABC):
    """Pull-based iterator over raw messages of one origin."""

    #: True when the source assigns its own labels (folder semantics)
    provides_labels: bool = False

    @property
    @abstractmethod
    def identity(self) -> str:
        """Stable name of the source, used in logs and resume state."""

    @abstractmethod
    def load(self) -> None:
        """Open files or sessions.

        Raises:
            SourceUnavailableError: If the origin cannot be opened
        """

    @abstractmethod
    def done(self) -> bool:
        """Return True when no messages remain. Must not have side effects."""

    def next(self) -> SourceItem:
        """Return the next message and advance the cursor by one.

        Raises:
            ExhaustedSourceError: If called when :meth:`done` is True
        """
        if self.done():
            raise ExhaustedSourceError(f"{self.identity} has no more messages")
        return self._next()

    @abstractmethod
    def _next(self) -> SourceItem:
        ...

    def skip(self, n: int) -> int:
        """Advance past up to ``n`` messages without processing them.

        Returns the number actually skipped. Subclasses override this when
        the protocol can advance without materializing messages.
        """
        skipped = 0
        while skipped < n and not self.done():
            self._next()
            skipped += 1
        return skipped

    def can_provide_labels(self) -> bool:
        return self.provides_labels

    @property
    def resumable(self) -> bool:
        """True when acknowledged positions are persisted across runs."""
        return False

    def acknowledge(self) -> None:
        """Mark the message last returned by :meth:`next` as fully routed.

        Resumable sources persist only acknowledged positions.
        """

    def finish(self) -> None:
        """Release files and sessions; flush resume state."""

    def __enter__(self) -> "MessageSource":
        self.load()
        return self

    def __exit__(self, *exc_info) -> None:
        self.finish()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identity}>"


__all__ = ["MessageSource", "SourceItem"]
