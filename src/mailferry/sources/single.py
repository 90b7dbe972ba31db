"""Source producing exactly one message read from a stream (stdin)."""

from __future__ import annotations

import sys
from typing import BinaryIO, Optional

from ..errors import SourceUnavailableError
from .base import MessageSource, SourceItem


class SingleMessageSource(MessageSource):
    """Reads one whole message from a binary stream."""

    provides_labels = False

    def __init__(self, stream: Optional[BinaryIO] = None, *, name: str = "stdin") -> None:
        self._stream = stream
        self._name = name
        self._raw: Optional[bytes] = None
        self._consumed = False

    @property
    def identity(self) -> str:
        return self._name

    def load(self) -> None:
        stream = self._stream if self._stream is not None else sys.stdin.buffer
        try:
            self._raw = stream.read()
        except OSError as exc:
            raise SourceUnavailableError(self._name, str(exc)) from exc

    def done(self) -> bool:
        return self._consumed or self._raw is None

    def _next(self) -> SourceItem:
        self._consumed = True
        return self._raw, set(), set(), self._name  # type: ignore[return-value]


__all__ = ["SingleMessageSource"]
