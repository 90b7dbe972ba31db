"""Mbox file source.

Messages are delimited by ``From `` lines that begin the file or follow a
blank line. The separator line itself is not part of the message. The byte
offset of each separator is reported in the description so an interrupted
import can be restarted with ``--mbox-start-offset``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, List, Optional

from ..errors import SourceUnavailableError
from .base import MessageSource, SourceItem


logger = logging.getLogger(__name__)

SEPARATOR = b"From "


class MboxSource(MessageSource):
    """Splits one mbox file into messages, in file order."""

    provides_labels = False

    def __init__(self, path: Path | str, *, start_offset: int = 0) -> None:
        self._path = Path(path).expanduser()
        self._start_offset = start_offset
        self._fh: Optional[BinaryIO] = None
        self._next_offset: Optional[int] = None

    @property
    def identity(self) -> str:
        return f"mbox:{self._path}"

    @property
    def offset(self) -> Optional[int]:
        """Byte offset of the next message's separator line."""
        return self._next_offset

    def load(self) -> None:
        try:
            self._fh = self._path.open("rb")
            self._fh.seek(self._start_offset)
        except OSError as exc:
            raise SourceUnavailableError(str(self._path), exc.strerror or str(exc)) from exc
        self._next_offset = self._find_first_separator()
        if self._next_offset is None:
            logger.warning(
                "No mbox separator found",
                extra={"ingest_source": self.identity, "ingest_offset": self._start_offset},
            )

    def done(self) -> bool:
        return self._next_offset is None

    def _next(self) -> SourceItem:
        offset = self._next_offset
        lines = self._advance(collect=True)
        raw = b"".join(lines)
        return raw, set(), set(), f"mbox {self._path} offset {offset}"

    def skip(self, n: int) -> int:
        skipped = 0
        while skipped < n and not self.done():
            self._advance(collect=False)
            skipped += 1
        return skipped

    def finish(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    # ------------------------------------------------------------------
    def _find_first_separator(self) -> Optional[int]:
        assert self._fh is not None
        while True:
            pos = self._fh.tell()
            line = self._fh.readline()
            if not line:
                return None
            if line.startswith(SEPARATOR):
                self._fh.seek(pos)
                return pos

    def _advance(self, *, collect: bool) -> List[bytes]:
        """Consume one message starting at the current separator."""

        assert self._fh is not None and self._next_offset is not None
        self._fh.seek(self._next_offset)
        self._fh.readline()  # separator line
        lines: List[bytes] = []
        previous_blank = False
        self._next_offset = None
        while True:
            pos = self._fh.tell()
            line = self._fh.readline()
            if not line:
                break
            if previous_blank and line.startswith(SEPARATOR):
                self._next_offset = pos
                break
            previous_blank = line.strip(b"\r\n") == b""
            if collect:
                lines.append(line)
        if collect and self._next_offset is not None and lines and lines[-1].strip(b"\r\n") == b"":
            lines.pop()
        return lines


__all__ = ["MboxSource"]
