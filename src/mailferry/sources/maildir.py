"""Maildir source covering one or more maildir directories.

Messages are produced directory by directory in argument order. Within a
directory, files from ``new/`` and ``cur/`` are merged and sorted by name,
which for standard maildir names is delivery order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Set

from ..errors import SourceUnavailableError
from .base import MessageSource, SourceItem


logger = logging.getLogger(__name__)

INFO_SEPARATOR = ":2,"

# maildir info flag -> state flag set when present
FLAG_STATES = {
    "F": "starred",
    "T": "deleted",
    "D": "draft",
    "R": "replied",
}

INBOX_NAMES = {"inbox", "maildir", ""}


def folder_label(directory: Path) -> str:
    """Label for messages in a maildir folder (``.Sent`` -> ``sent``)."""
    name = directory.name.lstrip(".").lower()
    if name in INBOX_NAMES:
        return "inbox"
    return name


def state_from_filename(name: str, *, in_new: bool) -> Set[str]:
    state: Set[str] = set()
    flags = ""
    if INFO_SEPARATOR in name:
        flags = name.rsplit(INFO_SEPARATOR, 1)[1]
    if in_new or "S" not in flags:
        state.add("unread")
    for flag, value in FLAG_STATES.items():
        if flag in flags:
            state.add(value)
    return state


@dataclass(frozen=True)
class _Entry:
    path: Path
    label: str
    in_new: bool


class MaildirSource(MessageSource):
    """Iterates messages of maildir directories in a stable order."""

    provides_labels = True

    def __init__(self, directories: Iterable[Path | str]) -> None:
        self._directories = [Path(d).expanduser() for d in directories]
        self._entries: List[_Entry] = []
        self._cursor = 0

    @property
    def identity(self) -> str:
        return "maildir:" + ",".join(str(d) for d in self._directories)

    def load(self) -> None:
        entries: List[_Entry] = []
        for directory in self._directories:
            subdirs = [directory / "cur", directory / "new"]
            if not directory.is_dir() or not any(d.is_dir() for d in subdirs):
                raise SourceUnavailableError(str(directory), "not a maildir (missing cur/ and new/)")
            label = folder_label(directory)
            found: List[_Entry] = []
            for subdir in subdirs:
                if not subdir.is_dir():
                    continue
                try:
                    names = [p for p in subdir.iterdir() if p.is_file() and not p.name.startswith(".")]
                except OSError as exc:
                    raise SourceUnavailableError(str(subdir), exc.strerror or str(exc)) from exc
                found.extend(
                    _Entry(path=p, label=label, in_new=subdir.name == "new") for p in names
                )
            found.sort(key=lambda e: e.path.name)
            logger.debug(
                "Maildir scanned",
                extra={"ingest_source": str(directory), "ingest_message_count": len(found)},
            )
            entries.extend(found)
        self._entries = entries
        self._cursor = 0

    def done(self) -> bool:
        return self._cursor >= len(self._entries)

    def _next(self) -> SourceItem:
        entry = self._entries[self._cursor]
        self._cursor += 1
        description = f"maildir {entry.path}"
        state = state_from_filename(entry.path.name, in_new=entry.in_new)
        try:
            raw = entry.path.read_bytes()
        except FileNotFoundError:
            # renamed by a mail client (new/ -> cur/, flag change) since load()
            logger.warning(
                "Message vanished before read",
                extra={"ingest_source": str(entry.path)},
            )
            return b"", {entry.label}, state, description + " (vanished)"
        return raw, {entry.label}, state, description

    def skip(self, n: int) -> int:
        skipped = min(n, len(self._entries) - self._cursor)
        self._cursor += skipped
        return skipped


__all__ = ["MaildirSource", "folder_label", "state_from_filename"]
