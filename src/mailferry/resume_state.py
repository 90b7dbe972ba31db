"""Durable resume cursors for network message sources.

Each resumable source owns one JSON file recording how far its scan got.
Files are replaced atomically under a sidecar lock so an interrupted write
never leaves a truncated record behind.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from filelock import FileLock
from pydantic import BaseModel, Field, ValidationError

from .errors import ResumeStateError


logger = logging.getLogger(__name__)


class ResumeState(BaseModel):
    """Persisted scan position of one source."""

    identity: str = Field(..., description="Stable source identity")
    uidvalidity: int = Field(..., ge=0, description="UIDVALIDITY the cursor belongs to")
    last_uid: int = Field(default=0, ge=0, description="Highest acknowledged UID")
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last write timestamp",
    )


def default_state_path(state_dir: Path, protocol: str, name: str) -> Path:
    """Derive the state file for a protocol and host/account name."""
    safe = re.sub(r"[^\w.@-]+", "_", name).strip("_") or "default"
    return state_dir.expanduser() / f"{protocol}-{safe}.json"


class ResumeStateStore:
    """JSON-file-backed store holding a single :class:`ResumeState`."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()
        self._lock = FileLock(str(self._path) + ".lock")

    @property
    def path(self) -> Path:
        return self._path

    def load(self, identity: str) -> Optional[ResumeState]:
        """Return the stored state for ``identity``; ``None`` when absent.

        Unreadable or mismatched records are treated as absent so the scan
        restarts from the beginning rather than skipping messages.
        """

        if not self._path.exists():
            return None
        try:
            with self._lock:
                payload = json.loads(self._path.read_text(encoding="utf-8"))
            state = ResumeState.model_validate(payload)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.warning(
                "Ignoring unreadable resume state",
                extra={"ingest_state_path": str(self._path), "ingest_error": str(exc)},
            )
            return None
        if state.identity != identity:
            logger.warning(
                "Resume state belongs to a different source; ignoring",
                extra={
                    "ingest_state_path": str(self._path),
                    "ingest_expected": identity,
                    "ingest_found": state.identity,
                },
            )
            return None
        return state

    def save(self, state: ResumeState) -> None:
        """Atomically replace the stored record."""

        state = state.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        payload = state.model_dump_json(indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock:
                fd, tmp_name = tempfile.mkstemp(
                    prefix=self._path.name + ".", suffix=".tmp", dir=self._path.parent
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                        fh.flush()
                        os.fsync(fh.fileno())
                    os.replace(tmp_name, self._path)
                except BaseException:
                    if os.path.exists(tmp_name):
                        os.unlink(tmp_name)
                    raise
        except OSError as exc:
            raise ResumeStateError(
                f"Cannot write resume state to {self._path}: {exc}",
                details={"path": str(self._path)},
            ) from exc
        logger.debug(
            "Resume state saved",
            extra={
                "ingest_source": state.identity,
                "ingest_last_uid": state.last_uid,
                "ingest_uidvalidity": state.uidvalidity,
            },
        )

    def clear(self) -> None:
        with self._lock:
            if self._path.exists():
                self._path.unlink()


__all__ = ["ResumeState", "ResumeStateStore", "default_state_path"]
