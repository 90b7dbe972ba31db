"""Ingestion orchestrator: drives one source into one write path.

The loop is single-threaded and strictly ordered. One message is pulled,
labelled, counted, routed and acknowledged before the next is pulled, so
the backend sees messages in the source's natural order.

Lifecycle::

    LOADING -> RUNNING -> DRAINING -> DONE
         \\________\\__________\\______> FINISHING (always)

Malformed messages are classified ``bad`` and the run continues. Any other
exception while routing dumps the raw message to the recovery file and
aborts the run; FINISHING still releases the source and prints the final
statistics line.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol, runtime_checkable

from .errors import InvalidMessageError
from .models import (
    DELETED_STATE,
    SPAM_LABEL,
    MessageUnit,
    RouteResult,
    RunPhase,
    RunPolicy,
    RunStatistics,
    apply_label_policy,
)
from .parser import MessageParser
from .remote import RemoteSubmissionClient
from .sources.base import MessageSource
from .storage import LocalStorage


logger = logging.getLogger(__name__)

REPORT_INTERVAL_SECONDS = 5.0
DEFAULT_BAD_MESSAGE_PATH = Path("bad-message.txt")


def _log_extra(
    *,
    source: MessageSource | None = None,
    unit: MessageUnit | None = None,
    result: RouteResult | None = None,
    **metadata: object,
) -> dict[str, object]:
    """Build structured logging context for ingestion events."""

    extra: dict[str, object] = {}
    if source is not None:
        extra["ingest_source"] = source.identity
    if unit is not None:
        extra["ingest_description"] = unit.description
        extra["ingest_size_bytes"] = len(unit.raw)
    if result is not None:
        extra["ingest_outcome"] = result.outcome.value
        if result.reason:
            extra["ingest_reason"] = result.reason
    for key, value in metadata.items():
        if value is not None:
            extra[f"ingest_{key}"] = value
    return extra


# ---------------------------------------------------------------------------
# Write paths
# ---------------------------------------------------------------------------


@runtime_checkable
class WritePath(Protocol):
    """Destination for routed messages."""

    def route(self, unit: MessageUnit) -> RouteResult:
        ...


class LocalWritePath:
    """Parse, dedup, then store and index messages in local storage."""

    def __init__(self, storage: LocalStorage, parser: MessageParser | None = None) -> None:
        self._storage = storage
        self._parser = parser or MessageParser()

    def route(self, unit: MessageUnit) -> RouteResult:
        try:
            parsed = self._parser.parse(unit.raw)
        except InvalidMessageError as exc:
            return RouteResult.bad(exc.message)

        if self._storage.index.contains(parsed.safe_msgid):
            return RouteResult.seen()

        location = self._storage.store.put(unit.raw)
        self._storage.index.add(
            parsed, location=location, labels=unit.labels, state=unit.state
        )
        return RouteResult.indexed()


class RemoteWritePath:
    """Submit messages to a remote indexing server."""

    def __init__(self, client: RemoteSubmissionClient) -> None:
        self._client = client

    def route(self, unit: MessageUnit) -> RouteResult:
        return self._client.submit(unit.raw, labels=unit.labels, state=unit.state)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class IngestionOrchestrator:
    """Runs the pull loop for a single source."""

    def __init__(
        self,
        write_path: WritePath,
        *,
        policy: Optional[RunPolicy] = None,
        bad_message_path: Path = DEFAULT_BAD_MESSAGE_PATH,
        report_interval: float = REPORT_INTERVAL_SECONDS,
        reporter: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._write_path = write_path
        self._policy = policy or RunPolicy()
        self._bad_message_path = Path(bad_message_path)
        self._report_interval = report_interval
        self._reporter = reporter
        self._clock = clock
        self._phase = RunPhase.LOADING
        self.stats = RunStatistics(clock=clock)

    @property
    def phase(self) -> RunPhase:
        return self._phase

    def run(self, source: MessageSource) -> RunStatistics:
        """Ingest every message of ``source`` and return the run counters."""

        policy = self._policy
        stats = self.stats = RunStatistics(clock=self._clock)
        completed = False
        self._phase = RunPhase.LOADING
        try:
            source.load()
            if policy.num_skip:
                skipped = source.skip(policy.num_skip)
                logger.info(
                    "Skipped messages before processing",
                    extra=_log_extra(source=source, requested=policy.num_skip, skipped=skipped),
                )

            self._phase = RunPhase.RUNNING
            while not source.done():
                unit = MessageUnit.from_tuple(source.next())
                unit.labels = apply_label_policy(
                    unit.labels, policy, provides_labels=source.can_provide_labels()
                )
                if policy.num_messages is not None and stats.scanned >= policy.num_messages:
                    logger.info(
                        "Message limit reached",
                        extra=_log_extra(source=source, num_messages=policy.num_messages),
                    )
                    break
                stats.scanned += 1

                result = self._filter(unit) or self._route(source, unit)
                stats.record(result)
                source.acknowledge()
                self._trace(unit, result)

                if stats.report_due(self._report_interval) and not source.done():
                    self._report(stats)
                    stats.mark_reported()

            self._phase = RunPhase.DRAINING
            completed = True
            return stats
        finally:
            self._phase = RunPhase.FINISHING
            try:
                source.finish()
            finally:
                self._report(stats, final=True)
                if completed:
                    self._phase = RunPhase.DONE

    # ------------------------------------------------------------------
    def _filter(self, unit: MessageUnit) -> Optional[RouteResult]:
        if self._policy.skip_spam and SPAM_LABEL in unit.labels:
            return RouteResult.skipped("spam")
        if self._policy.skip_deleted and DELETED_STATE in unit.state:
            return RouteResult.skipped("deleted")
        return None

    def _route(self, source: MessageSource, unit: MessageUnit) -> RouteResult:
        try:
            return self._write_path.route(unit)
        except Exception:
            logger.error(
                "Unrecoverable error while routing message; aborting run",
                extra=_log_extra(source=source, unit=unit, recovery_file=str(self._bad_message_path)),
            )
            self._dump_bad_message(unit)
            raise

    def _dump_bad_message(self, unit: MessageUnit) -> None:
        try:
            self._bad_message_path.write_bytes(unit.raw)
        except OSError as exc:
            logger.error(
                "Could not write recovery file",
                extra=_log_extra(unit=unit, recovery_file=str(self._bad_message_path), error=str(exc)),
            )
            return
        self._emit(f"; offending message written to {self._bad_message_path}")

    def _trace(self, unit: MessageUnit, result: RouteResult) -> None:
        logger.debug("Message routed", extra=_log_extra(unit=unit, result=result))
        if not self._policy.verbose:
            return
        line = (
            f"; {unit.description}: {result.outcome.value}"
            f" labels={_fmt(unit.labels)} state={_fmt(unit.state)}"
        )
        if result.reason:
            line += f" ({result.reason})"
        self._emit(line)

    def _report(self, stats: RunStatistics, *, final: bool = False) -> None:
        logger.info(
            "Final ingestion statistics" if final else "Ingestion progress",
            extra=_log_extra(**stats.as_dict()),
        )
        self._emit(f"; {stats.summary()}")

    def _emit(self, line: str) -> None:
        if self._reporter is not None:
            self._reporter(line)


def _fmt(values: Iterable[str]) -> str:
    return ",".join(sorted(values)) or "-"


__all__ = [
    "DEFAULT_BAD_MESSAGE_PATH",
    "IngestionOrchestrator",
    "LocalWritePath",
    "REPORT_INTERVAL_SECONDS",
    "RemoteWritePath",
    "WritePath",
]
