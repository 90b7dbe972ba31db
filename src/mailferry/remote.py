"""HTTP submission of messages to a remote indexing server."""

from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

import requests

from .errors import RemoteSubmissionError
from .models import RouteResult


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Retry strategy
# ---------------------------------------------------------------------------


@dataclass
class RetryStrategy:
    """Exponential backoff retry configuration with jitter."""

    max_retries: int = 0
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def calculate_delay(self, retry_count: int) -> float:
        delay = min(self.base_delay * (self.exponential_base**retry_count), self.max_delay)
        if self.jitter:
            delay *= 1 + random.random() * 0.5
        return delay

    def should_retry(self, retry_count: int, exc: Exception) -> bool:
        if retry_count >= self.max_retries:
            return False
        return isinstance(exc, (requests.ConnectionError, requests.Timeout))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


@dataclass
class RemoteSubmissionClient:
    """Posts raw messages to ``http://{host}:{port}/message.json``."""

    host: str = "localhost"
    port: int = 8042
    timeout: float = 30.0
    retry_strategy: RetryStrategy = field(default_factory=RetryStrategy)
    session: requests.Session = field(default_factory=requests.Session)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    @property
    def endpoint(self) -> str:
        return f"http://{self.host}:{self.port}/message.json"

    def submit(
        self, raw: bytes, *, labels: Iterable[str], state: Iterable[str]
    ) -> RouteResult:
        """Submit one message and classify the server's answer."""

        data = {
            "message": raw,
            "state": json.dumps(sorted(state)),
            "labels": json.dumps(sorted(labels)),
        }
        response = self._post(data)
        return self._classify(response)

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------
    def _post(self, data: dict) -> requests.Response:
        retry_count = 0
        while True:
            try:
                return self.session.post(self.endpoint, data=data, timeout=self.timeout)
            except requests.RequestException as exc:
                if not self.retry_strategy.should_retry(retry_count, exc):
                    raise RemoteSubmissionError(
                        f"POST {self.endpoint} failed: {exc}",
                        details={"endpoint": self.endpoint, "retries": retry_count},
                    ) from exc
                delay = self.retry_strategy.calculate_delay(retry_count)
                retry_count += 1
                logger.warning(
                    "Submission failed; retrying",
                    extra={
                        "ingest_endpoint": self.endpoint,
                        "ingest_retry": retry_count,
                        "ingest_delay_seconds": round(delay, 2),
                        "ingest_error": str(exc),
                    },
                )
                self.sleep(delay)

    @staticmethod
    def _classify(response: requests.Response) -> RouteResult:
        try:
            payload = response.json()
        except ValueError:
            return RouteResult.bad(
                f"HTTP {response.status_code}: response is not JSON"
            )
        if not isinstance(payload, dict):
            return RouteResult.bad(f"HTTP {response.status_code}: unexpected response body")

        if payload.get("response") != "ok":
            reason: Optional[str] = (
                payload.get("error_message") or payload.get("message") or payload.get("error")
            )
            return RouteResult.bad(reason or f"server answered {payload.get('response')!r}")
        if payload.get("status") == "seen":
            return RouteResult.seen()
        return RouteResult.indexed()


__all__ = ["RemoteSubmissionClient", "RetryStrategy"]
