"""Model download/load progress tracking.

:class:`ProgressTracker` owns a table of :class:`ProgressRecord` objects keyed
by model identifier.  Writers (the local captioner, usually running in a
worker thread) merge partial updates into a record; readers either fetch a
record directly or subscribe to a stream of snapshots.

Record Lifecycle
----------------
- Created on the first :meth:`ProgressTracker.update` for a key.
- Updated repeatedly while a model downloads and loads.  A partial update
  keeps every field it does not name.
- Once the status becomes terminal (``ready`` or ``error``) the record is
  scheduled for reaping: it disappears ``ready_reap_delay`` (5 s) or
  ``error_reap_delay`` (10 s) later, whether or not anyone observed it.
  A later non-terminal update cancels the pending reap.

Reaping is measured on an injectable monotonic clock and applied whenever
the table is read or written, so tests can advance time without sleeping.

Subscription Contract
---------------------
:meth:`ProgressTracker.subscribe` is an async generator that:

1. yields the current record at once, or a synthesized ``loading``/0%
   record if none exists yet;
2. then, every ``poll_interval`` seconds, yields the record if it exists;
3. after yielding a terminal record waits ``close_delay`` seconds and ends.

Closing the generator (the HTTP layer does so when the client disconnects)
cancels the pending sleep and stops polling immediately.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import asdict, dataclass, replace
from typing import Literal

logger = logging.getLogger(__name__)

ProgressStatus = Literal["downloading", "loading", "ready", "error"]

TERMINAL_STATUSES = frozenset({"ready", "error"})

DEFAULT_MESSAGE = "Preparing download..."


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class ProgressRecord:
    """A single progress snapshot for one model identifier."""

    status: ProgressStatus = "loading"
    progress: int = 0
    message: str = ""
    timestamp: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return asdict(self)


class ProgressTracker:
    """Thread-safe progress table with automatic reaping of finished records.

    Args:
        ready_reap_delay: Seconds a ``ready`` record survives.
        error_reap_delay: Seconds an ``error`` record survives.
        poll_interval: Seconds between subscription snapshots.
        close_delay: Grace period before a finished subscription ends.
        clock: Monotonic clock used for reaping deadlines.
    """

    def __init__(
        self,
        *,
        ready_reap_delay: float = 5.0,
        error_reap_delay: float = 10.0,
        poll_interval: float = 0.5,
        close_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ready_reap_delay = ready_reap_delay
        self.error_reap_delay = error_reap_delay
        self.poll_interval = poll_interval
        self.close_delay = close_delay
        self._clock = clock

        self._lock = threading.Lock()
        self._records: dict[str, ProgressRecord] = {}
        self._reap_at: dict[str, float] = {}

    # -- Lifecycle ----------------------------------------------------------

    def init(self) -> None:
        """Start with an empty table."""
        with self._lock:
            self._records.clear()
            self._reap_at.clear()

    def shutdown(self) -> None:
        """Drop every record and pending reap."""
        with self._lock:
            count = len(self._records)
            self._records.clear()
            self._reap_at.clear()
        if count:
            logger.info("Progress tracker shut down with %d record(s) discarded.", count)

    # -- Writers ------------------------------------------------------------

    def update(
        self,
        model_id: str,
        *,
        status: ProgressStatus | None = None,
        progress: int | None = None,
        message: str | None = None,
    ) -> ProgressRecord:
        """Merge the given fields into the record for *model_id*.

        Fields left as ``None`` keep their previous value (or the default
        for a new record).  The timestamp is refreshed on every call.

        Returns:
            The merged record.
        """
        changes: dict = {"timestamp": _now_ms()}
        if status is not None:
            changes["status"] = status
        if progress is not None:
            changes["progress"] = max(0, min(100, int(progress)))
        if message is not None:
            changes["message"] = message

        with self._lock:
            self._reap_expired()
            current = self._records.get(model_id) or ProgressRecord()
            record = replace(current, **changes)
            self._records[model_id] = record

            if record.status == "ready":
                self._reap_at[model_id] = self._clock() + self.ready_reap_delay
            elif record.status == "error":
                self._reap_at[model_id] = self._clock() + self.error_reap_delay
            else:
                self._reap_at.pop(model_id, None)

        logger.debug(
            "Progress %s: %s %d%% %s",
            model_id,
            record.status,
            record.progress,
            record.message,
        )
        return record

    def clear(self, model_id: str) -> None:
        """Remove the record for *model_id* (no-op when absent)."""
        with self._lock:
            self._records.pop(model_id, None)
            self._reap_at.pop(model_id, None)

    # -- Readers ------------------------------------------------------------

    def get(self, model_id: str) -> ProgressRecord | None:
        """Return the current record for *model_id*, or ``None``."""
        with self._lock:
            self._reap_expired()
            return self._records.get(model_id)

    def snapshot(self) -> dict[str, ProgressRecord]:
        """Return a copy of every live record."""
        with self._lock:
            self._reap_expired()
            return dict(self._records)

    async def subscribe(self, model_id: str) -> AsyncIterator[ProgressRecord]:
        """Yield progress snapshots for *model_id* until it finishes.

        See the module docstring for the exact cadence.
        """
        logger.info("Progress subscription opened for '%s'.", model_id)
        try:
            current = self.get(model_id) or ProgressRecord(
                status="loading",
                progress=0,
                message=DEFAULT_MESSAGE,
                timestamp=_now_ms(),
            )
            yield current

            while True:
                await asyncio.sleep(self.poll_interval)
                current = self.get(model_id)
                if current is None:
                    continue

                yield current

                if current.is_terminal:
                    await asyncio.sleep(self.close_delay)
                    return
        finally:
            logger.info("Progress subscription closed for '%s'.", model_id)

    # -- Internal helpers ---------------------------------------------------

    def _reap_expired(self) -> None:
        """Drop terminal records whose deadline has passed.  Caller holds the lock."""
        if not self._reap_at:
            return
        now = self._clock()
        expired = [key for key, deadline in self._reap_at.items() if deadline <= now]
        for key in expired:
            self._records.pop(key, None)
            del self._reap_at[key]
            logger.debug("Reaped progress record for '%s'.", key)
