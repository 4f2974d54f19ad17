"""Thread-safe accounting for outstanding and completed writes."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from cassandra_sink.errors import CounterUnderflowError


class InFlightCounter:
    """Number of writes submitted but not yet completed.

    Incremented by ``N`` when a batch of ``N`` records is submitted and
    decremented once per completion, whatever the outcome. Completion
    callbacks run on driver I/O threads, so every mutation happens under a
    condition variable that also lets callers wait for the count to drain.
    """

    def __init__(self) -> None:
        self._value = 0
        self._cond = threading.Condition()

    @property
    def value(self) -> int:
        with self._cond:
            return self._value

    def add(self, n: int) -> int:
        """Add *n* outstanding writes and return the new count."""
        if n < 0:
            msg = f"cannot add a negative count ({n})"
            raise ValueError(msg)
        with self._cond:
            self._value += n
            return self._value

    def decrement_and_get(self) -> int:
        """Mark one write complete and return the remaining count."""
        with self._cond:
            if self._value == 0:
                msg = "in-flight counter decremented below zero"
                raise CounterUnderflowError(msg)
            self._value -= 1
            if self._value == 0:
                self._cond.notify_all()
            return self._value

    def wait_for_zero(self, timeout: float | None = None) -> bool:
        """Block until no writes are outstanding. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: self._value == 0, timeout=timeout)


@dataclass
class WriteStatsSnapshot:
    submitted: int
    succeeded: int
    failed: int
    conversion_failed: int
    timed_out: int
    last_failure: str | None
    last_failure_at: float | None


class WriteStats:
    """Running totals of write outcomes since the writer was created."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._submitted = 0
        self._succeeded = 0
        self._failed = 0
        self._conversion_failed = 0
        self._timed_out = 0
        self._last_failure: str | None = None
        self._last_failure_at: float | None = None

    def record_submitted(self, n: int) -> None:
        with self._lock:
            self._submitted += n

    def record_success(self) -> None:
        with self._lock:
            self._succeeded += 1

    def record_failure(
        self, message: str, *, conversion: bool = False, timeout: bool = False
    ) -> None:
        with self._lock:
            self._failed += 1
            if conversion:
                self._conversion_failed += 1
            if timeout:
                self._timed_out += 1
            self._last_failure = message
            self._last_failure_at = time.time()

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    def snapshot(self) -> WriteStatsSnapshot:
        with self._lock:
            return WriteStatsSnapshot(
                submitted=self._submitted,
                succeeded=self._succeeded,
                failed=self._failed,
                conversion_failed=self._conversion_failed,
                timed_out=self._timed_out,
                last_failure=self._last_failure,
                last_failure_at=self._last_failure_at,
            )
