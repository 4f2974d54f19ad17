"""Asynchronous batch writer.

A batch is fanned out into one asynchronous ``INSERT ... JSON`` per record
using the cached prepared statements. Every write is accounted for in the
in-flight counter: ``+N`` before the first write of an ``N``-record batch is
issued, ``-1`` when each write completes, whether it succeeded or failed.
A zero count therefore means "nothing outstanding", not "everything
succeeded"; failures are tracked separately in :class:`WriteStats` and
reported through the ``on_failure`` hook.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from typing import Any

import structlog

from cassandra_sink.errors import (
    RecordConversionError,
    SessionClosedError,
    WriterClosedError,
)
from cassandra_sink.records import SinkRecord, record_to_json
from cassandra_sink.store.base import StoreSession
from cassandra_sink.writer.counter import InFlightCounter, WriteStats
from cassandra_sink.writer.outcome import Failure, Outcome, Success
from cassandra_sink.writer.plans import WritePlan, WritePlanCache
from cassandra_sink.writer.validator import validate_destinations

logger = structlog.get_logger()

Converter = Callable[[SinkRecord], str]
FailureHandler = Callable[[SinkRecord, BaseException], None]


def _same_name(topic: str) -> str:
    return topic


class BatchWriter:
    """Writes batches of :class:`SinkRecord` to the store asynchronously.

    ``submit`` returns once every write of the batch has been issued; it
    does not wait for them to complete. With ``max_in_flight > 0`` it blocks
    while that many writes are outstanding.
    """

    def __init__(
        self,
        session: StoreSession,
        plans: WritePlanCache,
        *,
        counter: InFlightCounter | None = None,
        stats: WriteStats | None = None,
        converter: Converter = record_to_json,
        destination_for: Callable[[str], str] = _same_name,
        write_timeout: float | None = None,
        max_in_flight: int = 0,
        on_failure: FailureHandler | None = None,
    ) -> None:
        if max_in_flight < 0:
            msg = "max_in_flight must be >= 0"
            raise ValueError(msg)
        self._session = session
        self._plans = plans
        self._counter = counter if counter is not None else InFlightCounter()
        self._stats = stats if stats is not None else WriteStats()
        self._converter = converter
        self._destination_for = destination_for
        self._write_timeout = write_timeout
        self._on_failure = on_failure
        self._slots: threading.BoundedSemaphore | None = (
            threading.BoundedSemaphore(max_in_flight) if max_in_flight else None
        )
        self._timeout_errors = tuple(session.timeout_errors)
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def create(
        cls,
        session: StoreSession,
        keyspace: str,
        destinations: Iterable[str],
        **kwargs: Any,
    ) -> BatchWriter:
        """Validate the destinations, prepare their plans and build a writer."""
        required = sorted(set(destinations))
        validate_destinations(session, keyspace, required)
        plans = WritePlanCache.build(session, keyspace, required)
        return cls(session, plans, **kwargs)

    @property
    def in_flight(self) -> int:
        return self._counter.value

    @property
    def counter(self) -> InFlightCounter:
        return self._counter

    @property
    def stats(self) -> WriteStats:
        return self._stats

    @property
    def plans(self) -> WritePlanCache:
        return self._plans

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, records: Sequence[SinkRecord]) -> None:
        """Issue one asynchronous write per record.

        Raises only for fatal conditions: a closed writer or session, or a
        record whose destination has no cached plan. In the latter case the
        check happens before anything is issued or counted.
        """
        if self._closed:
            msg = "Cannot submit to a closed batch writer"
            raise WriterClosedError(msg)
        if not records:
            logger.info("batch_writer.empty_batch")
            return

        grouped: dict[str, list[SinkRecord]] = {}
        for record in records:
            grouped.setdefault(self._destination_for(record.topic), []).append(record)
        plans = {destination: self._plans.get(destination) for destination in grouped}

        self._counter.add(len(records))
        self._stats.record_submitted(len(records))
        logger.debug(
            "batch_writer.submitting",
            records=len(records),
            destinations=sorted(grouped),
            in_flight=self._counter.value,
        )

        pending = [
            (plans[destination], record)
            for destination, group in grouped.items()
            for record in group
        ]
        for index, (plan, record) in enumerate(pending):
            try:
                self._issue(plan, record)
            except SessionClosedError as exc:
                for _, unissued in pending[index:]:
                    self._settle(unissued, Failure(exc), holds_slot=False)
                raise

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        """Block until no writes are outstanding; False if *timeout* expires."""
        return self._counter.wait_for_zero(timeout)

    def close(self) -> None:
        """Stop accepting batches and release the store session. Idempotent."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        outstanding = self._counter.value
        if outstanding:
            logger.warning("batch_writer.closing_with_outstanding", in_flight=outstanding)
        self._plans.clear()
        self._session.close()
        logger.info("batch_writer.closed")

    def _issue(self, plan: WritePlan, record: SinkRecord) -> None:
        try:
            payload = self._converter(record)
        except RecordConversionError as exc:
            self._settle(record, Failure(exc), holds_slot=False)
            return
        except Exception as exc:
            wrapped = RecordConversionError(record, str(exc))
            wrapped.__cause__ = exc
            self._settle(record, Failure(wrapped), holds_slot=False)
            return

        holds_slot = self._acquire_slot()
        try:
            future = self._session.execute_async(
                plan.prepared, payload, timeout=self._write_timeout
            )
        except SessionClosedError:
            if holds_slot:
                self._release_slot()
            raise
        except Exception as exc:
            self._settle(record, Failure(exc), holds_slot=holds_slot)
            return

        def _on_success(result: Any) -> None:
            self._settle(record, Success(result), holds_slot=holds_slot)

        def _on_failure(exc: BaseException) -> None:
            self._settle(record, Failure(exc), holds_slot=holds_slot)

        future.add_callbacks(_on_success, _on_failure)

    def _settle(self, record: SinkRecord, outcome: Outcome, *, holds_slot: bool) -> None:
        """Single completion path for every write, successful or not.

        Outcomes are recorded before the counter is decremented, so anyone
        who observes a drained counter also observes every failure.
        """
        try:
            if isinstance(outcome, Success):
                self._stats.record_success()
            else:
                self._record_failure(record, outcome)
        finally:
            remaining = self._counter.decrement_and_get()
            if holds_slot:
                self._release_slot()

        if isinstance(outcome, Success):
            logger.debug(
                "batch_writer.write_succeeded",
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                in_flight=remaining,
            )
        else:
            logger.warning(
                "batch_writer.write_failed",
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                error=outcome.message,
                error_type=type(outcome.reason).__name__,
                in_flight=remaining,
            )

    def _record_failure(self, record: SinkRecord, outcome: Failure) -> None:
        reason = outcome.reason
        self._stats.record_failure(
            outcome.message,
            conversion=isinstance(reason, RecordConversionError),
            timeout=isinstance(reason, self._timeout_errors),
        )
        if self._on_failure is None:
            return
        try:
            self._on_failure(record, reason)
        except Exception:
            logger.exception(
                "batch_writer.failure_handler_error",
                topic=record.topic,
                offset=record.offset,
            )

    def _acquire_slot(self) -> bool:
        if self._slots is None:
            return False
        self._slots.acquire()
        return True

    def _release_slot(self) -> None:
        assert self._slots is not None
        self._slots.release()
