"""Cassandra sink connector: batch writer lifecycle plus offset bookkeeping."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict
from typing import Any

import structlog

from cassandra_sink.config.models import CassandraConfig, ConnectorConfig
from cassandra_sink.errors import DeadLetterError, DrainTimeoutError, WriterClosedError
from cassandra_sink.records import SinkRecord
from cassandra_sink.store.base import StoreSession
from cassandra_sink.store.cassandra import CassandraSession
from cassandra_sink.streaming.dlq import DLQHandler
from cassandra_sink.writer.batch import BatchWriter
from cassandra_sink.writer.counter import InFlightCounter, WriteStats

logger = structlog.get_logger()

SessionFactory = Callable[[CassandraConfig], StoreSession]


class CassandraSink:
    """Writes consumed records into one Cassandra table per topic.

    Offsets of a batch become committable only after :meth:`flush` has seen
    the in-flight counter drain. Records that failed are dead-lettered when
    a DLQ handler is configured and are otherwise only logged and counted.
    With a DLQ, offsets advance only once every failed record is delivered.
    """

    def __init__(
        self,
        config: ConnectorConfig,
        *,
        session_factory: SessionFactory | None = None,
        dlq: DLQHandler | None = None,
    ) -> None:
        self._config = config
        self._session_factory: SessionFactory = (
            session_factory or CassandraSession.connect
        )
        self._dlq = dlq
        self._session: StoreSession | None = None
        self._writer: BatchWriter | None = None
        self._topics: list[str] = sorted(set(config.topics))
        self._counter = InFlightCounter()
        self._stats = WriteStats()
        self._pending_offsets: dict[tuple[str, int], int] = {}
        self._flushed_offsets: dict[tuple[str, int], int] = {}
        self._failures: list[tuple[SinkRecord, BaseException]] = []
        self._failures_lock = threading.Lock()
        self._lock = asyncio.Lock()

    @property
    def sink_id(self) -> str:
        return self._config.connector_name

    @property
    def flushed_offsets(self) -> dict[tuple[str, int], int]:
        return self._flushed_offsets

    @property
    def in_flight(self) -> int:
        return self._counter.value

    @property
    def stats(self) -> WriteStats:
        return self._stats

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._session = await loop.run_in_executor(
            None, self._session_factory, self._config.cassandra
        )
        try:
            self._writer = await loop.run_in_executor(
                None, self._build_writer, self._topics
            )
        except Exception:
            session, self._session = self._session, None
            await loop.run_in_executor(None, session.close)
            raise
        logger.info(
            "cassandra_sink.started",
            sink_id=self.sink_id,
            keyspace=self._config.cassandra.keyspace,
            tables=sorted(self._writer.plans.destinations),
        )

    def _build_writer(self, topics: Iterable[str]) -> BatchWriter:
        assert self._session is not None
        writer_cfg = self._config.writer
        return BatchWriter.create(
            self._session,
            self._config.cassandra.keyspace,
            {self._config.table_for(t) for t in topics},
            counter=self._counter,
            stats=self._stats,
            destination_for=self._config.table_for,
            write_timeout=writer_cfg.write_timeout_seconds,
            max_in_flight=writer_cfg.max_in_flight,
            on_failure=self._record_failure,
        )

    def _record_failure(self, record: SinkRecord, error: BaseException) -> None:
        # Runs on driver I/O threads.
        with self._failures_lock:
            self._failures.append((record, error))

    def _take_failures(self) -> list[tuple[SinkRecord, BaseException]]:
        with self._failures_lock:
            failures, self._failures = self._failures, []
        return failures

    async def write_batch(self, records: Sequence[SinkRecord]) -> None:
        if self._writer is None:
            msg = f"Sink '{self.sink_id}' is not started"
            raise WriterClosedError(msg)
        async with self._lock:
            loop = asyncio.get_running_loop()
            batch = list(records)
            # submit() may block on the in-flight bound, keep it off the loop.
            await loop.run_in_executor(None, self._writer.submit, batch)
            for record in batch:
                tp = (record.topic, record.partition)
                if record.offset > self._pending_offsets.get(tp, -1):
                    self._pending_offsets[tp] = record.offset

    async def flush(self) -> None:
        if self._writer is None:
            return
        async with self._lock:
            await self._flush_locked()

    async def _flush_locked(self) -> None:
        assert self._writer is not None
        if not self._pending_offsets and self._counter.value == 0:
            return

        loop = asyncio.get_running_loop()
        timeout = self._config.writer.drain_timeout_seconds
        drained = await loop.run_in_executor(None, self._writer.wait_for_drain, timeout)
        if not drained:
            raise DrainTimeoutError(self._counter.value, timeout)

        failures = self._take_failures()
        if failures and self._dlq is not None:
            await loop.run_in_executor(None, self._dead_letter, failures)

        for tp, offset in self._pending_offsets.items():
            if offset > self._flushed_offsets.get(tp, -1):
                self._flushed_offsets[tp] = offset
        self._pending_offsets.clear()

        logger.info(
            "cassandra_sink.flushed",
            sink_id=self.sink_id,
            failed=len(failures),
            dead_lettered=len(failures) if self._dlq is not None else 0,
        )

    def _dead_letter(self, failures: list[tuple[SinkRecord, BaseException]]) -> None:
        """Publish *failures* and wait for delivery.

        On any loss the failures are put back and the offsets stay pending,
        so the next flush retries them; duplicates on the DLQ are possible.
        """
        assert self._dlq is not None
        rejected = sum(not self._dlq.send(record, error) for record, error in failures)
        undelivered = rejected + self._dlq.flush()
        if undelivered:
            with self._failures_lock:
                self._failures[:0] = failures
            raise DeadLetterError(undelivered, len(failures))

    async def stop(self) -> None:
        if self._writer is None:
            return
        loop = asyncio.get_running_loop()
        try:
            await self.flush()
        finally:
            writer, self._writer = self._writer, None
            self._session = None
            await loop.run_in_executor(None, writer.close)
            logger.info("cassandra_sink.stopped", sink_id=self.sink_id)

    async def health(self) -> dict[str, Any]:
        return {
            "sink_id": self.sink_id,
            "type": "cassandra",
            "status": "running" if self._writer is not None else "stopped",
            "keyspace": self._config.cassandra.keyspace,
            "tables": sorted(self._writer.plans.destinations) if self._writer else [],
            "in_flight": self._counter.value,
            "writes": asdict(self._stats.snapshot()),
        }
