"""Kafka consumer delivering batches of sink records with manual commits."""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from confluent_kafka import (
    Consumer,
    KafkaError,
    KafkaException,
    Message,
    TopicPartition,
)

from cassandra_sink.config.models import KafkaConfig
from cassandra_sink.records import SinkRecord
from cassandra_sink.streaming.auth import base_client_config

logger = structlog.get_logger()

BatchHandler = Callable[[list[SinkRecord]], Awaitable[None]]
PartitionCallback = Callable[[list[tuple[str, int]]], None]


def to_sink_record(msg: Message) -> SinkRecord:
    """Wrap a polled message; the value stays raw for per-record conversion."""
    topic = msg.topic()
    partition = msg.partition()
    offset = msg.offset()
    assert topic is not None
    assert partition is not None
    assert offset is not None
    _, timestamp = msg.timestamp()
    return SinkRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        key=msg.key(),
        value=msg.value(),
        timestamp=timestamp if timestamp and timestamp > 0 else None,
    )


class SinkConsumer:
    """Polls batches from Kafka and hands them to an async batch handler.

    Offsets are never auto-committed; the handler's owner calls
    :meth:`commit_offsets` once a batch is safely stored. An exception raised
    by the handler is fatal and ends :meth:`consume`.
    """

    def __init__(
        self,
        topics: list[str],
        kafka_config: KafkaConfig,
        handler: BatchHandler,
        *,
        on_assign: PartitionCallback | None = None,
        on_revoke: PartitionCallback | None = None,
    ) -> None:
        self._topics = topics
        self._handler = handler
        self._on_assign = on_assign
        self._on_revoke = on_revoke
        self._batch_size = kafka_config.poll_batch_size
        self._poll_timeout = kafka_config.poll_timeout_seconds
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None

        self._consumer = Consumer(
            {
                **base_client_config(kafka_config),
                "group.id": kafka_config.group_id,
                "auto.offset.reset": kafka_config.auto_offset_reset,
                "enable.auto.commit": False,
                "session.timeout.ms": kafka_config.session_timeout_ms,
                "max.poll.interval.ms": kafka_config.max_poll_interval_ms,
                "fetch.min.bytes": kafka_config.fetch_min_bytes,
                "fetch.wait.max.ms": kafka_config.fetch_max_wait_ms,
            }
        )

    @property
    def running(self) -> bool:
        return self._running

    def _forward(
        self, callback: PartitionCallback | None, partitions: list[Any]
    ) -> None:
        # librdkafka invokes rebalance callbacks on the polling thread.
        if callback is None or self._loop is None:
            return
        assigned = [(tp.topic, tp.partition) for tp in partitions]
        self._loop.call_soon_threadsafe(callback, assigned)

    def _handle_assign(self, consumer: Any, partitions: list[Any]) -> None:
        self._forward(self._on_assign, partitions)

    def _handle_revoke(self, consumer: Any, partitions: list[Any]) -> None:
        self._forward(self._on_revoke, partitions)

    def _filter(self, messages: list[Message]) -> list[SinkRecord]:
        records: list[SinkRecord] = []
        for msg in messages:
            err = msg.error()
            if err and err.code() == KafkaError._PARTITION_EOF:  # type: ignore[attr-defined]
                continue
            if err:
                raise KafkaException(err)
            records.append(to_sink_record(msg))
        return records

    async def consume(self) -> None:
        """Poll in a worker thread and await the handler once per batch."""
        self._running = True
        self._loop = asyncio.get_running_loop()
        self._consumer.subscribe(
            self._topics,
            on_assign=self._handle_assign,
            on_revoke=self._handle_revoke,
        )
        self._install_signal_handlers()
        logger.info("consumer.started", topics=self._topics, batch_size=self._batch_size)
        try:
            while self._running:
                messages = await self._loop.run_in_executor(
                    None, self._consumer.consume, self._batch_size, self._poll_timeout
                )
                if not messages:
                    continue
                records = self._filter(messages)
                if records:
                    await self._handler(records)
        finally:
            self._running = False
            self._consumer.close()
            logger.info("consumer.stopped")

    def _install_signal_handlers(self) -> None:
        def _shutdown(signum: int, frame: Any) -> None:
            logger.info("consumer.shutdown_signal", signal=signum)
            self._running = False

        signal.signal(signal.SIGINT, _shutdown)
        signal.signal(signal.SIGTERM, _shutdown)

    def commit_offsets(self, offsets: dict[tuple[str, int], int]) -> None:
        """Synchronously commit the last stored offset per (topic, partition)."""
        topic_partitions = [
            TopicPartition(topic, partition, offset + 1)  # committed = next-to-fetch
            for (topic, partition), offset in offsets.items()
        ]
        if topic_partitions:
            self._consumer.commit(offsets=topic_partitions, asynchronous=False)
            logger.debug("consumer.committed", offsets=len(topic_partitions))

    def stop(self) -> None:
        """Signal the consume loop to stop after the current batch."""
        self._running = False
