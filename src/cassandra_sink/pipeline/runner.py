"""Pipeline orchestrator: Kafka consumer → Cassandra sink → offset commit."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from cassandra_sink.config.models import ConnectorConfig
from cassandra_sink.records import SinkRecord
from cassandra_sink.sinks.base import SinkConnector
from cassandra_sink.sinks.cassandra import CassandraSink
from cassandra_sink.streaming.consumer import SinkConsumer
from cassandra_sink.streaming.dlq import DLQHandler, create_producer

logger = structlog.get_logger()


class Pipeline:
    """Runs the connector until stopped or a fatal error occurs.

    Each polled batch is submitted to the sink, then flushed; offsets are
    committed only after the flush has observed every write complete.
    """

    def __init__(
        self,
        config: ConnectorConfig,
        *,
        sink: SinkConnector | None = None,
    ) -> None:
        self._config = config
        self._sink = sink
        self._consumer: SinkConsumer | None = None
        self._last_committed: dict[tuple[str, int], int] = {}
        self._assigned: set[tuple[str, int]] = set()

    def start(self) -> None:
        """Start the pipeline (blocking)."""
        asyncio.run(self._start_async())

    async def _start_async(self) -> None:
        if self._sink is None:
            dlq = None
            if self._config.dlq.enabled:
                dlq = DLQHandler(create_producer(self._config.kafka), self._config.dlq)
            self._sink = CassandraSink(self._config, dlq=dlq)
        await self._sink.start()

        self._consumer = SinkConsumer(
            topics=self._config.topics,
            kafka_config=self._config.kafka,
            handler=self._handle_batch,
            on_assign=self._on_partitions_assigned,
            on_revoke=self._on_partitions_revoked,
        )
        logger.info(
            "pipeline.started",
            connector=self._config.connector_name,
            topics=self._config.topics,
        )
        try:
            await self._consumer.consume()
        finally:
            await self._shutdown()

    async def _handle_batch(self, records: list[SinkRecord]) -> None:
        assert self._sink is not None
        await self._sink.write_batch(records)
        await self._sink.flush()
        self._maybe_commit()

    def _on_partitions_assigned(self, partitions: list[tuple[str, int]]) -> None:
        # Subscription is fixed to config.topics, all of which the sink's
        # plan cache already covers, so a rebalance needs no rebuild.
        self._assigned.update(partitions)
        logger.info("pipeline.partitions_assigned", partitions=partitions)

    def _on_partitions_revoked(self, partitions: list[tuple[str, int]]) -> None:
        self._assigned.difference_update(partitions)
        logger.info("pipeline.partitions_revoked", partitions=partitions)

    def _maybe_commit(self) -> None:
        if self._sink is None or self._consumer is None:
            return
        to_commit = {
            tp: offset
            for tp, offset in self._sink.flushed_offsets.items()
            if offset > self._last_committed.get(tp, -1)
        }
        if not to_commit:
            return
        self._consumer.commit_offsets(to_commit)
        self._last_committed.update(to_commit)

    async def _shutdown(self) -> None:
        if self._sink is None:
            return
        # Consumer is closed by now; nothing left to commit.
        try:
            await self._sink.stop()
        except Exception as exc:
            logger.error("pipeline.sink_stop_error", error=str(exc))
        logger.info("pipeline.stopped", connector=self._config.connector_name)

    def stop(self) -> None:
        """Signal the pipeline to stop."""
        if self._consumer is not None:
            self._consumer.stop()

    async def health(self) -> dict[str, Any]:
        sink_health: dict[str, Any] = {"status": "stopped"}
        if self._sink is not None:
            try:
                sink_health = await self._sink.health()
            except Exception as exc:
                sink_health = {"status": "error", "error": str(exc)}
        return {
            "connector": self._config.connector_name,
            "running": bool(self._consumer and self._consumer.running),
            "sink": sink_health,
            "assigned_partitions": sorted(self._assigned),
            "committed": {f"{t}:{p}": o for (t, p), o in self._last_committed.items()},
        }
