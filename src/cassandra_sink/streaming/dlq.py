"""Dead Letter Queue for records the writer could not store."""

from __future__ import annotations

import json
import time
import traceback
from typing import Any

import structlog
from confluent_kafka import KafkaError, Message, Producer

from cassandra_sink.config.models import DLQConfig, KafkaConfig
from cassandra_sink.records import SinkRecord
from cassandra_sink.streaming.auth import base_client_config

logger = structlog.get_logger()


def dlq_topic_name(source_topic: str, suffix: str = "dlq") -> str:
    """Build a DLQ topic name: ``<source_topic>.<suffix>``."""
    return f"{source_topic}.{suffix}"


def create_producer(config: KafkaConfig) -> Producer:
    """Create an idempotent producer for DLQ traffic."""
    return Producer(
        {
            **base_client_config(config),
            "enable.idempotence": True,
            "acks": "all",
        }
    )


def _to_bytes(data: Any) -> bytes | None:
    if data is None or isinstance(data, bytes):
        return data
    if isinstance(data, str):
        return data.encode()
    return json.dumps(data, default=str).encode()


class DLQHandler:
    """Routes failed records to a dead-letter topic with diagnostic headers."""

    def __init__(self, producer: Producer, config: DLQConfig | None = None) -> None:
        self._producer = producer
        self._config = config or DLQConfig()
        self._failed_deliveries = 0

    def _on_delivery(self, err: KafkaError | None, msg: Message) -> None:
        # Served from poll() / flush() on the calling thread.
        if err is None:
            return
        self._failed_deliveries += 1
        logger.error("dlq.delivery_failed", topic=msg.topic(), error=str(err))

    def send(self, record: SinkRecord, error: BaseException) -> bool:
        """Queue *record* for its DLQ topic; False if it could not be queued.

        Delivery is only confirmed by :meth:`flush`.
        """
        if not self._config.enabled:
            return False

        dlq = dlq_topic_name(record.topic, self._config.topic_suffix)
        headers: list[tuple[str, str | bytes | None]] = []
        if self._config.include_headers:
            stack = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
            headers = [
                (k, v.encode())
                for k, v in {
                    "dlq.source.topic": record.topic,
                    "dlq.source.partition": str(record.partition),
                    "dlq.source.offset": str(record.offset),
                    "dlq.error.message": str(error),
                    "dlq.error.type": type(error).__name__,
                    "dlq.error.stacktrace": stack,
                    "dlq.timestamp": str(int(time.time() * 1000)),
                }.items()
            ]

        try:
            self._producer.produce(
                topic=dlq,
                key=_to_bytes(record.key),
                value=_to_bytes(record.value),
                headers=headers,
                on_delivery=self._on_delivery,
            )
            self._producer.poll(0)
        except Exception as dlq_exc:
            logger.error(
                "dlq.write_failed",
                topic=dlq,
                source_topic=record.topic,
                partition=record.partition,
                offset=record.offset,
                original_error=str(error),
                dlq_error=str(dlq_exc),
            )
            return False
        logger.warning(
            "dlq.message_sent",
            topic=dlq,
            source_topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            error=str(error),
        )
        return True

    def flush(self, timeout: float | None = None) -> int:
        """Wait for queued DLQ messages.

        Returns how many messages since the last flush were not delivered:
        those still queued at the timeout plus those the broker rejected.
        """
        queued = self._producer.flush(
            timeout if timeout is not None else self._config.flush_timeout_seconds
        )
        rejected, self._failed_deliveries = self._failed_deliveries, 0
        undelivered = queued + rejected
        if undelivered:
            logger.error("dlq.flush_incomplete", queued=queued, rejected=rejected)
        return undelivered
