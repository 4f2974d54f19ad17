"""Health probes for the connector's external dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog
from confluent_kafka.admin import AdminClient

from cassandra_sink.config.models import CassandraConfig, ConnectorConfig, KafkaConfig
from cassandra_sink.store.cassandra import CassandraSession
from cassandra_sink.streaming.auth import base_client_config

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class ConnectorHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}


def check_kafka(config: KafkaConfig, topics: list[str]) -> ComponentHealth:
    """Probe broker connectivity and that the subscribed topics exist."""
    try:
        admin = AdminClient(base_client_config(config))
        meta = admin.list_topics(timeout=5)
    except Exception as exc:
        return ComponentHealth(name="kafka", status=Status.UNHEALTHY, detail=str(exc))

    missing = sorted(set(topics) - set(meta.topics))
    if missing:
        return ComponentHealth(
            name="kafka",
            status=Status.UNHEALTHY,
            detail=f"missing topic(s): {', '.join(missing)}",
        )
    return ComponentHealth(
        name="kafka",
        status=Status.HEALTHY,
        detail=f"{len(meta.brokers)} broker(s)",
    )


def check_cassandra(config: CassandraConfig, tables: list[str]) -> ComponentHealth:
    """Probe the cluster and report which destination tables are missing."""
    single_try = config.model_copy(
        update={"retry": config.retry.model_copy(update={"max_attempts": 1})}
    )
    try:
        session = CassandraSession.connect(single_try)
    except Exception as exc:
        return ComponentHealth(
            name="cassandra", status=Status.UNHEALTHY, detail=str(exc)
        )
    try:
        existing = set(session.list_destinations(config.keyspace))
    except Exception as exc:
        return ComponentHealth(
            name="cassandra", status=Status.UNHEALTHY, detail=str(exc)
        )
    finally:
        session.close()

    missing = sorted(set(tables) - existing)
    if missing:
        return ComponentHealth(
            name="cassandra",
            status=Status.UNHEALTHY,
            detail=f"missing table(s) in {config.keyspace}: {', '.join(missing)}",
        )
    return ComponentHealth(
        name="cassandra",
        status=Status.HEALTHY,
        detail=f"{len(existing)} table(s) in {config.keyspace}",
    )


def check_connector_health(config: ConnectorConfig) -> ConnectorHealth:
    """Run all health checks and return the aggregated result."""
    tables = sorted({config.table_for(t) for t in config.topics})
    components = [
        check_kafka(config.kafka, config.topics),
        check_cassandra(config.cassandra, tables),
    ]
    for c in components:
        logger.debug("health.checked", component=c.name, status=c.status.value)
    return ConnectorHealth(components=components)
