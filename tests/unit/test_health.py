"""Unit tests for the Kafka and Cassandra health probes."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from cassandra_sink.config.models import CassandraConfig, KafkaConfig
from cassandra_sink.observability.health import (
    Status,
    check_cassandra,
    check_connector_health,
    check_kafka,
)


def _metadata(topics: list[str], brokers: int = 1) -> MagicMock:
    meta = MagicMock()
    meta.topics = {t: MagicMock() for t in topics}
    meta.brokers = {i: MagicMock() for i in range(brokers)}
    return meta


class TestCheckKafka:
    def test_healthy(self):
        with patch("cassandra_sink.observability.health.AdminClient") as mock_admin:
            mock_admin.return_value.list_topics.return_value = _metadata(
                ["orders"], brokers=3
            )
            result = check_kafka(KafkaConfig(), ["orders"])
        assert result.status == Status.HEALTHY
        assert result.detail == "3 broker(s)"

    def test_missing_topic(self):
        with patch("cassandra_sink.observability.health.AdminClient") as mock_admin:
            mock_admin.return_value.list_topics.return_value = _metadata(["orders"])
            result = check_kafka(KafkaConfig(), ["orders", "payments"])
        assert result.status == Status.UNHEALTHY
        assert "payments" in result.detail

    def test_unreachable(self):
        with patch("cassandra_sink.observability.health.AdminClient") as mock_admin:
            mock_admin.return_value.list_topics.side_effect = RuntimeError("timed out")
            result = check_kafka(KafkaConfig(), ["orders"])
        assert result.status == Status.UNHEALTHY
        assert result.detail == "timed out"


class TestCheckCassandra:
    def test_healthy_closes_session(self):
        session = MagicMock()
        session.list_destinations.return_value = ["orders", "order_items"]
        with patch(
            "cassandra_sink.observability.health.CassandraSession.connect",
            return_value=session,
        ) as mock_connect:
            result = check_cassandra(CassandraConfig(keyspace="shop"), ["orders"])
        assert result.status == Status.HEALTHY
        assert mock_connect.call_args.args[0].retry.max_attempts == 1
        session.close.assert_called_once()

    def test_missing_tables(self):
        session = MagicMock()
        session.list_destinations.return_value = ["orders"]
        with patch(
            "cassandra_sink.observability.health.CassandraSession.connect",
            return_value=session,
        ):
            result = check_cassandra(
                CassandraConfig(keyspace="shop"), ["orders", "order_items"]
            )
        assert result.status == Status.UNHEALTHY
        assert "order_items" in result.detail

    def test_connect_failure(self):
        with patch(
            "cassandra_sink.observability.health.CassandraSession.connect",
            side_effect=RuntimeError("no hosts"),
        ):
            result = check_cassandra(CassandraConfig(keyspace="shop"), ["orders"])
        assert result.status == Status.UNHEALTHY


def test_connector_health_aggregates(connector_config):
    session = MagicMock()
    session.list_destinations.return_value = ["orders", "order_items"]
    with (
        patch("cassandra_sink.observability.health.AdminClient") as mock_admin,
        patch(
            "cassandra_sink.observability.health.CassandraSession.connect",
            return_value=session,
        ),
    ):
        mock_admin.return_value.list_topics.return_value = _metadata(
            ["orders", "order_items"]
        )
        result = check_connector_health(connector_config)
    assert result.healthy
    assert result.summary == {"kafka": "healthy", "cassandra": "healthy"}
