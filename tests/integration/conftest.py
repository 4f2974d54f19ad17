"""Live-cluster fixtures for integration tests.

Point ``CASSANDRA_HOST`` at a running node (``examples/schema.cql`` applied)
to run them; otherwise every test here is skipped.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from cassandra_sink.config.models import CassandraConfig, RetryConfig
from cassandra_sink.store.cassandra import CassandraSession


@pytest.fixture(scope="session")
def cassandra_config() -> CassandraConfig:
    return CassandraConfig(
        contact_points=[os.environ.get("CASSANDRA_HOST", "localhost")],
        keyspace=os.environ.get("CASSANDRA_KEYSPACE", "shop"),
        connect_timeout_seconds=2.0,
        retry=RetryConfig(max_attempts=1),
    )


@pytest.fixture
def cassandra_session(cassandra_config: CassandraConfig) -> Iterator[CassandraSession]:
    try:
        session = CassandraSession.connect(cassandra_config)
    except Exception as exc:
        pytest.skip(f"Cassandra not reachable: {exc}")
    yield session
    session.close()
