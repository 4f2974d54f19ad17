"""Cassandra store session backed by the DataStax ``cassandra-driver``."""

from __future__ import annotations

import threading
from typing import Any

import structlog
from cassandra import ConsistencyLevel as DriverConsistency
from cassandra import OperationTimedOut, WriteTimeout
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import (
    EXEC_PROFILE_DEFAULT,
    Cluster,
    ExecutionProfile,
    NoHostAvailable,
    ResponseFuture,
)
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from cassandra_sink.config.models import CassandraConfig
from cassandra_sink.errors import SessionClosedError

logger = structlog.get_logger()


def _build_cluster(config: CassandraConfig) -> Cluster:
    profile_kwargs: dict[str, Any] = {
        "consistency_level": DriverConsistency.name_to_value[
            config.consistency_level.value
        ],
    }
    if config.local_dc:
        profile_kwargs["load_balancing_policy"] = TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=config.local_dc)
        )

    kwargs: dict[str, Any] = {
        "contact_points": config.contact_points,
        "port": config.port,
        "connect_timeout": config.connect_timeout_seconds,
        "execution_profiles": {EXEC_PROFILE_DEFAULT: ExecutionProfile(**profile_kwargs)},
    }
    if config.username is not None and config.password is not None:
        kwargs["auth_provider"] = PlainTextAuthProvider(
            username=config.username,
            password=config.password.get_secret_value(),
        )
    if config.protocol_version is not None:
        kwargs["protocol_version"] = config.protocol_version
    return Cluster(**kwargs)


class CassandraSession:
    """Wraps a driver ``Cluster``/``Session`` pair behind ``StoreSession``."""

    timeout_errors: tuple[type[BaseException], ...] = (OperationTimedOut, WriteTimeout)

    def __init__(self, cluster: Any, session: Any, keyspace: str) -> None:
        self._cluster = cluster
        self._session = session
        self._keyspace = keyspace
        self._closed = False
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, config: CassandraConfig) -> CassandraSession:
        """Open a session on ``config.keyspace``, retrying unreachable clusters."""
        retry_cfg = config.retry

        @retry(
            retry=retry_if_exception_type((NoHostAvailable, OperationTimedOut)),
            stop=stop_after_attempt(retry_cfg.max_attempts),
            wait=wait_exponential_jitter(
                initial=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
                exp_base=retry_cfg.multiplier,
                jitter=retry_cfg.initial_wait_seconds if retry_cfg.jitter else 0,
            ),
            reraise=True,
        )
        def _connect() -> tuple[Any, Any]:
            cluster = _build_cluster(config)
            try:
                return cluster, cluster.connect(config.keyspace)
            except Exception:
                cluster.shutdown()
                logger.warning(
                    "cassandra_session.connect_failed",
                    contact_points=config.contact_points,
                    keyspace=config.keyspace,
                )
                raise

        cluster, session = _connect()
        logger.info(
            "cassandra_session.connected",
            contact_points=config.contact_points,
            keyspace=config.keyspace,
        )
        return cls(cluster, session, config.keyspace)

    @property
    def keyspace(self) -> str:
        return self._keyspace

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            msg = f"Cassandra session for keyspace '{self._keyspace}' is closed"
            raise SessionClosedError(msg)

    def list_destinations(self, namespace: str) -> list[str]:
        self._ensure_open()
        keyspace_meta = self._cluster.metadata.keyspaces.get(namespace)
        if keyspace_meta is None:
            return []
        return sorted(keyspace_meta.tables)

    def prepare(self, statement: str) -> Any:
        self._ensure_open()
        return self._session.prepare(statement)

    def execute_async(
        self, prepared: Any, payload: str, *, timeout: float | None = None
    ) -> ResponseFuture:
        self._ensure_open()
        if timeout is None:
            return self._session.execute_async(prepared, (payload,))
        return self._session.execute_async(prepared, (payload,), timeout=timeout)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.info("cassandra_session.closing", keyspace=self._keyspace)
        self._session.shutdown()
        self._cluster.shutdown()
