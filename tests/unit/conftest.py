"""Shared test doubles for the write engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from cassandra_sink.config.models import CassandraConfig, ConnectorConfig
from cassandra_sink.errors import SessionClosedError
from cassandra_sink.records import SinkRecord


class FakeFuture:
    """Write future resolved by the test, mimicking the driver's ResponseFuture."""

    def __init__(self) -> None:
        self._callbacks: tuple[Callable[[Any], Any], Callable[[BaseException], Any]] | None = None
        self._outcome: tuple[bool, Any] | None = None

    @property
    def done(self) -> bool:
        return self._outcome is not None

    def add_callbacks(
        self, callback: Callable[[Any], Any], errback: Callable[[BaseException], Any]
    ) -> None:
        self._callbacks = (callback, errback)
        if self._outcome is not None:
            self._fire()

    def succeed(self, result: Any = None) -> None:
        self._outcome = (True, result)
        if self._callbacks is not None:
            self._fire()

    def fail(self, exc: BaseException) -> None:
        self._outcome = (False, exc)
        if self._callbacks is not None:
            self._fire()

    def _fire(self) -> None:
        assert self._callbacks is not None and self._outcome is not None
        ok, value = self._outcome
        callback, errback = self._callbacks
        if ok:
            callback(value)
        else:
            errback(value)


@dataclass(frozen=True)
class FakePrepared:
    statement: str


@dataclass
class Execution:
    prepared: FakePrepared
    payload: str
    timeout: float | None
    future: FakeFuture


@dataclass
class FakeSession:
    """In-memory StoreSession recording every call."""

    tables: list[str] = field(default_factory=list)
    auto_succeed: bool = False
    timeout_errors: tuple[type[BaseException], ...] = (TimeoutError,)
    namespaces: list[str] = field(default_factory=list)
    prepared: list[FakePrepared] = field(default_factory=list)
    executions: list[Execution] = field(default_factory=list)
    close_calls: int = 0
    closed: bool = False

    def _ensure_open(self) -> None:
        if self.closed:
            raise SessionClosedError("session is closed")

    def list_destinations(self, namespace: str) -> list[str]:
        self._ensure_open()
        self.namespaces.append(namespace)
        return list(self.tables)

    def prepare(self, statement: str) -> FakePrepared:
        self._ensure_open()
        handle = FakePrepared(statement)
        self.prepared.append(handle)
        return handle

    def execute_async(
        self, prepared: FakePrepared, payload: str, *, timeout: float | None = None
    ) -> FakeFuture:
        self._ensure_open()
        future = FakeFuture()
        self.executions.append(Execution(prepared, payload, timeout, future))
        if self.auto_succeed:
            future.succeed([])
        return future

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    def _make(*tables: str, auto_succeed: bool = False) -> FakeSession:
        return FakeSession(tables=list(tables), auto_succeed=auto_succeed)

    return _make


@pytest.fixture
def make_record() -> Callable[..., SinkRecord]:
    def _make(
        topic: str = "orders",
        offset: int = 0,
        value: Any = None,
        partition: int = 0,
    ) -> SinkRecord:
        if value is None:
            value = {"id": offset}
        return SinkRecord(
            topic=topic, partition=partition, offset=offset, key=None, value=value
        )

    return _make


@pytest.fixture
def connector_config() -> ConnectorConfig:
    return ConnectorConfig(
        connector_name="test-sink",
        topics=["orders", "order_items"],
        cassandra=CassandraConfig(keyspace="shop"),
    )
