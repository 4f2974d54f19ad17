"""Prepared-statement cache, one write plan per destination table."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

import structlog

from cassandra_sink.errors import MissingWritePlanError
from cassandra_sink.store.base import StoreSession

logger = structlog.get_logger()


def insert_json_statement(keyspace: str, table: str) -> str:
    """CQL that inserts a whole row from one JSON-encoded bind value."""
    return f"INSERT INTO {keyspace}.{table} JSON ?"


@dataclass(frozen=True)
class WritePlan:
    destination: str
    statement: str
    prepared: Any


class WritePlanCache:
    """Immutable mapping of destination name to its :class:`WritePlan`."""

    def __init__(self, plans: dict[str, WritePlan]) -> None:
        self._plans = dict(plans)

    @classmethod
    def build(
        cls, session: StoreSession, keyspace: str, destinations: Iterable[str]
    ) -> WritePlanCache:
        """Prepare one insert statement per distinct destination."""
        names = sorted(set(destinations))
        logger.info("write_plan_cache.preparing", keyspace=keyspace, destinations=names)
        plans: dict[str, WritePlan] = {}
        for name in names:
            statement = insert_json_statement(keyspace, name)
            plans[name] = WritePlan(
                destination=name,
                statement=statement,
                prepared=session.prepare(statement),
            )
        return cls(plans)

    def get(self, destination: str) -> WritePlan:
        try:
            return self._plans[destination]
        except KeyError:
            raise MissingWritePlanError(destination) from None

    @property
    def destinations(self) -> frozenset[str]:
        return frozenset(self._plans)

    def clear(self) -> None:
        self._plans.clear()

    def __contains__(self, destination: object) -> bool:
        return destination in self._plans

    def __len__(self) -> int:
        return len(self._plans)

    def __iter__(self) -> Iterator[str]:
        return iter(self._plans)
