"""Startup check that every destination table already exists."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from cassandra_sink.errors import MissingDestinationError
from cassandra_sink.store.base import StoreSession

logger = structlog.get_logger()


def validate_destinations(
    session: StoreSession, keyspace: str, destinations: Iterable[str]
) -> None:
    """Raise :class:`MissingDestinationError` unless all *destinations* exist.

    The error lists every missing table at once. Nothing is created.
    """
    required = set(destinations)
    existing = set(session.list_destinations(keyspace))
    if not existing:
        raise MissingDestinationError(keyspace)

    missing = required - existing
    if missing:
        raise MissingDestinationError(keyspace, missing)

    logger.info(
        "destination_validator.ok",
        keyspace=keyspace,
        destinations=sorted(required),
    )
