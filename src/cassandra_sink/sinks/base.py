"""Abstract sink connector protocol.

The pipeline runner drives any object satisfying this protocol; the
Cassandra sink is the only implementation shipped.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from cassandra_sink.records import SinkRecord


@runtime_checkable
class SinkConnector(Protocol):
    """Protocol that every batch sink connector must satisfy."""

    @property
    def sink_id(self) -> str:
        """Unique identifier for this sink instance."""
        ...

    @property
    def flushed_offsets(self) -> dict[tuple[str, int], int]:
        """Max offset settled (written or dead-lettered) per (topic, partition)."""
        ...

    async def start(self) -> None:
        """Connect, validate destinations and prepare statements."""
        ...

    async def write_batch(self, records: Sequence[SinkRecord]) -> None:
        """Issue writes for *records* without waiting for them to complete."""
        ...

    async def flush(self) -> None:
        """Wait until every issued write has completed."""
        ...

    async def stop(self) -> None:
        """Flush, then release the store session."""
        ...

    async def health(self) -> dict[str, Any]:
        """Return a health-check status dict."""
        ...
