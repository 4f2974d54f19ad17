"""Store session protocol used by the batch-write engine.

The writer only needs catalog introspection, statement preparation,
asynchronous execution with callback registration and an explicit close.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class WriteFuture(Protocol):
    """Completion handle returned by :meth:`StoreSession.execute_async`."""

    def add_callbacks(
        self,
        callback: Callable[[Any], Any],
        errback: Callable[[BaseException], Any],
    ) -> None:
        """Register success and failure continuations.

        Exactly one of them fires, possibly on another thread, possibly
        before this method returns.
        """
        ...


@runtime_checkable
class StoreSession(Protocol):
    """A live connection to the destination store."""

    #: Exception types a failed write reports when it timed out.
    timeout_errors: tuple[type[BaseException], ...]

    def list_destinations(self, namespace: str) -> list[str]:
        """Return the names of the tables that exist in *namespace*."""
        ...

    def prepare(self, statement: str) -> Any:
        """Compile *statement* and return an opaque prepared handle."""
        ...

    def execute_async(
        self, prepared: Any, payload: str, *, timeout: float | None = None
    ) -> WriteFuture:
        """Bind *payload* to *prepared* and start executing it."""
        ...

    def close(self) -> None:
        """Release the session and its cluster resources."""
        ...
