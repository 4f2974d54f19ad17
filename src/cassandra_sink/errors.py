"""Exception hierarchy for the Cassandra sink.

Two families:

- :class:`ConnectorError` and its subclasses are fatal. They stop the
  connector and are never retried by the writer.
- :class:`RecordWriteError` subclasses describe a single record that could
  not be written. The batch writer absorbs them (logs, counts, routes to the
  DLQ) and carries on with the rest of the batch.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cassandra_sink.records import SinkRecord


class ConnectorError(Exception):
    """Fatal, connector-level failure."""


class MissingDestinationError(ConnectorError):
    """Required tables are absent from the keyspace catalog."""

    def __init__(self, keyspace: str, missing: Iterable[str] = ()) -> None:
        self.keyspace = keyspace
        self.missing = sorted(set(missing))
        if self.missing:
            message = (
                f"No table found in keyspace '{keyspace}' for: "
                f"{', '.join(self.missing)}"
            )
        else:
            message = f"No tables found in keyspace '{keyspace}'"
        super().__init__(message)


class MissingWritePlanError(ConnectorError):
    """A record arrived for a destination with no prepared statement."""

    def __init__(self, destination: str) -> None:
        self.destination = destination
        super().__init__(
            f"No write plan cached for destination '{destination}'; "
            "the record's topic is not part of the current assignment"
        )


class WriterClosedError(ConnectorError):
    """A batch was submitted to a writer that has been closed."""


class SessionClosedError(ConnectorError):
    """An operation was attempted on a closed store session."""


class DrainTimeoutError(ConnectorError):
    """Outstanding writes did not complete within the drain timeout."""

    def __init__(self, in_flight: int, timeout: float) -> None:
        self.in_flight = in_flight
        self.timeout = timeout
        super().__init__(
            f"{in_flight} write(s) still in flight after waiting {timeout}s"
        )


class DeadLetterError(ConnectorError):
    """Failed records could not be delivered to their dead-letter topics."""

    def __init__(self, undelivered: int, failed: int) -> None:
        self.undelivered = undelivered
        self.failed = failed
        super().__init__(
            f"{undelivered} of {failed} failed record(s) were not dead-lettered"
        )


class RecordWriteError(Exception):
    """A single record could not be written."""

    def __init__(self, record: SinkRecord, message: str) -> None:
        self.record = record
        super().__init__(
            f"{message} (topic={record.topic}, partition={record.partition}, "
            f"offset={record.offset})"
        )


class RecordConversionError(RecordWriteError):
    """A record's value could not be encoded as the table's JSON payload."""

    def __init__(self, record: SinkRecord, reason: str) -> None:
        self.reason = reason
        super().__init__(record, f"Cannot convert record to JSON: {reason}")


class CounterUnderflowError(RuntimeError):
    """The in-flight counter was decremented below zero."""
