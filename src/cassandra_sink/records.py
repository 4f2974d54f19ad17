"""Sink record model and JSON conversion."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from cassandra_sink.errors import RecordConversionError


@dataclass(frozen=True)
class SinkRecord:
    """One consumed message, addressed by its topic/partition/offset."""

    topic: str
    partition: int
    offset: int
    key: Any = None
    value: Any = None
    timestamp: int | None = None


def record_to_json(record: SinkRecord) -> str:
    """Encode *record*'s value as the JSON text bound to ``INSERT ... JSON ?``.

    The value must be a mapping, or a str/bytes holding a JSON object.
    """
    value = record.value
    if value is None:
        raise RecordConversionError(record, "value is null (tombstone)")

    if isinstance(value, bytes | bytearray):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise RecordConversionError(record, f"value is not UTF-8: {exc}") from exc

    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise RecordConversionError(record, f"invalid JSON: {exc}") from exc

    if not isinstance(value, dict):
        raise RecordConversionError(
            record, f"expected a JSON object, got {type(value).__name__}"
        )

    try:
        return json.dumps(value, default=_json_default, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise RecordConversionError(record, str(exc)) from exc


def _json_default(obj: Any) -> Any:
    # Cassandra's JSON insert accepts ISO-8601 strings for timestamp/date columns.
    isoformat = getattr(obj, "isoformat", None)
    if callable(isoformat):
        return isoformat()
    if isinstance(obj, set | frozenset):
        return sorted(obj)
    if isinstance(obj, bytes):
        return "0x" + obj.hex()
    msg = f"Object of type {type(obj).__name__} is not JSON serializable"
    raise TypeError(msg)
