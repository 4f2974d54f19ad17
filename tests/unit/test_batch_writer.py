"""Unit tests for the asynchronous batch writer."""

from __future__ import annotations

import threading

import pytest
from structlog.testing import capture_logs

from cassandra_sink.errors import (
    MissingDestinationError,
    MissingWritePlanError,
    RecordConversionError,
    SessionClosedError,
    WriterClosedError,
)
from cassandra_sink.writer.batch import BatchWriter
from cassandra_sink.writer.counter import InFlightCounter


class RecordingCounter(InFlightCounter):
    """Counter that remembers every value it passes through."""

    def __init__(self) -> None:
        super().__init__()
        self.history: list[int] = []

    def add(self, n: int) -> int:
        value = super().add(n)
        self.history.append(value)
        return value

    def decrement_and_get(self) -> int:
        value = super().decrement_and_get()
        self.history.append(value)
        return value


def _writer(session, *destinations, **kwargs) -> BatchWriter:
    return BatchWriter.create(session, "shop", destinations or ("orders",), **kwargs)


class TestCreate:
    def test_validates_then_prepares(self, make_session):
        session = make_session("orders", "order_items", "unused")
        writer = _writer(session, "orders", "order_items")

        assert session.namespaces == ["shop"]
        assert sorted(p.statement for p in session.prepared) == [
            "INSERT INTO shop.order_items JSON ?",
            "INSERT INTO shop.orders JSON ?",
        ]
        assert writer.plans.destinations == {"orders", "order_items"}

    def test_missing_table_prepares_nothing(self, make_session):
        session = make_session("orders")
        with pytest.raises(MissingDestinationError):
            _writer(session, "orders", "payments")
        assert session.prepared == []


class TestSubmit:
    def test_empty_batch_is_noop(self, make_session):
        session = make_session("orders")
        counter = RecordingCounter()
        writer = _writer(session, counter=counter)

        with capture_logs() as logs:
            writer.submit([])

        assert session.executions == []
        assert counter.value == 0
        assert counter.history == []
        assert any(e["event"] == "batch_writer.empty_batch" for e in logs)

    def test_counter_rises_by_batch_size_then_returns(self, make_session, make_record):
        session = make_session("orders")
        counter = RecordingCounter()
        writer = _writer(session, counter=counter)

        writer.submit([make_record(offset=i) for i in range(4)])

        assert counter.value == 4
        assert counter.history == [4]
        for execution in session.executions:
            execution.future.succeed()

        assert counter.value == 0
        assert counter.history == [4, 3, 2, 1, 0]
        assert min(counter.history) >= 0

    def test_counter_increment_precedes_first_write(self, make_session, make_record):
        session = make_session("orders")
        counter = InFlightCounter()
        seen: list[int] = []
        original = session.execute_async

        def spying_execute(prepared, payload, *, timeout=None):
            seen.append(counter.value)
            return original(prepared, payload, timeout=timeout)

        session.execute_async = spying_execute
        writer = _writer(session, counter=counter)
        writer.submit([make_record(offset=0), make_record(offset=1)])

        assert seen == [2, 2]

    def test_binds_json_payload_to_cached_plan(self, make_session, make_record):
        session = make_session("orders", "order_items")
        writer = _writer(session, "orders", "order_items", write_timeout=2.5)

        writer.submit(
            [
                make_record("orders", 0, {"id": 1}),
                make_record("order_items", 1, {"order_id": 1, "line": 1}),
                make_record("orders", 2, {"id": 2}),
            ]
        )

        by_statement = {}
        for execution in session.executions:
            by_statement.setdefault(execution.prepared.statement, []).append(
                execution.payload
            )
            assert execution.timeout == 2.5
        assert by_statement == {
            "INSERT INTO shop.orders JSON ?": ['{"id":1}', '{"id":2}'],
            "INSERT INTO shop.order_items JSON ?": ['{"order_id":1,"line":1}'],
        }

    def test_uses_destination_mapping(self, make_session, make_record):
        session = make_session("customer_events")
        writer = BatchWriter.create(
            session,
            "shop",
            ["customer_events"],
            destination_for=lambda topic: topic.replace("-", "_"),
        )

        writer.submit([make_record("customer-events", 0)])

        assert session.executions[0].prepared.statement == (
            "INSERT INTO shop.customer_events JSON ?"
        )

    def test_partial_failure_is_isolated(self, make_session, make_record):
        session = make_session("orders")
        counter = RecordingCounter()
        failures = []
        writer = _writer(
            session, counter=counter, on_failure=lambda r, e: failures.append((r, e))
        )
        records = [make_record(offset=i) for i in range(1, 4)]

        with capture_logs() as logs:
            writer.submit(records)
            first, second, third = (e.future for e in session.executions)
            first.succeed()
            second.fail(RuntimeError("coordinator overloaded"))
            third.succeed()

        assert counter.value == 0
        assert counter.history == [3, 2, 1, 0]
        snapshot = writer.stats.snapshot()
        assert snapshot.succeeded == 2
        assert snapshot.failed == 1
        assert snapshot.last_failure == "coordinator overloaded"
        assert [r.offset for r, _ in failures] == [2]

        warnings = [e for e in logs if e["log_level"] == "warning"]
        assert len(warnings) == 1
        assert warnings[0]["event"] == "batch_writer.write_failed"
        assert warnings[0]["offset"] == 2
        assert warnings[0]["error"] == "coordinator overloaded"

    def test_timeout_counts_as_failure(self, make_session, make_record):
        session = make_session("orders")
        writer = _writer(session)

        writer.submit([make_record()])
        session.executions[0].future.fail(TimeoutError("no response"))

        snapshot = writer.stats.snapshot()
        assert writer.in_flight == 0
        assert snapshot.failed == 1
        assert snapshot.timed_out == 1

    def test_timeout_types_come_from_session(self, make_session, make_record):
        class CoordinatorTimeout(Exception):
            pass

        session = make_session("orders")
        session.timeout_errors = (CoordinatorTimeout,)
        writer = _writer(session)

        writer.submit([make_record(offset=1), make_record(offset=2)])
        session.executions[0].future.fail(CoordinatorTimeout("no replicas answered"))
        session.executions[1].future.fail(TimeoutError("not a store timeout"))

        snapshot = writer.stats.snapshot()
        assert snapshot.failed == 2
        assert snapshot.timed_out == 1

    def test_conversion_failure_does_not_abort_batch(self, make_session, make_record):
        session = make_session("orders", auto_succeed=True)
        failures = []
        writer = _writer(session, on_failure=lambda r, e: failures.append((r, e)))

        writer.submit(
            [
                make_record(offset=0),
                make_record(offset=1, value="not json"),
                make_record(offset=2),
            ]
        )

        assert len(session.executions) == 2
        assert writer.in_flight == 0
        assert writer.stats.snapshot().conversion_failed == 1
        record, error = failures[0]
        assert record.offset == 1
        assert isinstance(error, RecordConversionError)
        assert "offset=1" in str(error)

    def test_converter_errors_are_wrapped(self, make_session, make_record):
        session = make_session("orders")

        def broken(record):
            raise KeyError("schema")

        failures = []
        writer = _writer(
            session, converter=broken, on_failure=lambda r, e: failures.append(e)
        )
        writer.submit([make_record()])

        assert session.executions == []
        assert writer.in_flight == 0
        assert isinstance(failures[0], RecordConversionError)
        assert isinstance(failures[0].__cause__, KeyError)

    def test_synchronous_execute_error_is_per_record(self, make_session, make_record):
        session = make_session("orders", auto_succeed=True)
        original = session.execute_async
        calls = {"n": 0}

        def flaky(prepared, payload, *, timeout=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise ValueError("bad bind")
            return original(prepared, payload, timeout=timeout)

        session.execute_async = flaky
        writer = _writer(session)
        writer.submit([make_record(offset=0), make_record(offset=1)])

        assert writer.in_flight == 0
        assert writer.stats.snapshot().failed == 1
        assert writer.stats.snapshot().succeeded == 1

    def test_missing_plan_is_fatal_and_issues_nothing(self, make_session, make_record):
        session = make_session("orders", "payments")
        writer = _writer(session, "orders")

        with pytest.raises(MissingWritePlanError, match="payments"):
            writer.submit([make_record("orders", 0), make_record("payments", 1)])

        assert session.executions == []
        assert writer.in_flight == 0

    def test_session_closed_mid_batch_settles_and_raises(
        self, make_session, make_record
    ):
        session = make_session("orders")
        writer = _writer(session)
        session.closed = True

        with pytest.raises(SessionClosedError):
            writer.submit([make_record(offset=i) for i in range(3)])

        assert writer.in_flight == 0
        assert writer.stats.snapshot().failed == 3

    def test_failure_handler_errors_are_logged(self, make_session, make_record):
        session = make_session("orders")

        def explode(record, error):
            raise RuntimeError("dlq down")

        writer = _writer(session, on_failure=explode)
        with capture_logs() as logs:
            writer.submit([make_record()])
            session.executions[0].future.fail(RuntimeError("write failed"))

        assert writer.in_flight == 0
        assert any(e["event"] == "batch_writer.failure_handler_error" for e in logs)


class TestBoundedInFlight:
    def test_submit_blocks_at_bound(self, make_session, make_record):
        session = make_session("orders")
        writer = _writer(session, max_in_flight=2)
        done = threading.Event()

        def submit() -> None:
            writer.submit([make_record(offset=i) for i in range(3)])
            done.set()

        worker = threading.Thread(target=submit)
        worker.start()
        assert not done.wait(0.2)
        assert len(session.executions) == 2

        session.executions[0].future.succeed()
        assert done.wait(2)
        worker.join()
        assert len(session.executions) == 3

        for execution in session.executions[1:]:
            execution.future.succeed()
        assert writer.in_flight == 0

    def test_negative_bound_rejected(self, make_session):
        session = make_session("orders")
        with pytest.raises(ValueError, match="max_in_flight"):
            _writer(session, max_in_flight=-1)


class TestDrainAndClose:
    def test_wait_for_drain(self, make_session, make_record):
        session = make_session("orders")
        writer = _writer(session)
        writer.submit([make_record()])

        assert writer.wait_for_drain(timeout=0.05) is False
        session.executions[0].future.succeed()
        assert writer.wait_for_drain(timeout=0.05) is True

    def test_close_after_drain_is_idempotent(self, make_session, make_record):
        session = make_session("orders", auto_succeed=True)
        writer = _writer(session)
        writer.submit([make_record()])
        assert writer.wait_for_drain(timeout=1)

        writer.close()
        writer.close()

        assert writer.closed
        assert session.close_calls == 1
        assert len(writer.plans) == 0

    def test_submit_after_close_fails(self, make_session, make_record):
        session = make_session("orders")
        writer = _writer(session)
        writer.close()

        with pytest.raises(WriterClosedError):
            writer.submit([make_record()])
        with pytest.raises(SessionClosedError):
            session.execute_async(None, "{}")

    def test_close_with_outstanding_writes_warns(self, make_session, make_record):
        session = make_session("orders")
        writer = _writer(session)
        writer.submit([make_record()])

        with capture_logs() as logs:
            writer.close()

        assert any(
            e["event"] == "batch_writer.closing_with_outstanding" and e["in_flight"] == 1
            for e in logs
        )
