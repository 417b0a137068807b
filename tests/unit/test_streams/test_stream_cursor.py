"""Unit tests for stream cursors."""

import threading

import pytest


@pytest.mark.unit
class TestStreamCursorConsume:
    """Test peek and consume semantics."""

    def test_consume_returns_all_then_empty(self, streams, append_orders):
        """Test the three-record consume scenario."""
        append_orders(3)
        cursor = streams.create_cursor("analytics", "orders")

        first = streams.consume(cursor.cursor_id)
        second = streams.consume(cursor.cursor_id)

        assert [r.sequence_number for r in first] == [1, 2, 3]
        assert cursor.last_consumed_sequence == 3
        assert second == []

    def test_peek_is_idempotent_and_does_not_advance(self, streams, append_orders):
        """Test peeking twice yields identical results."""
        append_orders(2)
        cursor = streams.create_cursor("analytics", "orders")

        assert streams.peek(cursor.cursor_id) == streams.peek(cursor.cursor_id)
        assert cursor.last_consumed_sequence == 0

    def test_peek_after_consume_is_empty(self, streams, append_orders):
        """Test nothing is pending after consuming without new appends."""
        append_orders(2)
        cursor = streams.create_cursor("analytics", "orders")
        streams.consume(cursor.cursor_id)

        assert streams.peek(cursor.cursor_id) == []

    def test_new_appends_become_pending(self, streams, append_orders):
        """Test only records after the cursor are delivered."""
        append_orders(2)
        cursor = streams.create_cursor("analytics", "orders")
        streams.consume(cursor.cursor_id)
        append_orders(2, start_id=3)

        assert [r.sequence_number for r in streams.consume(cursor.cursor_id)] == [3, 4]

    def test_cursors_are_independent(self, streams, append_orders):
        """Test each consumer has its own offset."""
        append_orders(3)
        fast = streams.create_cursor("fast", "orders")
        slow = streams.create_cursor("slow", "orders")

        streams.consume(fast.cursor_id)

        assert streams.pending_count(fast.cursor_id) == 0
        assert streams.pending_count(slow.cursor_id) == 3

    def test_start_at_latest(self, streams, append_orders):
        """Test a cursor may start at the current high-water mark."""
        append_orders(3)
        cursor = streams.create_cursor("late", "orders", start_at_latest=True)

        assert streams.peek(cursor.cursor_id) == []
        assert cursor.last_consumed_sequence == 3

    def test_default_cursor_id(self, streams, orders_table):
        """Test the cursor ID defaults to consumer.table."""
        cursor = streams.create_cursor("billing", orders_table)

        assert cursor.cursor_id == "billing.orders"
        assert streams.get_cursor("billing.orders") is cursor

    def test_duplicate_cursor_id_rejected(self, streams, orders_table):
        """Test cursor IDs are unique."""
        streams.create_cursor("billing", orders_table)

        with pytest.raises(ValueError, match="already exists"):
            streams.create_cursor("billing", orders_table)

    def test_unknown_cursor(self, streams):
        """Test operations on an unknown cursor raise UnknownCursorError."""
        from cdc_engine.common.errors import UnknownCursorError

        with pytest.raises(UnknownCursorError):
            streams.peek("nobody.orders")

    def test_cursor_on_unknown_table(self, streams):
        """Test cursors can only be created on known tables."""
        from cdc_engine.common.errors import StorageError

        with pytest.raises(StorageError):
            streams.create_cursor("billing", "missing")


@pytest.mark.unit
class TestCursorLease:
    """Test leases: exclusive hold with deferred commit."""

    def test_released_lease_leaves_cursor_unchanged(self, streams, append_orders):
        """Test releasing a lease does not advance the cursor."""
        append_orders(3)
        cursor = streams.create_cursor("analytics", "orders")

        with streams.lease(cursor.cursor_id) as lease:
            assert len(lease) == 3

        assert cursor.last_consumed_sequence == 0
        assert len(streams.peek(cursor.cursor_id)) == 3

    def test_partial_commit(self, streams, append_orders):
        """Test committing up to a sequence number inside the lease."""
        append_orders(4)
        cursor = streams.create_cursor("analytics", "orders")

        lease = streams.lease(cursor.cursor_id)
        assert lease.commit(up_to=2) == 2

        assert [r.sequence_number for r in streams.peek(cursor.cursor_id)] == [3, 4]

    def test_commit_past_lease_rejected(self, streams, append_orders):
        """Test a lease cannot commit records it did not hold."""
        append_orders(2)
        cursor = streams.create_cursor("analytics", "orders")
        lease = streams.lease(cursor.cursor_id)
        append_orders(1, start_id=3)

        with pytest.raises(ValueError):
            lease.commit(up_to=3)
        assert cursor.last_consumed_sequence == 0
        assert lease.finished

    def test_concurrent_consume_rejected(self, streams, append_orders):
        """Test a held cursor cannot be consumed by a second caller."""
        from cdc_engine.common.errors import ConcurrentConsumeError

        append_orders(1)
        cursor = streams.create_cursor("analytics", "orders")
        lease = streams.lease(cursor.cursor_id)

        with pytest.raises(ConcurrentConsumeError):
            streams.consume(cursor.cursor_id)

        lease.release()
        assert len(streams.consume(cursor.cursor_id)) == 1

    def test_concurrent_consumers_never_share_records(self, streams, append_orders):
        """Test racing consumers deliver every record at most once."""
        from cdc_engine.common.errors import ConcurrentConsumeError

        append_orders(50)
        cursor = streams.create_cursor("analytics", "orders")
        delivered = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                try:
                    records = streams.consume(cursor.cursor_id)
                except ConcurrentConsumeError:
                    continue
                with lock:
                    delivered.extend(r.sequence_number for r in records)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(delivered) == list(range(1, 51))

    def test_finished_lease_cannot_commit_twice(self, streams, append_orders):
        """Test a lease commits at most once."""
        append_orders(1)
        cursor = streams.create_cursor("analytics", "orders")
        lease = streams.lease(cursor.cursor_id)
        lease.commit()

        with pytest.raises(RuntimeError):
            lease.commit()


@pytest.mark.unit
class TestCursorMaintenance:
    """Test fast-forward, lag and invalidation."""

    def test_fast_forward_to_high_water_mark(self, streams, append_orders):
        """Test skipping all pending records."""
        append_orders(5)
        cursor = streams.create_cursor("analytics", "orders")

        assert streams.fast_forward(cursor.cursor_id) == 5
        assert streams.peek(cursor.cursor_id) == []

    def test_fast_forward_never_moves_backwards(self, streams, append_orders):
        """Test last_consumed_sequence never decreases."""
        append_orders(5)
        cursor = streams.create_cursor("analytics", "orders")
        streams.consume(cursor.cursor_id)

        with pytest.raises(ValueError, match="backwards"):
            streams.fast_forward(cursor.cursor_id, 2)
        with pytest.raises(ValueError, match="high-water mark"):
            streams.fast_forward(cursor.cursor_id, 9)
        assert cursor.last_consumed_sequence == 5

    def test_lag_is_age_of_oldest_pending_record(self, streams, append_orders, clock):
        """Test lag measures the oldest unconsumed commit time."""
        append_orders(1)
        clock.advance(10)
        append_orders(1, start_id=2)
        clock.advance(5)
        cursor = streams.create_cursor("analytics", "orders")

        assert streams.lag(cursor.cursor_id) == 15
        streams.consume(cursor.cursor_id)
        assert streams.lag(cursor.cursor_id) == 0

    def test_dropping_table_invalidates_cursors(self, streams, change_log, append_orders):
        """Test cursors on a dropped table fail with CursorInvalidatedError."""
        from cdc_engine.common.errors import CursorInvalidatedError, StorageError

        append_orders(2)
        cursor = streams.create_cursor("analytics", "orders")

        change_log.drop_table("orders")

        assert cursor.invalidated
        with pytest.raises(CursorInvalidatedError):
            streams.peek(cursor.cursor_id)
        with pytest.raises(StorageError):
            streams.consume(cursor.cursor_id)

    def test_drop_cursor(self, streams, orders_table):
        """Test dropped cursors are forgotten."""
        cursor = streams.create_cursor("analytics", orders_table)

        streams.drop_cursor(cursor.cursor_id)

        assert not streams.has_cursor(cursor.cursor_id)
        assert streams.cursors() == []
