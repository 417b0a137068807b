"""Unit tests for the retry policy and change batches."""

import threading

import pytest


@pytest.mark.unit
class TestRetryPolicy:
    """Test retry delay calculation."""

    def test_fixed_policy_uses_interval(self):
        """Test fixed retries wait one interval regardless of failures."""
        from cdc_engine.tasks.retry import RetryPolicy

        policy = RetryPolicy()

        assert [policy.next_delay(60, n) for n in range(4)] == [60, 60, 60, 60]

    def test_exponential_policy_grows_and_caps(self):
        """Test exponential delays grow by the multiplier up to the cap."""
        from cdc_engine.tasks.retry import RetryPolicy

        policy = RetryPolicy(strategy="exponential", multiplier=3.0, max_delay_seconds=100)

        assert policy.next_delay(10, 0) == 10
        assert policy.next_delay(10, 1) == 10
        assert policy.next_delay(10, 2) == 30
        assert policy.next_delay(10, 3) == 90
        assert policy.next_delay(10, 4) == 100

    def test_cap_never_below_interval(self):
        """Test a cap smaller than the interval does not shorten the schedule."""
        from cdc_engine.tasks.retry import RetryPolicy

        policy = RetryPolicy(strategy="exponential", max_delay_seconds=5)

        assert policy.next_delay(60, 3) == 60

    def test_invalid_policy(self):
        """Test unknown strategies and shrinking multipliers are rejected."""
        from cdc_engine.tasks.retry import RetryPolicy

        with pytest.raises(ValueError):
            RetryPolicy(strategy="linear")
        with pytest.raises(ValueError):
            RetryPolicy(strategy="exponential", multiplier=0.5)

    def test_from_config(self):
        """Test policies are built from retry configuration."""
        from cdc_engine.common.config import RetryConfig
        from cdc_engine.tasks.retry import RetryPolicy

        policy = RetryPolicy.from_config(
            RetryConfig(strategy="EXPONENTIAL", multiplier=1.5, max_delay_seconds=120)
        )

        assert policy.strategy == "exponential"
        assert policy.multiplier == 1.5
        assert policy.max_delay_seconds == 120


@pytest.mark.unit
class TestChangeBatch:
    """Test batches handed to task actions."""

    @pytest.fixture
    def lease(self, streams, append_orders):
        append_orders(5)
        cursor = streams.create_cursor("c", "orders")
        lease = streams.lease(cursor.cursor_id)
        yield lease
        lease.release()

    def test_iter_batches_splits_records(self, lease):
        """Test batches never exceed the batch size."""
        from cdc_engine.tasks.models import ChangeBatch

        batch = ChangeBatch("A", {lease.cursor_id: lease}, batch_size=2)

        sizes = [len(chunk) for chunk in batch.iter_batches()]

        assert sizes == [2, 2, 1]
        assert batch.processed_up_to() == {"c.orders": 5}
        assert batch.processed_count() == 5

    def test_batch_counts_processed_only_after_resuming(self, lease):
        """Test a batch is processed once the next one is requested."""
        from cdc_engine.tasks.models import ChangeBatch

        batch = ChangeBatch("A", {lease.cursor_id: lease}, batch_size=2)
        batches = batch.iter_batches()

        next(batches)
        assert batch.processed_count() == 0
        next(batches)
        assert batch.processed_up_to() == {"c.orders": 2}

    def test_cancellation_observed_between_batches(self, lease):
        """Test cancellation raises before the next batch."""
        from cdc_engine.common.errors import TaskCancelledError
        from cdc_engine.tasks.models import ChangeBatch

        cancel = threading.Event()
        batch = ChangeBatch("A", {lease.cursor_id: lease}, batch_size=2, cancel_event=cancel)
        batches = batch.iter_batches()

        next(batches)
        cancel.set()

        assert batch.cancel_requested
        with pytest.raises(TaskCancelledError):
            next(batches)
        assert batch.processed_count() == 2

    def test_batch_len_and_truthiness(self, lease):
        """Test length and truthiness reflect pending records."""
        from cdc_engine.tasks.models import ChangeBatch

        batch = ChangeBatch("A", {lease.cursor_id: lease})

        assert len(batch) == 5
        assert batch
        assert [r.sequence_number for r in batch] == [1, 2, 3, 4, 5]
