"""
Pytest configuration and shared fixtures for CDC engine tests.
"""

from datetime import datetime, timedelta
from typing import List

import pytest
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class FakeClock:
    """Manually advanced wall clock for deterministic timestamps."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 10, 0, 0)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """Deterministic clock starting at 2024-01-15 10:00."""
    return FakeClock()


@pytest.fixture
def change_log(clock):
    """Empty change log using the fake clock."""
    from cdc_engine.changelog.log import ChangeLog

    return ChangeLog(clock=clock)


@pytest.fixture
def streams(change_log, clock):
    """Stream manager over the change log."""
    from cdc_engine.streams.manager import StreamManager

    return StreamManager(change_log, clock=clock)


@pytest.fixture
def scheduler_config():
    """Sequential scheduler configuration with a 60s default interval."""
    from cdc_engine.common.config import SchedulerConfig

    return SchedulerConfig(
        default_interval_seconds=60.0,
        concurrent_execution=False,
        max_workers=4,
        action_timeout_seconds=None,
    )


@pytest.fixture
def scheduler(streams, scheduler_config, clock):
    """Task scheduler with fixed retry policy."""
    from cdc_engine.common.config import StreamConfig
    from cdc_engine.tasks.retry import RetryPolicy
    from cdc_engine.tasks.scheduler import TaskScheduler

    scheduler = TaskScheduler(
        streams,
        config=scheduler_config,
        retry_policy=RetryPolicy(),
        stream_config=StreamConfig(batch_size=2),
        clock=clock,
    )
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def orders_table(change_log):
    """Table ``orders`` keyed by ``order_id``."""
    change_log.create_table("orders", primary_key="order_id")
    return "orders"


@pytest.fixture
def append_orders(change_log, orders_table):
    """Append ``n`` insert records to ``orders`` and return their sequence numbers."""

    def _append(n: int, start_id: int = 1) -> List[int]:
        return [
            change_log.append(
                orders_table,
                "insert",
                {"order_id": i, "status": "pending", "amount": 10 * i},
            )
            for i in range(start_id, start_id + n)
        ]

    return _append


class RecordingAction:
    """Task action that records every batch it receives."""

    def __init__(self, fail_times: int = 0, error: Exception = None) -> None:
        self.batches = []
        self.fail_times = fail_times
        self.error = error or RuntimeError("sink unavailable")

    def __call__(self, batch) -> None:
        self.batches.append(list(batch))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error

    @property
    def calls(self) -> int:
        return len(self.batches)


@pytest.fixture
def recording_action():
    """Factory for recording task actions."""
    return RecordingAction
