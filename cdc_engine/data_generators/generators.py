"""Data generators for mock telecom CDC data using Faker."""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
import random

from faker import Faker

from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


class DataGenerator(ABC):
    """Base class for data generators."""

    def __init__(self, locale: str = "en_US", seed: Optional[int] = None) -> None:
        """
        Initialize data generator.

        Args:
            locale: Faker locale
            seed: Random seed for reproducibility
        """
        self.faker = Faker(locale)
        self.random = random.Random(seed)
        if seed is not None:
            self.faker.seed_instance(seed)
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:06d}"

    @abstractmethod
    def generate(self, count: int = 1) -> List[Dict[str, Any]]:
        """
        Generate mock data records.

        Args:
            count: Number of records to generate

        Returns:
            List of generated records
        """
        pass


class SubscriberGenerator(DataGenerator):
    """Generator for subscriber data."""

    PLANS = {
        "basic": (Decimal("29.99"), 5),
        "premium": (Decimal("59.99"), 50),
        "unlimited": (Decimal("89.99"), 0),
    }
    STATUSES = ["active", "active", "active", "suspended", "cancelled"]

    def generate(self, count: int = 1) -> List[Dict[str, Any]]:
        """Generate subscriber records."""
        subscribers = []
        for _ in range(count):
            plan_type = self.random.choice(list(self.PLANS))
            monthly_fee, data_limit_gb = self.PLANS[plan_type]
            subscriber = {
                "subscriber_id": self._next_id("SUB"),
                "phone_number": self.faker.msisdn(),
                "plan_type": plan_type,
                "activation_date": self.faker.date_between(start_date="-3y", end_date="today"),
                "status": self.random.choice(self.STATUSES),
                "monthly_fee": monthly_fee,
                "data_limit_gb": data_limit_gb,
                "created_at": datetime.now(),
            }
            subscribers.append(subscriber)

        logger.info(f"Generated {count} subscriber records")
        return subscribers


class CallDetailRecordGenerator(DataGenerator):
    """Generator for call detail records (CDRs)."""

    CALL_TYPES = ["voice", "sms", "data"]
    NETWORK_TYPES = ["4G", "5G"]
    RATES_PER_MINUTE = {"voice": Decimal("0.12"), "sms": Decimal("0.07"), "data": Decimal("0.27")}

    def __init__(
        self,
        subscribers: List[Dict[str, Any]],
        invalid_rate: float = 0.0,
        locale: str = "en_US",
        seed: Optional[int] = None,
    ) -> None:
        """
        Initialize CDR generator.

        Args:
            subscribers: Subscriber records the calls belong to
            invalid_rate: Share of records generated with a zero duration
            locale: Faker locale
            seed: Random seed
        """
        super().__init__(locale, seed)
        self.subscribers = subscribers
        self.invalid_rate = invalid_rate

    def generate(self, count: int = 1) -> List[Dict[str, Any]]:
        """Generate CDR records."""
        if not self.subscribers:
            raise ValueError("No subscribers provided")

        records = []
        for _ in range(count):
            subscriber = self.random.choice(self.subscribers)
            call_type = self.random.choice(self.CALL_TYPES)
            start = self.faker.date_time_between(start_date="-1d", end_date="now")
            if self.random.random() < self.invalid_rate:
                duration = 0
            else:
                duration = self.random.randint(5, 1800)
            cost = (self.RATES_PER_MINUTE[call_type] * Decimal(duration) / Decimal(60)).quantize(
                Decimal("0.0001")
            )
            record = {
                "call_id": self._next_id("CDR"),
                "subscriber_id": subscriber["subscriber_id"],
                "phone_number": subscriber["phone_number"],
                "call_start_time": start,
                "call_end_time": start + timedelta(seconds=duration),
                "call_duration_seconds": duration,
                "call_type": call_type,
                "network_type": self.random.choice(self.NETWORK_TYPES),
                "location_lat": Decimal(str(self.faker.latitude())).quantize(Decimal("0.000001")),
                "location_lon": Decimal(str(self.faker.longitude())).quantize(Decimal("0.000001")),
                "cost_usd": cost,
                "created_at": datetime.now(),
            }
            records.append(record)

        logger.info(f"Generated {count} CDR records")
        return records


class NetworkPerformanceGenerator(DataGenerator):
    """Generator for cell tower performance samples."""

    REGIONS = ["North", "South", "East", "West", "Central"]

    def __init__(
        self,
        tower_count: int = 10,
        degraded_rate: float = 0.2,
        locale: str = "en_US",
        seed: Optional[int] = None,
    ) -> None:
        """
        Initialize network performance generator.

        Args:
            tower_count: Number of distinct cell towers
            degraded_rate: Share of samples drawn from degraded ranges
            locale: Faker locale
            seed: Random seed
        """
        super().__init__(locale, seed)
        self.tower_ids = [f"TOWER{i:03d}" for i in range(1, tower_count + 1)]
        self.degraded_rate = degraded_rate

    def generate(self, count: int = 1) -> List[Dict[str, Any]]:
        """Generate network performance records."""
        samples = []
        for _ in range(count):
            if self.random.random() < self.degraded_rate:
                signal = self.random.randint(-105, -75)
                bandwidth = self.random.uniform(10.0, 80.0)
                latency = self.random.randint(60, 250)
            else:
                signal = self.random.randint(-79, -50)
                bandwidth = self.random.uniform(50.0, 500.0)
                latency = self.random.randint(10, 100)
            sample = {
                "record_id": self._next_id("NET"),
                "cell_tower_id": self.random.choice(self.tower_ids),
                "timestamp": datetime.now(),
                "signal_strength_dbm": signal,
                "bandwidth_mbps": Decimal(str(round(bandwidth, 2))),
                "latency_ms": latency,
                "packet_loss_percent": Decimal(str(round(self.random.uniform(0.0, 5.0), 2))),
                "region": self.random.choice(self.REGIONS),
                "created_at": datetime.now(),
            }
            samples.append(sample)

        logger.info(f"Generated {count} network performance records")
        return samples
