"""Synthetic ingress module - generates fake meter readings for demo runs"""
import logging
import random
import time
from datetime import datetime
from typing import Iterator

from sources.base import MeterReading

logger = logging.getLogger(__name__)


class SyntheticSource:
    """
    Synthetic meter source.

    Emits one pseudo-random reading per interval. Power is drawn uniformly
    from [0, max_watts) and accumulated into the first tariff register;
    the second register stays at zero.
    """

    def __init__(self, interval: float = 1.0, max_watts: int = 2000, rng=None):
        self.interval = interval
        self.max_watts = max_watts
        self.rng = rng or random.Random()
        self.total = 0

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def connect(self) -> None:
        logger.info(f"Synthetic: Generating a reading every {self.interval}s")

    def close(self) -> None:
        pass

    def stream(self) -> Iterator[MeterReading]:
        while True:
            time.sleep(self.interval)

            watts = self.rng.randrange(0, self.max_watts)
            self.total += watts

            yield MeterReading(
                timestamp=datetime.now(),
                instant_watts=watts,
                cumulative_totals=(self.total, 0)
            )
