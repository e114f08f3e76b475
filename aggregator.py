"""Rolling aggregator - bounded window of recent readings and their running average"""
import logging
from collections import deque
from dataclasses import dataclass

from sinks.csv_log import CsvLog
from sources.base import MeterReading

logger = logging.getLogger(__name__)

# Number of entries kept in the window
WINDOW_SIZE = 20


@dataclass(frozen=True)
class WindowEntry:
    """Retained summary of one reading, as shown in the chart."""
    label: str
    instant_watts: int
    rolling_avg_watts: int


class RollingAggregator:
    """
    Keeps the most recent WINDOW_SIZE readings, newest first.

    The average of a new reading is taken over the reading itself plus the
    entries still in the window after the oldest one was evicted, with
    integer division. It is a count-based mean, not a time-weighted one.

    Owns the log: every reading is written before it enters the window.
    Only the display loop thread may call on_reading().
    """

    def __init__(self, log: CsvLog):
        self.log = log
        self._window: deque[WindowEntry] = deque()

    @property
    def window(self) -> tuple[WindowEntry, ...]:
        return tuple(self._window)

    def __len__(self) -> int:
        return len(self._window)

    def on_reading(self, reading: MeterReading) -> WindowEntry:
        if len(self._window) == WINDOW_SIZE:
            self._window.pop()

        avg_len = min(len(self._window), WINDOW_SIZE)
        total = reading.instant_watts
        for i in range(avg_len):
            total += self._window[i].instant_watts
        avg = total // (avg_len + 1)

        self.log.append(
            reading.timestamp,
            reading.cumulative_totals,
            reading.instant_watts,
            avg
        )

        entry = WindowEntry(
            label=reading.timestamp.strftime("%H%M%S"),
            instant_watts=reading.instant_watts,
            rolling_avg_watts=avg
        )
        self._window.appendleft(entry)

        logger.debug(f"[{entry.label}] Power: {entry.instant_watts} W, avg: {avg} W")
        return entry
