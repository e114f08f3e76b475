"""Base definitions for meter sources - data contracts and protocols"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Protocol


@dataclass(frozen=True)
class MeterReading:
    """
    Uniform data structure for meter measurements from any source.

    Attributes:
        timestamp: Time the reading refers to (meter clock, or capture time for synthetic data).
        instant_watts: Instantaneous power draw in Watts.
        cumulative_totals: The two tariff registers (e.g. normal / low tariff).
            Zero-filled when the source has no such counters.
    """
    timestamp: datetime
    instant_watts: int
    cumulative_totals: tuple[int, int] = (0, 0)


class MeterSource(Protocol):
    """
    Protocol for ingress sources (P1 serial, synthetic generator).

    Uses Protocol for duck typing - implementations don't need to inherit,
    just implement the methods with matching signatures.
    """

    def connect(self) -> None:
        """
        Prepare the source for streaming.

        May open a serial port or do nothing at all.
        Misconfiguration is a hard failure.
        """
        ...

    def stream(self) -> Iterator[MeterReading]:
        """
        Yield meter readings in order as they are measured.

        Blocks internally (sleeping, or waiting on the byte stream).
        Runs indefinitely; an exception ends the stream for good.
        """
        ...

    def close(self) -> None:
        """Release any resources held by the source."""
        ...
