"""CSV log egress module - append-only semicolon-delimited reading log"""
import csv
import logging
from datetime import datetime

logger = logging.getLogger(__name__)

HEADER = ["TIME", "NORMAAL [kW]", "DAL [kW]", "POWER [W]", "AVG [W]"]


class CsvLog:
    """
    Append-only log of meter readings.

    The file is opened in append mode (created if absent) and a header
    line is written every time it is opened, so a file reused across runs
    holds one header per run. Every record ends with a trailing ';'.

    Each record is flushed as soon as it is written; write errors are not
    caught here.
    """

    def __init__(self, path: str = "log.csv"):
        self.path = path
        self._file = None
        self._writer = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def open(self) -> None:
        self._file = open(self.path, "a", newline="", encoding="utf-8")
        self._writer = csv.writer(self._file, delimiter=";", lineterminator="\n")
        self._write_row(HEADER)
        logger.info(f"CSV log: Appending to {self.path}")

    def close(self) -> None:
        if self._file is not None and not self._file.closed:
            self._file.close()
            logger.info("CSV log: Closed")

    def append(
        self,
        timestamp: datetime,
        totals: tuple[int, int],
        instant_watts: int,
        avg_watts: int
    ) -> None:
        self._write_row([
            timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            totals[0],
            totals[1],
            instant_watts,
            avg_watts,
        ])

    def _write_row(self, fields) -> None:
        if self._writer is None:
            raise RuntimeError("CSV log is not open")
        # Trailing empty field gives the closing ';'
        self._writer.writerow([*fields, ""])
        self._file.flush()
