"""P1 Serial ingress module - reads DSMR telegrams via USB serial port"""
import logging
import sys
from typing import Iterator

import serial

from sources.base import MeterReading
from sources.dsmr import TelegramError, TelegramState, decode_telegram, read_telegrams

logger = logging.getLogger(__name__)


class P1SerialSource:
    """
    P1 Serial meter source.

    Reads DSMR telegrams directly from the smart meter's P1 port
    via USB serial connection. Every telegram becomes one MeterReading.

    Port settings are fixed for DSMR v5: 115200 baud, 8N1, no flow control.
    Any decode error or read timeout ends the stream; nothing is retried.
    """

    def __init__(
        self,
        device: str,
        baudrate: int = 115200,
        timeout: float = 3.0
    ):
        """
        Initialize P1 Serial source.

        Args:
            device: Serial device path (e.g. /dev/ttyUSB0)
            baudrate: Serial baudrate (default: 115200)
            timeout: Read timeout in seconds (default: 3.0)
        """
        self.device = device
        self.baudrate = baudrate
        self.timeout = timeout
        self.ser = None

    def __enter__(self):
        """Context manager entry: connect to serial port"""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: cleanup resources"""
        self.close()

    def connect(self) -> None:
        """
        Serial Bootstrap.
        Opens and configures the serial port. Failure is fatal at startup.
        """
        if not self.device:
            logger.error("P1 Serial: No serial device given")
            sys.exit(1)
            return  # For test mocking

        try:
            logger.info(f"P1 Serial: Opening {self.device} at {self.baudrate} baud")

            self.ser = serial.Serial(
                port=self.device,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
                timeout=self.timeout
            )
        except (serial.SerialException, ValueError) as e:
            logger.error(f"P1 Serial: Cannot open {self.device}: {e}")
            print(f"Cannot open {self.device}: {e}", file=sys.stderr)
            sys.exit(1)
            return

        logger.info(f"P1 Serial: Port {self.device} open")

    def close(self) -> None:
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.info("P1 Serial: Port closed")

    def stream(self) -> Iterator[MeterReading]:
        """
        Serial Reading Stream.

        Continuously reads DSMR telegrams from the serial port and
        yields one MeterReading per telegram, in order.

        Raises TelegramError on a malformed telegram, missing field or
        read timeout.
        """
        if self.ser is None or not self.ser.is_open:
            raise RuntimeError("P1 Serial: stream() called before connect()")

        logger.info(f"P1 Serial: Streaming telegrams from {self.device}")

        for telegram in read_telegrams(self.ser.readline):
            state = decode_telegram(telegram)
            yield self._to_reading(state)

    @staticmethod
    def _to_reading(state: TelegramState) -> MeterReading:
        """
        Convert a decoded telegram into a MeterReading.

        Meter clock, delivered power and both tariff registers are required.
        Power is scaled from kW to W and truncated; totals are truncated.
        """
        if state.datetime is None:
            raise TelegramError("Telegram has no timestamp (0-0:1.0.0)")
        if state.power_delivered is None:
            raise TelegramError("Telegram has no delivered power (1-0:1.7.0)")

        totals = []
        for index, register in enumerate(state.meter_readings[:2]):
            if register.to is None:
                raise TelegramError(f"Telegram has no tariff {index + 1} register")
            totals.append(int(register.to))

        return MeterReading(
            timestamp=state.datetime,
            instant_watts=int(state.power_delivered * 1000),
            cumulative_totals=(totals[0], totals[1])
        )
