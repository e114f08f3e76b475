"""DSMR telegram decoding - framing, CRC16 check and OBIS field extraction"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)

# OBIS codes used by the monitor
OBIS_DATETIME = "0-0:1.0.0"          # Meter clock: YYMMDDhhmmssX
OBIS_POWER_DELIVERED = "1-0:1.7.0"   # Current consumption (kW)
OBIS_TARIFF_1_TO = "1-0:1.8.1"       # Delivered to client, tariff 1 (kWh)
OBIS_TARIFF_2_TO = "1-0:1.8.2"       # Delivered to client, tariff 2 (kWh)

# "1-0:1.7.0(00.424*kW)", "1-0:1.8.1(001234.567*kWh)", "0-0:1.0.0(231226180000W)"
OBIS_PATTERN = re.compile(r'^([\d\-:\.]+)\(([^)*]*)(?:\*[A-Za-z0-9]+)?\)')


class TelegramError(ValueError):
    """Raised when a telegram cannot be framed, verified or decoded."""


@dataclass
class TariffRegister:
    """One tariff register pair. Only the "to" (delivered) side is read."""
    to: Optional[float] = None


@dataclass
class TelegramState:
    """
    Decoded content of one telegram.

    Every field is optional; the consumer decides which ones it requires.
    """
    datetime: Optional[datetime] = None
    power_delivered: Optional[float] = None
    meter_readings: list[TariffRegister] = field(
        default_factory=lambda: [TariffRegister(), TariffRegister()]
    )


def calculate_crc16(data: bytes) -> int:
    """
    Calculate CRC16 checksum for DSMR telegram.
    Uses polynomial 0xA001 (reversed 0x8005).
    """
    crc = 0x0000
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ 0xA001
            else:
                crc >>= 1
    return crc


def verify_crc(telegram: list[str]) -> None:
    """
    Check the CRC16 of a framed telegram.

    The last line is '!xxxx' where xxxx is 4 hex digits.
    CRC is calculated over all bytes from '/' up to and including '!'.
    """
    if not telegram or not telegram[-1].startswith('!'):
        raise TelegramError("Telegram has no CRC line")

    crc_line = telegram[-1]
    if len(crc_line) < 5:
        raise TelegramError(f"Malformed CRC line: {crc_line!r}")
    try:
        telegram_crc = int(crc_line[1:5], 16)
    except ValueError:
        raise TelegramError(f"Malformed CRC line: {crc_line!r}") from None

    telegram_str = '\r\n'.join(telegram[:-1]) + '\r\n!'
    try:
        data = telegram_str.encode('ascii')
    except UnicodeEncodeError:
        # Line noise: the meter only sends ASCII
        raise TelegramError("Telegram contains non-ASCII bytes") from None
    calculated_crc = calculate_crc16(data)

    if calculated_crc != telegram_crc:
        raise TelegramError(
            f"CRC mismatch: telegram says {telegram_crc:04X}, calculated {calculated_crc:04X}"
        )


def read_telegrams(readline: Callable[[], bytes]) -> Iterator[list[str]]:
    """
    Frame telegrams from a line-oriented byte stream.

    A telegram starts with '/' and ends with '!xxxx' (CRC). Bytes before
    the first '/' are ignored. An empty read means the port timed out,
    which ends the stream with a TelegramError.
    """
    telegram: list[str] = []
    in_telegram = False

    while True:
        raw = readline()
        if not raw:
            raise TelegramError("Read timeout: no data from meter")

        line = raw.decode('ascii', errors='replace').rstrip('\r\n')

        if line.startswith('/'):
            in_telegram = True
            telegram = [line]
            continue

        if not in_telegram:
            continue

        telegram.append(line)

        if line.startswith('!'):
            verify_crc(telegram)
            yield telegram
            telegram = []
            in_telegram = False


def _parse_float(obis_code: str, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise TelegramError(f"Bad value for {obis_code}: {value!r}") from None


def _parse_datetime(value: str) -> datetime:
    # YYMMDDhhmmss followed by W (winter) or S (summer)
    digits = value[:12]
    if len(digits) != 12 or not digits.isdigit():
        raise TelegramError(f"Bad timestamp: {value!r}")

    year, month, day, hour, minute, second = (
        int(digits[i:i + 2]) for i in range(0, 12, 2)
    )
    try:
        return datetime(2000 + year, month, day, hour, minute, second)
    except ValueError as e:
        raise TelegramError(f"Bad timestamp {value!r}: {e}") from None


def decode_telegram(telegram: list[str]) -> TelegramState:
    """
    Decode the fields the monitor needs from a framed telegram.

    Extracts:
    - 0-0:1.0.0: Meter date/time
    - 1-0:1.7.0: Current consumption (kW)
    - 1-0:1.8.1 / 1-0:1.8.2: Delivered energy per tariff (kWh)
    """
    state = TelegramState()

    for line in telegram:
        match = OBIS_PATTERN.match(line)
        if not match:
            continue

        obis_code, value = match.group(1), match.group(2)

        if obis_code == OBIS_DATETIME:
            state.datetime = _parse_datetime(value)
        elif obis_code == OBIS_POWER_DELIVERED:
            state.power_delivered = _parse_float(obis_code, value)
        elif obis_code == OBIS_TARIFF_1_TO:
            state.meter_readings[0].to = _parse_float(obis_code, value)
        elif obis_code == OBIS_TARIFF_2_TO:
            state.meter_readings[1].to = _parse_float(obis_code, value)

    logger.debug(f"DSMR: Decoded telegram ({len(telegram)} lines): {state}")
    return state
