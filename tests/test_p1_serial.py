from datetime import datetime

import pytest
import serial

from sources.base import MeterReading
from sources.dsmr import TelegramError, TelegramState, TariffRegister, calculate_crc16
from sources.p1_serial import P1SerialSource


# Sample DSMR v5 telegram (simplified, CRC appended below)
SAMPLE_BODY = [
    "/ISk5\\2MT382-1000",
    "",
    "1-3:0.2.8(50)",
    "0-0:1.0.0(231226180000W)",
    "1-0:1.8.1(001234.567*kWh)",  # Tariff 1: 1234 kWh
    "1-0:1.8.2(000987.654*kWh)",  # Tariff 2: 987 kWh
    "1-0:1.7.0(00.424*kW)",       # Consumption: 424W
    "1-0:2.7.0(00.000*kW)",
]


def with_crc(body):
    data = ('\r\n'.join(body) + '\r\n!').encode('ascii')
    return body + [f"!{calculate_crc16(data):04X}"]


def serial_lines(*telegrams):
    """Raw lines as returned by readline(), followed by a read timeout"""
    lines = [line.encode('ascii') + b"\r\n" for telegram in telegrams for line in telegram]
    return lines + [b""]


def test_p1_connect_success(mocker):
    """Test successful P1 serial port bootstrap with fixed settings"""
    source = P1SerialSource(device="/dev/ttyUSB0")

    mock_serial = mocker.Mock()
    mock_serial.is_open = True
    mock_cls = mocker.patch('sources.p1_serial.serial.Serial', return_value=mock_serial)

    source.connect()

    assert source.ser is mock_serial
    kwargs = mock_cls.call_args.kwargs
    assert kwargs["port"] == "/dev/ttyUSB0"
    assert kwargs["baudrate"] == 115200
    assert kwargs["bytesize"] == serial.EIGHTBITS
    assert kwargs["parity"] == serial.PARITY_NONE
    assert kwargs["stopbits"] == serial.STOPBITS_ONE
    assert kwargs["xonxoff"] is False
    assert kwargs["rtscts"] is False
    assert kwargs["timeout"] == 3.0


def test_p1_connect_no_device_exits(mocker):
    """Test that connect exits when no device is given"""
    mock_exit = mocker.patch('sources.p1_serial.sys.exit')

    source = P1SerialSource(device="")
    source.connect()

    mock_exit.assert_called_once_with(1)


def test_p1_connect_serial_error_exits(mocker):
    """Test that connect exits on serial port error"""
    source = P1SerialSource(device="/dev/ttyUSB0")

    mocker.patch('sources.p1_serial.serial.Serial', side_effect=serial.SerialException("Port not found"))

    with pytest.raises(SystemExit) as exc_info:
        source.connect()

    assert exc_info.value.code == 1


def test_p1_stream_yields_meter_readings(mocker):
    """Test that stream() reads telegrams and yields MeterReading objects"""
    source = P1SerialSource(device="/dev/ttyUSB0")

    second_body = SAMPLE_BODY[:3] + [
        "0-0:1.0.0(231226180001W)",
        "1-0:1.8.1(001234.999*kWh)",
        "1-0:1.8.2(000987.654*kWh)",
        "1-0:1.7.0(01.5009*kW)",
    ]

    mock_serial = mocker.Mock()
    mock_serial.is_open = True
    mock_serial.readline.side_effect = serial_lines(with_crc(SAMPLE_BODY), with_crc(second_body))
    source.ser = mock_serial

    stream = source.stream()
    first = next(stream)
    second = next(stream)

    assert isinstance(first, MeterReading)
    assert first.instant_watts == 424
    assert first.cumulative_totals == (1234, 987)
    assert first.timestamp.strftime("%Y-%m-%d %H:%M:%S") == "2023-12-26 18:00:00"

    # 1.5009 kW is truncated, not rounded
    assert second.instant_watts == 1500
    assert second.cumulative_totals == (1234, 987)

    # The port then times out: fatal, not retried
    with pytest.raises(TelegramError):
        next(stream)


def test_p1_stream_bad_crc_is_fatal(mocker):
    """Test a corrupted telegram stops the stream instead of being skipped"""
    source = P1SerialSource(device="/dev/ttyUSB0")

    mock_serial = mocker.Mock()
    mock_serial.is_open = True
    mock_serial.readline.side_effect = serial_lines(SAMPLE_BODY + ["!0000"], with_crc(SAMPLE_BODY))
    source.ser = mock_serial

    with pytest.raises(TelegramError):
        next(source.stream())


def test_p1_stream_before_connect_fails():
    source = P1SerialSource(device="/dev/ttyUSB0")

    with pytest.raises(RuntimeError):
        next(source.stream())


def test_p1_to_reading_requires_all_fields():
    """Test missing timestamp, power or registers are decode errors"""
    complete = dict(
        datetime=None,
        power_delivered=0.5,
        meter_readings=[TariffRegister(1.0), TariffRegister(2.0)],
    )

    with pytest.raises(TelegramError, match="timestamp"):
        P1SerialSource._to_reading(TelegramState(**complete))

    state = TelegramState(**complete)
    state.datetime = datetime(2023, 12, 26)
    state.power_delivered = None
    with pytest.raises(TelegramError, match="power"):
        P1SerialSource._to_reading(state)

    state.power_delivered = 0.5
    state.meter_readings[1].to = None
    with pytest.raises(TelegramError, match="tariff 2"):
        P1SerialSource._to_reading(state)


def test_p1_context_manager(mocker):
    """Test that P1SerialSource works as context manager"""
    mock_serial = mocker.Mock()
    mock_serial.is_open = True
    mocker.patch('sources.p1_serial.serial.Serial', return_value=mock_serial)

    with P1SerialSource(device="/dev/ttyUSB0") as source:
        assert source.ser is not None

    mock_serial.close.assert_called_once()
