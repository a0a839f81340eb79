"""Tests for the pyserial transport, with the port mocked out."""

from unittest.mock import MagicMock, PropertyMock, patch

import pytest
import serial

from esplink.errors import TransportError
from esplink.protocol.serial_transport import SerialTransport, open_serial


@pytest.fixture
def mock_serial():
    with patch("esplink.protocol.serial_transport.serial.Serial") as cls:
        port = MagicMock()
        port.is_open = True
        port.timeout = 3.0
        port.read.return_value = b""
        port.write.side_effect = lambda data: len(data)
        cls.return_value = port
        yield cls, port


class TestSerialTransport:

    def test_open_configures_port(self, mock_serial):
        cls, port = mock_serial
        transport = SerialTransport("/dev/ttyUSB0", baudrate=921600, reset=False)
        transport.open()
        kwargs = cls.call_args.kwargs
        assert kwargs["port"] == "/dev/ttyUSB0"
        assert kwargs["baudrate"] == 921600
        port.reset_input_buffer.assert_called_once()

    def test_reset_pulses_dtr_rts(self, mock_serial):
        _, port = mock_serial
        with patch("esplink.protocol.serial_transport.time.sleep"):
            SerialTransport("/dev/ttyUSB0").open()
        assert port.dtr is False
        assert port.rts is False

    def test_open_failure(self, mock_serial):
        cls, _ = mock_serial
        cls.side_effect = serial.SerialException("no such port")
        with pytest.raises(TransportError) as exc:
            SerialTransport("/dev/missing", reset=False).open()
        assert "/dev/missing" in str(exc.value)

    def test_write_and_read(self, mock_serial):
        _, port = mock_serial
        port.read.return_value = b"\xc0"
        with SerialTransport("/dev/ttyUSB0", reset=False) as transport:
            transport.write(b"\xc0\x00\xc0")
            assert transport.read(1, timeout=0.1) == b"\xc0"
        port.write.assert_called_with(b"\xc0\x00\xc0")
        assert port.timeout == 0.1
        port.close.assert_called_once()

    def test_short_write(self, mock_serial):
        _, port = mock_serial
        port.write.side_effect = lambda data: len(data) - 1
        transport = SerialTransport("/dev/ttyUSB0", reset=False)
        transport.open()
        with pytest.raises(TransportError):
            transport.write(b"\x01\x02")

    def test_read_error_wrapped(self, mock_serial):
        _, port = mock_serial
        transport = SerialTransport("/dev/ttyUSB0", reset=False)
        transport.open()
        port.read.side_effect = serial.SerialException("device reports readiness to read but returned no data")
        with pytest.raises(TransportError):
            transport.read(1)

    def test_not_open(self):
        with pytest.raises(TransportError):
            SerialTransport("/dev/ttyUSB0").write(b"\x00")

    def test_reset_input_restores_timeout(self, mock_serial):
        _, port = mock_serial
        transport = SerialTransport("/dev/ttyUSB0", reset=False)
        transport.open()
        port.read.return_value = b"junk"
        assert transport.reset_input() == b"junk"
        assert port.timeout == 3.0

    def test_reset_failure_closes_port(self, mock_serial):
        _, port = mock_serial
        type(port).dtr = PropertyMock(side_effect=serial.SerialException("Could not set DTR"))
        transport = SerialTransport("/dev/ttyUSB0")
        with patch("esplink.protocol.serial_transport.time.sleep"):
            with pytest.raises(TransportError) as exc:
                transport.open()
        assert "Could not set DTR" in str(exc.value)
        port.close.assert_called_once()
        assert transport.ser is None

    def test_flush_failure_closes_port(self, mock_serial):
        _, port = mock_serial
        port.reset_input_buffer.side_effect = serial.SerialException("I/O error")
        transport = SerialTransport("/dev/ttyUSB0", reset=False)
        with pytest.raises(TransportError):
            transport.open()
        port.close.assert_called_once()
        assert port.timeout == 3.0


def test_open_serial_returns_open_transport(mock_serial):
    cls, _ = mock_serial
    transport = open_serial("COM3", baudrate=460800, reset=False)
    assert transport.ser is not None
    assert cls.call_args.kwargs["baudrate"] == 460800
