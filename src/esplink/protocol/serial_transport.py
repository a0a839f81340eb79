"""
Serial Transport Layer

Byte-stream transport over a pyserial port. This is the only object in the
package that touches the serial device; the framing layer and transceiver
drive it through write(), read() and reset_input().

This module provides:
- Serial port initialization and configuration
- Blocking write and read-with-timeout
- Input buffer flushing between retries
- Classic DTR/RTS reset into the ROM bootloader
"""

import time
import logging
from typing import Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from esplink.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_BAUD = 115200
DEFAULT_TIMEOUT = 3.0


class SerialTransport:
    """
    Byte-stream transport for an ESP ROM bootloader.

    Example:
        transport = SerialTransport(port="/dev/ttyUSB0")
        transport.open()
        transport.write(frame)
        data = transport.read(1, timeout=0.1)
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUD,
        timeout: float = DEFAULT_TIMEOUT,
        reset: bool = True,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 115200)
            timeout: Default read/write timeout in seconds
            reset: Pulse DTR/RTS on open to enter the ROM bootloader
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.reset = reset
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open serial port and configure for bootloader communication.

        The port is closed again if the bootloader reset or the initial
        flush fails.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}")

        logger.debug(f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)")

        try:
            if self.reset:
                self.enter_bootloader()
            self.reset_input()
        except TransportError:
            self.ser.close()
            self.ser = None
            raise

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> "serial.Serial":
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
        return self.ser

    def enter_bootloader(self) -> None:
        """
        Classic auto-reset: DTR drives GPIO0 (boot mode), RTS drives EN.

        Holds the chip in reset with GPIO0 low, then releases EN so the ROM
        samples the strapping pins and starts the serial bootloader.
        """
        ser = self._require_open()
        try:
            ser.dtr = False
            ser.rts = True
            time.sleep(0.1)
            ser.dtr = True
            ser.rts = False
            time.sleep(0.05)
            ser.dtr = False
        except serial.SerialException as e:
            raise TransportError(f"Cannot reset {self.port} into bootloader: {e}")
        logger.debug("Pulsed DTR/RTS to enter bootloader")

    def write(self, data: bytes) -> None:
        """
        Send raw bytes.

        Raises:
            TransportError: If write fails
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
            if written != len(data):
                raise TransportError(
                    f"Incomplete write: sent {written}/{len(data)} bytes"
                )
            ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")

    def read(self, size: int, timeout: Optional[float] = None) -> bytes:
        """
        Read up to size bytes.

        Args:
            size: Maximum bytes to read
            timeout: Timeout override in seconds

        Returns:
            Bytes received; empty on timeout

        Raises:
            TransportError: If read fails
        """
        ser = self._require_open()
        try:
            if timeout is not None and ser.timeout != timeout:
                ser.timeout = timeout
            return ser.read(size)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")

    def reset_input(self) -> bytes:
        """
        Discard anything pending in the receive buffer.

        Returns:
            Bytes that were drained (for logging)
        """
        ser = self._require_open()
        old_timeout = ser.timeout
        try:
            ser.timeout = 0.005
            junk = ser.read(4096)
            ser.reset_input_buffer()
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        finally:
            ser.timeout = old_timeout
        if junk:
            logger.debug(f"Drained {len(junk)} bytes of junk from buffer")
        return junk


def open_serial(
    port: str,
    baudrate: int = DEFAULT_BAUD,
    timeout: float = DEFAULT_TIMEOUT,
    reset: bool = True,
) -> SerialTransport:
    """
    Open a bootloader transport connection.

    Returns:
        SerialTransport instance (already open)
    """
    transport = SerialTransport(port, baudrate, timeout, reset=reset)
    transport.open()
    return transport
