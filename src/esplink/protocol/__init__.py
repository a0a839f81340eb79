"""Bootloader protocol layer - SLIP framing, command codec, transport, retries."""

from .slip import slip_encode, slip_decode, read_frame
from .commands import (
    Opcode,
    Command,
    Response,
    checksum,
    parse_response,
    encode_response,
    describe_status,
    CHECKSUM_SEED,
    CHIP_DETECT_MAGIC_REG_ADDR,
)
from .transceiver import Transceiver, RetryPolicy
from .serial_transport import SerialTransport, open_serial

__all__ = [
    # Framing
    "slip_encode",
    "slip_decode",
    "read_frame",
    # Codec
    "Opcode",
    "Command",
    "Response",
    "checksum",
    "parse_response",
    "encode_response",
    "describe_status",
    "CHECKSUM_SEED",
    "CHIP_DETECT_MAGIC_REG_ADDR",
    # Transceiver
    "Transceiver",
    "RetryPolicy",
    # Transport
    "SerialTransport",
    "open_serial",
]
