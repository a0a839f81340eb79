"""
ESP ROM bootloader command codec.

Request packet (before SLIP framing):
    [ 0x00 | opcode | payload_len (u16 LE) | checksum (u32 LE) | payload ]

Response packet:
    [ 0x01 | opcode | body_len (u16 LE) | value (u32 LE) | body ]

The body ends with the status trailer (2 bytes on the ESP8266 ROM, 4 bytes
on ESP32-family ROMs). The first trailer byte is the status (0 = success),
the second is the error reason.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from esplink.errors import MalformedResponseError, ResponseMismatchError

HEADER_FMT = "<BBHI"
HEADER_LEN = struct.calcsize(HEADER_FMT)

DIRECTION_REQUEST = 0x00
DIRECTION_RESPONSE = 0x01

# Initial state for the block checksum
CHECKSUM_SEED = 0xEF

# The chip-ID register lives at the same ROM address on every chip
CHIP_DETECT_MAGIC_REG_ADDR = 0x40001000

SYNC_PAYLOAD = b"\x07\x07\x12\x20" + 32 * b"\x55"

# Minimum trailer size; ESP8266 ROM and flasher stubs send exactly this
MIN_STATUS_BYTES = 2
ROM_STATUS_BYTES = 4

DEFAULT_FLASH_SIZE = 4 * 1024 * 1024
FLASH_BLOCK_SIZE = 64 * 1024
FLASH_SECTOR_SIZE = 4 * 1024
FLASH_PAGE_SIZE = 256
FLASH_STATUS_MASK = 0xFFFF


class Opcode(IntEnum):
    """ROM bootloader opcodes used by the flasher."""
    FLASH_BEGIN = 0x02
    FLASH_DATA = 0x03
    FLASH_END = 0x04
    SYNC = 0x08
    READ_REG = 0x0A
    SPI_SET_PARAMS = 0x0B
    SPI_ATTACH = 0x0D
    FLASH_READ_SLOW = 0x0E


# Error reasons reported in the second status byte
ROM_ERRORS = {
    0x05: "received message is invalid",
    0x06: "failed to act on received message",
    0x07: "invalid CRC in message",
    0x08: "flash write error",
    0x09: "flash read error",
    0x0A: "flash read length error",
    0x0B: "deflate error",
}


def describe_status(error: int) -> str:
    """Human-readable text for a ROM error reason byte."""
    return ROM_ERRORS.get(error, "unknown error")


def checksum(data: bytes, seed: int = CHECKSUM_SEED) -> int:
    """XOR checksum over a block, as the ROM computes it."""
    state = seed
    for b in data:
        state ^= b
    return state


@dataclass(frozen=True)
class Command:
    """One request packet. Built per transceive call, never mutated."""
    opcode: Opcode
    payload: bytes = b""
    checksum: int = 0
    # Data bytes the response must carry ahead of the status trailer
    expected_data_len: int = 0

    def encode(self) -> bytes:
        """Serialize header and payload, ready for SLIP framing."""
        header = struct.pack(
            HEADER_FMT, DIRECTION_REQUEST, int(self.opcode), len(self.payload), self.checksum
        )
        return header + self.payload

    @property
    def name(self) -> str:
        return self.opcode.name


@dataclass(frozen=True)
class Response:
    """Parsed response packet."""
    opcode: int
    value: int
    data: bytes
    status: int
    error: int

    @property
    def ok(self) -> bool:
        return self.status == 0


def sync_command() -> Command:
    return Command(Opcode.SYNC, SYNC_PAYLOAD)


def read_reg_command(address: int) -> Command:
    return Command(Opcode.READ_REG, struct.pack("<I", address))


def spi_attach_command(hspi_arg: int = 0) -> Command:
    """
    Enable the SPI flash pins.

    The ROM loader takes an extra 'is legacy' byte plus three reserved
    bytes after the pin configuration word.
    """
    return Command(Opcode.SPI_ATTACH, struct.pack("<IBBBB", hspi_arg, 0, 0, 0, 0))


def spi_set_params_command(total_size: int = DEFAULT_FLASH_SIZE) -> Command:
    """Tell the ROM the geometry of the attached flash chip."""
    payload = struct.pack(
        "<IIIIII",
        0,  # fl_id
        total_size,
        FLASH_BLOCK_SIZE,
        FLASH_SECTOR_SIZE,
        FLASH_PAGE_SIZE,
        FLASH_STATUS_MASK,
    )
    return Command(Opcode.SPI_SET_PARAMS, payload)


def flash_begin_command(
    size: int,
    block_count: int,
    block_size: int,
    offset: int,
    encrypted: Optional[bool] = None,
) -> Command:
    """
    Start a flash download; the ROM erases the region before answering.

    Args:
        size: Bytes to erase/write
        block_count: Number of FLASH_DATA blocks that will follow
        block_size: Size of each block
        offset: Target flash offset
        encrypted: Appends the encrypted-write flag word when not None
            (ROMs that support encrypted flashing expect it)
    """
    payload = struct.pack("<IIII", size, block_count, block_size, offset)
    if encrypted is not None:
        payload += struct.pack("<I", 1 if encrypted else 0)
    return Command(Opcode.FLASH_BEGIN, payload)


def flash_data_command(data: bytes, sequence: int) -> Command:
    """One block of image data; checksum covers the data only."""
    payload = struct.pack("<IIII", len(data), sequence, 0, 0) + bytes(data)
    return Command(Opcode.FLASH_DATA, payload, checksum=checksum(data))


def flash_end_command(reboot: bool = True) -> Command:
    # The ROM field means "stay in loader", so reboot is encoded as 0
    return Command(Opcode.FLASH_END, struct.pack("<I", int(not reboot)))


def flash_read_slow_command(offset: int, length: int) -> Command:
    return Command(
        Opcode.FLASH_READ_SLOW,
        struct.pack("<II", offset, length),
        expected_data_len=length,
    )


def parse_response(
    raw: bytes,
    command: Command,
    status_bytes_length: int = ROM_STATUS_BYTES,
) -> Response:
    """
    Parse a decoded response packet for the given request.

    Status-only responses carry the status at body offset 0 regardless of
    trailer length, so the trailer length only matters for data-carrying
    responses (FLASH_READ_SLOW).

    Args:
        raw: SLIP-decoded response bytes
        command: The request being answered
        status_bytes_length: Trailer size of the connected ROM

    Returns:
        Response with status/error/value/data extracted

    Raises:
        ResponseMismatchError: If the opcode echo differs from the request
        MalformedResponseError: If the packet is too short or inconsistent
    """
    if len(raw) < HEADER_LEN:
        raise MalformedResponseError(
            f"Response too short: {len(raw)} bytes (header is {HEADER_LEN})"
        )

    direction, opcode, body_len, value = struct.unpack(HEADER_FMT, raw[:HEADER_LEN])
    if direction != DIRECTION_RESPONSE:
        raise MalformedResponseError(f"Invalid response direction byte 0x{direction:02X}")
    if opcode != command.opcode:
        raise ResponseMismatchError(int(command.opcode), opcode)

    body = raw[HEADER_LEN:]
    if body_len > len(body):
        raise MalformedResponseError(
            f"Response body truncated: header says {body_len}, got {len(body)}"
        )
    body = body[:body_len]

    if command.expected_data_len:
        minimum = command.expected_data_len + status_bytes_length
        if len(body) in (MIN_STATUS_BYTES, status_bytes_length) and body[0] != 0:
            # Failed reads come back as a bare status trailer
            return Response(opcode=opcode, value=value, data=b"", status=body[0], error=body[1])
        if len(body) < minimum:
            raise MalformedResponseError(
                f"{command.name} response has {len(body)} body bytes, "
                f"expected at least {minimum}"
            )
        trailer = body[-status_bytes_length:]
        data = body[:-status_bytes_length]
    else:
        if len(body) < MIN_STATUS_BYTES:
            raise MalformedResponseError(
                f"{command.name} response has {len(body)} status bytes, "
                f"expected at least {MIN_STATUS_BYTES}"
            )
        trailer = body
        data = b""

    return Response(
        opcode=opcode,
        value=value,
        data=data,
        status=trailer[0],
        error=trailer[1],
    )


def encode_response(
    opcode: int,
    value: int = 0,
    data: bytes = b"",
    status: int = 0,
    error: int = 0,
    status_bytes_length: int = ROM_STATUS_BYTES,
) -> bytes:
    """
    Build a response packet the way the ROM does.

    Used by tests and offline tooling to script bootloader replies.
    """
    trailer = bytes([status, error]) + bytes(status_bytes_length - 2)
    body = data + trailer
    return struct.pack(HEADER_FMT, DIRECTION_RESPONSE, opcode, len(body), value) + body
