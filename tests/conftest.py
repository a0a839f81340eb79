"""Shared fixtures: in-memory byte streams and a scripted ROM bootloader."""

import struct
from collections import defaultdict, deque

import pytest

from esplink.core.flasher import FlashPolicies
from esplink.protocol.commands import Opcode, encode_response
from esplink.protocol.slip import slip_decode, slip_encode
from esplink.protocol.transceiver import RetryPolicy

ESP32C3_CHIP_ID = 0x6921506F

# Image header as found at flash offset 0: magic, 3 segments, DIO, 4MB @ 80m
PROBED_HEADER = bytes([0xE9, 0x03, 0x02, 0x2F]) + bytes(12)


class ByteStream:
    """Transport that replays a fixed byte string, then times out."""

    def __init__(self, data: bytes = b""):
        self.buffer = bytearray(data)
        self.written = []

    def write(self, data: bytes) -> None:
        self.written.append(bytes(data))

    def read(self, size: int, timeout=None) -> bytes:
        out = bytes(self.buffer[:size])
        del self.buffer[:size]
        return out

    def reset_input(self) -> bytes:
        junk = bytes(self.buffer)
        self.buffer.clear()
        return junk


class FakeBootloader:
    """
    Answers SLIP-framed commands like an ESP32-C3 ROM.

    script[opcode] holds replies consumed before the default handler runs:
    None means stay silent, an int is an error reason sent with status 1,
    bytes are sent raw (already framed).
    """

    def __init__(self, chip_id: int = ESP32C3_CHIP_ID, flash: bytes = PROBED_HEADER, status_bytes_length: int = 4):
        self.chip_id = chip_id
        self.flash = flash
        self.status_bytes_length = status_bytes_length
        self.rx = bytearray()
        self.requests = []
        self.script = defaultdict(deque)
        self.resets = 0

    @property
    def opcodes(self):
        return [op for op, _, _ in self.requests]

    def payloads(self, opcode):
        return [payload for op, payload, _ in self.requests if op == opcode]

    def checksums(self, opcode):
        return [chk for op, _, chk in self.requests if op == opcode]

    def _reply(self, opcode, **kwargs) -> None:
        packet = encode_response(opcode, status_bytes_length=self.status_bytes_length, **kwargs)
        self.rx.extend(slip_encode(packet))

    def write(self, data: bytes) -> None:
        packet = slip_decode(data)
        direction, opcode, size, chk = struct.unpack("<BBHI", packet[:8])
        assert direction == 0x00
        payload = packet[8:]
        assert len(payload) == size
        self.requests.append((opcode, payload, chk))

        if self.script[opcode]:
            action = self.script[opcode].popleft()
            if action is None:
                return
            if isinstance(action, bytes):
                self.rx.extend(action)
                return
            self._reply(opcode, status=1, error=action)
            return

        if opcode == Opcode.READ_REG:
            self._reply(opcode, value=self.chip_id)
        elif opcode == Opcode.FLASH_READ_SLOW:
            offset, length = struct.unpack("<II", payload)
            data = self.flash[offset:offset + length]
            data += b"\xff" * (length - len(data))
            self._reply(opcode, data=data)
        else:
            self._reply(opcode)

    def read(self, size: int, timeout=None) -> bytes:
        out = bytes(self.rx[:size])
        del self.rx[:size]
        return out

    def reset_input(self) -> bytes:
        self.resets += 1
        junk = bytes(self.rx)
        self.rx.clear()
        return junk


@pytest.fixture
def byte_stream():
    """Factory for replay transports."""
    return ByteStream


@pytest.fixture
def bootloader():
    """Fresh ESP32-C3 bootloader fake."""
    return FakeBootloader()


@pytest.fixture
def make_bootloader():
    """Factory for bootloader fakes with custom chip id / flash contents."""
    return FakeBootloader


@pytest.fixture
def fast_policies():
    """Retry policies with tiny timeouts and the production attempt counts."""
    return FlashPolicies(
        sync=RetryPolicy(max_attempts=5, timeout=0.01),
        detect=RetryPolicy(max_attempts=3, timeout=0.01),
        command=RetryPolicy(max_attempts=3, timeout=0.01),
        probe=RetryPolicy(max_attempts=1, timeout=0.01),
        begin=RetryPolicy(max_attempts=2, timeout=0.01),
        data=RetryPolicy(max_attempts=2, timeout=0.01),
    )


@pytest.fixture
def firmware(tmp_path):
    """Write a firmware file and return its path."""
    def _write(data: bytes, name: str = "app.bin"):
        path = tmp_path / name
        path.write_bytes(data)
        return path
    return _write
