"""Tests for the retrying transceiver."""

from unittest.mock import MagicMock

import pytest

from esplink.errors import DeviceError, ProtocolTimeout, TransportError
from esplink.protocol.commands import Opcode, encode_response, read_reg_command, sync_command
from esplink.protocol.slip import slip_encode
from esplink.protocol.transceiver import RetryPolicy, Transceiver

POLICY = RetryPolicy(max_attempts=4, timeout=0.01)


class SilentTransport:
    """Never answers."""

    def __init__(self):
        self.writes = 0
        self.resets = 0

    def write(self, data):
        self.writes += 1

    def read(self, size, timeout=None):
        return b""

    def reset_input(self):
        self.resets += 1
        return b""


class TestRetryPolicy:

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0, timeout=1.0)

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=1, timeout=0)


class TestTransceive:

    def test_always_silent_exhausts_attempts(self):
        transport = SilentTransport()
        with pytest.raises(ProtocolTimeout) as exc:
            Transceiver(transport).transceive(sync_command(), POLICY)
        assert transport.writes == 4
        assert exc.value.attempts == 4
        assert exc.value.opcode == Opcode.SYNC

    def test_flushes_input_between_attempts(self):
        transport = SilentTransport()
        with pytest.raises(ProtocolTimeout):
            Transceiver(transport).transceive(sync_command(), POLICY)
        assert transport.resets == 3

    def test_first_success_returns_immediately(self, bootloader):
        resp = Transceiver(bootloader).transceive(read_reg_command(0x40001000), POLICY)
        assert resp.value == bootloader.chip_id
        assert bootloader.opcodes == [Opcode.READ_REG]

    def test_retries_after_silence(self, bootloader):
        bootloader.script[Opcode.SYNC].extend([None, None])
        resp = Transceiver(bootloader).transceive(sync_command(), POLICY)
        assert resp.ok
        assert bootloader.opcodes == [Opcode.SYNC] * 3

    def test_retries_after_device_error(self, bootloader):
        bootloader.script[Opcode.SYNC].append(0x07)
        resp = Transceiver(bootloader).transceive(sync_command(), POLICY)
        assert resp.ok
        assert len(bootloader.requests) == 2

    def test_consistent_device_error(self, bootloader):
        bootloader.script[Opcode.SYNC].extend([0x06] * 4)
        with pytest.raises(DeviceError) as exc:
            Transceiver(bootloader).transceive(sync_command(), POLICY)
        assert exc.value.status == 1
        assert exc.value.error == 0x06
        assert exc.value.opcode == Opcode.SYNC
        assert "failed to act" in str(exc.value)

    def test_mixed_failures_report_timeout(self, bootloader):
        bootloader.script[Opcode.SYNC].extend([0x06, None, 0x06, None])
        with pytest.raises(ProtocolTimeout):
            Transceiver(bootloader).transceive(sync_command(), POLICY)

    def test_corrupt_frame_is_retried(self, bootloader):
        bootloader.script[Opcode.SYNC].append(b"\xc0\x01\xdb\x00\xc0")
        resp = Transceiver(bootloader).transceive(sync_command(), POLICY)
        assert resp.ok
        assert len(bootloader.requests) == 2

    def test_stale_response_is_skipped(self, bootloader):
        stale = slip_encode(encode_response(Opcode.SYNC))
        bootloader.rx.extend(stale * 3)
        resp = Transceiver(bootloader).transceive(read_reg_command(0x40001000), POLICY)
        assert resp.value == bootloader.chip_id
        assert bootloader.opcodes == [Opcode.READ_REG]

    def test_transport_failure_is_not_retried(self):
        transport = MagicMock()
        transport.write.side_effect = TransportError("Write error: device disconnected")
        with pytest.raises(TransportError):
            Transceiver(transport).transceive(sync_command(), POLICY)
        assert transport.write.call_count == 1
