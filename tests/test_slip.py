"""Tests for SLIP framing."""

import pytest

from esplink.errors import FramingError, FrameTruncatedError, InvalidEscapeError
from esplink.protocol.slip import read_frame, slip_decode, slip_encode


class TestEncodeDecode:
    """Whole-frame encode/decode."""

    @pytest.mark.parametrize(
        "payload",
        [
            b"",
            b"\x00\x01\x02",
            b"\xc0",
            b"\xdb",
            b"\xdb\xdc\xc0\xdd",
            bytes(range(256)),
        ],
    )
    def test_roundtrip(self, payload):
        assert slip_decode(slip_encode(payload)) == payload

    def test_encode_escapes_delimiter_and_escape(self):
        assert slip_encode(b"\x01\xc0\x02\xdb\x03") == b"\xc0\x01\xdb\xdc\x02\xdb\xdd\x03\xc0"

    def test_encoded_body_has_no_bare_delimiter(self):
        frame = slip_encode(bytes(range(256)) * 2)
        assert b"\xc0" not in frame[1:-1]

    def test_missing_closing_delimiter_is_truncated(self):
        with pytest.raises(FrameTruncatedError):
            slip_decode(b"\xc0\x01\x02")

    def test_unescaped_delimiter_mid_payload(self):
        with pytest.raises(FramingError):
            slip_decode(b"\xc0\x01\xc0\x02\xc0")

    def test_missing_opening_delimiter(self):
        with pytest.raises(FramingError):
            slip_decode(b"\x01\x02\xc0")

    def test_invalid_escape_target(self):
        with pytest.raises(InvalidEscapeError) as exc:
            slip_decode(b"\xc0\xdb\x01\xc0")
        assert exc.value.value == 0x01

    def test_escape_at_end_of_frame(self):
        with pytest.raises(InvalidEscapeError):
            slip_decode(b"\xc0\x01\xdb\xc0")


class TestReadFrame:
    """Decoding from a byte stream."""

    def test_reads_one_frame(self, byte_stream):
        stream = byte_stream(slip_encode(b"\x01\xc0\x02"))
        assert read_frame(stream, timeout=0.01) == b"\x01\xc0\x02"

    def test_consecutive_frames_do_not_share_state(self, byte_stream):
        stream = byte_stream(slip_encode(b"first") + slip_encode(b"second"))
        assert read_frame(stream, timeout=0.01) == b"first"
        assert read_frame(stream, timeout=0.01) == b"second"

    def test_stream_ends_before_closing_delimiter(self, byte_stream):
        stream = byte_stream(b"\xc0\x01\x02\x03")
        with pytest.raises(FrameTruncatedError) as exc:
            read_frame(stream, timeout=0.01)
        assert exc.value.received == 3

    def test_empty_stream_times_out(self, byte_stream):
        with pytest.raises(FrameTruncatedError) as exc:
            read_frame(byte_stream(b""), timeout=0.01)
        assert exc.value.received == 0

    def test_boot_noise_before_frame_is_skipped(self, byte_stream):
        stream = byte_stream(b"rst:0x1 (POWERON)\r\n" + slip_encode(b"\x01\x08"))
        assert read_frame(stream, timeout=0.01) == b"\x01\x08"

    def test_too_much_noise_fails(self, byte_stream):
        stream = byte_stream(b"x" * 64)
        with pytest.raises(FramingError):
            read_frame(stream, timeout=0.01, max_noise=16)

    def test_back_to_back_delimiters_resync(self, byte_stream):
        stream = byte_stream(b"\xc0\xc0\x05\x06\xc0")
        assert read_frame(stream, timeout=0.01) == b"\x05\x06"

    def test_invalid_escape_in_stream(self, byte_stream):
        stream = byte_stream(b"\xc0\x01\xdb\x7f\xc0")
        with pytest.raises(InvalidEscapeError):
            read_frame(stream, timeout=0.01)
