"""
SLIP framing for the ESP ROM bootloader link.

Frame format:
    0xC0 | payload with 0xC0 -> 0xDB 0xDC and 0xDB -> 0xDB 0xDD | 0xC0

The serial line carries whatever the chip prints while booting, so the
stream reader skips bytes until it sees an opening delimiter.
"""

import logging
from typing import Optional

from esplink.errors import FramingError, FrameTruncatedError, InvalidEscapeError

logger = logging.getLogger(__name__)

END = 0xC0
ESC = 0xDB
ESC_END = 0xDC
ESC_ESC = 0xDD

# Bytes of boot noise tolerated before an opening delimiter
MAX_NOISE_BYTES = 8192


def slip_encode(payload: bytes) -> bytes:
    """
    Wrap a payload in a SLIP frame.

    Args:
        payload: Raw packet bytes

    Returns:
        Frame bytes including both delimiters
    """
    escaped = payload.replace(b"\xdb", b"\xdb\xdd").replace(b"\xc0", b"\xdb\xdc")
    return b"\xc0" + escaped + b"\xc0"


def _unescape(body: bytes) -> bytes:
    out = bytearray()
    in_escape = False
    for b in body:
        if in_escape:
            in_escape = False
            if b == ESC_END:
                out.append(END)
            elif b == ESC_ESC:
                out.append(ESC)
            else:
                raise InvalidEscapeError(b)
        elif b == ESC:
            in_escape = True
        elif b == END:
            raise FramingError("Unescaped delimiter inside frame payload")
        else:
            out.append(b)
    if in_escape:
        raise InvalidEscapeError(None)
    return bytes(out)


def slip_decode(frame: bytes) -> bytes:
    """
    Decode one complete SLIP frame.

    Raises:
        FrameTruncatedError: If the closing delimiter is missing
        FramingError: If the frame has no opening delimiter or an
            unescaped delimiter mid-payload
        InvalidEscapeError: If an escape sequence is invalid
    """
    if not frame or frame[0] != END:
        raise FramingError("Frame does not start with 0xC0")
    if len(frame) < 2 or frame[-1] != END:
        raise FrameTruncatedError(len(frame))
    return _unescape(frame[1:-1])


def read_frame(transport, timeout: float, max_noise: int = MAX_NOISE_BYTES) -> bytes:
    """
    Read and decode the next SLIP frame from a transport.

    Each call starts a fresh accumulation; nothing is buffered between
    frames.

    Args:
        transport: Object with read(size, timeout) -> bytes (empty on timeout)
        timeout: Per-read timeout in seconds
        max_noise: Bytes to discard while hunting for the opening delimiter

    Returns:
        Decoded payload bytes

    Raises:
        FrameTruncatedError: If a read times out before the closing delimiter
        InvalidEscapeError: If an escape sequence is invalid
        FramingError: If no opening delimiter shows up within max_noise bytes
    """
    packet: Optional[bytearray] = None
    in_escape = False
    noise = 0

    while True:
        chunk = transport.read(1, timeout)
        if not chunk:
            raise FrameTruncatedError(len(packet) if packet is not None else 0)
        b = chunk[0]

        if packet is None:
            if b == END:
                packet = bytearray()
                continue
            noise += 1
            if noise > max_noise:
                raise FramingError(f"No frame start after {noise} bytes of noise")
            continue

        if in_escape:
            in_escape = False
            if b == ESC_END:
                packet.append(END)
            elif b == ESC_ESC:
                packet.append(ESC)
            else:
                raise InvalidEscapeError(b)
        elif b == ESC:
            in_escape = True
        elif b == END:
            if not packet:
                # C0 C0: the previous delimiter was a closing one, resync
                continue
            if noise:
                logger.debug(f"Skipped {noise} bytes before frame start")
            logger.debug(f"<<< {bytes(packet[:32]).hex()}" + ("..." if len(packet) > 32 else ""))
            return bytes(packet)
        else:
            packet.append(b)
