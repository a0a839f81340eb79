"""
Exception hierarchy for esplink.

Every error raised by the package derives from EsplinkError so callers
(CLI, workflow wrappers) can catch one type and still report the specific
kind plus its contextual values.
"""

from typing import Optional


class EsplinkError(Exception):
    """Base exception for all esplink errors."""


class ConfigurationError(EsplinkError):
    """Missing or invalid user configuration (port, offset, chip, ...)."""


class FirmwareFileError(EsplinkError):
    """Firmware image could not be opened or read."""


class UnsupportedImageFormatError(EsplinkError):
    """Firmware image is not a raw binary (e.g. an ELF executable)."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Unsupported image format for {path}: {reason} "
            f"(only raw .bin images are supported)"
        )


class UnsupportedChipError(EsplinkError):
    """Chip-ID register value does not match any registered chip."""

    def __init__(self, chip_id: int, message: Optional[str] = None):
        self.chip_id = chip_id
        super().__init__(message or f"Unsupported or misdetected chip (chip id 0x{chip_id:08X})")


class ChipMismatchError(UnsupportedChipError):
    """Detected chip differs from the chip the user asked to flash."""

    def __init__(self, expected: str, detected: str, chip_id: int):
        self.expected = expected
        self.detected = detected
        super().__init__(
            chip_id,
            f"Detected {detected} (chip id 0x{chip_id:08X}) but --chip is {expected}",
        )


class FlashHeaderError(EsplinkError):
    """Image header read back from flash offset 0 is not valid."""

    def __init__(self, magic: int, expected: int):
        self.magic = magic
        self.expected = expected
        super().__init__(
            f"Flash header magic is 0x{magic:02X}, expected 0x{expected:02X}; "
            f"flash chip may be absent or misdetected"
        )


class TransportError(EsplinkError):
    """Serial transport I/O failure (port missing, write failed, ...)."""


class ProtocolError(EsplinkError):
    """Base class for bootloader protocol failures."""


class FramingError(ProtocolError):
    """A SLIP frame is corrupt."""


class FrameTruncatedError(FramingError):
    """Stream ended or timed out before the closing delimiter."""

    def __init__(self, received: int = 0):
        self.received = received
        if received:
            msg = f"Frame truncated after {received} bytes (no closing delimiter)"
        else:
            msg = "No frame received (timeout)"
        super().__init__(msg)


class InvalidEscapeError(FramingError):
    """Escape byte followed by something other than a valid escape target."""

    def __init__(self, value: Optional[int]):
        self.value = value
        shown = "end of frame" if value is None else f"0x{value:02X}"
        super().__init__(f"Invalid SLIP escape (0xDB, {shown})")


class MalformedResponseError(ProtocolError):
    """Response packet is too short or has an invalid header."""


class ResponseMismatchError(MalformedResponseError):
    """Response opcode echo does not match the request."""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Response for opcode 0x{received:02X} while waiting for 0x{expected:02X}"
        )


class ProtocolTimeout(ProtocolError):
    """No valid response within the retry budget."""

    def __init__(self, opcode: int, attempts: int, last_error: Optional[BaseException] = None):
        self.opcode = opcode
        self.attempts = attempts
        self.last_error = last_error
        msg = f"No valid response to opcode 0x{opcode:02X} after {attempts} attempt(s)"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)


class SyncFailedError(ProtocolTimeout):
    """Bootloader never answered SYNC."""


class DeviceError(ProtocolError):
    """Device answered with a nonzero status byte."""

    def __init__(self, opcode: int, status: int, error: int, description: str = ""):
        self.opcode = opcode
        self.status = status
        self.error = error
        msg = f"Device rejected opcode 0x{opcode:02X} (status=0x{status:02X}, error=0x{error:02X}"
        if description:
            msg += f": {description}"
        super().__init__(msg + ")")
