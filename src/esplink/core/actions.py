"""
Core workflow actions for esplink.

This module exposes functions the CLI (or a script) calls to run whole
operations. They never raise for device or user errors; the outcome is
reported through an OperationResult carrying the error kind, its contextual
values and the captured log lines.
"""

import hashlib
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from esplink.chips import get_chip
from esplink.core.flasher import AUTO_CHIP, Flasher, FlashPolicies
from esplink.core.image import FirmwareImage
from esplink.core.parsing import parse_flash_params
from esplink.core.results import OperationResult
from esplink.errors import EsplinkError
from esplink.protocol.serial_transport import DEFAULT_BAUD, open_serial
from esplink.protocol.transceiver import Transceiver

logger = logging.getLogger(__name__)

# Attributes copied from errors into result metadata for diagnostics
_ERROR_CONTEXT = ("chip_id", "expected", "detected", "status", "error", "opcode", "attempts", "magic", "path")


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "esplink"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _error_context(exc: EsplinkError) -> dict:
    context = {"error_kind": type(exc).__name__}
    for name in _ERROR_CONTEXT:
        value = getattr(exc, name, None)
        if value is not None:
            context[name] = value
    return context


def _sha256_file(path: Path) -> Optional[str]:
    try:
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError:
        return None


def flash_firmware_serial(
    port: str,
    file: str,
    offset: int,
    baud: int = DEFAULT_BAUD,
    chip: str = "esp32c3",
    flash_param: Optional[str] = None,
    strict_magic: bool = True,
    reset: bool = True,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    transport=None,
    policies: FlashPolicies = FlashPolicies(),
) -> OperationResult:
    """
    Flash a raw binary image over the ROM bootloader.

    Args:
        port: Serial port path
        file: Path to the .bin image
        offset: Target flash offset
        baud: Baud rate (default 115200)
        chip: Expected chip name or "auto"
        flash_param: Optional "MODE:FREQ:SIZE" override
        strict_magic: Treat a missing image header in flash as fatal
        reset: Pulse DTR/RTS to enter the bootloader on open
        progress_cb: Optional progress callback(blocks_done, block_count)
        transport: Already open transport to use instead of opening port

    Returns:
        OperationResult with:
            - ok: True if the device accepted the whole image and rebooted
            - chip: detected chip name
            - bytes_len: image size
            - hashes["sha256"]: hash of the source image
            - metadata: chip_id, block_count, flash params, or error context
    """
    region = f"0x{offset:08X}"
    image_path = Path(file)

    with _capture_logs() as logs:
        try:
            if chip.lower() != AUTO_CHIP:
                parse_flash_params(flash_param, get_chip(chip))

            own_transport = transport is None
            if own_transport:
                # Closes the port itself when the reset or flush fails
                transport = open_serial(port, baudrate=baud, reset=reset)

            try:
                flasher = Flasher(
                    Transceiver(transport),
                    FirmwareImage(image_path),
                    offset,
                    chip=chip,
                    flash_param=flash_param,
                    strict_magic=strict_magic,
                    policies=policies,
                    progress_cb=progress_cb,
                )
                session = flasher.run()
            finally:
                if own_transport:
                    transport.close()

            result = OperationResult.success(
                operation="flash",
                chip=session.chip.display_name,
                region=f"0x{offset:08X}-0x{offset + session.file_size:08X}",
                bytes_len=session.file_size,
            )
            for warning in flasher.warnings:
                result.add_warning(warning)
            digest = _sha256_file(image_path)
            if digest:
                result.hashes["sha256"] = digest
            result.metadata.update({
                "chip_id": session.chip_id,
                "block_count": session.block_count,
                "spi_mode": session.params.spi_mode,
                "spi_speed": session.params.spi_speed,
                "flash_size": session.params.flash_size,
            })
            result.logs = logs
            return result

        except EsplinkError as e:
            logger.error(f"Flash failed: {e}")
            result = OperationResult.failure(operation="flash", error=str(e), region=region)
            result.metadata.update(_error_context(e))
            result.logs = logs
            return result
