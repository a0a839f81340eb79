"""
Flash orchestrator.

Sequences one flashing run against the ROM bootloader:

    SYNC -> DETECT_CHIP -> ATTACH_SPI -> CONFIGURE_SPI -> PROBE_FLASH_HEADER
    -> OPEN_IMAGE -> COMPUTE_LAYOUT -> BEGIN (erase) -> STREAM_BLOCKS -> END

States run strictly in order. Each command owns its own retry budget inside
the transceiver; the orchestrator never retries a whole state, and any
failure aborts the run. A run that fails during STREAM_BLOCKS leaves a
partially written image and has to be repeated from SYNC.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from esplink.chips import ESP_IMAGE_MAGIC, ChipInfo, get_chip, lookup, split_size_freq
from esplink.core.image import BLOCK_SIZE, FirmwareImage, block_count
from esplink.core.parsing import parse_flash_params
from esplink.errors import (
    ChipMismatchError,
    DeviceError,
    FlashHeaderError,
    ProtocolTimeout,
    SyncFailedError,
    UnsupportedImageFormatError,
)
from esplink.protocol.commands import (
    CHIP_DETECT_MAGIC_REG_ADDR,
    Opcode,
    flash_begin_command,
    flash_data_command,
    flash_end_command,
    flash_read_slow_command,
    read_reg_command,
    spi_attach_command,
    spi_set_params_command,
    sync_command,
)
from esplink.protocol.transceiver import (
    DEFAULT_POLICY,
    DETECT_POLICY,
    FLASH_BEGIN_POLICY,
    FLASH_DATA_POLICY,
    PROBE_POLICY,
    SYNC_POLICY,
    RetryPolicy,
    Transceiver,
)

logger = logging.getLogger(__name__)

AUTO_CHIP = "auto"
# Bytes read back from flash offset 0 to learn the SPI parameters
PROBE_LENGTH = 16
# Smallest image that still holds the SPI header fields
MIN_IMAGE_SIZE = 4
PAD_BYTE = b"\xff"


class FlashState(Enum):
    """Orchestrator states, in execution order."""
    IDLE = "idle"
    SYNC = "sync"
    DETECT_CHIP = "detect_chip"
    ATTACH_SPI = "attach_spi"
    CONFIGURE_SPI = "configure_spi"
    PROBE_FLASH_HEADER = "probe_flash_header"
    OPEN_IMAGE = "open_image"
    COMPUTE_LAYOUT = "compute_layout"
    BEGIN = "begin"
    STREAM_BLOCKS = "stream_blocks"
    END = "end"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class FlashParams:
    """SPI flash parameters as they appear in the image header."""
    spi_mode: int
    spi_speed: int
    flash_size: int


@dataclass
class FlashSession:
    """Transient state of one flashing run."""
    chip: ChipInfo
    chip_id: int
    offset: int
    params: FlashParams
    file_size: int = 0
    block_size: int = BLOCK_SIZE
    block_count: int = 0
    blocks_written: int = 0


@dataclass(frozen=True)
class FlashPolicies:
    """Retry policies per command; tests swap in small timeouts."""
    sync: RetryPolicy = SYNC_POLICY
    detect: RetryPolicy = DETECT_POLICY
    command: RetryPolicy = DEFAULT_POLICY
    probe: RetryPolicy = PROBE_POLICY
    begin: RetryPolicy = FLASH_BEGIN_POLICY
    data: RetryPolicy = FLASH_DATA_POLICY


class Flasher:
    """
    Runs the flashing state machine over a transceiver.

    Example:
        with SerialTransport("/dev/ttyUSB0") as transport:
            flasher = Flasher(Transceiver(transport), FirmwareImage("app.bin"), offset=0x0)
            session = flasher.run()
    """

    def __init__(
        self,
        transceiver: Transceiver,
        image: FirmwareImage,
        offset: int,
        chip: str = "esp32c3",
        flash_param: Optional[str] = None,
        strict_magic: bool = True,
        policies: FlashPolicies = FlashPolicies(),
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ):
        """
        Args:
            transceiver: Transceiver bound to an open transport
            image: Firmware image to write
            offset: Target flash offset
            chip: Expected chip name, or "auto" to accept any detected chip
            flash_param: Optional "MODE:FREQ:SIZE" override for probed values
            strict_magic: Fail when flash offset 0 does not hold an image
                header; when False a mismatch only logs a warning
            policies: Retry policies per command
            progress_cb: Called as progress_cb(blocks_done, block_count)
        """
        self.transceiver = transceiver
        self.image = image
        self.offset = offset
        self.chip_name = chip
        self.flash_param = flash_param
        self.strict_magic = strict_magic
        self.policies = policies
        self.progress_cb = progress_cb
        self.state = FlashState.IDLE
        self.warnings = []

    def _enter(self, state: FlashState) -> None:
        logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> FlashSession:
        """
        Execute the whole run.

        Returns:
            The finished FlashSession

        Raises:
            EsplinkError: Any failure; the state is left at FAILED
        """
        try:
            # Format gate runs before any byte goes out
            self.image.check_format()

            self._sync()
            chip, chip_id = self._detect_chip()
            self._attach_spi()
            self._configure_spi()
            params = self._probe_flash_header(chip)

            session = FlashSession(chip=chip, chip_id=chip_id, offset=self.offset, params=params)

            self._enter(FlashState.OPEN_IMAGE)
            self.image.open()
            try:
                self._compute_layout(session)
                self._begin(session)
                self._stream_blocks(session)
            finally:
                self.image.close()

            self._end()
        except Exception:
            self._enter(FlashState.FAILED)
            raise

        self._enter(FlashState.DONE)
        return session

    def _sync(self) -> None:
        self._enter(FlashState.SYNC)
        try:
            self.transceiver.transceive(sync_command(), self.policies.sync)
        except (ProtocolTimeout, DeviceError) as e:
            raise SyncFailedError(int(Opcode.SYNC), self.policies.sync.max_attempts, e) from e
        logger.info("Connected to ROM bootloader")

    def _detect_chip(self):
        self._enter(FlashState.DETECT_CHIP)
        response = self.transceiver.transceive(
            read_reg_command(CHIP_DETECT_MAGIC_REG_ADDR), self.policies.detect
        )
        chip_id = response.value
        chip = lookup(chip_id)
        logger.info(f"ESP chip detected, (id, chip name) = (0x{chip_id:08X}, {chip.display_name})")

        if self.chip_name.lower() != AUTO_CHIP:
            expected = get_chip(self.chip_name)
            if expected.name != chip.name:
                raise ChipMismatchError(expected.display_name, chip.display_name, chip_id)

        self.transceiver.status_bytes_length = chip.status_bytes_length
        return chip, chip_id

    def _attach_spi(self) -> None:
        self._enter(FlashState.ATTACH_SPI)
        self.transceiver.transceive(spi_attach_command(), self.policies.command)

    def _configure_spi(self) -> None:
        self._enter(FlashState.CONFIGURE_SPI)
        self.transceiver.transceive(spi_set_params_command(), self.policies.command)

    def _probe_flash_header(self, chip: ChipInfo) -> FlashParams:
        self._enter(FlashState.PROBE_FLASH_HEADER)
        response = self.transceiver.transceive(
            flash_read_slow_command(0, PROBE_LENGTH), self.policies.probe
        )
        header = response.data

        magic = header[0]
        if magic != ESP_IMAGE_MAGIC:
            if self.strict_magic:
                raise FlashHeaderError(magic, ESP_IMAGE_MAGIC)
            msg = (
                f"Flash header magic is 0x{magic:02X}, expected 0x{ESP_IMAGE_MAGIC:02X}; "
                f"continuing with the values read back"
            )
            logger.warning(msg)
            self.warnings.append(msg)

        spi_mode = header[2]
        flash_size, spi_speed = split_size_freq(header[3])

        override = parse_flash_params(self.flash_param, chip)
        if override is not None:
            spi_mode, spi_speed, flash_size = override.apply(spi_mode, spi_speed, flash_size)

        mode_name, speed_name, size_name = chip.describe_params(spi_mode, spi_speed, flash_size)
        logger.info(
            f"Using flash mode: {mode_name}, flash speed: {speed_name}, "
            f"flash chip size: {size_name}"
        )
        return FlashParams(spi_mode=spi_mode, spi_speed=spi_speed, flash_size=flash_size)

    def _compute_layout(self, session: FlashSession) -> None:
        self._enter(FlashState.COMPUTE_LAYOUT)
        session.file_size = self.image.size
        if 0 < session.file_size < MIN_IMAGE_SIZE:
            raise UnsupportedImageFormatError(
                str(self.image.path), f"image is {session.file_size} bytes, shorter than its header"
            )
        session.block_count = block_count(session.file_size, session.block_size)
        logger.info(f"Reading file: {self.image.path}, file size: {session.file_size}")

    def _begin(self, session: FlashSession) -> None:
        self._enter(FlashState.BEGIN)
        logger.info(f"Erasing {session.file_size} bytes in flash at offset 0x{session.offset:08X}")
        encrypted = False if session.chip.supports_encrypted_flash else None
        self.transceiver.transceive(
            flash_begin_command(
                session.file_size,
                session.block_count,
                session.block_size,
                session.offset,
                encrypted=encrypted,
            ),
            self.policies.begin,
        )

    def _stream_blocks(self, session: FlashSession) -> None:
        self._enter(FlashState.STREAM_BLOCKS)
        params = session.params

        for sequence, data in self.image.iter_blocks(session.block_size):
            block = bytearray(data)
            if sequence == 0:
                if block[0] != ESP_IMAGE_MAGIC:
                    msg = f"Image does not start with magic 0x{ESP_IMAGE_MAGIC:02X} (got 0x{block[0]:02X})"
                    logger.warning(msg)
                    self.warnings.append(msg)
                session.chip.header_rule.patch_header(
                    block, params.spi_mode, params.spi_speed, params.flash_size
                )
            if len(block) < session.block_size:
                block.extend(PAD_BYTE * (session.block_size - len(block)))

            self.transceiver.transceive(
                flash_data_command(bytes(block), sequence), self.policies.data
            )
            session.blocks_written = sequence + 1
            logger.debug(f"Wrote block {sequence + 1}/{session.block_count}")
            if self.progress_cb:
                self.progress_cb(session.blocks_written, session.block_count)

    def _end(self) -> None:
        self._enter(FlashState.END)
        self.transceiver.transceive(flash_end_command(reboot=True), self.policies.command)
        logger.info("Flash complete, rebooting device")
