"""
Firmware image source.

The image is opened read-only and scanned forward once, one block at a
time. Only raw binaries are accepted; ELF executables are rejected before
anything is sent to the device.
"""

import logging
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Tuple, Union

from esplink.errors import FirmwareFileError, UnsupportedImageFormatError

logger = logging.getLogger(__name__)

BLOCK_SIZE = 4096
ELF_MAGIC = b"\x7fELF"
REJECTED_SUFFIXES = (".elf",)


def block_count(size: int, block_size: int = BLOCK_SIZE) -> int:
    """Number of blocks needed for size bytes (ceiling division)."""
    if size < 0:
        raise ValueError("size must be >= 0")
    return (size + block_size - 1) // block_size


class FirmwareImage:
    """
    Read-only, forward-only view of a firmware file.

    Example:
        image = FirmwareImage("app.bin")
        image.check_format()
        with image:
            for seq, block in image.iter_blocks():
                ...
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._fh: Optional[BinaryIO] = None
        self._size: Optional[int] = None

    def check_format(self) -> None:
        """
        Reject images that are not raw binaries.

        Raises:
            UnsupportedImageFormatError: ELF extension or ELF magic
            FirmwareFileError: File missing or unreadable
        """
        if self.path.suffix.lower() in REJECTED_SUFFIXES:
            raise UnsupportedImageFormatError(str(self.path), f"'{self.path.suffix}' files are not supported")

        try:
            with open(self.path, "rb") as f:
                head = f.read(len(ELF_MAGIC))
        except OSError as e:
            raise FirmwareFileError(f"Cannot read firmware file {self.path}: {e}")

        if head == ELF_MAGIC:
            raise UnsupportedImageFormatError(str(self.path), "file is an ELF executable")

    def open(self) -> None:
        """Open the file and record its size."""
        try:
            self._fh = open(self.path, "rb")
            self._fh.seek(0, 2)
            self._size = self._fh.tell()
            self._fh.seek(0)
        except OSError as e:
            self.close()
            raise FirmwareFileError(f"Cannot open firmware file {self.path}: {e}")
        logger.debug(f"Opened {self.path} ({self._size} bytes)")

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self) -> "FirmwareImage":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def size(self) -> int:
        if self._size is None:
            raise FirmwareFileError("Firmware file is not open")
        return self._size

    def iter_blocks(self, block_size: int = BLOCK_SIZE) -> Iterator[Tuple[int, bytes]]:
        """
        Yield (sequence, data) for each block; the last block may be short.

        Raises:
            FirmwareFileError: If the file is not open or a read fails
        """
        if self._fh is None:
            raise FirmwareFileError("Firmware file is not open")
        sequence = 0
        while True:
            try:
                data = self._fh.read(block_size)
            except OSError as e:
                raise FirmwareFileError(f"Read error in {self.path} at block {sequence}: {e}")
            if not data:
                return
            yield sequence, data
            sequence += 1
