"""
Chip registry for ESP-family microcontrollers.

Provides a single source of truth for:
- Chip detection (chip-ID register value -> chip variant)
- ROM protocol differences (status trailer length, encrypted flash flag)
- Flash parameter encodings (SPI mode, frequency, size nibbles)
- Image header patching rules

Usage:
    from esplink.chips import lookup, get_chip, list_chips

    # Resolve a chip-ID register value read over READ_REG
    chip = lookup(0x6921506F)

    # Get a chip by the --chip option value
    chip = get_chip("esp32c3")

    # Patch a first image block
    chip.header_rule.patch_header(block, spi_mode, spi_speed, flash_size)

The registry is filled once at import time and never mutated afterwards.
"""

import struct
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from esplink.errors import ConfigurationError, UnsupportedChipError

# First byte of every application image
ESP_IMAGE_MAGIC = 0xE9

# Header offsets shared by all chips
HEADER_MAGIC_OFFSET = 0
HEADER_SPI_MODE_OFFSET = 2
HEADER_SIZE_FREQ_OFFSET = 3
# ESP32-family extended header: 16-bit image chip id
HEADER_CHIP_ID_OFFSET = 12

FLASH_MODES = {
    "qio": 0,
    "qout": 1,
    "dio": 2,
    "dout": 3,
}


class ImageHeaderRule:
    """
    Base header rule: SPI mode at byte 2, flash size in the high nibble and
    SPI frequency in the low nibble of byte 3.
    """

    def patch_header(self, block: bytearray, spi_mode: int, spi_speed: int, flash_size: int) -> None:
        """
        Overwrite the SPI fields of a first image block in place.

        Args:
            block: First block of the image
            spi_mode: SPI flash mode value (0-3)
            spi_speed: SPI frequency nibble
            flash_size: Flash size nibble
        """
        if len(block) <= HEADER_SIZE_FREQ_OFFSET:
            raise ValueError(f"Block too short for image header: {len(block)} bytes")
        block[HEADER_SPI_MODE_OFFSET] = spi_mode & 0xFF
        block[HEADER_SIZE_FREQ_OFFSET] = ((flash_size & 0x0F) << 4) | (spi_speed & 0x0F)


class ExtendedHeaderRule(ImageHeaderRule):
    """ESP32-family images also carry the image chip id in the extended header."""

    def __init__(self, image_chip_id: int):
        self.image_chip_id = image_chip_id

    def patch_header(self, block: bytearray, spi_mode: int, spi_speed: int, flash_size: int) -> None:
        super().patch_header(block, spi_mode, spi_speed, flash_size)
        if len(block) >= HEADER_CHIP_ID_OFFSET + 2:
            struct.pack_into("<H", block, HEADER_CHIP_ID_OFFSET, self.image_chip_id)

    def __repr__(self) -> str:
        return f"ExtendedHeaderRule(image_chip_id={self.image_chip_id})"


def split_size_freq(value: int) -> Tuple[int, int]:
    """Split header byte 3 into (flash_size, spi_speed) nibbles."""
    return (value >> 4) & 0x0F, value & 0x0F


ESP32_FLASH_SIZES = {
    "1MB": 0x0,
    "2MB": 0x1,
    "4MB": 0x2,
    "8MB": 0x3,
    "16MB": 0x4,
    "32MB": 0x5,
    "64MB": 0x6,
    "128MB": 0x7,
}

ESP32_FLASH_FREQUENCY = {
    "80m": 0xF,
    "40m": 0x0,
    "26m": 0x1,
    "20m": 0x2,
}


@dataclass(frozen=True)
class ChipInfo:
    """
    Everything the flasher needs to know about one chip variant.
    """
    name: str
    display_name: str
    magic_values: Tuple[int, ...]
    header_rule: ImageHeaderRule
    image_chip_id: int = -1
    status_bytes_length: int = 4
    supports_encrypted_flash: bool = False
    flash_sizes: Dict[str, int] = field(default_factory=lambda: dict(ESP32_FLASH_SIZES))
    flash_frequencies: Dict[str, int] = field(default_factory=lambda: dict(ESP32_FLASH_FREQUENCY))

    def describe_params(self, spi_mode: int, spi_speed: int, flash_size: int) -> Tuple[str, str, str]:
        """Map raw header values back to their option names for logging."""
        def _name(table: Dict[str, int], value: int) -> str:
            for key, val in table.items():
                if val == value:
                    return key
            return f"0x{value:X}"

        return (
            _name(FLASH_MODES, spi_mode),
            _name(self.flash_frequencies, spi_speed),
            _name(self.flash_sizes, flash_size),
        )


# ============================================================================
# CHIP REGISTRY - All known chips
# ============================================================================

_CHIP_REGISTRY: Dict[str, ChipInfo] = {}
_MAGIC_INDEX: Dict[int, ChipInfo] = {}


def _register_chip(chip: ChipInfo) -> None:
    """Register a chip and index its chip-ID register values."""
    _CHIP_REGISTRY[chip.name] = chip
    for magic in chip.magic_values:
        _MAGIC_INDEX[magic] = chip


def _init_registry() -> None:
    """Initialize the registry with known chips."""

    _register_chip(ChipInfo(
        name="esp32",
        display_name="ESP32",
        magic_values=(0x00F01D83,),
        header_rule=ExtendedHeaderRule(0),
        image_chip_id=0,
    ))

    _register_chip(ChipInfo(
        name="esp32s2",
        display_name="ESP32-S2",
        magic_values=(0x000007C6,),
        header_rule=ExtendedHeaderRule(2),
        image_chip_id=2,
        supports_encrypted_flash=True,
    ))

    # Magic values for ESP32-C3 eco 1+2 and eco 3
    _register_chip(ChipInfo(
        name="esp32c3",
        display_name="ESP32-C3",
        magic_values=(0x6921506F, 0x1B31506F),
        header_rule=ExtendedHeaderRule(5),
        image_chip_id=5,
        supports_encrypted_flash=True,
    ))

    _register_chip(ChipInfo(
        name="esp32s3",
        display_name="ESP32-S3",
        magic_values=(0x00000009,),
        header_rule=ExtendedHeaderRule(9),
        image_chip_id=9,
        supports_encrypted_flash=True,
    ))

    _register_chip(ChipInfo(
        name="esp32c2",
        display_name="ESP32-C2",
        magic_values=(0x6F51306F, 0x7C41A06F),
        header_rule=ExtendedHeaderRule(12),
        image_chip_id=12,
        supports_encrypted_flash=True,
        flash_frequencies={
            "60m": 0xF,
            "30m": 0x0,
            "20m": 0x1,
            "15m": 0x2,
        },
    ))

    _register_chip(ChipInfo(
        name="esp32c6",
        display_name="ESP32-C6",
        magic_values=(0x2CE0806F,),
        header_rule=ExtendedHeaderRule(13),
        image_chip_id=13,
        supports_encrypted_flash=True,
        flash_frequencies={
            "80m": 0x0,
            "40m": 0x0,
            "20m": 0x2,
        },
    ))

    _register_chip(ChipInfo(
        name="esp32h2",
        display_name="ESP32-H2",
        magic_values=(0xD7B73E80,),
        header_rule=ExtendedHeaderRule(16),
        image_chip_id=16,
        supports_encrypted_flash=True,
        flash_frequencies={
            "48m": 0xF,
            "24m": 0x0,
            "16m": 0x1,
            "12m": 0x2,
        },
    ))


_init_registry()


def _normalize(name: str) -> str:
    return name.strip().lower().replace("-", "").replace("_", "")


def lookup(chip_id: int) -> ChipInfo:
    """
    Resolve a chip-ID register value.

    Raises:
        UnsupportedChipError: If no registered chip uses this value
    """
    try:
        return _MAGIC_INDEX[chip_id]
    except KeyError:
        raise UnsupportedChipError(chip_id) from None


def get_chip(name: str) -> ChipInfo:
    """
    Get a chip by name ("esp32c3", "ESP32-C3", ...).

    Raises:
        ConfigurationError: If the name is not registered
    """
    chip = _CHIP_REGISTRY.get(_normalize(name))
    if chip is None:
        known = ", ".join(sorted(_CHIP_REGISTRY))
        raise ConfigurationError(f"Unknown chip '{name}'. Supported chips: {known}")
    return chip


def list_chips() -> List[ChipInfo]:
    """All registered chips, sorted by name."""
    return [_CHIP_REGISTRY[name] for name in sorted(_CHIP_REGISTRY)]
