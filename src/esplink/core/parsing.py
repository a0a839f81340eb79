"""
Centralized parsing helpers for CLI option values.

The CLI and any scripted callers import these helpers rather than
re-implement them. They raise ConfigurationError; the CLI turns that into a
usage error.
"""

from dataclasses import dataclass
from typing import Optional

from esplink.chips import FLASH_MODES, ChipInfo
from esplink.errors import ConfigurationError

KEEP = "keep"


def parse_offset(value: Optional[str]) -> int:
    """
    Parse a flash offset. The value is always base 16.

    Accepts:
        - "1000", "0x1000", "0X1000" -> 0x1000
        - "10000h" -> 0x10000

    Raises:
        ConfigurationError: If value is missing or not hexadecimal.
    """
    if value is None or not value.strip():
        raise ConfigurationError("--offset is required for flash")

    text = value.strip()
    if text.lower().endswith("h"):
        text = text[:-1]
    try:
        offset = int(text, 16)
    except ValueError:
        raise ConfigurationError(
            f"Invalid offset '{value}'. Use hexadecimal, e.g. 0x10000 or 10000."
        )
    if offset < 0 or offset > 0xFFFFFFFF:
        raise ConfigurationError(f"Offset {value} does not fit in 32 bits")
    return offset


def require_port(value: Optional[str]) -> str:
    """Return the port, or raise if it was not given."""
    if value is None or not value.strip():
        raise ConfigurationError("--port is required for flash")
    return value.strip()


@dataclass(frozen=True)
class FlashParamOverride:
    """
    User override for the probed SPI parameters. None keeps the probed value.
    """
    spi_mode: Optional[int] = None
    spi_speed: Optional[int] = None
    flash_size: Optional[int] = None

    def apply(self, spi_mode: int, spi_speed: int, flash_size: int):
        """Return (spi_mode, spi_speed, flash_size) with overrides applied."""
        return (
            spi_mode if self.spi_mode is None else self.spi_mode,
            spi_speed if self.spi_speed is None else self.spi_speed,
            flash_size if self.flash_size is None else self.flash_size,
        )


def _lookup(table: dict, token: str, label: str, chip: ChipInfo) -> Optional[int]:
    if token.lower() == KEEP or token == "":
        return None
    for key, value in table.items():
        if key.lower() == token.lower():
            return value
    choices = ", ".join(list(table) + [KEEP])
    raise ConfigurationError(
        f"Invalid {label} '{token}' for {chip.display_name}. Use one of: {choices}"
    )


def parse_flash_params(value: Optional[str], chip: ChipInfo) -> Optional[FlashParamOverride]:
    """
    Parse --flash-param "MODE:FREQ:SIZE", e.g. "dio:40m:4MB" or "keep:80m:keep".

    Commas are accepted as separators too. Trailing fields may be omitted.

    Returns:
        FlashParamOverride, or None if value is None or empty.

    Raises:
        ConfigurationError: If a field is unknown for the chip.
    """
    if value is None or not value.strip():
        return None

    parts = [p.strip() for p in value.replace(",", ":").split(":")]
    if len(parts) > 3:
        raise ConfigurationError(
            f"Invalid flash parameter '{value}'. Use MODE:FREQ:SIZE, e.g. dio:40m:4MB."
        )
    parts += [KEEP] * (3 - len(parts))

    return FlashParamOverride(
        spi_mode=_lookup(FLASH_MODES, parts[0], "flash mode", chip),
        spi_speed=_lookup(chip.flash_frequencies, parts[1], "flash frequency", chip),
        flash_size=_lookup(chip.flash_sizes, parts[2], "flash size", chip),
    )
