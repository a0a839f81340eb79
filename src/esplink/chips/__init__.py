"""
Chip registry for ESP microcontrollers.

Maps chip-ID register values to chip variants and their image header rules.
"""

from .registry import (
    ChipInfo,
    ImageHeaderRule,
    ExtendedHeaderRule,
    ESP_IMAGE_MAGIC,
    FLASH_MODES,
    split_size_freq,
    lookup,
    get_chip,
    list_chips,
)

__all__ = [
    "ChipInfo",
    "ImageHeaderRule",
    "ExtendedHeaderRule",
    "ESP_IMAGE_MAGIC",
    "FLASH_MODES",
    "split_size_freq",
    "lookup",
    "get_chip",
    "list_chips",
]
