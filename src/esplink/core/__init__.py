"""
Core module for esplink.

This module provides the single source of truth for:
- Firmware image access and format checks (image.py)
- Option parsing (parsing.py)
- Result objects (results.py)
- The flashing state machine (flasher.py)
- Whole-operation workflows (actions.py)

The CLI calls into this module rather than implementing its own logic.
"""

from .image import FirmwareImage, block_count, BLOCK_SIZE
from .parsing import parse_offset, parse_flash_params, require_port, FlashParamOverride
from .results import OperationResult
from .flasher import (
    Flasher,
    FlashState,
    FlashParams,
    FlashSession,
    FlashPolicies,
)
from .actions import flash_firmware_serial

__all__ = [
    # Image
    "FirmwareImage",
    "block_count",
    "BLOCK_SIZE",
    # Parsing
    "parse_offset",
    "parse_flash_params",
    "require_port",
    "FlashParamOverride",
    # Results
    "OperationResult",
    # Flasher
    "Flasher",
    "FlashState",
    "FlashParams",
    "FlashSession",
    "FlashPolicies",
    # Actions
    "flash_firmware_serial",
]
