"""
esplink - Serial flasher for ESP microcontrollers

Programs raw firmware images through the ROM bootloader protocol.
"""

__version__ = "0.1.0"

from esplink.protocol import SerialTransport, Transceiver
from esplink.core import Flasher, flash_firmware_serial

__all__ = [
    "SerialTransport",
    "Transceiver",
    "Flasher",
    "flash_firmware_serial",
    "__version__",
]
