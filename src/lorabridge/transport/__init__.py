"""BLE transport layer."""

from .connection import BLEConnection, validate_address
from .pacer import WritePacer

__all__ = ["BLEConnection", "WritePacer", "validate_address"]
