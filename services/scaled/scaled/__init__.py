"""Serial weighing-scale reader with config auto-detection."""

from .models import ConnectionStatus, ErrorKind, Reading, SerialConfig
from .reader import ScaleReader
from .transport import PortInfo, Transport

__all__ = [
    "ConnectionStatus",
    "ErrorKind",
    "PortInfo",
    "Reading",
    "ScaleReader",
    "SerialConfig",
    "Transport",
]
