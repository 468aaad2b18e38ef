"""Byte transport the reader talks to. Hosts provide a concrete implementation."""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from pydantic import BaseModel

from .models import SerialConfig


class PortInfo(BaseModel):
    """Handle for a selected port."""

    device: str
    description: Optional[str] = None


class Transport(ABC):
    @abstractmethod
    async def request_connection(self) -> PortInfo:
        """Select a port.

        Raises:
            UserCancelled: no port was chosen.
        """

    @abstractmethod
    async def open(self, handle: PortInfo, config: SerialConfig) -> None:
        """Open the port with the given parameters.

        Raises:
            OpenFailed: the port is busy, missing, or rejects the parameters.
        """

    @abstractmethod
    def read_stream(self, handle: PortInfo) -> AsyncIterator[bytes]:
        """Yield received chunks until the port closes.

        Cancelling the consuming task must stop the read promptly. Not
        restartable: call again after reopening.

        Raises:
            StreamFault: the link failed mid-read.
        """

    @abstractmethod
    async def close(self, handle: PortInfo) -> None:
        """Close the port. Safe to call when already closed."""

    @abstractmethod
    async def write_bytes(self, handle: PortInfo, data: bytes) -> None:
        """Send raw bytes.

        Raises:
            WriteFailed: the port is closed or the write failed.
        """
