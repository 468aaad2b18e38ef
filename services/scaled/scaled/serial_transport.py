from __future__ import annotations
import asyncio
import functools
import logging
from typing import AsyncIterator, Iterable, List, Optional

import serial
from serial.tools import list_ports

from .errors import OpenFailed, StreamFault, UserCancelled, WriteFailed
from .models import SerialConfig
from .transport import PortInfo, Transport

logger = logging.getLogger(__name__)

PARITY_MAP = {
    "none": serial.PARITY_NONE,
    "even": serial.PARITY_EVEN,
    "odd": serial.PARITY_ODD,
}

STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

BYTESIZE_MAP = {
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}

# USB-serial adapters commonly used with scale indicators
DEFAULT_PORT_HINTS = ["usb", "ttyacm", "ch340", "pl2303", "ftdi"]


def discover_ports(hints: Optional[Iterable[str]] = None) -> List[PortInfo]:
    """List serial ports, the ones matching a hint first."""
    found = [PortInfo(device=p.device, description=p.description) for p in list_ports.comports()]
    hints = [h.lower() for h in (hints if hints is not None else DEFAULT_PORT_HINTS)]

    def rank(port: PortInfo) -> int:
        text = f"{port.device} {port.description or ''}".lower()
        for i, hint in enumerate(hints):
            if hint in text:
                return i
        return len(hints)

    return sorted(found, key=rank)


def _close_orphan(handle: PortInfo, fut: asyncio.Future) -> None:
    """Close a port whose open() was cancelled while the worker was running."""
    if fut.cancelled() or fut.exception() is not None:
        return
    try:
        fut.result().close()
        logger.info(f"Closed {handle.device} opened after cancellation")
    except (serial.SerialException, OSError) as e:
        logger.warning(f"Error closing {handle.device}: {e}")


class SerialTransport(Transport):
    """
    pyserial-backed transport.

    pyserial is blocking, so every call runs in a worker thread. Reads use a
    short timeout and close() calls cancel_read(), so a pending read returns
    quickly once the reader task is cancelled.
    """

    def __init__(
        self,
        port: Optional[str] = None,
        read_size: int = 255,
        read_timeout: float = 0.1,
        port_hints: Optional[Iterable[str]] = None,
    ) -> None:
        self.port = port
        self.read_size = read_size
        self.read_timeout = read_timeout
        self.port_hints = list(port_hints) if port_hints is not None else None
        self._ser: Optional[serial.Serial] = None

    async def request_connection(self) -> PortInfo:
        if self.port:
            return PortInfo(device=self.port)
        ports = await asyncio.to_thread(discover_ports, self.port_hints)
        if not ports:
            raise UserCancelled("No serial port found")
        logger.info(f"Selected serial port {ports[0].device} ({ports[0].description})")
        return ports[0]

    async def open(self, handle: PortInfo, config: SerialConfig) -> None:
        await self.close(handle)
        pending = asyncio.ensure_future(
            asyncio.to_thread(
                serial.Serial,
                port=handle.device,
                baudrate=config.baudrate,
                bytesize=BYTESIZE_MAP[config.databits],
                parity=PARITY_MAP[config.parity],
                stopbits=STOPBITS_MAP[config.stopbits],
                timeout=self.read_timeout,
                write_timeout=1.0,
            )
        )
        try:
            self._ser = await asyncio.shield(pending)
        except asyncio.CancelledError:
            # the worker thread still finishes opening the port
            pending.add_done_callback(functools.partial(_close_orphan, handle))
            raise
        except (serial.SerialException, ValueError, OSError) as e:
            self._ser = None
            raise OpenFailed(f"Failed to open {handle.device} at {config.label}: {e}") from e

    async def read_stream(self, handle: PortInfo) -> AsyncIterator[bytes]:
        ser = self._ser
        while ser is not None and ser.is_open:
            try:
                data = await asyncio.to_thread(ser.read, self.read_size)
            except (serial.SerialException, OSError, TypeError) as e:
                # closed underneath us by close()
                if not ser.is_open:
                    return
                raise StreamFault(f"Read from {handle.device} failed: {e}") from e
            if data:
                yield data

    async def close(self, handle: PortInfo) -> None:
        ser, self._ser = self._ser, None
        if ser is None:
            return

        def _close() -> None:
            try:
                ser.cancel_read()
            except (AttributeError, serial.SerialException):
                pass
            ser.close()

        try:
            await asyncio.to_thread(_close)
        except (serial.SerialException, OSError) as e:
            logger.warning(f"Error closing {handle.device}: {e}")

    async def write_bytes(self, handle: PortInfo, data: bytes) -> None:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise WriteFailed(f"{handle.device} is not open")
        try:
            await asyncio.to_thread(ser.write, data)
        except serial.SerialException as e:
            raise WriteFailed(f"Write to {handle.device} failed: {e}") from e
