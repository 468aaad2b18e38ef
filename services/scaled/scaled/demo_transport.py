"""
Simulated scale for demo mode and for trying the service without hardware.

It only "speaks" when opened with its native serial config, like a real
indicator; any other config yields line noise, so the prober has to find
the right candidate.
"""
from __future__ import annotations
import asyncio
import math
import os
import time
from typing import AsyncIterator, List, Optional

from .errors import WriteFailed
from .models import SerialConfig
from .transport import PortInfo, Transport

DEMO_PORT = PortInfo(device="demo", description="Simulated scale")


class DemoTransport(Transport):
    def __init__(
        self,
        native: Optional[SerialConfig] = None,
        interval: float = 0.2,
        base_kg: float = 1250.0,
        swing_kg: float = 40.0,
    ) -> None:
        self.native = native or SerialConfig.parse("2400-8N1")
        self.interval = interval
        self.base_kg = base_kg
        self.swing_kg = swing_kg
        self.writes: List[bytes] = []
        self._config: Optional[SerialConfig] = None
        self._t0 = time.time()
        self._last: Optional[int] = None

    def sample_line(self) -> bytes:
        """One indicator line: drifting sine wave, stable while it barely moves."""
        t = time.time() - self._t0
        weight = int(round(self.base_kg + self.swing_kg * math.sin(t / 3.0)))
        stable = self._last is not None and abs(weight - self._last) <= 1
        self._last = weight
        tag = "ST" if stable else "US"
        return f"{tag},GS,{weight:+08d}kg\r\n".encode("ascii")

    async def request_connection(self) -> PortInfo:
        return DEMO_PORT

    async def open(self, handle: PortInfo, config: SerialConfig) -> None:
        self._config = config

    async def read_stream(self, handle: PortInfo) -> AsyncIterator[bytes]:
        while self._config is not None:
            await asyncio.sleep(self.interval)
            if self._config == self.native:
                yield self.sample_line()
            else:
                yield os.urandom(16)

    async def close(self, handle: PortInfo) -> None:
        self._config = None

    async def write_bytes(self, handle: PortInfo, data: bytes) -> None:
        if self._config is None:
            raise WriteFailed("demo port is not open")
        self.writes.append(data)
