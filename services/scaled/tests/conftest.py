from __future__ import annotations
import asyncio
from typing import Dict, List, Optional, Set

import pytest

from scaled.errors import OpenFailed, StreamFault, UserCancelled, WriteFailed
from scaled.models import SerialConfig
from scaled.transport import PortInfo, Transport

CFG_A = SerialConfig.parse("2400-8N1")
CFG_B = SerialConfig.parse("2400-7E1")
CFG_C = SerialConfig.parse("9600-8N1")


class FakeTransport(Transport):
    """In-memory port: scripted chunks per config, then silence until closed."""

    def __init__(
        self,
        streams: Optional[Dict[SerialConfig, List[bytes]]] = None,
        default: Optional[List[bytes]] = None,
        fail_open: Optional[Set[SerialConfig]] = None,
        faulty: Optional[Set[SerialConfig]] = None,
        cancel: bool = False,
        fail_write: bool = False,
    ) -> None:
        self.streams = streams or {}
        self.default = default if default is not None else [b"\x00\xff\xfe garbage \x80\n"]
        self.fail_open = fail_open or set()
        self.faulty = faulty or set()
        self.cancel = cancel
        self.fail_write = fail_write
        self.opened: List[SerialConfig] = []
        self.close_calls = 0
        self.writes: List[bytes] = []
        self._config: Optional[SerialConfig] = None
        self._wake: Optional[asyncio.Event] = None
        self._faulted = False

    @property
    def is_open(self) -> bool:
        return self._config is not None

    async def request_connection(self) -> PortInfo:
        if self.cancel:
            raise UserCancelled("user dismissed the port picker")
        return PortInfo(device="/dev/fake0")

    async def open(self, handle: PortInfo, config: SerialConfig) -> None:
        if config in self.fail_open:
            raise OpenFailed(f"busy at {config.label}")
        self._config = config
        self._wake = asyncio.Event()
        self._faulted = False
        self.opened.append(config)

    async def read_stream(self, handle: PortInfo):
        config = self._config
        wake = self._wake
        for chunk in self.streams.get(config, self.default):
            await asyncio.sleep(0)
            yield chunk
        if config in self.faulty:
            raise StreamFault("framing error")
        await wake.wait()
        if self._faulted:
            raise StreamFault("break condition")

    def inject_fault(self) -> None:
        self._faulted = True
        self._wake.set()

    async def close(self, handle: PortInfo) -> None:
        self.close_calls += 1
        if self._wake is not None:
            self._wake.set()
        self._config = None

    async def write_bytes(self, handle: PortInfo, data: bytes) -> None:
        if self.fail_write or self._config is None:
            raise WriteFailed("write timeout")
        self.writes.append(data)


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def valid_lines():
    return [b"ST,GS,+0000010kg\r\n", b"ST,GS,+0000020kg\r\n", b"US,GS,+0000030kg\r\n"]
