"""
Scale reader: connection lifecycle, serial config probing and the read pump.

Industrial scale indicators don't announce their serial settings, so
connect() opens the port with each candidate config in turn, streams for
a short probe window, and keeps the first config under which at least a
couple of lines decode into plausible weights.
"""
from __future__ import annotations
import asyncio
import contextlib
import logging
from typing import AsyncIterator, Callable, List, Optional, Sequence

from .decoder import try_decode
from .errors import OpenFailed, ProbeExhausted, StreamFault, UserCancelled, WriteFailed
from .framer import LineFramer
from .models import DEFAULT_CANDIDATES, ConnectionStatus, ErrorKind, Reading, ScaleStatus, SerialConfig
from .session import ReadingBus, SessionState
from .transport import PortInfo, Transport

logger = logging.getLogger(__name__)

PROBE_WINDOW_S = 2.5
MIN_VALID_READINGS = 2
SETTLE_DELAY_S = 0.3  # pause after closing before reopening the same port
REQUEST_COMMAND = b"P\r\n"  # "print" command understood by most indicators

NO_PORT_MESSAGE = "No serial port selected"
PROBE_EXHAUSTED_MESSAGE = (
    "Could not find a matching serial configuration. Check the scale's communication settings."
)


class ScaleReader:
    def __init__(
        self,
        transport: Transport,
        candidates: Optional[Sequence[SerialConfig]] = None,
        probe_window: float = PROBE_WINDOW_S,
        min_valid_readings: int = MIN_VALID_READINGS,
        settle_delay: float = SETTLE_DELAY_S,
        request_command: bytes = REQUEST_COMMAND,
    ) -> None:
        self.transport = transport
        self.candidates: List[SerialConfig] = list(candidates or DEFAULT_CANDIDATES)
        self.probe_window = probe_window
        self.min_valid_readings = max(1, min_valid_readings)
        self.settle_delay = settle_delay
        self.request_command = request_command

        self.state = SessionState()
        self.bus = ReadingBus()
        self._framer = LineFramer()
        self._handle: Optional[PortInfo] = None
        self._port_open = False
        self._valid_count = 0
        self._reader_task: Optional[asyncio.Task] = None
        self._connect_task: Optional[asyncio.Task] = None

    # --- queries ---

    @property
    def is_connected(self) -> bool:
        return self.state.connection_status == ConnectionStatus.CONNECTED

    @property
    def is_reading(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    @property
    def valid_readings(self) -> int:
        """Readings accepted since the current config was opened."""
        return self._valid_count

    def status(self) -> ScaleStatus:
        return self.state.snapshot()

    def get_current_weight(self) -> Optional[float]:
        return self.state.current_weight

    def get_stable_weight(self) -> Optional[float]:
        """Weight to record for a weighing: only when the scale reports stable."""
        if self.state.is_stable and self.state.current_weight is not None:
            return self.state.current_weight
        return None

    async def wait_for_stable_weight(self, timeout: float = 10.0) -> Optional[float]:
        """Wait for a stable, non-zero weight. Returns None on timeout."""
        current = self.get_stable_weight()
        if current is not None and current > 0:
            return current

        fut = asyncio.get_running_loop().create_future()

        def on_reading(reading: Reading) -> None:
            if reading.stable and reading.weight_kg > 0 and not fut.done():
                fut.set_result(reading.weight_kg)

        unsubscribe = self.bus.subscribe(on_reading)
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            unsubscribe()

    # --- subscriptions ---

    def subscribe(self, callback: Callable[[Reading], None]) -> Callable[[], None]:
        return self.bus.subscribe(callback)

    def listen(self) -> AsyncIterator[Reading]:
        return self.bus.listen()

    # --- lifecycle ---

    async def connect(self) -> bool:
        """Select a port and probe candidate configs. True once one is locked in.

        Any previous connection or in-flight attempt is torn down first. If
        this attempt is itself superseded by another connect() or by
        disconnect(), it returns False.
        """
        await self._cancel_connect()
        await self._teardown()

        task = asyncio.ensure_future(self._connect())
        self._connect_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            if self._connect_task is task:
                self._connect_task = None
            raise
        if self._connect_task is task:
            self._connect_task = None
        if task.cancelled():
            return False
        return task.result()

    async def disconnect(self) -> None:
        """Stop reading, close the port and clear the live weight. Always safe."""
        await self._cancel_connect()
        await self._teardown()
        logger.info("Scale disconnected")

    async def request_weight(self) -> None:
        """Ask the indicator to send a reading. Best effort: failures are logged."""
        if self._handle is None or not self._port_open:
            logger.debug("request_weight ignored: port not open")
            return
        try:
            await self.transport.write_bytes(self._handle, self.request_command)
        except WriteFailed as e:
            logger.warning(f"Weight request failed: {e}")

    # --- internals ---

    async def _connect(self) -> bool:
        self.state.begin_connect()
        try:
            config = await self._probe_all()
        except UserCancelled as e:
            logger.info(f"Connect aborted: {e}")
            await self._teardown()
            self.state.mark_failed(ErrorKind.NO_PORT_SELECTED, NO_PORT_MESSAGE)
            return False
        except ProbeExhausted as e:
            logger.warning(str(e))
            await self._teardown()
            self.state.mark_failed(ErrorKind.PROBE_EXHAUSTED, PROBE_EXHAUSTED_MESSAGE)
            return False
        except asyncio.CancelledError:
            logger.info("Connect attempt cancelled")
            await self._teardown()
            raise
        except Exception:
            logger.error("Unexpected error while connecting", exc_info=True)
            await self._teardown()
            raise

        self.state.mark_connected(config)
        logger.info(
            f"Connected to {self._handle.device} at {config.label} "
            f"({self._valid_count} valid readings)"
        )
        return True

    async def _probe_all(self) -> SerialConfig:
        handle = await self.transport.request_connection()
        self._handle = handle

        settle = False
        for config in self.candidates:
            if settle:
                await asyncio.sleep(self.settle_delay)
            result = await self._try_candidate(handle, config)
            if result:
                return config
            # result is None when open() failed and nothing needs to settle
            settle = result is not None

        raise ProbeExhausted(
            f"No candidate config produced {self.min_valid_readings} readings on {handle.device}"
        )

    async def _try_candidate(self, handle: PortInfo, config: SerialConfig) -> Optional[bool]:
        self._framer.reset()
        self._valid_count = 0
        await self._close_port()

        logger.info(f"Trying {config.label} on {handle.device}")
        try:
            await self.transport.open(handle, config)
        except OpenFailed as e:
            logger.warning(f"Skipping {config.label}: {e}")
            return None
        self._port_open = True

        self._reader_task = asyncio.ensure_future(self._read_loop(handle))
        await asyncio.sleep(self.probe_window)

        if self._valid_count >= self.min_valid_readings:
            return True
        logger.warning(f"{config.label}: {self._valid_count} valid readings, trying next config")
        await self._close_port()
        return False

    async def _read_loop(self, handle: PortInfo) -> None:
        try:
            async for chunk in self.transport.read_stream(handle):
                for line in self._framer.feed(chunk):
                    self._handle_line(line)
            logger.info(f"Serial stream on {handle.device} ended")
        except StreamFault as e:
            logger.warning(f"Serial stream fault, stopping reader: {e}")
            if self.is_connected:
                self.state.record_fault(ErrorKind.STREAM_FAULT, str(e))
        except Exception as e:
            logger.exception(f"Reader on {handle.device} failed")
            if self.is_connected:
                self.state.record_fault(ErrorKind.STREAM_FAULT, str(e))

    def _handle_line(self, line: str) -> None:
        self.state.last_line = line.strip()
        reading = try_decode(line)
        if reading is None:
            return
        self.state.apply(reading)
        self._valid_count += 1
        logger.debug(f"{reading.weight_kg} kg stable={reading.stable} count={self._valid_count}")
        self.bus.publish(reading)

    async def _stop_reading(self) -> None:
        task, self._reader_task = self._reader_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning(f"Reader task ended with an error: {e!r}")

    async def _close_port(self) -> None:
        await self._stop_reading()
        if self._handle is not None:
            await self.transport.close(self._handle)
        self._port_open = False

    async def _cancel_connect(self) -> None:
        task, self._connect_task = self._connect_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _teardown(self) -> None:
        await self._close_port()
        self._handle = None
        self._framer.reset()
        self._valid_count = 0
        self.state.reset()
