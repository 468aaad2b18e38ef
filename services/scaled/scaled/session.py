from __future__ import annotations
import asyncio
import logging
from typing import AsyncIterator, Callable, List, Optional

from .models import ConnectionStatus, ErrorKind, Reading, ScaleStatus, SerialConfig

logger = logging.getLogger(__name__)


class SessionState:
    """
    Live state of one scale connection.

    Only the reader mutates it. Weight and stability always change together
    through apply(); they are cleared when a connect attempt starts and on
    disconnect, so consumers never see a weight from a previous session.
    """

    def __init__(self) -> None:
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.current_weight: Optional[float] = None
        self.is_stable = False
        self.last_error: Optional[str] = None
        self.error_kind: Optional[ErrorKind] = None
        self.active_config: Optional[SerialConfig] = None
        self.last_reading: Optional[Reading] = None
        self.last_line: Optional[str] = None

    def apply(self, reading: Reading) -> None:
        self.current_weight = reading.weight_kg
        self.is_stable = reading.stable
        self.last_reading = reading

    def clear_weight(self) -> None:
        self.current_weight = None
        self.is_stable = False
        self.last_reading = None

    def begin_connect(self) -> None:
        self.clear_weight()
        self.active_config = None
        self.last_error = None
        self.error_kind = None
        self.connection_status = ConnectionStatus.CONNECTING

    def mark_connected(self, config: SerialConfig) -> None:
        self.active_config = config
        self.last_error = None
        self.error_kind = None
        self.connection_status = ConnectionStatus.CONNECTED

    def mark_failed(self, kind: ErrorKind, message: str) -> None:
        self.clear_weight()
        self.active_config = None
        self.connection_status = ConnectionStatus.DISCONNECTED
        self.error_kind = kind
        self.last_error = message

    def record_fault(self, kind: ErrorKind, message: str) -> None:
        self.error_kind = kind
        self.last_error = message

    def reset(self) -> None:
        self.clear_weight()
        self.active_config = None
        self.last_line = None
        self.connection_status = ConnectionStatus.DISCONNECTED

    def snapshot(self) -> ScaleStatus:
        return ScaleStatus(
            connection=self.connection_status,
            weight_kg=self.current_weight,
            stable=self.is_stable,
            error=self.last_error,
            error_kind=self.error_kind,
            config=self.active_config.label if self.active_config else None,
        )


class ReadingBus:
    """Fan-out of accepted readings to callbacks and async listeners."""

    def __init__(self) -> None:
        self._callbacks: List[Callable[[Reading], None]] = []
        self._queues: List[asyncio.Queue] = []

    def subscribe(self, callback: Callable[[Reading], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def listen(self, maxsize: int = 100) -> AsyncIterator[Reading]:
        """Yield readings as they are published, oldest dropped when full."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)

    def publish(self, reading: Reading) -> None:
        for callback in list(self._callbacks):
            try:
                callback(reading)
            except Exception as e:
                logger.warning(f"Reading subscriber failed: {e}", exc_info=True)
        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(reading)
