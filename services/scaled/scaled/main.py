from __future__ import annotations
import asyncio
import contextlib
import logging
import os
import signal
import time
from typing import List, Optional

from .config import load_config
from .demo_transport import DemoTransport
from .errors import ScaleError
from .models import Config, Reading
from .mqtt_client import MQTTClient
from .reader import ScaleReader
from .serial_transport import SerialTransport
from .transport import Transport

logger = logging.getLogger(__name__)


class AppContext:
    """Owns the scale reader and bridges its readings and status to MQTT."""

    def __init__(self, cfg: Optional[Config] = None, transport: Optional[Transport] = None) -> None:
        self.started = time.time()
        self.cfg = cfg or load_config()
        self.version = os.getenv("VERSION", "0.0.0")
        if transport is None:
            if self.cfg.demo_mode:
                transport = DemoTransport()
            else:
                transport = SerialTransport(port=self.cfg.serial_port)
        self.reader = ScaleReader(
            transport,
            candidates=self.cfg.candidates,
            probe_window=self.cfg.probe_window_s,
            min_valid_readings=self.cfg.probe_min_readings,
        )
        self.mqtt = MQTTClient(
            host=self.cfg.mqtt_host,
            port=self.cfg.mqtt_port,
            username=self.cfg.mqtt_user,
            password=self.cfg.mqtt_pass,
            on_cmd=self._on_cmd,
            cmd_topic=self.cfg.cmd_topic,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reconnect: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []
        self._unsubscribe = None

    def _on_cmd(self, payload: dict) -> None:
        # Called from the MQTT network thread
        action = payload.get("action")
        if self._loop is None:
            return
        if action == "request_weight":
            asyncio.run_coroutine_threadsafe(self.reader.request_weight(), self._loop)
        elif action == "reconnect" and self._reconnect is not None:
            self._loop.call_soon_threadsafe(self._reconnect.set)
        else:
            logger.warning(f"Unknown command: {payload}")

    def _publish_reading(self, reading: Reading) -> None:
        if self.cfg.mqtt_host:
            self.mqtt.publish(self.cfg.weight_topic, reading.payload(), qos=0)

    def status_info(self) -> dict:
        data = self.reader.status().model_dump(mode="json")
        data["uptime_s"] = int(time.time() - self.started)
        data["mqtt"] = "connected" if self.mqtt.connected else "disconnected"
        data["version"] = self.version
        return data

    async def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._reconnect = asyncio.Event()
        self._unsubscribe = self.reader.subscribe(self._publish_reading)
        self.mqtt.start()
        self._tasks = [
            asyncio.create_task(self._supervisor()),
            asyncio.create_task(self._status_publisher()),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        await self.reader.disconnect()
        self.mqtt.stop()

    async def _supervisor(self) -> None:
        """Keep the scale connected, reconnecting after failures or on request."""
        while True:
            if not (self.reader.is_connected and self.reader.is_reading):
                try:
                    if await self.reader.connect():
                        logger.info(f"Scale ready: {self.reader.status().config}")
                    else:
                        logger.warning(f"Scale not connected: {self.reader.state.last_error}")
                except ScaleError as e:
                    logger.error(f"Scale connect failed: {e}")
                except Exception:
                    logger.exception("Unexpected error in scale supervisor")
            try:
                await asyncio.wait_for(self._reconnect.wait(), timeout=self.cfg.reconnect_delay_s)
            except asyncio.TimeoutError:
                continue
            self._reconnect.clear()
            logger.info("Reconnect requested")
            await self.reader.disconnect()

    async def _status_publisher(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.status_interval_s)
            if self.cfg.mqtt_host:
                self.mqtt.publish(self.cfg.status_topic, self.status_info(), qos=0)


async def serve(ctx: AppContext) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await ctx.start()
    try:
        await stop.wait()
    finally:
        await ctx.stop()
