from __future__ import annotations
import json
import logging
import threading
from typing import Callable, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTClient:
    def __init__(
        self,
        host: Optional[str],
        port: int,
        username: Optional[str],
        password: Optional[str],
        client_id: str = "scaled",
        on_cmd: Optional[Callable[[dict], None]] = None,
        cmd_topic: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.client_id = client_id
        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id, clean_session=True
        )
        self._client.enable_logger(logger)
        if username and password:
            self._client.username_pw_set(username, password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._on_cmd = on_cmd
        self._cmd_topic = cmd_topic
        self._connected = False
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def _on_connect(self, client, userdata, flags, reason_code, properties):  # type: ignore
        self._connected = not reason_code.is_failure
        if self._connected:
            logger.info(f"MQTT connected to {self.host}:{self.port}")
            if self._cmd_topic:
                client.subscribe(self._cmd_topic, qos=1)
        else:
            logger.warning(f"MQTT connect refused: {reason_code}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):  # type: ignore
        self._connected = False

    def _on_message(self, client, userdata, msg):  # type: ignore
        if not self._on_cmd:
            return
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Ignoring malformed command on {msg.topic}: {e}")
            return
        if not isinstance(payload, dict):
            logger.warning(f"Ignoring non-object command on {msg.topic}")
            return
        self._on_cmd(payload)

    def start(self) -> None:
        if not self.host:
            return
        def loop():
            backoff = 1
            while not self._stop.is_set():
                try:
                    self._client.connect(self.host, self.port, keepalive=30)
                    self._client.loop_forever(retry_first_connection=True)
                except Exception as e:
                    self._connected = False
                    logger.warning(f"MQTT connection to {self.host}:{self.port} failed: {e}")
                    self._stop.wait(backoff)
                    backoff = min(30, backoff * 2)
        self._thread = threading.Thread(target=loop, name="mqtt", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        try:
            self._client.disconnect()
        except Exception as e:
            logger.debug(f"MQTT disconnect: {e}")
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)

    def publish(self, topic: str, payload: dict, qos: int = 0, retain: bool = False) -> None:
        if not self.host:
            return
        try:
            self._client.publish(topic, json.dumps(payload), qos=qos, retain=retain)
        except Exception as e:
            logger.warning(f"MQTT publish to {topic} failed: {e}")

    @property
    def connected(self) -> bool:
        return self._connected
