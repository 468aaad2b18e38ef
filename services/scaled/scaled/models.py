from __future__ import annotations
import datetime as dt
import re
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIN_WEIGHT_KG = 0.0
MAX_WEIGHT_KG = 60000.0

_PARITY_CODES = {"N": "none", "E": "even", "O": "odd"}
_CONFIG_RE = re.compile(r"^\s*(\d+)\s*[-/ ]\s*([78])([NEO])([12])\s*$", re.IGNORECASE)


class SerialConfig(BaseModel):
    """Electrical parameters of the serial link, e.g. 9600 baud 7E1."""

    model_config = ConfigDict(frozen=True)

    baudrate: int = Field(gt=0)
    databits: Literal[7, 8] = 8
    stopbits: Literal[1, 2] = 1
    parity: Literal["none", "even", "odd"] = "none"

    @classmethod
    def parse(cls, text: str) -> "SerialConfig":
        """Build a config from the usual short form: '9600-8N1', '2400 7E1'."""
        m = _CONFIG_RE.match(text)
        if not m:
            raise ValueError(f"Invalid serial config {text!r}, expected e.g. '9600-8N1'")
        baud, bits, parity, stop = m.groups()
        return cls(
            baudrate=int(baud),
            databits=int(bits),
            stopbits=int(stop),
            parity=_PARITY_CODES[parity.upper()],
        )

    @property
    def label(self) -> str:
        return f"{self.baudrate} {self.databits}{self.parity[0].upper()}{self.stopbits}"


class Reading(BaseModel):
    model_config = ConfigDict(frozen=True)

    weight_kg: float = Field(ge=MIN_WEIGHT_KG, le=MAX_WEIGHT_KG)
    stable: bool
    unit: str = "kg"
    captured_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))

    def payload(self) -> dict:
        return {
            "weight_kg": self.weight_kg,
            "stable": self.stable,
            "unit": self.unit,
            "ts": self.captured_at.isoformat(),
        }


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ErrorKind(str, Enum):
    NO_PORT_SELECTED = "no_port_selected"
    PROBE_EXHAUSTED = "probe_exhausted"
    STREAM_FAULT = "stream_fault"


class ScaleStatus(BaseModel):
    connection: ConnectionStatus
    weight_kg: Optional[float] = None
    stable: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    config: Optional[str] = None


# Priority order: the configurations seen on site first, then other common settings.
DEFAULT_CANDIDATES: List[SerialConfig] = [
    SerialConfig.parse(text)
    for text in (
        "2400-8N1",
        "2400-7E1",
        "9600-8N1",
        "9600-7E1",
        "9600-7O1",
        "4800-8N1",
        "4800-7E1",
        "19200-8N1",
    )
]


class Config(BaseModel):
    # Scale link
    serial_port: Optional[str] = None  # e.g. /dev/ttyUSB0; None = auto-discover
    candidates: List[SerialConfig] = Field(default_factory=lambda: list(DEFAULT_CANDIDATES))
    probe_window_s: float = 2.5
    probe_min_readings: int = 2
    reconnect_delay_s: float = 5.0
    demo_mode: bool = False

    # MQTT bridge
    mqtt_host: Optional[str] = None
    mqtt_port: int = 1883
    mqtt_user: Optional[str] = None
    mqtt_pass: Optional[str] = None
    weight_topic: str = "scale/weight"
    status_topic: str = "scale/status"
    cmd_topic: str = "scale/cmd"
    status_interval_s: float = 10.0

    log_level: str = "INFO"

    @field_validator("candidates", mode="before")
    @classmethod
    def _parse_candidates(cls, value):
        if isinstance(value, str):
            value = [part for part in value.split(",") if part.strip()]
        return [SerialConfig.parse(v) if isinstance(v, str) else v for v in value]
