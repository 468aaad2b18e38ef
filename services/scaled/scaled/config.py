from __future__ import annotations
import json
import os
import logging
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from .models import Config, DEFAULT_CANDIDATES

logger = logging.getLogger(__name__)


def data_dir() -> Path:
    return Path(os.getenv("DATA_DIR", "/data"))


def config_path() -> Path:
    return data_dir() / "config.json"


def getenv_int(name: str, default: int) -> int:
    """Safely get an integer environment variable with fallback to default."""
    value = os.getenv(name)
    if not value or value.strip() == "":
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Invalid integer value for {name}='{value}', using default {default}")
        return default


def getenv_float(name: str, default: float) -> float:
    """Safely get a float environment variable with fallback to default."""
    value = os.getenv(name)
    if not value or value.strip() == "":
        return default
    try:
        return float(value.strip())
    except ValueError:
        logger.warning(f"Invalid float value for {name}='{value}', using default {default}")
        return default


def getenv_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if not value or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def env_defaults() -> Dict[str, Any]:
    candidates = os.getenv("SCALE_CANDIDATES") or None
    return dict(
        serial_port=os.getenv("SERIAL_PORT") or None,
        candidates=candidates if candidates else list(DEFAULT_CANDIDATES),
        probe_window_s=getenv_float("PROBE_WINDOW_S", 2.5),
        probe_min_readings=getenv_int("PROBE_MIN_READINGS", 2),
        reconnect_delay_s=getenv_float("RECONNECT_DELAY_S", 5.0),
        demo_mode=getenv_bool("DEMO_MODE"),
        mqtt_host=os.getenv("MQTT_HOST") or None,
        mqtt_port=getenv_int("MQTT_PORT", 1883),
        mqtt_user=os.getenv("MQTT_USER") or None,
        mqtt_pass=os.getenv("MQTT_PASS") or None,
        weight_topic=os.getenv("WEIGHT_TOPIC", "scale/weight"),
        status_topic=os.getenv("STATUS_TOPIC", "scale/status"),
        cmd_topic=os.getenv("CMD_TOPIC", "scale/cmd"),
        status_interval_s=getenv_float("STATUS_INTERVAL_S", 10.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def load_config() -> Config:
    """Environment defaults, overridden by $DATA_DIR/config.json when present."""
    values = env_defaults()
    path = config_path()
    if path.exists():
        try:
            values.update(json.loads(path.read_text()))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable config file {path}: {e}")
    try:
        return Config(**values)
    except ValidationError as e:
        logger.error(f"Invalid configuration, falling back to defaults: {e}")
        return Config()
