"""Runtime configuration, read from environment variables."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .const import (
    DEFAULT_COLOR_MAP,
    DEFAULT_TRANSITION_TIME,
    DEFAULT_UPDATE_INTERVAL,
)

logger = logging.getLogger(__name__)


def _get_data_directory() -> str:
    """Get the appropriate data directory based on environment."""
    override = os.getenv("HUE_DATA_DIR")
    if override:
        os.makedirs(override, exist_ok=True)
        return override
    if os.path.exists("/config"):
        data_dir = "/config/circadian-hue"
        os.makedirs(data_dir, exist_ok=True)
        return data_dir
    elif os.path.exists("/data"):
        return "/data"
    else:
        # Running in development - use local .data directory
        data_dir = os.path.join(os.path.dirname(__file__), ".data")
        os.makedirs(data_dir, exist_ok=True)
        return data_dir


def _float_or_none(value: Optional[str]) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric value '{value}'")
        return None


def load_color_map(path: Optional[str]) -> Dict[str, Dict[str, int]]:
    """Load a named-color map from JSON, falling back to the built-in one.

    Entries in the file override or extend the defaults, e.g.
    ``{"warm": {"ct": 420}, "magenta": {"hue": 54000, "sat": 254}}``.
    """
    colors = {name: dict(value) for name, value in DEFAULT_COLOR_MAP.items()}
    if not path:
        return colors
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to load color map from {path}, using defaults: {e}")
        return colors

    if not isinstance(data, dict):
        logger.warning(f"Invalid color map format at {path}, using defaults")
        return colors

    for name, value in data.items():
        if isinstance(value, dict):
            colors[str(name)] = {k: int(v) for k, v in value.items() if k in ("ct", "hue", "sat")}
    logger.info(f"Loaded {len(data)} color(s) from {path}")
    return colors


@dataclass
class Config:
    """Service configuration."""

    timezone: str = "UTC"
    update_interval: float = DEFAULT_UPDATE_INTERVAL
    transition_time: int = DEFAULT_TRANSITION_TIME
    data_dir: Optional[str] = None
    request_timeout: float = 10.0
    log_level: str = "INFO"
    color_map: Dict[str, Dict[str, int]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_COLOR_MAP.items()}
    )
    # Optional seeds for the settings store
    bridge_ip: Optional[str] = None
    bridge_username: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def settings_path(self) -> Optional[str]:
        if not self.data_dir:
            return None
        return os.path.join(self.data_dir, "circadian_hue_settings.json")

    @classmethod
    def from_env(cls) -> "Config":
        """Build the configuration from environment variables."""
        timezone = os.getenv("CIRCADIAN_TIMEZONE") or os.getenv("TZ") or "UTC"
        return cls(
            timezone=timezone,
            update_interval=float(os.getenv("CIRCADIAN_UPDATE_INTERVAL", str(DEFAULT_UPDATE_INTERVAL))),
            transition_time=int(os.getenv("CIRCADIAN_TRANSITION_TIME", str(DEFAULT_TRANSITION_TIME))),
            data_dir=_get_data_directory(),
            request_timeout=float(os.getenv("HUE_REQUEST_TIMEOUT", "10")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            color_map=load_color_map(os.getenv("HUE_COLOR_MAP")),
            bridge_ip=os.getenv("HUE_BRIDGE_IP") or None,
            bridge_username=os.getenv("HUE_BRIDGE_USERNAME") or None,
            latitude=_float_or_none(os.getenv("CIRCADIAN_LATITUDE")),
            longitude=_float_or_none(os.getenv("CIRCADIAN_LONGITUDE")),
        )
