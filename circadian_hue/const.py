"""Constants for circadian-hue."""
from typing import Any, Dict, Final, List

# Settings store keys
SETTING_LOCATION: Final = "location"
SETTING_SCHEDULES: Final = "schedules"
SETTING_BRIDGE: Final = "bridge"
SETTING_ACTIVE_EFFECT: Final = "activeEffect"

# Hue reserves group 0 for "all lights"
ALL_LIGHTS_GROUP: Final = "0"

# Hue v1 value ranges (inclusive)
BRI_RANGE: Final = (1, 254)
CT_RANGE: Final = (153, 500)  # mireds
HUE_RANGE: Final = (0, 65535)
SAT_RANGE: Final = (0, 254)

# Solar computation
SUN_CACHE_TTL_HOURS: Final = 24
COORDINATE_PRECISION: Final = 2

# Scheduler
DEFAULT_UPDATE_INTERVAL: Final = 60  # seconds
DEFAULT_TRANSITION_TIME: Final = 4  # deciseconds

# Target state per circadian phase (bri 1-254, ct in mireds)
PHASE_SETTINGS: Final[Dict[str, Dict[str, int]]] = {
    "night": {"brightness": 50, "color_temp": 430},
    "dawn": {"brightness": 120, "color_temp": 360},
    "day": {"brightness": 210, "color_temp": 250},
    "dusk": {"brightness": 140, "color_temp": 380},
}

# Wake/sleep fallbacks when a schedule entry leaves them unset
DEFAULT_WAKE_BRIGHTNESS: Final = 220
DEFAULT_WAKE_COLOR_TEMP: Final = 260
DEFAULT_SLEEP_BRIGHTNESS: Final = 60
DEFAULT_SLEEP_COLOR_TEMP: Final = 420

# Named colors used by effect palettes
DEFAULT_COLOR_MAP: Final[Dict[str, Dict[str, int]]] = {
    "warm": {"ct": 400},
    "white": {"ct": 350},
    "cool": {"ct": 220},
    "red": {"hue": 0, "sat": 254},
    "orange": {"hue": 6000, "sat": 254},
    "yellow": {"hue": 12750, "sat": 254},
    "green": {"hue": 25500, "sat": 254},
    "teal": {"hue": 30000, "sat": 230},
    "cyan": {"hue": 33000, "sat": 254},
    "blue": {"hue": 46920, "sat": 254},
    "purple": {"hue": 50000, "sat": 254},
    "pink": {"hue": 56100, "sat": 200},
}

# Built-in scenes applied to all lights (bri 1-254, ct in mireds)
PRESET_SCENES: Final[List[Dict[str, Any]]] = [
    {"id": "focus", "name": "Focus", "description": "Bright neutral white for productivity",
     "brightness": 220, "color_temp": 250},
    {"id": "relax", "name": "Relax", "description": "Warm amber evening lighting",
     "brightness": 140, "color_temp": 370},
    {"id": "cozy", "name": "Cozy", "description": "Soft warm glow for winding down",
     "brightness": 100, "color_temp": 400},
    {"id": "bright", "name": "Bright", "description": "Full brightness cool daylight",
     "brightness": 254, "color_temp": 220},
]
