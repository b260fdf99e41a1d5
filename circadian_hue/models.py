"""Data types shared by the scheduler, the effect engine and the API layer.

Payloads coming from the API layer or the settings store use camelCase keys
(``wakeTime``, ``sleepColorTemp`` ...). They are validated with voluptuous and
turned into the dataclasses below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

import voluptuous as vol

from .errors import CoordinateRangeError


class Phase(Enum):
    """Circadian phase of the day, in time-of-day order."""
    NIGHT = "night"
    DAWN = "dawn"
    DAY = "day"
    DUSK = "dusk"


def validate_coordinates(latitude: float, longitude: float) -> None:
    """Raise CoordinateRangeError if either coordinate is out of range."""
    if not -90 <= latitude <= 90:
        raise CoordinateRangeError("lat", latitude)
    if not -180 <= longitude <= 180:
        raise CoordinateRangeError("lng", longitude)


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

LOCATION_SCHEMA = vol.Schema(
    {
        vol.Required("latitude"): vol.Coerce(float),
        vol.Required("longitude"): vol.Coerce(float),
        vol.Optional("city"): vol.Any(None, str),
        vol.Optional("country"): vol.Any(None, str),
    },
    extra=vol.REMOVE_EXTRA,
)

_OPTIONAL_LEVEL = vol.Any(None, vol.Coerce(int))

SCHEDULE_SCHEMA = vol.Schema(
    {
        vol.Required("id"): vol.Coerce(str),
        vol.Optional("name", default=""): vol.Any(None, str),
        vol.Required("wakeTime"): str,
        vol.Required("sleepTime"): str,
        vol.Optional("enabled", default=True): bool,
        vol.Optional("days"): vol.Any(None, [vol.All(vol.Coerce(int), vol.Range(min=0, max=6))]),
        vol.Optional("wakeBrightness"): _OPTIONAL_LEVEL,
        vol.Optional("wakeColorTemp"): _OPTIONAL_LEVEL,
        vol.Optional("sleepBrightness"): _OPTIONAL_LEVEL,
        vol.Optional("sleepColorTemp"): _OPTIONAL_LEVEL,
    },
    extra=vol.REMOVE_EXTRA,
)

EFFECT_SETTINGS_SCHEMA = vol.Schema(
    {
        vol.Optional("speed"): vol.Any(None, vol.All(vol.Coerce(float), vol.Range(min=0))),
        vol.Optional("intensity"): vol.Any(None, vol.All(vol.Coerce(float), vol.Range(min=0, max=100))),
        vol.Optional("duration"): vol.Any(None, vol.All(vol.Coerce(float), vol.Range(min=0))),
        vol.Optional("colors"): vol.Any(None, [str]),
    },
    extra=vol.REMOVE_EXTRA,
)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Location:
    """Geographic location used for solar computations."""
    latitude: float
    longitude: float
    city: Optional[str] = None
    country: Optional[str] = None

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Location":
        clean = LOCATION_SCHEMA(data)
        return cls(
            latitude=clean["latitude"],
            longitude=clean["longitude"],
            city=clean.get("city"),
            country=clean.get("country"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"latitude": self.latitude, "longitude": self.longitude}
        if self.city is not None:
            result["city"] = self.city
        if self.country is not None:
            result["country"] = self.country
        return result


@dataclass(frozen=True)
class ScheduleEntry:
    """A user's wake/sleep schedule.

    ``days`` holds weekday indices with 0 = Sunday ... 6 = Saturday. An empty
    or missing set means every day.
    """
    id: str
    name: str
    wake_time: str
    sleep_time: str
    enabled: bool = True
    days: Optional[FrozenSet[int]] = None
    wake_brightness: Optional[int] = None
    wake_color_temp: Optional[int] = None
    sleep_brightness: Optional[int] = None
    sleep_color_temp: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleEntry":
        clean = SCHEDULE_SCHEMA(data)
        days = clean.get("days")
        return cls(
            id=clean["id"],
            name=clean.get("name") or "",
            wake_time=clean["wakeTime"],
            sleep_time=clean["sleepTime"],
            enabled=clean.get("enabled", True),
            days=frozenset(days) if days else None,
            wake_brightness=clean.get("wakeBrightness"),
            wake_color_temp=clean.get("wakeColorTemp"),
            sleep_brightness=clean.get("sleepBrightness"),
            sleep_color_temp=clean.get("sleepColorTemp"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "wakeTime": self.wake_time,
            "sleepTime": self.sleep_time,
            "enabled": self.enabled,
        }
        if self.days:
            result["days"] = sorted(self.days)
        optional = {
            "wakeBrightness": self.wake_brightness,
            "wakeColorTemp": self.wake_color_temp,
            "sleepBrightness": self.sleep_brightness,
            "sleepColorTemp": self.sleep_color_temp,
        }
        result.update({k: v for k, v in optional.items() if v is not None})
        return result

    def runs_on(self, weekday: int) -> bool:
        """Whether the entry applies on ``weekday`` (0 = Sunday)."""
        return not self.days or weekday in self.days


@dataclass
class EffectSettings:
    """User-tunable parameters of an effect. Unset fields take the effect's defaults."""
    speed: Optional[float] = None
    intensity: Optional[float] = None
    duration: Optional[float] = None
    colors: Optional[List[str]] = field(default=None)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EffectSettings":
        clean = EFFECT_SETTINGS_SCHEMA(data or {})
        return cls(
            speed=clean.get("speed"),
            intensity=clean.get("intensity"),
            duration=clean.get("duration"),
            colors=list(clean["colors"]) if clean.get("colors") else None,
        )

    def merged_with(self, defaults: Dict[str, Any]) -> "EffectSettings":
        """Return a copy where every unset field is filled from ``defaults``."""
        return EffectSettings(
            speed=self.speed if self.speed is not None else defaults.get("speed"),
            intensity=self.intensity if self.intensity is not None else defaults.get("intensity"),
            duration=self.duration if self.duration else defaults.get("duration"),
            colors=list(self.colors) if self.colors else list(defaults.get("colors") or []),
        )
