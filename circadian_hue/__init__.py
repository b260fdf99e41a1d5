from .bridge import BridgeCommandGateway, HueBridgeClient, LightState, LightSummary
from .const import PRESET_SCENES
from .effects import EFFECTS, EffectEngine
from .errors import (
    BridgeCommandError,
    BridgeError,
    BridgeNotConfiguredError,
    CircadianHueError,
    CoordinateRangeError,
    HueApiError,
    UnknownEffectError,
    UnknownSceneError,
)
from .main import CircadianHueService
from .models import EffectSettings, Location, Phase, ScheduleEntry
from .scheduler import CircadianScheduler, PhaseSnapshot
from .settings import SettingsStore
from .sun import SolarPhaseCalculator, SunTimes
from .timeline import TimelineSegment, build_daily_timeline

__all__ = [
    "BridgeCommandGateway",
    "HueBridgeClient",
    "LightState",
    "LightSummary",
    "PRESET_SCENES",
    "EFFECTS",
    "EffectEngine",
    "BridgeCommandError",
    "BridgeError",
    "BridgeNotConfiguredError",
    "CircadianHueError",
    "CoordinateRangeError",
    "HueApiError",
    "UnknownEffectError",
    "UnknownSceneError",
    "CircadianHueService",
    "EffectSettings",
    "Location",
    "Phase",
    "ScheduleEntry",
    "CircadianScheduler",
    "PhaseSnapshot",
    "SettingsStore",
    "SolarPhaseCalculator",
    "SunTimes",
    "TimelineSegment",
    "build_daily_timeline",
]
