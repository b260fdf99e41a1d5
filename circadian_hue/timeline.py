"""Daily circadian timeline – the day split into night/dawn/day/dusk segments."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .const import PHASE_SETTINGS
from .models import Location, Phase
from .sun import SolarPhaseCalculator, day_bounds

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimelineSegment:
    """One phase of the day with its target light state."""
    phase: Phase
    start: datetime
    end: datetime
    brightness: int
    color_temp: int

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "brightness": self.brightness,
            "colorTemp": self.color_temp,
        }


def build_daily_timeline(
    location: Location,
    reference: Optional[datetime] = None,
    calculator: Optional[SolarPhaseCalculator] = None,
) -> List[TimelineSegment]:
    """Build the ordered phase segments for the day containing ``reference``.

    Each candidate segment is clipped to [start of day, end of day). Segments
    left empty by the clipping are dropped, which happens at high latitudes
    when a phase does not occur that day.

    Args:
        location: Where to compute the sun for
        reference: Any instant within the day (defaults to now)
        calculator: Solar calculator to use (defaults to a UTC calculator)

    Returns:
        Between one and four contiguous segments covering the whole day
    """
    calculator = calculator or SolarPhaseCalculator()
    local = calculator.localize(reference)
    start_of_day, end_of_day = day_bounds(local.date(), calculator.tzinfo)

    times = calculator.get_sun_times(location.latitude, location.longitude, local)

    candidates = [
        (Phase.NIGHT, start_of_day, times.civil_twilight_begin),
        (Phase.DAWN, times.civil_twilight_begin, times.sunrise),
        (Phase.DAY, times.sunrise, times.civil_twilight_end),
        (Phase.DUSK, times.civil_twilight_end, end_of_day),
    ]

    segments: List[TimelineSegment] = []
    for phase, start, end in candidates:
        clipped_start = max(start, start_of_day)
        clipped_end = min(end, end_of_day)
        if clipped_end <= clipped_start:
            logger.debug(f"Dropping empty {phase.value} segment for {local.date()}")
            continue
        setting = PHASE_SETTINGS[phase.value]
        segments.append(
            TimelineSegment(
                phase=phase,
                start=clipped_start,
                end=clipped_end,
                brightness=setting["brightness"],
                color_temp=setting["color_temp"],
            )
        )
    return segments
