#!/usr/bin/env python3
"""Solar phase calculations – sunrise, sunset and civil twilight.

The calculator answers three questions for a coordinate:

* when do the four daylight milestones happen on a given calendar day
  (``get_sun_times``),
* which circadian phase is active at a given instant (``get_current_phase``),
* when does the next phase begin (``get_next_phase_change``).

Results are cached per (rounded coordinate, calendar day) for 24 hours. Within
that window the *same* ``SunTimes`` object is returned, so callers can compare
snapshots with ``is``.
"""

from __future__ import annotations

import logging
import time as _time
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Dict, Optional, Tuple, Union

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError  # stdlib ≥3.9
from astral import Observer
from astral import sun as astral_sun

from .const import COORDINATE_PRECISION, SUN_CACHE_TTL_HOURS
from .models import Phase, validate_coordinates

logger = logging.getLogger(__name__)

# Civil twilight: sun 6° below the horizon
CIVIL_DEPRESSION = 6.0


@dataclass(frozen=True)
class SunTimes:
    """Daylight milestones for one coordinate and calendar day."""
    sunrise: datetime
    sunset: datetime
    civil_twilight_begin: datetime
    civil_twilight_end: datetime


SolarAlgorithm = Callable[[float, float, date, tzinfo], SunTimes]


def resolve_timezone(timezone: Union[str, tzinfo, None]) -> tzinfo:
    """Turn a zone name into a tzinfo, falling back to UTC."""
    if isinstance(timezone, tzinfo):
        return timezone
    if not timezone:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s' – falling back to UTC", timezone)
        return ZoneInfo("UTC")


def day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Local midnight of ``day`` and of the following day."""
    start = datetime.combine(day, time(0, 0), tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=tz)
    return start, end


def astral_sun_times(latitude: float, longitude: float, day: date, tz: tzinfo) -> SunTimes:
    """Compute SunTimes with astral.

    Near the poles some events do not happen on a given day and astral raises
    ValueError. Missing boundaries collapse onto the day's edges so that the
    phase sequence stays ordered:

    * sun never up, never in civil twilight → whole day is night
    * sun never down, never below -6°      → whole day is day
    * white nights (no civil darkness)       → twilight spans the day edges
    * twilight but no sunrise                → the lit part of the day is dawn
    """
    observer = Observer(latitude=latitude, longitude=longitude)
    start, end = day_bounds(day, tz)

    try:
        begin = astral_sun.dawn(observer, date=day, depression=CIVIL_DEPRESSION, tzinfo=tz)
        finish = astral_sun.dusk(observer, date=day, depression=CIVIL_DEPRESSION, tzinfo=tz)
        twilight_ok = True
    except ValueError:
        begin = finish = None
        twilight_ok = False

    try:
        rise = astral_sun.sunrise(observer, date=day, tzinfo=tz)
        set_ = astral_sun.sunset(observer, date=day, tzinfo=tz)
        sun_ok = True
    except ValueError:
        rise = set_ = None
        sun_ok = False

    if twilight_ok and sun_ok:
        return SunTimes(sunrise=rise, sunset=set_, civil_twilight_begin=begin, civil_twilight_end=finish)

    noon = astral_sun.noon(observer, date=day, tzinfo=tz)
    sun_up_at_noon = astral_sun.elevation(observer, noon) > 0

    if not twilight_ok and not sun_ok:
        if sun_up_at_noon:
            logger.debug(f"Polar day at ({latitude}, {longitude}) on {day}")
            return SunTimes(sunrise=start, sunset=end, civil_twilight_begin=start, civil_twilight_end=end)
        logger.debug(f"Polar night at ({latitude}, {longitude}) on {day}")
        return SunTimes(sunrise=end, sunset=end, civil_twilight_begin=end, civil_twilight_end=end)

    if sun_ok:
        # Sun sets but never reaches civil darkness
        return SunTimes(sunrise=rise, sunset=set_, civil_twilight_begin=start, civil_twilight_end=end)

    if sun_up_at_noon:
        return SunTimes(sunrise=start, sunset=end, civil_twilight_begin=begin, civil_twilight_end=finish)
    # Twilight only: sun stays below the horizon
    return SunTimes(sunrise=finish, sunset=finish, civil_twilight_begin=begin, civil_twilight_end=finish)


class SolarPhaseCalculator:
    """Memoized solar milestone and phase computations."""

    def __init__(
        self,
        timezone: Union[str, tzinfo, None] = "UTC",
        *,
        ttl: timedelta = timedelta(hours=SUN_CACHE_TTL_HOURS),
        algorithm: SolarAlgorithm = astral_sun_times,
        clock: Callable[[], float] = _time.monotonic,
    ) -> None:
        self.tzinfo = resolve_timezone(timezone)
        self.ttl_seconds = ttl.total_seconds()
        self.algorithm = algorithm
        self._clock = clock
        self._cache: Dict[Tuple[float, float, date], Tuple[SunTimes, float]] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def localize(self, moment: Optional[datetime] = None) -> datetime:
        """Express ``moment`` (default: now) in the calculator's time zone.

        Naive datetimes are taken to already be local wall-clock time.
        """
        if moment is None:
            return datetime.now(self.tzinfo)
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.tzinfo)
        return moment.astimezone(self.tzinfo)

    def _key(self, latitude: float, longitude: float, day: date) -> Tuple[float, float, date]:
        return (
            round(latitude, COORDINATE_PRECISION),
            round(longitude, COORDINATE_PRECISION),
            day,
        )

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (_, expires) in self._cache.items() if expires <= now]
        for key in expired:
            del self._cache[key]

    def get_sun_times(self, latitude: float, longitude: float, moment: Optional[datetime] = None) -> SunTimes:
        """Return the SunTimes for the calendar day containing ``moment``.

        Raises:
            CoordinateRangeError: latitude outside [-90, 90] or longitude
                outside [-180, 180].
        """
        validate_coordinates(latitude, longitude)
        local = self.localize(moment)
        key = self._key(latitude, longitude, local.date())
        now = self._clock()

        entry = self._cache.get(key)
        if entry is not None and entry[1] > now:
            return entry[0]

        self._purge_expired(now)
        times = self.algorithm(latitude, longitude, local.date(), self.tzinfo)
        self._cache[key] = (times, now + self.ttl_seconds)
        logger.debug(
            f"Computed sun times for {key}: dawn {times.civil_twilight_begin.isoformat()}, "
            f"sunrise {times.sunrise.isoformat()}, sunset {times.sunset.isoformat()}, "
            f"dusk {times.civil_twilight_end.isoformat()}"
        )
        return times

    def get_current_phase(self, latitude: float, longitude: float, moment: Optional[datetime] = None) -> Phase:
        """Phase active at ``moment``; a boundary instant belongs to the later phase."""
        local = self.localize(moment)
        times = self.get_sun_times(latitude, longitude, local)
        if local < times.civil_twilight_begin:
            return Phase.NIGHT
        if local < times.sunrise:
            return Phase.DAWN
        if local < times.civil_twilight_end:
            return Phase.DAY
        return Phase.DUSK

    def get_next_phase_change(
        self,
        phase: Phase,
        latitude: float,
        longitude: float,
        moment: Optional[datetime] = None,
    ) -> datetime:
        """Instant at which the phase after ``phase`` begins.

        Dusk runs past midnight, so its successor is the *next* day's civil
        twilight begin rather than today's.
        """
        local = self.localize(moment)
        phase = Phase(phase)
        if phase is Phase.DUSK:
            tomorrow = local + timedelta(days=1)
            return self.get_sun_times(latitude, longitude, tomorrow).civil_twilight_begin

        same_day = self.get_sun_times(latitude, longitude, local)
        if phase is Phase.NIGHT:
            return same_day.civil_twilight_begin
        if phase is Phase.DAWN:
            return same_day.sunrise
        return same_day.civil_twilight_end


# ---------------------------------------------------------------------------
# Module-level helpers bound to a shared UTC calculator
# ---------------------------------------------------------------------------

_default_calculator = SolarPhaseCalculator()


def get_sun_times(latitude: float, longitude: float, moment: Optional[datetime] = None) -> SunTimes:
    return _default_calculator.get_sun_times(latitude, longitude, moment)


def get_current_phase(latitude: float, longitude: float, moment: Optional[datetime] = None) -> Phase:
    return _default_calculator.get_current_phase(latitude, longitude, moment)


def get_next_phase_change(
    phase: Phase, latitude: float, longitude: float, moment: Optional[datetime] = None
) -> datetime:
    return _default_calculator.get_next_phase_change(phase, latitude, longitude, moment)
