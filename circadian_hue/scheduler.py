#!/usr/bin/env python3
"""Circadian scheduler.

Once per update interval (or immediately on ``request_refresh()``) the
scheduler:

1. Rebuilds today's timeline for the configured location.
2. Applies the current phase's light state when the phase changed, unless an
   effect is playing.
3. Fires each enabled schedule's wake and sleep commands, at most once per
   schedule per calendar day.

Without a location the scheduler is idle and does nothing but keep an empty
timeline.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .bridge import LightState
from .const import (
    DEFAULT_SLEEP_BRIGHTNESS,
    DEFAULT_SLEEP_COLOR_TEMP,
    DEFAULT_TRANSITION_TIME,
    DEFAULT_UPDATE_INTERVAL,
    DEFAULT_WAKE_BRIGHTNESS,
    DEFAULT_WAKE_COLOR_TEMP,
    PHASE_SETTINGS,
)
from .errors import BridgeNotConfiguredError
from .models import Location, Phase, ScheduleEntry
from .sun import SolarPhaseCalculator
from .timeline import TimelineSegment, build_daily_timeline

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([0-1]?\d|2[0-3]):([0-5]\d)$")

PhaseListener = Callable[[Phase, datetime], None]
TimelineListener = Callable[[List[TimelineSegment]], None]


def parse_schedule_time(value: str, day: date, tz) -> Optional[datetime]:
    """Combine an ``HH:MM`` string with ``day`` in ``tz``.

    Returns None for anything that is not a valid 24h time.
    """
    match = TIME_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        return None
    return datetime(day.year, day.month, day.day, int(match.group(1)), int(match.group(2)), tzinfo=tz)


def weekday_index(moment: datetime) -> int:
    """Weekday with 0 = Sunday ... 6 = Saturday."""
    return moment.isoweekday() % 7


@dataclass(frozen=True)
class PhaseSnapshot:
    """Last recorded phase and when it ends."""
    phase: Optional[Phase] = None
    next_change_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value if self.phase else None,
            "nextChangeAt": self.next_change_at.isoformat() if self.next_change_at else None,
        }


@dataclass
class ScheduleRunState:
    """Calendar days on which a schedule last fired successfully."""
    wake: Optional[date] = None
    sleep: Optional[date] = None


class CircadianScheduler:
    """Periodic reconciliation of circadian phase and wake/sleep schedules."""

    def __init__(
        self,
        gateway,
        settings,
        effects,
        calculator: Optional[SolarPhaseCalculator] = None,
        *,
        update_interval: float = DEFAULT_UPDATE_INTERVAL,
        transition_time: int = DEFAULT_TRANSITION_TIME,
        on_phase_change: Optional[PhaseListener] = None,
        on_timeline_change: Optional[TimelineListener] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the scheduler.

        Args:
            gateway: BridgeCommandGateway used for phase and schedule commands
            settings: Settings store holding location and schedules
            effects: EffectEngine consulted (and stopped) before applying states
            calculator: Solar calculator, also defines the local time zone
            update_interval: Seconds between regular ticks
            transition_time: Hue transition time in deciseconds
            on_phase_change: Called with (phase, next_change_at) on phase changes
            on_timeline_change: Called with the new timeline when it changes
            clock: Returns the current time (defaults to now in the calculator's zone)
        """
        self.gateway = gateway
        self.settings = settings
        self.effects = effects
        self.calculator = calculator or SolarPhaseCalculator()
        self.update_interval = update_interval
        self.transition_time = transition_time
        self.on_phase_change = on_phase_change
        self.on_timeline_change = on_timeline_change
        self.clock = clock or (lambda: datetime.now(self.calculator.tzinfo))

        self._location: Optional[Location] = settings.get_location()
        self._schedules: List[ScheduleEntry] = settings.get_schedules()
        self._run_state: Dict[str, ScheduleRunState] = {}
        self._timeline: List[TimelineSegment] = []
        self._phase = PhaseSnapshot()

        self._task: Optional[asyncio.Task] = None
        self._refresh_event: Optional[asyncio.Event] = None

        logger.info(
            f"Scheduler initialized ({'armed' if self._location else 'idle'}, "
            f"{len(self._schedules)} schedule(s))"
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def is_armed(self) -> bool:
        return self._location is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_phase(self) -> PhaseSnapshot:
        return self._phase

    def get_timeline(self) -> List[TimelineSegment]:
        return list(self._timeline)

    def get_location(self) -> Optional[Location]:
        return self._location

    def get_schedules(self) -> List[ScheduleEntry]:
        return list(self._schedules)

    def get_run_state(self, schedule_id: str) -> ScheduleRunState:
        return self._run_state.setdefault(schedule_id, ScheduleRunState())

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.is_running:
            return
        self._refresh_timeline(self.calculator.localize(self.clock()))
        self._refresh_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="circadian-scheduler")
        logger.info(f"Scheduler started (every {self.update_interval}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler stopped")

    def request_refresh(self) -> None:
        """Run a forced tick as soon as possible instead of waiting for the interval."""
        if self._refresh_event is not None:
            self._refresh_event.set()
        else:
            logger.debug("Refresh requested before the scheduler started, ignoring")

    async def _run_loop(self) -> None:
        forced = True
        while True:
            try:
                if not forced:
                    # Wait for the interval OR until a refresh is requested
                    try:
                        await asyncio.wait_for(self._refresh_event.wait(), timeout=self.update_interval)
                        self._refresh_event.clear()
                        forced = True
                    except asyncio.TimeoutError:
                        pass

                await self.tick(force=forced)
                forced = False

            except asyncio.CancelledError:
                logger.debug("Scheduler loop cancelled")
                raise
            except Exception as e:
                logger.error(f"Error in scheduler tick: {e}")
                forced = False

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None, force: bool = False) -> None:
        now = self.calculator.localize(now or self.clock())
        self._refresh_timeline(now)

        if self._location is None:
            logger.debug("No location configured, skipping tick")
            return

        await self._apply_phase(now, force)
        await self._evaluate_schedules(now)

    def _refresh_timeline(self, now: datetime) -> None:
        timeline = build_daily_timeline(self._location, now, self.calculator) if self._location else []
        if timeline == self._timeline:
            return
        self._timeline = timeline
        logger.debug(f"Timeline rebuilt with {len(timeline)} segment(s) for {now.date()}")
        if self.on_timeline_change:
            try:
                self.on_timeline_change(list(timeline))
            except Exception as e:
                logger.error(f"Timeline listener failed: {e}")

    async def _apply_phase(self, now: datetime, force: bool) -> None:
        lat, lng = self._location.latitude, self._location.longitude
        phase = self.calculator.get_current_phase(lat, lng, now)
        if phase == self._phase.phase and not force:
            return

        next_change = self.calculator.get_next_phase_change(phase, lat, lng, now)
        previous = self._phase.phase
        self._phase = PhaseSnapshot(phase=phase, next_change_at=next_change)
        logger.info(
            f"Phase {previous.value if previous else 'unknown'} -> {phase.value} "
            f"(next change at {next_change.isoformat()})"
        )

        active = self.effects.get_active_effect()
        if active:
            logger.info(f"Effect '{active}' is active, not applying {phase.value} lighting")
        else:
            setting = PHASE_SETTINGS[phase.value]
            await self._dispatch(
                LightState(
                    on=True,
                    bri=setting["brightness"],
                    ct=setting["color_temp"],
                    transitiontime=self.transition_time,
                ),
                f"{phase.value} phase",
            )

        if self.on_phase_change:
            try:
                self.on_phase_change(phase, next_change)
            except Exception as e:
                logger.error(f"Phase listener failed: {e}")

    async def _evaluate_schedules(self, now: datetime) -> None:
        today = now.date()
        weekday = weekday_index(now)

        for entry in self._schedules:
            if not entry.enabled or not entry.runs_on(weekday):
                continue
            run = self.get_run_state(entry.id)

            wake_at = parse_schedule_time(entry.wake_time, today, now.tzinfo)
            if wake_at is not None and now >= wake_at and run.wake != today:
                state = LightState(
                    on=True,
                    bri=entry.wake_brightness if entry.wake_brightness is not None else DEFAULT_WAKE_BRIGHTNESS,
                    ct=entry.wake_color_temp if entry.wake_color_temp is not None else DEFAULT_WAKE_COLOR_TEMP,
                    transitiontime=self.transition_time,
                )
                if await self._fire(entry, "wake", state):
                    run.wake = today

            sleep_at = parse_schedule_time(entry.sleep_time, today, now.tzinfo)
            if sleep_at is not None and now >= sleep_at and run.sleep != today:
                state = LightState(
                    on=True,
                    bri=entry.sleep_brightness if entry.sleep_brightness is not None else DEFAULT_SLEEP_BRIGHTNESS,
                    ct=entry.sleep_color_temp if entry.sleep_color_temp is not None else DEFAULT_SLEEP_COLOR_TEMP,
                    transitiontime=self.transition_time,
                )
                if await self._fire(entry, "sleep", state):
                    run.sleep = today

    async def _fire(self, entry: ScheduleEntry, kind: str, state: LightState) -> bool:
        # Unconditional: stop waits out an effect that is still starting
        try:
            await self.effects.stop()
        except Exception as e:
            logger.error(f"Failed to stop effect before {kind} of '{entry.name or entry.id}': {e}")
        ok = await self._dispatch(state, f"{kind} schedule '{entry.name or entry.id}'")
        if ok:
            logger.info(f"Fired {kind} for schedule '{entry.name or entry.id}'")
        return ok

    async def _dispatch(self, state: LightState, reason: str) -> bool:
        try:
            await self.gateway.apply_state_to_all_lights(state)
            return True
        except BridgeNotConfiguredError:
            logger.warning(f"Cannot apply {reason}: no bridge configured")
        except Exception as e:
            logger.error(f"Failed to apply {reason}: {e}")
        return False

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def update_location(self, location: Union[Location, Dict[str, Any]]) -> None:
        """Set a new location, persist it and apply the matching phase.

        Raises:
            CoordinateRangeError: latitude or longitude out of range
        """
        if not isinstance(location, Location):
            location = Location.from_dict(location)
        self.settings.save_location(location)
        self._location = location
        logger.info(f"Location set to {location.latitude}, {location.longitude}")
        await self.tick(force=True)

    def update_schedules(self, entries: List[Union[ScheduleEntry, Dict[str, Any]]]) -> None:
        """Replace every schedule. Firing history is reset."""
        schedules = [e if isinstance(e, ScheduleEntry) else ScheduleEntry.from_dict(e) for e in entries]
        self.settings.save_schedules(schedules)
        self._schedules = schedules
        self._run_state.clear()
        logger.info(f"Updated schedules ({len(schedules)} entries)")

    def clear_location(self) -> None:
        self.settings.clear_location()
        self._location = None
        self._phase = PhaseSnapshot()
        self._run_state.clear()
        if self._timeline:
            self._timeline = []
            if self.on_timeline_change:
                try:
                    self.on_timeline_change([])
                except Exception as e:
                    logger.error(f"Timeline listener failed: {e}")
        logger.info("Location cleared, scheduler idle")
