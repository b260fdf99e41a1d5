#!/usr/bin/env python3
"""Test suite for scheduler.py - phase application and wake/sleep schedules."""

import asyncio
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from circadian_hue.bridge import LightState
from circadian_hue.effects import EffectEngine
from circadian_hue.errors import CoordinateRangeError
from circadian_hue.models import Location, Phase, ScheduleEntry
from circadian_hue.scheduler import CircadianScheduler, parse_schedule_time, weekday_index
from circadian_hue.settings import SettingsStore
from circadian_hue.sun import SolarPhaseCalculator

from .fakes import FakeGateway, fixed_sun_times

UTC = timezone.utc
AMSTERDAM = Location(52.37, 4.89)


def at(hour, minute=0, day=1):
    # 2024-01-01 is a Monday
    return datetime(2024, 1, day, hour, minute, tzinfo=UTC)


class FakeEffects:
    """Effect engine stand-in; stops are recorded in the gateway call log."""

    def __init__(self, gateway):
        self.gateway = gateway
        self.active = None

    def get_active_effect(self):
        return self.active

    async def stop(self):
        self.gateway.calls.append(("effect-stop",))
        self.active = None


WAKE = LightState(on=True, bri=220, ct=260, transitiontime=4)
SLEEP = LightState(on=True, bri=60, ct=420, transitiontime=4)


class TestHelpers:
    """Time parsing and weekday numbering."""

    @pytest.mark.parametrize("value", ["7:05", "07:05", " 07:05 "])
    def test_parse_valid(self, value):
        assert parse_schedule_time(value, date(2024, 1, 1), UTC) == at(7, 5)

    @pytest.mark.parametrize("value", ["24:00", "7:5", "07:60", "0705", "", None, "aa:bb"])
    def test_parse_invalid(self, value):
        assert parse_schedule_time(value, date(2024, 1, 1), UTC) is None

    def test_weekday_index_sunday_is_zero(self):
        assert weekday_index(datetime(2024, 1, 7, tzinfo=UTC)) == 0
        assert weekday_index(at(12)) == 1
        assert weekday_index(datetime(2024, 1, 6, tzinfo=UTC)) == 6


class SchedulerTestBase:
    def setup_method(self):
        self.now = at(12)
        self.gateway = FakeGateway()
        self.settings = SettingsStore()
        self.effects = FakeEffects(self.gateway)
        self.phase_changes = []
        self.timelines = []

    def make_scheduler(self, location=AMSTERDAM, schedules=()):
        if location is not None:
            self.settings.save_location(location)
        if schedules:
            self.settings.save_schedules(list(schedules))
        return CircadianScheduler(
            self.gateway,
            self.settings,
            self.effects,
            SolarPhaseCalculator("UTC", algorithm=fixed_sun_times),
            update_interval=3600,
            on_phase_change=lambda phase, next_at: self.phase_changes.append((phase, next_at)),
            on_timeline_change=self.timelines.append,
            clock=lambda: self.now,
        )


class TestPhaseApplication(SchedulerTestBase):
    """Phase detection and dispatch."""

    @pytest.mark.asyncio
    async def test_idle_without_location(self):
        scheduler = self.make_scheduler(location=None)

        await scheduler.tick(force=True)

        assert self.gateway.calls == []
        assert scheduler.get_timeline() == []
        assert scheduler.get_phase().phase is None
        assert not scheduler.is_armed

    @pytest.mark.asyncio
    async def test_forced_tick_applies_phase(self):
        scheduler = self.make_scheduler()

        await scheduler.tick(force=True)

        assert self.gateway.all_light_states == [LightState(on=True, bri=210, ct=250, transitiontime=4)]
        snapshot = scheduler.get_phase()
        assert snapshot.phase is Phase.DAY
        assert snapshot.next_change_at == at(17, 30)
        assert self.phase_changes == [(Phase.DAY, at(17, 30))]
        assert len(scheduler.get_timeline()) == 4
        assert len(self.timelines) == 1

    @pytest.mark.asyncio
    async def test_unchanged_phase_not_reapplied(self):
        scheduler = self.make_scheduler()
        await scheduler.tick(force=True)

        self.now = at(13)
        await scheduler.tick()

        assert len(self.gateway.all_light_states) == 1
        assert len(self.timelines) == 1

    @pytest.mark.asyncio
    async def test_phase_change_applied(self):
        scheduler = self.make_scheduler()
        await scheduler.tick(force=True)

        await scheduler.tick(at(17, 30))

        assert self.gateway.all_light_states[-1] == LightState(on=True, bri=140, ct=380, transitiontime=4)
        assert scheduler.get_phase().next_change_at == at(6, 30, day=2)

    @pytest.mark.asyncio
    async def test_active_effect_suppresses_phase_dispatch(self):
        self.effects.active = "fireplace"
        scheduler = self.make_scheduler()

        await scheduler.tick(force=True)

        assert self.gateway.all_light_states == []
        assert scheduler.get_phase().phase is Phase.DAY
        assert self.phase_changes == [(Phase.DAY, at(17, 30))]

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_swallowed(self):
        self.gateway.fail_all_lights = True
        scheduler = self.make_scheduler()

        await scheduler.tick(force=True)

        assert scheduler.get_phase().phase is Phase.DAY

    @pytest.mark.asyncio
    async def test_not_configured_is_swallowed(self):
        self.gateway.configured = False
        scheduler = self.make_scheduler()

        await scheduler.tick(force=True)

        assert scheduler.get_phase().phase is Phase.DAY


class TestSchedules(SchedulerTestBase):
    """Wake/sleep firing rules."""

    def entry(self, **kwargs):
        values = {"id": "alice", "name": "Alice", "wake_time": "07:00", "sleep_time": "22:00"}
        values.update(kwargs)
        return ScheduleEntry(**values)

    def fired(self):
        return [s for s in self.gateway.all_light_states if s in (WAKE, SLEEP)]

    @pytest.mark.asyncio
    async def test_wake_fires_once_per_day(self):
        scheduler = self.make_scheduler(schedules=[self.entry()])

        await scheduler.tick(at(6, 59))
        assert self.fired() == []

        await scheduler.tick(at(7, 0))
        await scheduler.tick(at(7, 1))
        await scheduler.tick(at(9, 0))
        assert self.fired() == [WAKE]
        assert scheduler.get_run_state("alice").wake == date(2024, 1, 1)

        await scheduler.tick(at(7, 0, day=2))
        assert self.fired() == [WAKE, WAKE]

    @pytest.mark.asyncio
    async def test_late_start_fires_wake_then_sleep(self):
        scheduler = self.make_scheduler(schedules=[self.entry()])

        await scheduler.tick(at(23))

        assert self.fired() == [WAKE, SLEEP]

    @pytest.mark.asyncio
    async def test_custom_levels(self):
        entry = self.entry(wake_brightness=150, wake_color_temp=300)
        scheduler = self.make_scheduler(schedules=[entry])

        await scheduler.tick(at(7, 30))

        assert LightState(on=True, bri=150, ct=300, transitiontime=4) in self.gateway.all_light_states

    @pytest.mark.asyncio
    async def test_disabled_and_other_days_skipped(self):
        entries = [
            self.entry(id="off", enabled=False),
            self.entry(id="weekend", days=frozenset({0, 6})),
        ]
        scheduler = self.make_scheduler(schedules=entries)

        await scheduler.tick(at(8))

        assert self.fired() == []

    @pytest.mark.asyncio
    async def test_day_restriction_matches_today(self):
        scheduler = self.make_scheduler(schedules=[self.entry(days=frozenset({1}))])

        await scheduler.tick(at(8))

        assert self.fired() == [WAKE]

    @pytest.mark.asyncio
    async def test_malformed_time_contributes_nothing(self):
        scheduler = self.make_scheduler(schedules=[self.entry(wake_time="25:00")])

        await scheduler.tick(at(23))

        assert self.fired() == [SLEEP]

    @pytest.mark.asyncio
    async def test_failed_firing_retried_next_tick(self):
        scheduler = self.make_scheduler(schedules=[self.entry()])
        self.gateway.fail_all_lights = True

        await scheduler.tick(at(7, 5))
        assert scheduler.get_run_state("alice").wake is None

        self.gateway.fail_all_lights = False
        await scheduler.tick(at(7, 6))
        assert self.fired() == [WAKE]

    @pytest.mark.asyncio
    async def test_not_configured_firing_not_recorded(self):
        scheduler = self.make_scheduler(schedules=[self.entry()])
        self.gateway.configured = False

        await scheduler.tick(at(7, 5))

        assert scheduler.get_run_state("alice").wake is None

    @pytest.mark.asyncio
    async def test_active_effect_stopped_before_wake(self):
        scheduler = self.make_scheduler(schedules=[self.entry()])
        await scheduler.tick(at(6))
        self.effects.active = "breathing"

        await scheduler.tick(at(7, 0))

        stop_index = self.gateway.calls.index(("effect-stop",))
        wake_index = self.gateway.calls.index(("all", WAKE))
        assert stop_index < wake_index
        assert self.effects.active is None

    @pytest.mark.asyncio
    async def test_wake_while_effect_starting_stops_it(self):
        engine = EffectEngine(self.gateway, self.settings)
        self.effects = engine
        scheduler = self.make_scheduler(schedules=[self.entry()])
        capture = self.gateway.get_all_lights

        async def slow_capture():
            await asyncio.sleep(0.1)
            return await capture()

        self.gateway.get_all_lights = slow_capture
        starting = asyncio.create_task(engine.start("fireplace"))
        await asyncio.sleep(0)

        await scheduler.tick(at(7, 5))
        await starting

        assert engine.get_active_effect() is None
        assert scheduler.get_run_state("alice").wake == date(2024, 1, 1)
        assert self.gateway.all_light_states[-1] == WAKE
        assert len([c for c in self.gateway.calls if c[0] == "light"]) == 2

    @pytest.mark.asyncio
    async def test_update_schedules_resets_run_state(self):
        scheduler = self.make_scheduler(schedules=[self.entry()])
        await scheduler.tick(at(7, 5))

        scheduler.update_schedules([{"id": "alice", "name": "Alice", "wakeTime": "07:00", "sleepTime": "22:00"}])
        await scheduler.tick(at(7, 6))

        assert self.fired() == [WAKE, WAKE]
        assert [s.id for s in self.settings.get_schedules()] == ["alice"]


class TestLocationUpdates(SchedulerTestBase):
    """Location changes and idle/armed transitions."""

    @pytest.mark.asyncio
    async def test_update_location_rejects_out_of_range(self):
        scheduler = self.make_scheduler(location=None)

        with pytest.raises(CoordinateRangeError):
            await scheduler.update_location({"latitude": 95, "longitude": 0})

        assert self.settings.get_location() is None
        assert not scheduler.is_armed

    @pytest.mark.asyncio
    async def test_update_location_arms_and_applies(self):
        scheduler = self.make_scheduler(location=None)

        await scheduler.update_location(Location(40.71, -74.0, city="New York"))

        assert self.settings.get_location().city == "New York"
        assert scheduler.get_phase().phase is Phase.DAY
        assert len(self.gateway.all_light_states) == 1
        assert len(scheduler.get_timeline()) == 4

    @pytest.mark.asyncio
    async def test_clear_location_goes_idle(self):
        scheduler = self.make_scheduler(schedules=[ScheduleEntry("a", "A", "07:00", "22:00")])
        await scheduler.tick(at(8))

        scheduler.clear_location()

        assert not scheduler.is_armed
        assert scheduler.get_timeline() == []
        assert scheduler.get_phase().phase is None
        assert self.timelines[-1] == []
        assert scheduler.get_run_state("a").wake is None
        assert self.settings.get_location() is None


class TestLoop(SchedulerTestBase):
    """Background task lifecycle."""

    @pytest.mark.asyncio
    async def test_start_ticks_immediately_and_refresh_forces_tick(self):
        scheduler = self.make_scheduler()

        await scheduler.start()
        await asyncio.sleep(0.05)
        assert len(self.gateway.all_light_states) == 1

        scheduler.request_refresh()
        await asyncio.sleep(0.05)
        assert len(self.gateway.all_light_states) == 2

        await scheduler.stop()
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_kill_loop(self):
        scheduler = self.make_scheduler()
        scheduler.on_phase_change = MagicMock(side_effect=RuntimeError("listener broke"))

        await scheduler.start()
        await asyncio.sleep(0.05)
        scheduler.request_refresh()
        await asyncio.sleep(0.05)

        assert scheduler.is_running
        assert scheduler.on_phase_change.call_count == 2
        await scheduler.stop()
