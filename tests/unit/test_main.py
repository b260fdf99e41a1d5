#!/usr/bin/env python3
"""Test suite for main.py - service wiring, seeding and change notifications."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from circadian_hue.bridge import LightState
from circadian_hue.config import Config
from circadian_hue.errors import UnknownSceneError
from circadian_hue.main import CircadianHueService
from circadian_hue.models import Location
from circadian_hue.settings import SettingsStore
from circadian_hue.sun import SolarPhaseCalculator

from .fakes import FakeGateway, fixed_sun_times


class TestCircadianHueService:
    """Facade behaviour with a fake gateway."""

    def setup_method(self):
        self.gateway = FakeGateway()
        self.settings = SettingsStore()
        self.events = []

    def make_service(self, config=None):
        service = CircadianHueService(
            config or Config(),
            self.settings,
            self.gateway,
            calculator=SolarPhaseCalculator("UTC", algorithm=fixed_sun_times),
            listener=lambda event_type, payload: self.events.append((event_type, payload)),
        )
        service.scheduler.clock = lambda: datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        return service

    def test_seeds_bridge_and_location(self):
        config = Config(bridge_ip="10.0.0.2", bridge_username="abc", latitude=52.37, longitude=4.89)
        self.make_service(config)

        assert self.settings.get_bridge() == {"ip": "10.0.0.2", "username": "abc"}
        assert self.settings.get_location() == Location(52.37, 4.89)

    def test_seed_does_not_overwrite(self):
        self.settings.save_location(Location(10, 10))
        self.make_service(Config(latitude=52.37, longitude=4.89))

        assert self.settings.get_location() == Location(10, 10)

    def test_invalid_seed_location_ignored(self):
        self.make_service(Config(latitude=123, longitude=4.89))

        assert self.settings.get_location() is None

    @pytest.mark.asyncio
    async def test_events_for_location_and_effects(self):
        service = self.make_service()

        await service.update_location({"latitude": 52.37, "longitude": 4.89})
        await service.start_effect("fireplace")
        await service.stop_effect()

        kinds = [event_type for event_type, _ in self.events]
        assert kinds == ["timeline", "phase", "effect", "effect"]
        assert self.events[1][1] == {"phase": "day", "nextChangeAt": "2024-01-01T17:30:00+00:00"}
        assert self.events[2][1] == "fireplace"
        assert self.events[3][1] is None
        assert [s["phase"] for s in self.events[0][1]] == ["night", "dawn", "day", "dusk"]

    @pytest.mark.asyncio
    async def test_effect_suppresses_phase(self):
        service = self.make_service()
        await service.start_effect("party-pulse")

        await service.update_location(Location(52.37, 4.89))

        assert service.get_active_effect() == "party-pulse"
        assert service.get_phase().phase.value == "day"
        await service.shutdown()
        assert service.get_active_effect() is None
        assert self.gateway.calls[-1] == ("close",)

    def test_schedules_round_trip(self):
        service = self.make_service()

        service.update_schedules([{"id": "1", "wakeTime": "06:30", "sleepTime": "23:00"}])

        assert [s.wake_time for s in service.get_schedules()] == ["06:30"]

    def test_list_effects(self):
        assert len(self.make_service().list_effects()) == 8

    @pytest.mark.asyncio
    async def test_listener_errors_are_contained(self):
        service = self.make_service()
        service.set_listener(lambda event_type, payload: 1 / 0)

        await service.start_effect("fireplace")

        assert service.get_active_effect() == "fireplace"
        await service.stop_effect()

    @pytest.mark.asyncio
    async def test_apply_preset_stops_effect_first(self):
        service = self.make_service()
        await service.start_effect("rainbow-cycle")

        await service.apply_preset("relax")

        assert service.get_active_effect() is None
        assert self.gateway.calls[-1] == ("all", LightState(on=True, bri=140, ct=370, transitiontime=4))
        assert [call[0] for call in self.gateway.calls[-3:]] == ["light", "light", "all"]

    @pytest.mark.asyncio
    async def test_unknown_preset(self):
        service = self.make_service()

        with pytest.raises(UnknownSceneError):
            await service.apply_preset("disco")
        assert self.gateway.calls == []

    @pytest.mark.asyncio
    async def test_apply_scene_defaults_to_all_lights(self):
        service = self.make_service()

        await service.apply_scene("abc123")
        await service.apply_scene("abc123", group_id="1")

        assert self.gateway.calls == [("scene", "0", "abc123"), ("scene", "1", "abc123")]

    @pytest.mark.asyncio
    async def test_list_scenes(self):
        service = self.make_service()

        scenes = await service.list_scenes()
        assert [p["id"] for p in scenes["presets"]] == ["focus", "relax", "cozy", "bright"]
        assert scenes["hueScenes"] == [{"id": "abc123", "name": "Evening", "groupId": "1"}]

        self.gateway.configured = False
        assert (await service.list_scenes())["hueScenes"] == []


class TestConfig:
    """Environment parsing."""

    def test_from_env(self, tmp_path):
        env = {
            "CIRCADIAN_TIMEZONE": "Europe/Amsterdam",
            "CIRCADIAN_UPDATE_INTERVAL": "30",
            "HUE_DATA_DIR": str(tmp_path),
            "HUE_BRIDGE_IP": "10.0.0.2",
            "CIRCADIAN_LATITUDE": "52.37",
            "CIRCADIAN_LONGITUDE": "oops",
            "LOG_LEVEL": "debug",
        }
        with patch.dict("os.environ", env, clear=True):
            config = Config.from_env()

        assert config.timezone == "Europe/Amsterdam"
        assert config.update_interval == 30
        assert config.transition_time == 4
        assert config.settings_path == str(tmp_path / "circadian_hue_settings.json")
        assert config.bridge_ip == "10.0.0.2"
        assert config.bridge_username is None
        assert config.latitude == 52.37
        assert config.longitude is None
        assert config.log_level == "DEBUG"
        assert config.color_map["warm"] == {"ct": 400}

    def test_color_map_file_overrides(self, tmp_path):
        path = tmp_path / "colors.json"
        path.write_text('{"warm": {"ct": 450}, "magenta": {"hue": 54000, "sat": 254, "x": 1}}')

        with patch.dict("os.environ", {"HUE_COLOR_MAP": str(path), "HUE_DATA_DIR": str(tmp_path)}, clear=True):
            config = Config.from_env()

        assert config.color_map["warm"] == {"ct": 450}
        assert config.color_map["magenta"] == {"hue": 54000, "sat": 254}
        assert config.color_map["red"] == {"hue": 0, "sat": 254}
