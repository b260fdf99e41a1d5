#!/usr/bin/env python3
"""Circadian Hue service – wires the bridge gateway, effect engine and scheduler."""

import asyncio
import logging
import sys
from typing import Any, Callable, Dict, List, Optional, Union

from .bridge import BridgeCommandGateway, LightState
from .config import Config
from .const import ALL_LIGHTS_GROUP, PRESET_SCENES
from .effects import EffectEngine
from .errors import BridgeNotConfiguredError, CoordinateRangeError, UnknownSceneError
from .models import EffectSettings, Location, Phase, ScheduleEntry
from .scheduler import CircadianScheduler, PhaseSnapshot
from .settings import SettingsStore
from .sun import SolarPhaseCalculator
from .timeline import TimelineSegment

logger = logging.getLogger(__name__)

# Listener signature: listener(event_type, payload) where event_type is
# "effect", "phase" or "timeline"
ChangeListener = Callable[[str, Any], None]


class CircadianHueService:
    """Public surface of the engine, consumed by the API layer."""

    def __init__(
        self,
        config: Optional[Config] = None,
        settings: Optional[SettingsStore] = None,
        gateway: Optional[BridgeCommandGateway] = None,
        *,
        calculator: Optional[SolarPhaseCalculator] = None,
        listener: Optional[ChangeListener] = None,
    ):
        self.config = config or Config()
        self.settings = settings if settings is not None else SettingsStore(self.config.settings_path)
        self._seed_settings()

        self.gateway = gateway or BridgeCommandGateway(self.settings, request_timeout=self.config.request_timeout)
        self.listener = listener

        self.effects = EffectEngine(
            self.gateway,
            self.settings,
            color_map=self.config.color_map,
            listener=lambda effect_id: self._emit("effect", effect_id),
        )
        self.scheduler = CircadianScheduler(
            self.gateway,
            self.settings,
            self.effects,
            calculator or SolarPhaseCalculator(self.config.timezone),
            update_interval=self.config.update_interval,
            transition_time=self.config.transition_time,
            on_phase_change=self._on_phase_change,
            on_timeline_change=self._on_timeline_change,
        )
        self._stopped: Optional[asyncio.Event] = None

    def _seed_settings(self) -> None:
        """Populate bridge and location from the environment on first start."""
        cfg = self.config
        if cfg.bridge_ip and cfg.bridge_username and self.settings.get_bridge() is None:
            self.settings.save_bridge(cfg.bridge_ip, cfg.bridge_username)
            logger.info(f"Seeded bridge {cfg.bridge_ip} from environment")

        if cfg.latitude is not None and cfg.longitude is not None and self.settings.get_location() is None:
            try:
                self.settings.save_location(Location(cfg.latitude, cfg.longitude))
                logger.info(f"Seeded location {cfg.latitude}, {cfg.longitude} from environment")
            except CoordinateRangeError as e:
                logger.error(f"Ignoring location from environment: {e}")

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def set_listener(self, listener: Optional[ChangeListener]) -> None:
        self.listener = listener

    def _emit(self, event_type: str, payload: Any) -> None:
        if self.listener is None:
            return
        try:
            self.listener(event_type, payload)
        except Exception as e:
            logger.error(f"Change listener failed for '{event_type}': {e}")

    def _on_phase_change(self, phase: Phase, next_change_at) -> None:
        self._emit("phase", PhaseSnapshot(phase, next_change_at).to_dict())

    def _on_timeline_change(self, timeline: List[TimelineSegment]) -> None:
        self._emit("timeline", [segment.to_dict() for segment in timeline])

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    def get_phase(self) -> PhaseSnapshot:
        return self.scheduler.get_phase()

    def get_timeline(self) -> List[TimelineSegment]:
        return self.scheduler.get_timeline()

    def get_location(self) -> Optional[Location]:
        return self.scheduler.get_location()

    async def update_location(self, location: Union[Location, Dict[str, Any]]) -> None:
        await self.scheduler.update_location(location)

    def clear_location(self) -> None:
        self.scheduler.clear_location()

    def get_schedules(self) -> List[ScheduleEntry]:
        return self.scheduler.get_schedules()

    def update_schedules(self, entries: List[Union[ScheduleEntry, Dict[str, Any]]]) -> None:
        self.scheduler.update_schedules(entries)

    async def start_effect(
        self, effect_id: str, settings: Union[EffectSettings, Dict[str, Any], None] = None
    ) -> None:
        await self.effects.start(effect_id, settings)

    async def stop_effect(self) -> None:
        await self.effects.stop()

    def get_active_effect(self) -> Optional[str]:
        return self.effects.get_active_effect()

    def list_effects(self) -> List[Dict[str, Any]]:
        return self.effects.list_effects()

    async def list_scenes(self) -> Dict[str, List[Dict[str, Any]]]:
        """Built-in presets plus the scenes stored on the bridge."""
        try:
            hue_scenes = await self.gateway.list_scenes()
        except BridgeNotConfiguredError:
            hue_scenes = []
        return {"presets": [dict(scene) for scene in PRESET_SCENES], "hueScenes": hue_scenes}

    async def apply_preset(self, preset_id: str) -> None:
        """Stop any effect and apply a built-in preset to all lights.

        Raises:
            UnknownSceneError: no preset with that id
        """
        preset = next((scene for scene in PRESET_SCENES if scene["id"] == preset_id), None)
        if preset is None:
            raise UnknownSceneError(preset_id)
        await self.effects.stop()
        await self.gateway.apply_state_to_all_lights(
            LightState(
                on=True,
                bri=preset["brightness"],
                ct=preset["color_temp"],
                transitiontime=self.config.transition_time,
            )
        )
        logger.info(f"Applied preset scene '{preset_id}'")

    async def apply_scene(self, scene_id: str, group_id: Optional[str] = None) -> None:
        """Stop any effect and recall a bridge scene, on all lights unless a group is given."""
        await self.effects.stop()
        await self.gateway.apply_scene_to_group(group_id or ALL_LIGHTS_GROUP, scene_id)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop the scheduler, restore lights if an effect is playing and close the bridge session."""
        await self.scheduler.stop()
        await self.effects.stop()
        await self.gateway.close()
        if self._stopped is not None:
            self._stopped.set()
        logger.info("Circadian Hue service stopped")

    async def run(self) -> None:
        """Run until cancelled or until ``shutdown()`` is called."""
        self._stopped = asyncio.Event()
        await self.start()
        try:
            await self._stopped.wait()
        finally:
            if self.scheduler.is_running:
                await self.shutdown()


def main():
    """Main entry point."""
    config = Config.from_env()

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info(f"Starting Circadian Hue (timezone {config.timezone}, data in {config.data_dir})")
    service = CircadianHueService(config)

    if not service.gateway.is_configured:
        logger.warning("No Hue bridge configured yet; set HUE_BRIDGE_IP and HUE_BRIDGE_USERNAME")

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
