#!/usr/bin/env python3
"""Animated lighting effects.

Every effect is a generator of all-lights ``LightState`` commands. The engine
pulls the first command immediately when the effect starts and one more on
each periodic tick, dispatching it through the bridge gateway.

Key rules
---------
* Only one effect runs at a time; starting another stops the current one.
* Light states are captured before the first effect command and replayed,
  light by light, when the effect stops.
* A tick that fires while the previous command is still in flight is skipped,
  never queued, so a slow bridge cannot pile up requests.
"""

import asyncio
import itertools
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Union

from .bridge import LightState, clamp
from .config import load_color_map
from .errors import BridgeNotConfiguredError, UnknownEffectError
from .models import EffectSettings

logger = logging.getLogger(__name__)

EffectListener = Callable[[Optional[str]], None]


@dataclass
class EffectContext:
    """Shared resources handed to effect generators."""
    colors: Dict[str, Dict[str, int]]
    rng: random.Random

    def color(self, name: Optional[str]) -> Dict[str, int]:
        if not name:
            return {}
        return dict(self.colors.get(name, {}))


EffectGenerator = Callable[[EffectSettings, EffectContext], Iterator[LightState]]
IntervalFn = Callable[[EffectSettings], float]


@dataclass(frozen=True)
class EffectDefinition:
    """Registry entry describing one effect."""
    id: str
    name: str
    description: str
    category: str
    generator: EffectGenerator
    interval: IntervalFn
    default_settings: Dict[str, Any]
    duration: Optional[float] = None  # seconds; None runs until stopped
    # Finite effects end with their generator; duration only paces the steps
    finite: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "defaultSettings": dict(self.default_settings),
        }
        if self.duration:
            result["duration"] = self.duration
        return result


def _limit(value: Optional[float], default: float, low: float, high: float) -> float:
    return max(low, min(high, value if value is not None else default))


def _palette(settings: EffectSettings, fallback: List[str]) -> List[str]:
    return list(settings.colors) if settings.colors else list(fallback)


# ---------------------------------------------------------------------------
# Algorithms
# ---------------------------------------------------------------------------

def breathing_interval(settings: EffectSettings) -> float:
    speed = _limit(settings.speed, 3, 0.5, 10)
    return max(0.5, 1.2 / speed)


def breathing(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    """Triangle-wave brightness between bounds derived from intensity.

    A full breath (high → low → high) lasts ``40 / speed`` seconds.
    """
    speed = _limit(settings.speed, 3, 0.5, 10)
    intensity = _limit(settings.intensity, 70, 10, 100)
    base = ctx.color(_palette(settings, ["warm"])[0])

    high = clamp(intensity * 2.54, 40, 254)
    low = max(1, round(high * 0.15))
    half_steps = max(1, round((40 / speed) / 2 / breathing_interval(settings)))

    for step in itertools.count():
        position = step % (2 * half_steps)
        if position <= half_steps:
            level = high - (high - low) * position / half_steps
        else:
            level = low + (high - low) * (position - half_steps) / half_steps
        yield LightState(on=True, bri=round(level), **base)


def rainbow_interval(settings: EffectSettings) -> float:
    speed = _limit(settings.speed, 5, 0.5, 10)
    return max(0.4, 1.2 / speed)


def rainbow_cycle(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    colors = _palette(settings, ["red", "orange", "yellow", "green", "blue", "purple"])
    brightness = clamp(_limit(settings.intensity, 90, 0, 100) * 2.5, 60, 254)
    for name in itertools.cycle(colors):
        yield LightState(on=True, bri=brightness, **ctx.color(name))


def fireplace_interval(settings: EffectSettings) -> float:
    speed = _limit(settings.speed, 7, 1, 10)
    return max(0.2, 0.6 / speed)


def fireplace(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    """Random flicker around a warm white, bounded to 300-450 mireds."""
    intensity = _limit(settings.intensity, 60, 0, 100)
    base_ct = ctx.color(_palette(settings, ["orange"])[0]).get("ct", 380)
    while True:
        flicker = 40 + round(ctx.rng.random() * 40 * intensity / 100)
        warmth = base_ct - 20 + ctx.rng.random() * 40
        yield LightState(on=True, bri=clamp(150 + flicker, 80, 254), ct=clamp(warmth, 300, 450))


def ocean_interval(settings: EffectSettings) -> float:
    speed = _limit(settings.speed, 4, 0.5, 10)
    return max(0.6, 1.5 / speed)


def ocean_waves(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    colors = _palette(settings, ["blue", "cyan", "teal"])
    amplitude = 80 * _limit(settings.intensity, 55, 0, 100) / 100
    steps_per_wave = 16
    for step, name in zip(itertools.count(), itertools.cycle(colors)):
        wave = 120 + amplitude * math.sin(2 * math.pi * step / steps_per_wave)
        yield LightState(on=True, bri=clamp(wave, 80, 200), **ctx.color(name))


def aurora_interval(settings: EffectSettings) -> float:
    speed = _limit(settings.speed, 2, 0.5, 6)
    return max(0.8, 1.8 / speed)


def northern_lights(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    colors = _palette(settings, ["green", "purple", "blue"])
    while True:
        color = ctx.color(ctx.rng.choice(colors))
        brightness = clamp(160 + ctx.rng.random() * 60, 60, 254)
        yield LightState(on=True, bri=brightness, **color)


def party_interval(settings: EffectSettings) -> float:
    speed = _limit(settings.speed, 8, 1, 12)
    return max(0.3, 0.7 / speed)


def party_pulse(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    colors = _palette(settings, ["red", "purple", "blue"])
    for index in itertools.count():
        brightness = 254 if index % 2 == 0 else 80
        yield LightState(on=True, bri=brightness, **ctx.color(colors[index % len(colors)]))


SUNRISE_STEPS_PER_COLOR = 10


def _sunrise_total(settings: EffectSettings) -> float:
    return _limit(settings.duration, 1800, 300, 3600)


def sunrise_interval(settings: EffectSettings) -> float:
    palette = _palette(settings, ["red", "orange", "yellow", "warm", "white"])
    steps = len(palette) * SUNRISE_STEPS_PER_COLOR
    return max(_sunrise_total(settings) / steps, 1.0)


def sunrise_sim(settings: EffectSettings, ctx: EffectContext) -> Iterator[LightState]:
    """One-way ramp from dim red to full white. Ends when the ramp completes."""
    palette = _palette(settings, ["red", "orange", "yellow", "warm", "white"])
    steps = len(palette) * SUNRISE_STEPS_PER_COLOR
    for step in range(steps + 1):
        progress = step / steps
        color_index = min(len(palette) - 1, math.floor(progress * len(palette)))
        brightness = clamp(progress * 254, 40, 254)
        yield LightState(on=True, bri=brightness, **ctx.color(palette[color_index]))


EFFECTS: Dict[str, EffectDefinition] = {
    definition.id: definition
    for definition in (
        EffectDefinition(
            id="breathing",
            name="Breathing",
            description="Gentle fade in/out for relaxation",
            category="therapeutic",
            generator=breathing,
            interval=breathing_interval,
            default_settings={"speed": 3, "intensity": 70, "colors": ["warm"]},
            duration=300,
        ),
        EffectDefinition(
            id="rainbow-cycle",
            name="Rainbow Cycle",
            description="Smooth transitions across the color spectrum",
            category="entertainment",
            generator=rainbow_cycle,
            interval=rainbow_interval,
            default_settings={
                "speed": 5,
                "intensity": 90,
                "colors": ["red", "orange", "yellow", "green", "blue", "purple"],
            },
        ),
        EffectDefinition(
            id="fireplace",
            name="Fireplace",
            description="Warm flickering like a cozy fire",
            category="ambient",
            generator=fireplace,
            interval=fireplace_interval,
            default_settings={"speed": 7, "intensity": 60, "colors": ["orange", "red", "yellow"]},
        ),
        EffectDefinition(
            id="ocean-waves",
            name="Ocean Waves",
            description="Rolling cool blue waves for calm evenings",
            category="therapeutic",
            generator=ocean_waves,
            interval=ocean_interval,
            default_settings={"speed": 4, "intensity": 55, "colors": ["blue", "cyan", "teal"]},
        ),
        EffectDefinition(
            id="northern-lights",
            name="Northern Lights",
            description="Aurora-inspired greens and purples",
            category="ambient",
            generator=northern_lights,
            interval=aurora_interval,
            default_settings={"speed": 2, "intensity": 80, "colors": ["green", "purple", "blue"]},
        ),
        EffectDefinition(
            id="party-pulse",
            name="Party Pulse",
            description="High-energy synchronized flashing",
            category="dynamic",
            generator=party_pulse,
            interval=party_interval,
            default_settings={"speed": 9, "intensity": 100, "colors": ["red", "purple", "blue"]},
        ),
        EffectDefinition(
            id="meditation",
            name="Meditation",
            description="Ultra-slow breathing for deep focus",
            category="therapeutic",
            generator=breathing,
            interval=breathing_interval,
            default_settings={"speed": 1, "intensity": 35, "colors": ["purple"]},
            duration=600,
        ),
        EffectDefinition(
            id="sunrise-sim",
            name="Sunrise Simulation",
            description="Natural awakening light progression",
            category="therapeutic",
            generator=sunrise_sim,
            interval=sunrise_interval,
            default_settings={
                "speed": 1,
                "intensity": 100,
                "colors": ["red", "orange", "yellow", "warm", "white"],
            },
            duration=1800,
            finite=True,
        ),
    )
}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass
class EffectRunState:
    """State of one effect activation.

    A new instance is created for every start; timers and dispatches hold a
    reference to their own run so that a late callback from a previous run
    cannot touch the current one.
    """
    effect_id: str
    settings: EffectSettings
    captured: Dict[str, LightState] = field(default_factory=dict)
    timers: Set[Union[asyncio.Task, asyncio.TimerHandle]] = field(default_factory=set)
    in_flight: bool = False
    dispatch: Optional[asyncio.Task] = None
    generator: Optional[Iterator[LightState]] = None
    skipped_ticks: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EffectEngine:
    """Owns the effect state machine: idle or running(effect_id)."""

    def __init__(
        self,
        gateway,
        settings=None,
        *,
        registry: Optional[Dict[str, EffectDefinition]] = None,
        color_map: Optional[Dict[str, Dict[str, int]]] = None,
        rng: Optional[random.Random] = None,
        listener: Optional[EffectListener] = None,
    ):
        """Initialize the engine.

        Args:
            gateway: BridgeCommandGateway (or anything with the same coroutines)
            settings: Settings store for the active-effect marker (optional)
            registry: Effect definitions by id (defaults to EFFECTS)
            color_map: Named colors used by palettes
            rng: Random source for the irregular effects
            listener: Called with the effect id on start and None on stop
        """
        self.gateway = gateway
        self.settings = settings
        self.registry = registry if registry is not None else EFFECTS
        self.context = EffectContext(
            colors=color_map if color_map is not None else load_color_map(None),
            rng=rng or random.Random(),
        )
        self.listener = listener
        self._run: Optional[EffectRunState] = None
        self._lock = asyncio.Lock()
        self._stop_tasks: Set[asyncio.Task] = set()

        # Nothing survives a restart, so a persisted marker is stale
        if self.settings is not None and self.settings.get_active_effect():
            logger.info("Clearing stale active effect marker from previous run")
            self.settings.save_active_effect(None)

    def set_listener(self, listener: Optional[EffectListener]) -> None:
        self.listener = listener

    def get_active_effect(self) -> Optional[str]:
        return self._run.effect_id if self._run else None

    @property
    def run_state(self) -> Optional[EffectRunState]:
        return self._run

    def list_effects(self) -> List[Dict[str, Any]]:
        return [definition.to_dict() for definition in self.registry.values()]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, effect_id: str, settings: Union[EffectSettings, Dict[str, Any], None] = None) -> None:
        """Start ``effect_id``, stopping whatever effect is running first.

        Raises:
            UnknownEffectError: no effect registered under that id
        """
        definition = self.registry.get(effect_id)
        if definition is None:
            raise UnknownEffectError(effect_id)

        if not isinstance(settings, EffectSettings):
            settings = EffectSettings.from_dict(settings)
        settings = settings.merged_with(definition.default_settings)
        settings.duration = settings.duration if settings.duration and settings.duration > 0 else definition.duration

        async with self._lock:
            await self._stop_locked()

            # Registered before the first await: the effect counts as active while it starts
            run = EffectRunState(effect_id=effect_id, settings=settings)
            self._run = run
            try:
                lights = await self.gateway.get_all_lights()
            except BridgeNotConfiguredError:
                self._run = None
                logger.warning(f"Cannot start effect '{effect_id}': no bridge configured")
                return
            except Exception:
                self._run = None
                raise

            run.captured = {light.id: light.state for light in lights}
            run.generator = definition.generator(settings, self.context)

            loop = asyncio.get_running_loop()
            first = next(run.generator, None)
            if first is not None:
                run.in_flight = True
                run.dispatch = loop.create_task(self._dispatch(run, first))
            first_dispatch = run.dispatch

            interval = definition.interval(settings)
            run.timers.add(loop.create_task(self._periodic(run, interval), name=f"effect-{effect_id}"))
            if settings.duration and not definition.finite:
                run.timers.add(loop.call_later(settings.duration, self._request_stop, run))

            logger.info(
                f"Started effect '{effect_id}' on {len(run.captured)} light(s) "
                f"(tick {interval:.2f}s, duration {settings.duration or 'unlimited'})"
            )
            self._persist(effect_id)
            self._notify(effect_id)

        # Awaited outside the lock so a concurrent stop can cancel it
        if first_dispatch is not None:
            await asyncio.gather(first_dispatch, return_exceptions=True)

    async def stop(self) -> None:
        """Stop the running effect and restore the captured light states.

        Calling it while idle does nothing.
        """
        async with self._lock:
            await self._stop_locked()

    async def _stop_locked(self) -> None:
        run = self._run
        if run is None:
            return

        # Cancel every timer before restoring so no tick can race the replay
        for handle in run.timers:
            handle.cancel()
        run.timers.clear()
        if run.dispatch is not None and not run.dispatch.done():
            run.dispatch.cancel()
            await asyncio.gather(run.dispatch, return_exceptions=True)

        restored = 0
        for light_id, state in run.captured.items():
            try:
                await self.gateway.set_light_state(light_id, state)
                restored += 1
            except BridgeNotConfiguredError:
                logger.warning("Cannot restore light states: no bridge configured")
                break
            except Exception as e:
                logger.error(f"Failed to restore light {light_id}: {e}")

        logger.info(
            f"Stopped effect '{run.effect_id}', restored {restored}/{len(run.captured)} light(s)"
            + (f", skipped {run.skipped_ticks} tick(s)" if run.skipped_ticks else "")
        )
        run.captured = {}
        self._run = None
        self._persist(None)
        self._notify(None)

    def _request_stop(self, run: EffectRunState) -> None:
        """Stop ``run`` from a timer callback, unless another run replaced it."""
        task = asyncio.get_running_loop().create_task(self._stop_run(run))
        self._stop_tasks.add(task)
        task.add_done_callback(self._stop_tasks.discard)

    async def _stop_run(self, run: EffectRunState) -> None:
        async with self._lock:
            if self._run is run:
                await self._stop_locked()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def _periodic(self, run: EffectRunState, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if not self._tick(run):
                break

    def _tick(self, run: EffectRunState) -> bool:
        """Advance ``run`` by one step. Returns False once the generator is exhausted."""
        if run.in_flight:
            run.skipped_ticks += 1
            logger.debug(f"Effect '{run.effect_id}' tick skipped, previous command still in flight")
            return True

        try:
            state = next(run.generator)
        except StopIteration:
            logger.info(f"Effect '{run.effect_id}' completed")
            self._request_stop(run)
            return False
        except Exception as e:
            logger.error(f"Effect '{run.effect_id}' failed to compute next state: {e}")
            return True

        run.in_flight = True
        run.dispatch = asyncio.get_running_loop().create_task(self._dispatch(run, state))
        return True

    async def _dispatch(self, run: EffectRunState, state: LightState) -> None:
        try:
            await self.gateway.apply_state_to_all_lights(state)
        except BridgeNotConfiguredError:
            logger.warning(f"Effect '{run.effect_id}' command dropped: no bridge configured")
        except Exception as e:
            logger.error(f"Effect '{run.effect_id}' command failed: {e}")
        finally:
            run.in_flight = False
            run.dispatch = None

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    def _persist(self, effect_id: Optional[str]) -> None:
        if self.settings is not None:
            self.settings.save_active_effect(effect_id)

    def _notify(self, effect_id: Optional[str]) -> None:
        if self.listener is None:
            return
        try:
            self.listener(effect_id)
        except Exception as e:
            logger.error(f"Effect listener failed: {e}")
