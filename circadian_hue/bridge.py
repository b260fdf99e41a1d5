"""
Hue bridge access.

``HueBridgeClient`` speaks the Hue v1 REST API over aiohttp.
``BridgeCommandGateway`` sits on top of it: it resolves the paired bridge
from the settings store, clamps every command to the ranges the bridge
accepts, serialises requests and falls back to per-light commands when the
all-lights group broadcast is rejected. Scenes stored on the bridge can be
listed and recalled per group.
"""

import asyncio
import logging
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from .const import ALL_LIGHTS_GROUP, BRI_RANGE, CT_RANGE, HUE_RANGE, SAT_RANGE
from .errors import BridgeCommandError, BridgeError, BridgeNotConfiguredError, HueApiError

logger = logging.getLogger(__name__)

# Group types that represent user-facing rooms
ROOM_GROUP_TYPES = {"Room", "Zone", "LightGroup"}


def clamp(value: float, low: float, high: float) -> int:
    return int(max(low, min(high, round(value))))


@dataclass(frozen=True)
class LightState:
    """Partial light state in Hue v1 units. ``None`` fields are left untouched."""
    on: Optional[bool] = None
    bri: Optional[int] = None  # 1-254
    ct: Optional[int] = None  # mireds, 153-500
    hue: Optional[int] = None  # 0-65535
    sat: Optional[int] = None  # 0-254
    transitiontime: Optional[int] = None  # deciseconds

    def clamped(self) -> "LightState":
        """Copy with every present numeric field clamped to its valid range."""
        return replace(
            self,
            bri=clamp(self.bri, *BRI_RANGE) if self.bri is not None else None,
            ct=clamp(self.ct, *CT_RANGE) if self.ct is not None else None,
            hue=clamp(self.hue, *HUE_RANGE) if self.hue is not None else None,
            sat=clamp(self.sat, *SAT_RANGE) if self.sat is not None else None,
            transitiontime=max(0, int(self.transitiontime)) if self.transitiontime is not None else None,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}

    @classmethod
    def from_hue(cls, state: Dict[str, Any]) -> "LightState":
        """Build from the ``state`` object of a Hue light."""
        return cls(
            on=bool(state.get("on")) if "on" in state else None,
            bri=state.get("bri"),
            ct=state.get("ct"),
            hue=state.get("hue"),
            sat=state.get("sat"),
        )


@dataclass(frozen=True)
class LightSummary:
    """A light known to the bridge."""
    id: str
    name: str
    state: LightState
    type: Optional[str] = None
    model_id: Optional[str] = None

    @property
    def is_on(self) -> bool:
        return bool(self.state.on)


def _light_sort_key(light_id: str):
    return (0, int(light_id), "") if light_id.isdigit() else (1, 0, light_id)


class HueBridgeClient:
    """Thin async client for the Hue v1 REST API."""

    def __init__(
        self,
        ip: str,
        username: str,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
    ):
        """Initialize the client.

        Args:
            ip: Bridge address (host or host:port)
            username: Whitelisted API user obtained during pairing
            session: Optional shared aiohttp session (not closed by us)
            timeout: Total request timeout in seconds
        """
        self.ip = ip
        self.username = username
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}/api/{self.username}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @staticmethod
    def _raise_for_hue_errors(data: Any) -> None:
        if not isinstance(data, list):
            return
        for item in data:
            if isinstance(item, dict) and "error" in item:
                err = item["error"] or {}
                raise HueApiError(err.get("type"), err.get("description", "unknown error"), err.get("address"))

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()
        async with session.request(method, url, json=payload) as resp:
            resp.raise_for_status()
            data = await resp.json(content_type=None)
        self._raise_for_hue_errors(data)
        return data

    async def get_lights(self) -> Dict[str, Dict[str, Any]]:
        return await self._request("GET", "/lights") or {}

    async def get_groups(self) -> Dict[str, Dict[str, Any]]:
        return await self._request("GET", "/groups") or {}

    async def get_group(self, group_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/groups/{group_id}") or {}

    async def get_scenes(self) -> Dict[str, Dict[str, Any]]:
        return await self._request("GET", "/scenes") or {}

    async def set_group_action(self, group_id: str, payload: Dict[str, Any]) -> Any:
        return await self._request("PUT", f"/groups/{group_id}/action", payload)

    async def set_light_state(self, light_id: str, payload: Dict[str, Any]) -> Any:
        return await self._request("PUT", f"/lights/{light_id}/state", payload)


ClientFactory = Callable[..., HueBridgeClient]


class BridgeCommandGateway:
    """Clamped, serialised light commands against the paired bridge."""

    def __init__(self, settings, *, client_factory: ClientFactory = HueBridgeClient, request_timeout: float = 10.0):
        self.settings = settings
        self.client_factory = client_factory
        self.request_timeout = request_timeout
        self._client: Optional[HueBridgeClient] = None
        self._credentials: Optional[tuple] = None
        self._lock = asyncio.Lock()

    def _get_client(self) -> HueBridgeClient:
        bridge = self.settings.get_bridge()
        if not bridge:
            raise BridgeNotConfiguredError()
        credentials = (bridge["ip"], bridge["username"])
        if self._client is None or self._credentials != credentials:
            self._client = self.client_factory(bridge["ip"], bridge["username"], timeout=self.request_timeout)
            self._credentials = credentials
            logger.info(f"Using Hue bridge at {bridge['ip']}")
        return self._client

    @property
    def is_configured(self) -> bool:
        return self.settings.get_bridge() is not None

    async def forget(self) -> None:
        """Drop the cached client, e.g. after the bridge credentials changed."""
        client, self._client, self._credentials = self._client, None, None
        if client is not None:
            await client.close()

    close = forget

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def apply_state_to_all_lights(self, state: LightState) -> None:
        """Apply ``state`` to every light.

        Tries a single broadcast to the all-lights group first. If the bridge
        rejects it, the state is sent to each light individually; this only
        fails if no light accepted it.
        """
        client = self._get_client()
        payload = state.clamped().to_payload()
        async with self._lock:
            try:
                await client.set_group_action(ALL_LIGHTS_GROUP, payload)
                return
            except Exception as e:
                logger.warning(f"All-lights group command failed ({e}), falling back to individual lights")

            try:
                lights = await client.get_lights()
            except Exception as e:
                raise BridgeCommandError(f"Group command failed and lights could not be listed: {e}") from e

            failures = 0
            last_error: Optional[Exception] = None
            for light_id in sorted(lights, key=_light_sort_key):
                try:
                    await client.set_light_state(light_id, payload)
                except Exception as e:
                    failures += 1
                    last_error = e
                    logger.error(f"Failed to update light {light_id}: {e}")

            if failures == len(lights):
                raise BridgeCommandError(f"No light accepted the command: {last_error or 'no lights found'}")

    async def apply_state_to_group(self, group_id: str, state: LightState) -> None:
        payload = state.clamped().to_payload()
        await self._call(lambda client: client.set_group_action(str(group_id), payload))

    async def set_light_state(self, light_id: str, state: LightState) -> None:
        payload = state.clamped().to_payload()
        await self._call(lambda client: client.set_light_state(str(light_id), payload))

    async def apply_scene_to_group(self, group_id: str, scene_id: str) -> None:
        """Recall a scene stored on the bridge for ``group_id`` (group 0 is all lights)."""
        await self._call(lambda client: client.set_group_action(str(group_id), {"scene": str(scene_id)}))
        logger.info(f"Applied scene {scene_id} to group {group_id}")

    async def _call(self, request):
        """Run ``request(client)`` serialised, with transport errors raised as BridgeError."""
        client = self._get_client()
        async with self._lock:
            try:
                return await request(client)
            except BridgeError:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise BridgeError(f"Bridge request failed: {e}") from e

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_all_lights(self) -> List[LightSummary]:
        lights = await self._call(lambda client: client.get_lights())
        return [
            LightSummary(
                id=str(light_id),
                name=data.get("name", str(light_id)),
                state=LightState.from_hue(data.get("state") or {}),
                type=data.get("type"),
                model_id=data.get("modelid"),
            )
            for light_id, data in sorted(lights.items(), key=lambda item: _light_sort_key(str(item[0])))
        ]

    async def get_room_light_ids(self, room_id: str) -> List[str]:
        group = await self._call(lambda client: client.get_group(str(room_id)))
        return [str(light_id) for light_id in group.get("lights") or []]

    async def list_groups(self) -> List[Dict[str, Any]]:
        groups = await self._call(lambda client: client.get_groups())
        return [
            {
                "id": str(group_id),
                "name": group.get("name", ""),
                "type": group.get("type", "Group"),
                "lights": [str(light_id) for light_id in group.get("lights") or []],
            }
            for group_id, group in groups.items()
            if group.get("type") in ROOM_GROUP_TYPES
        ]

    async def list_scenes(self) -> List[Dict[str, Any]]:
        """Scenes stored on the bridge, with the group each one belongs to (if any)."""
        scenes = await self._call(lambda client: client.get_scenes())
        return [
            {
                "id": str(scene_id),
                "name": scene.get("name", ""),
                "groupId": str(scene["group"]) if scene.get("group") is not None else None,
            }
            for scene_id, scene in scenes.items()
        ]
