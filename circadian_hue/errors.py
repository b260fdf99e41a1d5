"""Exception types raised by the circadian engine and the bridge gateway."""

from typing import Optional


class CircadianHueError(Exception):
    """Base class for all circadian-hue errors."""


class CoordinateRangeError(CircadianHueError, ValueError):
    """Latitude or longitude outside its valid range."""

    def __init__(self, coord: str, value: float):
        self.coord = coord
        self.value = value
        super().__init__(f"{coord} out of range: {value}")


class UnknownEffectError(CircadianHueError, KeyError):
    """No effect is registered under the requested id."""

    def __init__(self, effect_id: str):
        self.effect_id = effect_id
        super().__init__(effect_id)

    def __str__(self) -> str:
        return f"unknown effect: {self.effect_id}"


class BridgeError(CircadianHueError):
    """Base class for bridge communication failures."""


class BridgeNotConfiguredError(BridgeError):
    """No Hue bridge has been paired yet."""

    def __init__(self, message: str = "bridge not configured"):
        super().__init__(message)


class BridgeCommandError(BridgeError):
    """A command could not be delivered to any light."""


class HueApiError(BridgeError):
    """The bridge answered with an error entry.

    Hue reports errors inside a 200 response as
    ``[{"error": {"type": 7, "address": "...", "description": "..."}}]``.
    """

    def __init__(self, error_type: Optional[int], description: str, address: Optional[str] = None):
        self.error_type = error_type
        self.description = description
        self.address = address
        super().__init__(f"Hue error {error_type} at {address or '?'}: {description}")


class UnknownSceneError(CircadianHueError, KeyError):
    """No preset scene is registered under the requested id."""

    def __init__(self, scene_id: str):
        self.scene_id = scene_id
        super().__init__(scene_id)

    def __str__(self) -> str:
        return f"unknown scene: {self.scene_id}"
