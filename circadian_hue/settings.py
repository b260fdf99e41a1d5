#!/usr/bin/env python3
"""Key/value settings store.

Holds the location, the schedule list, the bridge credentials and the
active-effect marker. Values must be JSON-serialisable.

State is:
- Loaded from JSON at construction (when a path is given)
- Held in memory for fast access
- Written to JSON immediately after every change (atomic replace)
"""

import copy
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import voluptuous as vol

from .const import (
    SETTING_ACTIVE_EFFECT,
    SETTING_BRIDGE,
    SETTING_LOCATION,
    SETTING_SCHEDULES,
)
from .models import Location, ScheduleEntry

logger = logging.getLogger(__name__)


class SettingsStore:
    """JSON-file backed settings. With ``path=None`` it lives only in memory."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._data: Dict[str, Any] = {}
        if path:
            self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            logger.info(f"No settings file found at {self.path}, starting fresh")
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load settings from {self.path}: {e}")
            return

        if isinstance(data, dict):
            self._data = data
            logger.info(f"Loaded {len(data)} setting(s) from {self.path}")
        else:
            logger.warning(f"Invalid settings file format at {self.path}, starting fresh")

    def _save(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp", prefix=".settings_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        logger.debug(f"Saved settings to {self.path}")

    # ------------------------------------------------------------------
    # Generic get/set/delete
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._save()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._save()

    def keys(self) -> List[str]:
        return list(self._data)

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def get_location(self) -> Optional[Location]:
        raw = self.get(SETTING_LOCATION)
        if not raw:
            return None
        try:
            return Location.from_dict(raw)
        except (vol.Invalid, ValueError) as e:
            logger.warning(f"Ignoring stored location {raw}: {e}")
            return None

    def save_location(self, location: Location) -> None:
        self.set(SETTING_LOCATION, location.to_dict())

    def clear_location(self) -> None:
        self.delete(SETTING_LOCATION)

    def get_schedules(self) -> List[ScheduleEntry]:
        entries = []
        for raw in self.get(SETTING_SCHEDULES, []) or []:
            try:
                entries.append(ScheduleEntry.from_dict(raw))
            except (vol.Invalid, ValueError) as e:
                logger.warning(f"Skipping invalid stored schedule {raw}: {e}")
        return entries

    def save_schedules(self, entries: List[ScheduleEntry]) -> None:
        self.set(SETTING_SCHEDULES, [entry.to_dict() for entry in entries])

    def get_bridge(self) -> Optional[Dict[str, str]]:
        bridge = self.get(SETTING_BRIDGE)
        if not isinstance(bridge, dict) or not bridge.get("ip") or not bridge.get("username"):
            return None
        return bridge

    def save_bridge(self, ip: str, username: str) -> None:
        self.set(SETTING_BRIDGE, {"ip": ip, "username": username})

    def clear_bridge(self) -> None:
        self.delete(SETTING_BRIDGE)

    def get_active_effect(self) -> Optional[Dict[str, str]]:
        return self.get(SETTING_ACTIVE_EFFECT)

    def save_active_effect(self, effect_id: Optional[str]) -> None:
        """Persist the active-effect marker; ``None`` clears it."""
        if not effect_id:
            self.delete(SETTING_ACTIVE_EFFECT)
            return
        self.set(
            SETTING_ACTIVE_EFFECT,
            {"id": effect_id, "startedAt": datetime.now(timezone.utc).isoformat()},
        )
