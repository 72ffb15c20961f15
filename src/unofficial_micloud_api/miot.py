"""MiOT service/property/action identifiers.

The client itself is table-agnostic: it reads and writes whatever
``(siid, piid)`` pairs it is given. The vacuum tables below cover the Dreame
robots exposed through the Xiaomi cloud and are used by the CLI ``status``
command.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import NamedTuple

from .models import PropertyResult

_LOGGER = logging.getLogger(__name__)

VACUUM_MODEL_PREFIX = "dreame.vacuum."


class PropertyRef(NamedTuple):
    siid: int
    piid: int


class ActionRef(NamedTuple):
    siid: int
    aiid: int


VACUUM_PROPERTIES: dict[str, PropertyRef] = {
    "state": PropertyRef(2, 1),
    "error": PropertyRef(2, 2),
    "battery_level": PropertyRef(3, 1),
    "charging_status": PropertyRef(3, 2),
    "status": PropertyRef(4, 1),
    "cleaning_time": PropertyRef(4, 2),
    "cleaned_area": PropertyRef(4, 3),
    "suction_level": PropertyRef(4, 4),
    "water_volume": PropertyRef(4, 5),
    "task_status": PropertyRef(4, 7),
    "cleaning_mode": PropertyRef(4, 23),
    "main_brush_left": PropertyRef(9, 2),
    "side_brush_left": PropertyRef(10, 2),
    "filter_left": PropertyRef(11, 1),
    "total_cleaning_time": PropertyRef(12, 2),
    "cleaning_count": PropertyRef(12, 3),
    "total_cleaned_area": PropertyRef(12, 4),
}

VACUUM_ACTIONS: dict[str, ActionRef] = {
    "start": ActionRef(2, 1),
    "pause": ActionRef(2, 2),
    "charge": ActionRef(3, 1),
    "start_custom": ActionRef(4, 1),
    "stop": ActionRef(4, 2),
    "request_map": ActionRef(6, 1),
    "locate": ActionRef(7, 1),
}

VACUUM_STATE = {
    1: "sweeping",
    2: "idle",
    3: "paused",
    4: "error",
    5: "returning",
    6: "charging",
    7: "mopping",
    8: "drying",
    9: "washing",
    10: "returning_washing",
    11: "building",
    12: "sweeping_and_mopping",
    13: "charging_completed",
    14: "upgrading",
}

SUCTION_LEVEL = {0: "quiet", 1: "standard", 2: "strong", 3: "turbo"}

WATER_VOLUME = {1: "low", 2: "medium", 3: "high"}

CLEANING_STATES = frozenset({"sweeping", "mopping", "sweeping_and_mopping"})
CHARGING_STATES = frozenset({"charging", "charging_completed"})

# Polled by the status command, in this order
STATUS_PROPERTIES = [
    "state",
    "error",
    "battery_level",
    "charging_status",
    "status",
    "suction_level",
    "cleaning_mode",
    "water_volume",
    "cleaned_area",
    "cleaning_time",
    "main_brush_left",
    "side_brush_left",
    "filter_left",
]


def decode_cleaning_mode(raw: int) -> str:
    """Decode siid 4 / piid 23.

    Simple models report 0/1/2 directly. Models with a self-wash base pack the
    mode into the low two bits with mop-lifting semantics (0 = sweep+mop,
    1 = mopping, 2 = sweeping).
    """
    if 0 <= raw <= 2:
        return ("sweeping", "mopping", "sweeping_and_mopping")[raw]
    return {1: "mopping", 2: "sweeping"}.get(raw & 3, "sweeping_and_mopping")


@dataclass
class VacuumStatus:
    """Vacuum properties parsed from a ``get_properties`` result."""

    state: str | None = None
    error: int | None = None
    battery_level: int | None = None
    charging_status: int | None = None
    suction_level: str | None = None
    cleaning_mode: str | None = None
    water_volume: str | None = None
    cleaned_area: int | None = None
    cleaning_time: int | None = None
    main_brush_left: int | None = None
    side_brush_left: int | None = None
    filter_left: int | None = None
    raw: list[PropertyResult] = field(default_factory=list)

    @property
    def is_cleaning(self) -> bool:
        return self.state in CLEANING_STATES

    @property
    def is_charging(self) -> bool:
        return self.state in CHARGING_STATES

    @classmethod
    def from_results(cls, results: list[PropertyResult]) -> VacuumStatus:
        by_ref = {ref: name for name, ref in VACUUM_PROPERTIES.items()}
        status = cls(raw=results)
        for result in results:
            name = by_ref.get(PropertyRef(result.siid, result.piid))
            if name is None or not result.ok:
                continue
            try:
                status._apply(name, result.value)
            except (ValueError, TypeError):
                _LOGGER.debug("Failed to parse property %s=%r", name, result.value)
        return status

    def _apply(self, name: str, value) -> None:
        if name == "state":
            self.state = VACUUM_STATE.get(int(value), "unknown")
        elif name == "error":
            self.error = int(value)
        elif name == "battery_level":
            self.battery_level = int(value)
        elif name == "charging_status":
            self.charging_status = int(value)
        elif name == "suction_level":
            self.suction_level = SUCTION_LEVEL.get(int(value))
        elif name == "cleaning_mode":
            self.cleaning_mode = decode_cleaning_mode(int(value))
        elif name == "water_volume":
            self.water_volume = WATER_VOLUME.get(int(value))
        elif name == "cleaned_area":
            self.cleaned_area = int(value)
        elif name == "cleaning_time":
            self.cleaning_time = int(value)
        elif name == "main_brush_left":
            self.main_brush_left = int(value)
        elif name == "side_brush_left":
            self.side_brush_left = int(value)
        elif name == "filter_left":
            self.filter_left = int(value)
