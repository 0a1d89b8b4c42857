"""Canonical enumerations shared by the normalizer and the analyzer."""

from __future__ import annotations

from enum import Enum, IntEnum


class Level(IntEnum):
    UNCLASSIFIED = 0
    CRITICAL = 1
    ERROR = 2
    WARNING = 3
    INFORMATION = 4


class HintSeverity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RiskGrade(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Category(str, Enum):
    APPLICATION = "Application"
    COOLING = "Cooling"
    GENERAL = "General"
    GPU = "GPU"
    HARDWARE = "Hardware"
    MEMORY = "Memory"
    NETWORK = "Network"
    PERFORMANCE = "Performance"
    PERIPHERAL = "Peripheral"
    PERMISSIONS = "Permissions"
    POLICY = "Policy"
    POWER = "Power"
    SERVICES = "Services"
    STORAGE = "Storage"
    SYSTEM = "System"
    THERMAL = "Thermal"
    UPDATES = "Updates"


_LEVEL_NAMES = {
    Level.CRITICAL: "Critical",
    Level.ERROR: "Error",
    Level.WARNING: "Warning",
    Level.INFORMATION: "Information",
}


def level_name(level: int) -> str:
    """Human-readable name of a numeric event level ("Other" if unknown)."""
    return _LEVEL_NAMES.get(level, "Other")


def text_of(value: str | Enum) -> str:
    """Plain string value of an enum member or string.

    Hint keys are plain strings so that built-in rules (enum members) and
    declarative rules (raw strings) land on the same key.
    """
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)
