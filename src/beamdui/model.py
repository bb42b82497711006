"""
Data models and structures for beamdui application state.

This module defines the dataclasses that represent remote server resources
and per-view UI state. Used throughout the app for:
  - Type safety and IDE autocomplete
  - Clear separation of data (models) from logic (backend/state/actions)
  - Tolerant parsing of the remote JSON payloads

Data Classes:
  - ServerStatus: point-in-time game-server snapshot (name, players, map)
  - ServerUtilization: point-in-time resource snapshot (cpu, memory, uptime)
  - DashboardData: status + utilization pair committed together
  - ModEntry: one installed mod package
  - SettingEntry: one server configuration key with validation rules
  - Notification: transient action outcome message
  - ConfirmationRequest: pending accept/decline handshake
  - ViewState: UI-facing projection for a single view

Key Fields:
  - Snapshots are replaced wholesale on each successful fetch, never merged
  - Missing payload keys fall back to defaults instead of raising
  - ViewState.error and ViewState.data may both be set (stale data under error)
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


@dataclass
class ServerStatus:
    name: str
    players: str
    max_players: str
    map: str
    version: str
    mods_total: str
    players_list: str = ""

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "ServerStatus":
        return cls(
            name=str(payload.get('sname', '')),
            players=str(payload.get('players', '0')),
            max_players=str(payload.get('maxplayers', '0')),
            map=str(payload.get('map', '')),
            version=str(payload.get('version', '')),
            mods_total=str(payload.get('modstotal', '0')),
            players_list=str(payload.get('playerslist') or ''),
        )

    @classmethod
    def from_panel(cls, attributes: Dict[str, Any]) -> "ServerStatus":
        # The panel knows nothing about players, maps or mods.
        return cls(
            name=str(attributes.get('name', '')),
            players="0",
            max_players="0",
            map="",
            version="",
            mods_total="0",
        )


@dataclass
class ServerUtilization:
    state: str
    cpu_absolute: float
    memory_bytes: int
    disk_bytes: int
    uptime_ms: int
    cpu_limit: float = 0.0
    memory_limit_mb: int = 0
    disk_limit_mb: int = 0

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "ServerUtilization":
        utilization = payload.get('utilization') or {}
        limits = payload.get('limits') or {}
        return cls._build(utilization, limits)

    @classmethod
    def from_panel(cls, resources: Dict[str, Any], server: Dict[str, Any]) -> "ServerUtilization":
        return cls._build(resources, server.get('limits') or {})

    @classmethod
    def _build(cls, utilization: Dict[str, Any], limits: Dict[str, Any]) -> "ServerUtilization":
        resources = utilization.get('resources') or {}
        return cls(
            state=str(utilization.get('current_state', 'unknown')),
            cpu_absolute=_as_float(resources.get('cpu_absolute')),
            memory_bytes=_as_int(resources.get('memory_bytes')),
            disk_bytes=_as_int(resources.get('disk_bytes')),
            uptime_ms=_as_int(resources.get('uptime')),
            cpu_limit=_as_float(limits.get('cpu')),
            memory_limit_mb=_as_int(limits.get('memory')),
            disk_limit_mb=_as_int(limits.get('disk')),
        )

    @property
    def is_running(self) -> bool:
        return self.state == "running"


@dataclass
class DashboardData:
    status: ServerStatus
    utilization: ServerUtilization


@dataclass
class ModEntry:
    name: str
    size_bytes: int
    enabled: bool

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "ModEntry":
        return cls(
            name=str(payload.get('name', '')),
            size_bytes=_as_int(payload.get('size')),
            enabled=payload.get('status') == "Enabled",
        )


_INTEGER_RE = re.compile(r"^-?\d+$")
_BOOLEAN_VALUES = ("true", "false", "1", "0")


@dataclass
class SettingEntry:
    name: str
    env_variable: str
    description: str
    server_value: str
    default_value: str
    rules: str

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SettingEntry":
        attrs = payload.get('attributes') or {}
        server_value = attrs.get('server_value')
        return cls(
            name=str(attrs.get('name', '')),
            env_variable=str(attrs.get('env_variable', '')),
            description=str(attrs.get('description') or ''),
            server_value='' if server_value is None else str(server_value),
            default_value=str(attrs.get('default_value') or ''),
            rules=str(attrs.get('rules') or ''),
        )

    @property
    def rule_list(self) -> List[str]:
        return [r.strip() for r in self.rules.split('|') if r.strip()]

    def validate(self, value: str) -> Optional[str]:
        """Check a candidate value against the panel-style rule expression.

        Supports required, nullable, boolean, in:, integer, numeric,
        min:, max: and between:. Unknown rules are ignored. Size rules apply
        to the numeric value when the setting is numeric and to the string
        length otherwise.

        Returns:
            None when the value is acceptable, otherwise a short reason.
        """
        rules = self.rule_list
        if value == "":
            if "required" in rules:
                return "a value is required"
            return None

        numeric = "integer" in rules or "numeric" in rules
        for rule in rules:
            name, _, arg = rule.partition(':')
            if name == "boolean" and value.lower() not in _BOOLEAN_VALUES:
                return "must be true or false"
            if name == "in" and value not in arg.split(','):
                return f"must be one of {arg}"
            if name == "integer" and not _INTEGER_RE.match(value):
                return "must be an integer"
            if name == "numeric":
                try:
                    float(value)
                except ValueError:
                    return "must be a number"

        if numeric:
            try:
                size = float(value)
            except ValueError:
                return "must be a number"
        else:
            size = float(len(value))

        for rule in rules:
            name, _, arg = rule.partition(':')
            bounds = [_as_float(b, default=float('nan')) for b in arg.split(',')] if arg else []
            if name == "min" and bounds and size < bounds[0]:
                return f"must be at least {arg}"
            if name == "max" and bounds and size > bounds[0]:
                return f"must be at most {arg}"
            if name == "between" and len(bounds) == 2 and not (bounds[0] <= size <= bounds[1]):
                return f"must be between {bounds[0]:g} and {bounds[1]:g}"
        return None


@dataclass
class Notification:
    message: str
    kind: str  # success, error
    seq: int = 0
    view: str = ""


@dataclass
class ConfirmationRequest:
    description: str
    future: "asyncio.Future[bool]"


@dataclass
class ViewState:
    loading: bool = False
    error: Optional[str] = None
    data: Any = None
    notification: Optional[Notification] = None
    busy: bool = False
    confirmation: Optional[ConfirmationRequest] = None
    active: bool = False
    epoch: int = 0  # Bumped on every activation
    generation: int = 0  # Highest poll cycle applied in this epoch
    in_flight: int = 0
    form_values: Dict[str, str] = field(default_factory=dict)
    dirty_fields: Set[str] = field(default_factory=set)  # Edited, not yet saved
