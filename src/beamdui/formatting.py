"""
Presentation helpers for beamdui views.

Pure functions that turn model values into display strings. Nothing here
touches the network or the state store.
"""

from typing import List

from .model import ModEntry

AVAILABLE_MAPS = [
    '/levels/gridmap_v2/info.json',
    '/levels/automation_test_track/info.json',
    '/levels/east_coast_usa/info.json',
    '/levels/hirochi_raceway/info.json',
    '/levels/italy/info.json',
    '/levels/jungle_rock_island/info.json',
    '/levels/industrial/info.json',
    '/levels/small_island/info.json',
    '/levels/smallgrid/info.json',
    '/levels/utah/info.json',
    '/levels/west_coast_usa/info.json',
    '/levels/driver_training/info.json',
    '/levels/derby/info.json',
]

_BYTE_UNITS = ['B', 'KB', 'MB', 'GB']


def parse_player_list(raw: str) -> List[str]:
    """Split the semicolon-joined player list, dropping empty segments."""
    if not raw:
        return []
    return [name for name in raw.split(';') if name]


def format_bytes(num_bytes: float) -> str:
    if num_bytes <= 0:
        return "0 B"
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(_BYTE_UNITS) - 1:
        value /= 1024
        idx += 1
    return f"{value:.2f} {_BYTE_UNITS[idx]}"


def format_mod_size(size_bytes: int) -> str:
    # Mod sizes are always shown in MB.
    return f"{size_bytes / (1024 * 1024):.2f} MB"


def format_uptime(milliseconds: int) -> str:
    """Format an uptime in ms as 'Xd Yh Zm'; the seconds remainder is dropped."""
    seconds = int(milliseconds) // 1000
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    return " ".join(parts) or "< 1m"


def format_cpu(cpu_absolute: float) -> str:
    return f"{cpu_absolute:.1f}%"


def toggle_label(mod: ModEntry) -> str:
    return "Disable" if mod.enabled else "Enable"


def mod_status_label(mod: ModEntry) -> str:
    return "Enabled" if mod.enabled else "Disabled"


def map_display_name(map_path: str) -> str:
    """'/levels/italy/info.json' -> 'italy'; anything else is returned as is."""
    parts = map_path.split('/')
    if len(parts) > 2 and parts[2]:
        return parts[2]
    return map_path or "Unknown"


def setting_widget(rules: str) -> str:
    """Pick the input widget kind for a setting: select, number or text."""
    if 'in:true,false' in rules or 'boolean' in rules.split('|'):
        return "select"
    if 'integer' in rules or 'numeric' in rules:
        return "number"
    return "text"
