"""
beamdui - A terminal dashboard for administering a BeamMP game server.

This package is a thin client over a remote management REST API. It polls
server state, keeps each view consistent with the remote source of truth,
and dispatches one-shot commands (power actions, kicks, mod toggles,
settings updates).

Features:
  - Multi-tab interface (Dashboard, Players, Mods, Actions, Settings)
  - Periodic refresh with stale-data retention under errors
  - Confirmation-gated destructive actions
  - Transient notifications for action outcomes
  - Two backend profiles (direct server API, hosting-panel client API)

Main Components:
  - main.py: CLI entry point, logging and config bootstrap
  - backend.py: HTTP API client and error taxonomy
  - state.py: View state store and pollers
  - actions.py: Action dispatcher
  - formatting.py: Presentation helpers (bytes, uptime, player list)
  - model.py: Data structures (ServerStatus, ModEntry, ViewState, etc.)
  - textual_app.py: Textual rendering and key bindings

Usage:
  beamdui --config ~/.config/beamdui/config.yaml
  python -m beamdui

Dependencies:
  - httpx
  - pyyaml
  - textual
  - Python 3.10+
"""

import os
from pathlib import Path

__version__ = "0.1.0"


def get_log_path() -> str:
    """
    Get the log file path following XDG Base Directory spec.

    Returns XDG_DATA_HOME/beamdui/logs/beamdui.log with fallback to /tmp.
    Creates directory if it doesn't exist.

    Returns:
        str: Absolute path to log file (/tmp/beamdui.log as fallback)
    """
    xdg_data_home = os.environ.get('XDG_DATA_HOME')
    if not xdg_data_home:
        # Default fallback: ~/.local/share
        home = Path.home()
        xdg_data_home = home / '.local' / 'share'
    else:
        xdg_data_home = Path(xdg_data_home)

    log_dir = xdg_data_home / 'beamdui' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        return str(log_dir / 'beamdui.log')
    except (PermissionError, OSError):
        return '/tmp/beamdui.log'
