"""
User-triggered one-shot actions for beamdui.

ActionDispatcher runs a single command against the API, tracks the owning
view's busy flag for the duration, and reports the outcome through the
StateManager's transient notification. Destructive actions (kicks, mod
delete) first ask for confirmation through the store; the UI answers it.
Mutating actions that change a displayed list trigger exactly one
out-of-band refresh of that list's poller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .backend import ApiBackend, ApiError
from .state import StateManager, ViewPoller

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionSpec:
    view: str
    call: Callable[[ApiBackend, Dict[str, Any]], Awaitable[Any]]
    success: str
    required: Tuple[str, ...] = ()
    confirm: Optional[str] = None
    refetch: Optional[str] = None


ACTIONS: Dict[str, ActionSpec] = {
    "start": ActionSpec(
        view="actions",
        call=lambda api, p: api.power_action("start"),
        success="Server start initiated successfully",
    ),
    "stop": ActionSpec(
        view="actions",
        call=lambda api, p: api.power_action("stop"),
        success="Server stop initiated successfully",
    ),
    "restart": ActionSpec(
        view="actions",
        call=lambda api, p: api.power_action("restart"),
        success="Server restart initiated successfully",
    ),
    "broadcast": ActionSpec(
        view="actions",
        call=lambda api, p: api.send_command(f"broadcast {p['message']}"),
        success="Message broadcasted successfully",
        required=("message",),
    ),
    "custom_command": ActionSpec(
        view="actions",
        call=lambda api, p: api.send_command(p['command']),
        success="Command executed successfully",
        required=("command",),
    ),
    "change_map": ActionSpec(
        view="actions",
        call=lambda api, p: api.change_map(p['map_path']),
        success="Map change initiated successfully",
        required=("map_path",),
        refetch="settings",
    ),
    "kick_all": ActionSpec(
        view="actions",
        call=lambda api, p: api.send_command("kickall"),
        success="All players have been kicked",
        confirm="Are you sure you want to kick all players?",
        refetch="players",
    ),
    "kick_player": ActionSpec(
        view="players",
        call=lambda api, p: api.send_command(f"kick {p['player']}"),
        success="Player {player} kicked",
        required=("player",),
        confirm="Are you sure you want to kick {player}?",
        refetch="players",
    ),
    "upload_mod": ActionSpec(
        view="mods",
        call=lambda api, p: api.upload_mod(p['filename'], p['content']),
        success="Upload successful!",
        required=("filename",),
        refetch="mods",
    ),
    "toggle_mod": ActionSpec(
        view="mods",
        call=lambda api, p: api.toggle_mod(p['filename']),
        success="Mod {filename} toggled",
        required=("filename",),
        refetch="mods",
    ),
    "delete_mod": ActionSpec(
        view="mods",
        call=lambda api, p: api.delete_mod(p['filename']),
        success="Mod {filename} deleted",
        required=("filename",),
        confirm="Are you sure you want to delete {filename}?",
        refetch="mods",
    ),
    "update_setting": ActionSpec(
        view="settings",
        call=lambda api, p: api.update_setting(p['setting'], p['value']),
        success="Setting updated successfully",
        required=("setting",),
        refetch="settings",
    ),
}


class ActionDispatcher:
    """Executes user actions one at a time per view."""

    def __init__(self, state_manager: StateManager, backend: ApiBackend,
                 pollers: Optional[Dict[str, ViewPoller]] = None):
        self.state_manager = state_manager
        self.backend = backend
        self.pollers = pollers if pollers is not None else {}

    def _spec(self, action: str) -> ActionSpec:
        try:
            return ACTIONS[action]
        except KeyError:
            raise ValueError(f"Unknown action: {action}") from None

    async def dispatch(self, action: str, **params: Any) -> bool:
        """
        Run one action to completion.

        Returns:
            True when the API call succeeded. False when the action was
            refused (view busy, blank input, invalid setting value),
            declined at confirmation, or failed remotely.
        """
        spec = self._spec(action)
        view = spec.view
        snapshot = self.state_manager.get_snapshot(view)
        if self.state_manager.is_busy(view) or snapshot.confirmation is not None:
            logger.warning(f"Ignoring {action}: {view} view is busy")
            return False

        for name in spec.required:
            if not str(params.get(name) or '').strip():
                logger.debug(f"Ignoring {action}: no {name} given")
                return False

        if action == "update_setting":
            problem = self._validate_setting(params['setting'], params.get('value', ''))
            if problem:
                self.state_manager.notify(view, problem, "error")
                return False

        if spec.confirm:
            accepted = await self.state_manager.request_confirmation(view, spec.confirm.format(**params))
            if not accepted:
                logger.debug(f"{action} declined ({ApiError.VALIDATION_DECLINED})")
                return False

        self.state_manager.set_busy(view, True)
        try:
            await spec.call(self.backend, params)
        except ApiError as e:
            logger.info(f"Action {action} failed: {e}")
            self.state_manager.notify(view, str(e), "error")
            return False
        finally:
            self.state_manager.set_busy(view, False)

        logger.info(f"Action {action} succeeded")
        self.state_manager.notify(view, spec.success.format(**params), "success")
        if spec.refetch:
            self._refetch(spec.refetch)
        return True

    def _validate_setting(self, key: str, value: str) -> Optional[str]:
        settings = self.state_manager.get_snapshot("settings").data or []
        setting = next((s for s in settings if s.env_variable == key), None)
        if setting is None:
            return None
        problem = setting.validate(value)
        if problem:
            return f"Invalid value for {setting.name or key}: {problem}"
        return None

    def _refetch(self, view: str) -> None:
        poller = self.pollers.get(view)
        if poller is not None and poller.running:
            poller.refresh()
