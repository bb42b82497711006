"""Textual-based UI for beamdui."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from rich.markup import escape as rich_escape
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Static, Tab, Tabs

from .actions import ActionDispatcher
from .backend import ApiError, create_backend
from .config import AppConfig
from .formatting import (
    AVAILABLE_MAPS,
    format_bytes,
    format_cpu,
    format_mod_size,
    format_uptime,
    map_display_name,
    mod_status_label,
    setting_widget,
    toggle_label,
)
from .model import Notification, ViewState
from .state import VIEWS, StateManager, build_pollers

logger = logging.getLogger(__name__)

VIEW_TITLES = {
    "dashboard": "DASHBOARD",
    "players": "PLAYERS",
    "mods": "MODS",
    "actions": "ACTIONS",
    "settings": "SETTINGS",
}

# Per-view menu entries: (label, key)
VIEW_OPTIONS = {
    "players": [("Kick Player", "k")],
    "mods": [("Enable/Disable", "t"), ("Upload Mod", "u"), ("Delete Mod", "d")],
    "actions": [
        ("Start Server", "s"),
        ("Stop Server", "x"),
        ("Restart Server", "r"),
        ("Broadcast Message", "b"),
        ("Change Map", "m"),
        ("Kick All Players", "K"),
        ("Custom Command", "c"),
    ],
    "settings": [("Edit Value", "e"), ("Save Value", "w")],
}


class ConfirmScreen(ModalScreen[bool]):
    def __init__(self, question: str) -> None:
        super().__init__()
        self.question = question

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Confirm", classes="modal_title"),
            Static(self.question, classes="modal_body", markup=False),
            Static("[Enter/Y] Yes    [Esc/N] No", classes="modal_hint", markup=False),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "y", "Y"):
            self.dismiss(True)
        elif event.key in ("escape", "n", "N"):
            self.dismiss(False)


class InputScreen(ModalScreen[Optional[str]]):
    def __init__(self, prompt: str, value: str = "") -> None:
        super().__init__()
        self.prompt = prompt
        self.value = value

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Input", classes="modal_title"),
            Static(self.prompt, classes="modal_body", markup=False),
            Input(value=self.value, placeholder="Type value and press Enter", id="input_value"),
            Static("[Esc] Cancel", classes="modal_hint", markup=False),
            id="modal",
        )

    def on_mount(self) -> None:
        self.query_one("#input_value", Input).focus()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value.strip())

    async def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(None)


class ActionMenuScreen(ModalScreen[Optional[str]]):
    BINDINGS = [
        Binding("up", "move_up", "Up", show=False),
        Binding("down", "move_down", "Down", show=False),
        Binding("enter", "select", "Select", show=False),
        Binding("escape", "cancel", "Cancel", show=False),
    ]

    def __init__(self, title: str, options: list[tuple[str, str]]) -> None:
        super().__init__()
        self.menu_title = title
        self.options = options
        self.index = 0

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static(self.menu_title, classes="modal_title"),
            Static("", id="menu_options", classes="modal_body", markup=False),
            Static("[Up/Down] Move  [Enter] Select  [Esc] Cancel", classes="modal_hint", markup=False),
            id="modal",
        )

    def on_mount(self) -> None:
        self._render_options()

    def _render_options(self) -> None:
        lines = []
        for idx, (label, _) in enumerate(self.options):
            marker = ">" if idx == self.index else " "
            lines.append(f"{marker} {label}")
        self.query_one("#menu_options", Static).update("\n".join(lines))

    def action_move_up(self) -> None:
        self.index = (self.index - 1) % len(self.options)
        self._render_options()

    def action_move_down(self) -> None:
        self.index = (self.index + 1) % len(self.options)
        self._render_options()

    def action_select(self) -> None:
        self.dismiss(self.options[self.index][1])

    def action_cancel(self) -> None:
        self.dismiss(None)


class BeamTextualApp(App[None]):
    TITLE = "beamdui"
    SUB_TITLE = "BeamMP Server Dashboard"

    CSS = """
    Screen {
      layout: vertical;
    }

    #tabs {
      height: 1;
      padding: 0 1;
      background: $surface;
      color: $text;
    }

    #body {
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #banner {
      height: auto;
      padding: 0 1;
      background: $error;
      color: $text;
      display: none;
    }

    #banner.visible {
      display: block;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }

    #modal {
      width: 70;
      height: auto;
      border: round $accent;
      background: $surface;
      padding: 1 2;
      align: center middle;
    }

    .modal_title {
      text-style: bold;
      margin-bottom: 1;
    }

    .modal_body {
      margin-bottom: 1;
    }

    .modal_hint {
      color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("1", "tab('dashboard')", "Dashboard", show=False),
        Binding("2", "tab('players')", "Players", show=False),
        Binding("3", "tab('mods')", "Mods", show=False),
        Binding("4", "tab('actions')", "Actions", show=False),
        Binding("5", "tab('settings')", "Settings", show=False),
        Binding("up", "up", "Up"),
        Binding("down", "down", "Down"),
        Binding("enter", "open_menu", "Actions"),
        Binding("R", "refresh", "Refresh"),
    ]

    def __init__(self, config: AppConfig) -> None:
        super().__init__()
        self.config = config
        self.backend = create_backend(config.api)
        self.state = StateManager(
            notification_duration=config.notifications.duration,
            latest_wins=config.polling.latest_wins,
        )
        self.pollers = build_pollers(self.state, self.backend, config.polling)
        self.dispatcher = ActionDispatcher(self.state, self.backend, self.pollers)
        self.selected_index: dict[str, int] = {view: 0 for view in VIEWS}
        self.message = ""
        self._last_version = -1
        self._last_notification_seq = 0
        self._confirm_open = False
        self._syncing_tabs = False

    @property
    def selected_tab(self) -> str:
        return self.state.selected_tab

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Tabs(*(Tab(VIEW_TITLES[view], id=view) for view in VIEWS), id="tabs")
        yield Static("", id="banner", markup=False)
        yield Static("", id="body", markup=False)
        yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self.set_interval(0.25, self._tick)
        self._activate(self.selected_tab)
        self.run_worker(self._check_connection(), group="startup", thread=False)
        self._render()

    async def on_unmount(self) -> None:
        for poller in self.pollers.values():
            poller.stop()
        await self.backend.aclose()

    async def _check_connection(self) -> None:
        try:
            await self.backend.check_connection()
            self.message = f"Connected ({self.config.api.profile})"
        except ApiError as e:
            self.message = f"API check failed: {e}"
        self._render()

    # --- View lifecycle ---

    def _activate(self, view: str) -> None:
        poller = self.pollers.get(view)
        if poller is not None:
            poller.start()
        else:
            self.state.activate(view)

    def _deactivate(self, view: str) -> None:
        poller = self.pollers.get(view)
        if poller is not None:
            poller.stop()
        else:
            self.state.deactivate(view)

    def action_tab(self, tab: str) -> None:
        self._set_tab(tab)

    def _set_tab(self, tab: str) -> None:
        if tab == self.selected_tab:
            return
        self._deactivate(self.selected_tab)
        self.state.set_tab(tab)
        self._activate(tab)
        self.selected_index[tab] = 0
        tabs = self.query_one("#tabs", Tabs)
        if tabs.active != tab:
            self._syncing_tabs = True
            try:
                tabs.active = tab
            finally:
                self._syncing_tabs = False
        self._render()

    def on_tabs_tab_activated(self, event: Tabs.TabActivated) -> None:
        if self._syncing_tabs or event.tab is None:
            return
        tab_id = event.tab.id
        if tab_id in VIEWS:
            self._set_tab(tab_id)

    # --- Rendering ---

    def _items(self, view: str, snapshot: ViewState) -> list[Any]:
        if view in ("players", "mods", "settings") and isinstance(snapshot.data, list):
            return snapshot.data
        if view == "actions":
            return VIEW_OPTIONS["actions"]
        return []

    def _selected_item(self) -> Optional[Any]:
        view = self.selected_tab
        items = self._items(view, self.state.get_snapshot(view))
        idx = self.selected_index[view]
        if 0 <= idx < len(items):
            return items[idx]
        return None

    def _normalize_selection(self, view: str, snapshot: ViewState) -> None:
        count = len(self._items(view, snapshot))
        self.selected_index[view] = max(0, min(self.selected_index[view], count - 1)) if count else 0

    def _rows(self, view: str, snapshot: ViewState, lines: list[str]) -> list[str]:
        idx = self.selected_index[view]
        return [f"{'>' if i == idx else ' '} {line}" for i, line in enumerate(lines)]

    def _render_dashboard(self, snapshot: ViewState) -> str:
        data = snapshot.data
        if data is None:
            return "Loading..." if snapshot.loading else "No data"
        status, util = data.status, data.utilization
        return "\n".join([
            f"Server Status : {'Running' if util.is_running else (util.state or 'Unknown')}",
            f"Players       : {status.players}/{status.max_players}",
            f"CPU Usage     : {format_cpu(util.cpu_absolute)}",
            f"Memory Usage  : {format_bytes(util.memory_bytes)}",
            f"Disk Usage    : {format_bytes(util.disk_bytes)}",
            "",
            "Server Information",
            f"  Name    : {status.name or 'Unknown'}",
            f"  Map     : {map_display_name(status.map)}",
            f"  Version : {status.version or 'Unknown'}",
            f"  Mods    : {status.mods_total or '0'}",
            f"  Uptime  : {format_uptime(util.uptime_ms) if util.is_running else '-'}",
            "",
            "Resource Limits",
            f"  CPU Limit    : {util.cpu_limit:g}%",
            f"  Memory Limit : {format_bytes(util.memory_limit_mb * 1024 * 1024)}",
            f"  Disk Limit   : {format_bytes(util.disk_limit_mb * 1024 * 1024)}",
        ])

    def _render_players(self, snapshot: ViewState) -> str:
        if snapshot.data is None:
            return "Loading..." if snapshot.loading else "No data"
        if not snapshot.data:
            return "No players online"
        header = f"Online Players ({len(snapshot.data)})    [k] Kick"
        return "\n".join([header, ""] + self._rows("players", snapshot, list(snapshot.data)))

    def _render_mods(self, snapshot: ViewState) -> str:
        if snapshot.data is None:
            return "Loading..." if snapshot.loading else "No data"
        header = f"{'NAME':40} {'SIZE':>10} {'STATUS':9} ACTION    [u] Upload  [t] Toggle  [d] Delete"
        lines = [
            f"{mod.name[:40]:40} {format_mod_size(mod.size_bytes):>10} {mod_status_label(mod):9} {toggle_label(mod)}"
            for mod in snapshot.data
        ]
        if not lines:
            lines_out = ["No mods installed"]
        else:
            lines_out = self._rows("mods", snapshot, lines)
        return "\n".join([header, ""] + lines_out)

    def _render_actions(self, snapshot: ViewState) -> str:
        lines = [f"{label:20} ({key})" for label, key in VIEW_OPTIONS["actions"]]
        footer = [
            "",
            "Server restarts may take up to 30 seconds to complete.",
            "Players will be automatically disconnected during restart.",
            "Map changes require all players to reconnect.",
        ]
        return "\n".join(self._rows("actions", snapshot, lines) + footer)

    def _render_settings(self, snapshot: ViewState) -> str:
        if snapshot.data is None:
            return "Loading..." if snapshot.loading else "No data"
        lines = []
        for setting in snapshot.data:
            value = snapshot.form_values.get(setting.env_variable, setting.server_value)
            dirty = "*" if value != setting.server_value else " "
            lines.append(
                f"{setting.name[:28]:28} {dirty}{value[:30]:30} [{setting_widget(setting.rules)}] {setting.description[:40]}"
            )
        header = "Server Settings    [e] Edit  [w] Save  (* unsaved)"
        return "\n".join([header, ""] + (self._rows("settings", snapshot, lines) or ["No settings"]))

    def _render_status(self, snapshot: ViewState) -> str:
        parts = []
        if snapshot.busy:
            parts.append("Working...")
        elif snapshot.loading:
            parts.append("Refreshing...")
        if snapshot.notification is not None:
            prefix = "OK" if snapshot.notification.kind == "success" else "ERROR"
            parts.append(f"{prefix}: {snapshot.notification.message}")
        if self.message:
            parts.append(self.message)
        return "  ".join(parts)

    def _render(self) -> None:
        view = self.selected_tab
        snapshot = self.state.get_snapshot(view)
        self._normalize_selection(view, snapshot)
        renderers = {
            "dashboard": self._render_dashboard,
            "players": self._render_players,
            "mods": self._render_mods,
            "actions": self._render_actions,
            "settings": self._render_settings,
        }
        self.query_one("#body", Static).update(rich_escape(renderers[view](snapshot)))
        banner = self.query_one("#banner", Static)
        banner.update(f"Error: {snapshot.error}" if snapshot.error else "")
        banner.set_class(bool(snapshot.error), "visible")
        self.query_one("#status", Static).update(self._render_status(snapshot))

    async def _tick(self) -> None:
        version = self.state.get_version()
        if version == self._last_version:
            return
        self._last_version = version
        snapshot = self.state.get_snapshot(self.selected_tab)
        # Outcomes of actions whose tab was left arrive in the background slot.
        pending = [n for n in (snapshot.notification, self.state.get_background_notification())
                   if n is not None]
        for notification in sorted(pending, key=lambda n: n.seq):
            self._surface_notification(notification)
        self._surface_confirmation(snapshot)
        self._render()

    def _surface_notification(self, notification: Notification) -> None:
        if notification.seq <= self._last_notification_seq:
            return
        self._last_notification_seq = notification.seq
        self.notify(
            notification.message,
            severity="information" if notification.kind == "success" else "error",
            timeout=self.config.notifications.duration,
        )

    def _surface_confirmation(self, snapshot: ViewState) -> None:
        request = snapshot.confirmation
        if request is None or self._confirm_open:
            return
        view = self.selected_tab
        self._confirm_open = True

        def resolved(accepted: Optional[bool]) -> None:
            self._confirm_open = False
            self.state.resolve_confirmation(view, bool(accepted))

        self.push_screen(ConfirmScreen(request.description), resolved)

    # --- Navigation ---

    def action_up(self) -> None:
        self.selected_index[self.selected_tab] -= 1
        self._render()

    def action_down(self) -> None:
        self.selected_index[self.selected_tab] += 1
        self._render()

    def action_refresh(self) -> None:
        poller = self.pollers.get(self.selected_tab)
        if poller is not None and poller.running:
            poller.refresh()

    # --- User actions ---

    async def _input(self, prompt: str, value: str = "") -> Optional[str]:
        return await self.push_screen_wait(InputScreen(prompt, value))

    async def _choose(self, title: str, options: list[tuple[str, str]]) -> Optional[str]:
        return await self.push_screen_wait(ActionMenuScreen(title, options))

    def action_open_menu(self) -> None:
        self.run_worker(self._open_menu_flow(), group="user-action", thread=False)

    async def _open_menu_flow(self) -> None:
        options = VIEW_OPTIONS.get(self.selected_tab, [])
        if not options:
            return
        if self.selected_tab == "actions":
            item = self._selected_item()
            key = item[1] if item else None
        else:
            key = await self._choose("Actions", options)
        if key:
            await self._run_view_action(key)

    async def on_key(self, event: events.Key) -> None:
        if len(self.screen_stack) > 1:
            return
        keys = {key for _, key in VIEW_OPTIONS.get(self.selected_tab, [])}
        if event.character in keys:
            self.run_worker(self._run_view_action(event.character), group="user-action", thread=False)
            event.stop()

    async def _run_view_action(self, key: str) -> None:
        view = self.selected_tab
        item = self._selected_item()

        if view == "players" and key == "k" and item:
            await self.dispatcher.dispatch("kick_player", player=item)

        elif view == "mods":
            if key == "u":
                await self._upload_mod_flow()
            elif key == "t" and item:
                await self.dispatcher.dispatch("toggle_mod", filename=item.name)
            elif key == "d" and item:
                await self.dispatcher.dispatch("delete_mod", filename=item.name)

        elif view == "actions":
            await self._server_action_flow(key)

        elif view == "settings" and item:
            if key == "e":
                await self._edit_setting_flow(item)
            elif key == "w":
                value = self.state.get_form_value("settings", item.env_variable)
                await self.dispatcher.dispatch(
                    "update_setting", setting=item.env_variable,
                    value=item.server_value if value is None else value,
                )
        self._render()

    async def _server_action_flow(self, key: str) -> None:
        if key in ("s", "x", "r"):
            await self.dispatcher.dispatch({"s": "start", "x": "stop", "r": "restart"}[key])
        elif key == "b":
            message = await self._input("Enter message to broadcast:")
            await self.dispatcher.dispatch("broadcast", message=message)
        elif key == "c":
            command = await self._input("Enter custom command:")
            await self.dispatcher.dispatch("custom_command", command=command)
        elif key == "m":
            options = [(map_display_name(path), path) for path in AVAILABLE_MAPS]
            options.append(("Other...", ""))
            map_path = await self._choose("Select map", options)
            if map_path == "":
                map_path = await self._input("Enter map path:", AVAILABLE_MAPS[0])
            await self.dispatcher.dispatch("change_map", map_path=map_path)
        elif key == "K":
            await self.dispatcher.dispatch("kick_all")

    async def _upload_mod_flow(self) -> None:
        path_text = await self._input("Path to mod file (.zip):")
        if not path_text:
            return
        path = Path(path_text).expanduser()
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.warning(f"Cannot read mod file {path}: {e}")
            self.state.notify("mods", f"Request error: cannot read {path.name}: {e.strerror}", "error")
            return
        await self.dispatcher.dispatch("upload_mod", filename=path.name, content=content)

    async def _edit_setting_flow(self, setting: Any) -> None:
        current = self.state.get_form_value("settings", setting.env_variable)
        if current is None:
            current = setting.server_value
        if setting_widget(setting.rules) == "select":
            value = await self._choose(setting.name, [("True", "true"), ("False", "false")])
        else:
            value = await self._input(f"{setting.name} ({setting.rules or 'text'}):", current)
        if value is not None:
            self.state.set_form_value("settings", setting.env_variable, value)

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool:
        # If a modal screen is active, app-level bindings must not steal keys.
        if len(self.screen_stack) > 1:
            return False
        return True
