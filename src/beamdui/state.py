"""
View state management and background pollers.

This module keeps each view's displayed snapshot consistent with the remote
API under periodic refresh, user-triggered refresh and partial failure.

Architecture:
  - StateManager: holds one ViewState per view and applies every transition
    (cycle start/success/failure, busy, notification, confirmation) as a
    single write
  - ViewPoller: asyncio task that re-fetches a view's resources on an
    interval and writes the outcome into the StateManager
  - build_pollers(): wires the per-view fetchers to the API client

Concurrency:
  - Single-threaded asyncio; all writes happen on the event loop thread, so
    the store needs no lock
  - Cycles for the same view may overlap (an interval tick does not wait for
    a manual refresh); completion order decides which result lands
  - With latest_wins enabled, each cycle carries a generation number and a
    result older than the newest applied one is discarded
  - Deactivating a view bumps its epoch; results of cycles issued under an
    older epoch are dropped silently on completion

Poll Intervals:
  - Dashboard (status + utilization): 30s
  - Players: 10s
  - Mods, settings: once per activation, plus action-triggered refreshes
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .backend import ApiBackend, ApiError
from .config import PollingConfig
from .formatting import parse_player_list
from .model import ConfirmationRequest, DashboardData, Notification, SettingEntry, ViewState

logger = logging.getLogger(__name__)

VIEWS = ("dashboard", "players", "mods", "actions", "settings")


@dataclass(frozen=True)
class CycleToken:
    view: str
    epoch: int
    generation: int


class StateManager:
    """Per-view state store written by pollers and the action dispatcher."""

    def __init__(self, notification_duration: float = 3.0, latest_wins: bool = True):
        self._views: Dict[str, ViewState] = {name: ViewState() for name in VIEWS}
        self._issued: Dict[str, int] = {name: 0 for name in VIEWS}
        # Keyed by view; None is the background slot.
        self._timers: Dict[Optional[str], asyncio.TimerHandle] = {}
        # Outlives activations so a remount cannot re-enable a pending action.
        self._busy: Set[str] = set()
        self._background: Optional[Notification] = None
        self._notification_seq = 0
        self._version = 0
        self.selected_tab = "dashboard"
        self.notification_duration = notification_duration
        self.latest_wins = latest_wins

    def get_version(self) -> int:
        return self._version

    def _inc_version(self) -> None:
        self._version += 1

    def _view(self, view: str) -> ViewState:
        try:
            return self._views[view]
        except KeyError:
            raise ValueError(f"Unknown view: {view}") from None

    # --- Lifecycle ---

    def activate(self, view: str) -> None:
        """Mount a view with a fresh record; earlier in-flight results become stale."""
        old = self._view(view)
        self._views[view] = ViewState(active=True, epoch=old.epoch + 1)
        self._inc_version()

    def deactivate(self, view: str) -> None:
        vs = self._view(view)
        if not vs.active:
            return
        vs.active = False
        vs.loading = False
        self._cancel_timer(view)
        if vs.confirmation is not None:
            # Leaving the view declines whatever was being asked.
            if not vs.confirmation.future.done():
                vs.confirmation.future.set_result(False)
            vs.confirmation = None
        self._inc_version()

    def set_tab(self, tab: str) -> None:
        self._view(tab)
        self.selected_tab = tab
        self._inc_version()

    # --- Poll cycles ---

    def begin_cycle(self, view: str) -> CycleToken:
        vs = self._view(view)
        self._issued[view] += 1
        token = CycleToken(view, vs.epoch, self._issued[view])
        if vs.active:
            vs.in_flight += 1
            vs.loading = True
            self._inc_version()
        return token

    def _accepts(self, token: CycleToken) -> bool:
        vs = self._views[token.view]
        if not vs.active or vs.epoch != token.epoch:
            logger.debug(f"Dropping {token.view} cycle {token.generation}: view no longer active")
            return False
        vs.in_flight = max(0, vs.in_flight - 1)
        vs.loading = vs.in_flight > 0
        if self.latest_wins and token.generation < vs.generation:
            logger.debug(f"Dropping stale {token.view} cycle {token.generation} (applied {vs.generation})")
            self._inc_version()
            return False
        vs.generation = max(vs.generation, token.generation)
        return True

    def commit_cycle(self, token: CycleToken, data: Any,
                     form_values: Optional[Dict[str, str]] = None) -> bool:
        """Apply a successful cycle: replace data, clear error."""
        if not self._accepts(token):
            return False
        vs = self._views[token.view]
        vs.data = data
        vs.error = None
        if form_values is not None:
            vs.form_values = self._merge_form(vs, form_values)
        self._inc_version()
        return True

    def _merge_form(self, vs: ViewState, seeded: Dict[str, str]) -> Dict[str, str]:
        """Reseed from the server, keeping unsaved local edits."""
        merged = dict(seeded)
        for key in list(vs.dirty_fields):
            local = vs.form_values.get(key)
            if key not in merged or merged[key] == local:
                # Saved (or gone): the server value takes over.
                vs.dirty_fields.discard(key)
            else:
                merged[key] = local
        return merged

    def fail_cycle(self, token: CycleToken, message: str) -> bool:
        """Record a failed cycle; previously displayed data stays."""
        if not self._accepts(token):
            return False
        vs = self._views[token.view]
        vs.error = message or "Request failed"
        self._inc_version()
        return True

    # --- Actions ---

    def is_busy(self, view: str) -> bool:
        self._view(view)
        return view in self._busy

    def set_busy(self, view: str, busy: bool) -> None:
        self._view(view)
        if busy:
            self._busy.add(view)
        else:
            self._busy.discard(view)
        self._inc_version()

    def notify(self, view: str, message: str, kind: str) -> Notification:
        """
        Show a transient notification, replacing any visible one and restarting its timer.

        An inactive view's record is never written; its notification goes to
        the background slot, which the UI surfaces whatever tab is selected.
        """
        vs = self._view(view)
        slot = view if vs.active else None
        self._cancel_timer(slot)
        self._notification_seq += 1
        notification = Notification(message=message, kind=kind, seq=self._notification_seq, view=view)
        if slot is None:
            self._background = notification
        else:
            vs.notification = notification
        self._inc_version()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and self.notification_duration > 0:
            self._timers[slot] = loop.call_later(
                self.notification_duration, self._expire_notification, slot, notification.seq
            )
        return notification

    def clear_notification(self, view: str) -> None:
        self._cancel_timer(view)
        vs = self._view(view)
        if vs.notification is not None:
            vs.notification = None
            self._inc_version()

    def get_background_notification(self) -> Optional[Notification]:
        return self._background

    def _expire_notification(self, slot: Optional[str], seq: int) -> None:
        self._timers.pop(slot, None)
        if slot is None:
            if self._background is not None and self._background.seq == seq:
                self._background = None
                self._inc_version()
            return
        vs = self._views[slot]
        if vs.notification is not None and vs.notification.seq == seq:
            vs.notification = None
            self._inc_version()

    def _cancel_timer(self, slot: Optional[str]) -> None:
        timer = self._timers.pop(slot, None)
        if timer is not None:
            timer.cancel()

    def request_confirmation(self, view: str, description: str) -> "asyncio.Future[bool]":
        vs = self._view(view)
        future = asyncio.get_running_loop().create_future()
        vs.confirmation = ConfirmationRequest(description=description, future=future)
        self._inc_version()
        return future

    def resolve_confirmation(self, view: str, accepted: bool) -> None:
        vs = self._view(view)
        request = vs.confirmation
        if request is None:
            return
        vs.confirmation = None
        if not request.future.done():
            request.future.set_result(bool(accepted))
        self._inc_version()

    def set_form_value(self, view: str, key: str, value: str) -> None:
        vs = self._view(view)
        vs.form_values[key] = value
        vs.dirty_fields.add(key)
        self._inc_version()

    # --- Reads ---

    def get_snapshot(self, view: str) -> ViewState:
        vs = self._view(view)
        data = vs.data
        if isinstance(data, list):
            data = list(data)
        return dataclasses.replace(vs, data=data, busy=view in self._busy,
                                   form_values=dict(vs.form_values),
                                   dirty_fields=set(vs.dirty_fields))

    def get_form_value(self, view: str, key: str) -> Optional[str]:
        return self._view(view).form_values.get(key)


Fetcher = Callable[[], Awaitable[Any]]


class ViewPoller:
    """Keeps one view's snapshot fresh by re-fetching on a fixed interval."""

    def __init__(self, state_manager: StateManager, view: str, fetch: Fetcher,
                 interval: float = 0.0,
                 seed_form: Optional[Callable[[Any], Dict[str, str]]] = None):
        self.state_manager = state_manager
        self.view = view
        self.fetch = fetch
        self.interval = interval
        self.seed_form = seed_form
        self._interval_task: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()
        self.running = False

    def start(self) -> None:
        """Activate the view, fetch immediately, then re-arm on the interval."""
        if self.running:
            return
        self.running = True
        self.state_manager.activate(self.view)
        self.refresh()
        if self.interval > 0:
            self._interval_task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Cancel the interval; cycles still in flight finish but are not applied."""
        if not self.running:
            return
        self.running = False
        if self._interval_task is not None:
            self._interval_task.cancel()
            self._interval_task = None
        self.state_manager.deactivate(self.view)

    def refresh(self) -> asyncio.Task:
        """Issue one fetch cycle, independent of the interval."""
        token = self.state_manager.begin_cycle(self.view)
        task = asyncio.create_task(self._cycle(token))
        self._cycles.add(task)
        task.add_done_callback(self._cycles.discard)
        return task

    async def _run(self) -> None:
        while self.running:
            await asyncio.sleep(self.interval)
            if self.running:
                self.refresh()

    async def _cycle(self, token: CycleToken) -> None:
        try:
            data = await self.fetch()
        except ApiError as e:
            self.state_manager.fail_cycle(token, str(e))
            return
        except Exception as e:
            logger.error(f"Unexpected failure refreshing {self.view}: {e}", exc_info=True)
            self.state_manager.fail_cycle(token, f"Failed to fetch {self.view} data")
            return

        form_values = self.seed_form(data) if self.seed_form else None
        self.state_manager.commit_cycle(token, data, form_values=form_values)

    async def wait_idle(self) -> None:
        """Wait for the cycles currently in flight."""
        if self._cycles:
            await asyncio.gather(*list(self._cycles), return_exceptions=True)


def _seed_settings_form(settings: List[SettingEntry]) -> Dict[str, str]:
    return {s.env_variable: s.server_value for s in settings}


def build_pollers(state_manager: StateManager, backend: ApiBackend,
                  polling: PollingConfig) -> Dict[str, ViewPoller]:
    """Create the pollers for every view that shows remote data."""

    async def fetch_dashboard() -> DashboardData:
        status, utilization = await asyncio.gather(
            backend.get_server_status(),
            backend.get_server_utilization(),
        )
        return DashboardData(status=status, utilization=utilization)

    async def fetch_players() -> List[str]:
        status = await backend.get_server_status()
        return parse_player_list(status.players_list)

    return {
        "dashboard": ViewPoller(state_manager, "dashboard", fetch_dashboard, polling.dashboard_interval),
        "players": ViewPoller(state_manager, "players", fetch_players, polling.players_interval),
        "mods": ViewPoller(state_manager, "mods", backend.list_mods, polling.mods_interval),
        "settings": ViewPoller(state_manager, "settings", backend.get_settings, polling.settings_interval,
                               seed_form=_seed_settings_form),
    }
