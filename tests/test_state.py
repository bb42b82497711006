import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from beamdui.backend import ApiError
from beamdui.config import PollingConfig
from beamdui.model import DashboardData, ModEntry, ServerStatus, ServerUtilization, SettingEntry
from beamdui.state import StateManager, ViewPoller, build_pollers


def network_error():
    return ApiError(ApiError.NETWORK_UNREACHABLE, "No response received from server")


def scripted_fetch(*results):
    """Fetcher returning (or raising) the given results in order."""
    queue = list(results)

    async def fetch():
        result = queue.pop(0)
        if isinstance(result, Exception):
            raise result
        return result
    return fetch


def test_state_versioning():
    sm = StateManager()
    initial_version = sm.get_version()

    sm.activate("players")
    assert sm.get_version() == initial_version + 1

    sm.set_tab("players")
    assert sm.get_version() == initial_version + 2

    sm.notify("players", "hello", "success")
    assert sm.get_version() == initial_version + 3


def test_unknown_view_is_rejected():
    sm = StateManager()
    with pytest.raises(ValueError):
        sm.set_tab("console")


def test_successful_cycle_replaces_data_and_clears_error():
    async def scenario():
        sm = StateManager()
        poller = ViewPoller(sm, "players", scripted_fetch(network_error(), ["alice", "bob"]))
        poller.start()
        await poller.wait_idle()
        failed = sm.get_snapshot("players")
        poller.refresh()
        await poller.wait_idle()
        return failed, sm.get_snapshot("players")

    failed, ok = asyncio.run(scenario())

    assert failed.error == "No response received from server"
    assert failed.data is None
    assert ok.data == ["alice", "bob"]
    assert ok.error is None
    assert ok.loading is False


def test_failed_cycle_keeps_previous_data():
    async def scenario():
        sm = StateManager()
        poller = ViewPoller(sm, "players", scripted_fetch(["alice"], network_error()))
        poller.start()
        await poller.wait_idle()
        poller.refresh()
        await poller.wait_idle()
        return sm.get_snapshot("players")

    snap = asyncio.run(scenario())

    assert snap.data == ["alice"]
    assert snap.error == "No response received from server"
    assert snap.loading is False


def test_unexpected_exception_becomes_error_string():
    async def scenario():
        sm = StateManager()
        poller = ViewPoller(sm, "mods", scripted_fetch(RuntimeError("bug")))
        poller.start()
        await poller.wait_idle()
        return sm.get_snapshot("mods")

    snap = asyncio.run(scenario())
    assert snap.error == "Failed to fetch mods data"


def test_loading_is_true_only_while_in_flight():
    async def scenario():
        sm = StateManager()
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return []

        poller = ViewPoller(sm, "mods", fetch)
        poller.start()
        await asyncio.sleep(0)
        during = sm.get_snapshot("mods").loading
        gate.set()
        await poller.wait_idle()
        return during, sm.get_snapshot("mods").loading

    during, after = asyncio.run(scenario())
    assert during is True
    assert after is False


def test_start_fetches_immediately_then_on_interval():
    async def scenario():
        sm = StateManager()
        calls = []

        async def fetch():
            calls.append(1)
            return len(calls)

        poller = ViewPoller(sm, "players", fetch, interval=0.02)
        poller.start()
        await asyncio.sleep(0)
        first = len(calls)
        await asyncio.sleep(0.09)
        poller.stop()
        await asyncio.sleep(0)
        during = len(calls)
        await asyncio.sleep(0.06)
        return first, during, len(calls)

    first, during, after = asyncio.run(scenario())
    assert first == 1
    assert during >= 3
    assert after == during


def test_deactivated_view_drops_in_flight_result():
    async def scenario():
        sm = StateManager()
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return ["late"]

        poller = ViewPoller(sm, "players", fetch, interval=10)
        poller.start()
        await asyncio.sleep(0)
        poller.stop()
        version = sm.get_version()
        before = sm.get_snapshot("players")
        gate.set()
        await poller.wait_idle()
        return version, before, sm.get_version(), sm.get_snapshot("players")

    version_before, before, version_after, after = asyncio.run(scenario())
    assert version_after == version_before
    assert after.data is None
    assert after.active is False
    assert before == after


def test_result_from_previous_activation_is_dropped():
    async def scenario():
        sm = StateManager()
        gate = asyncio.Event()
        results = [["stale"], ["fresh"]]

        async def fetch():
            result = results.pop(0)
            if result == ["stale"]:
                await gate.wait()
            return result

        poller = ViewPoller(sm, "players", fetch)
        poller.start()
        await asyncio.sleep(0)
        poller.stop()
        poller.start()
        await asyncio.sleep(0.01)
        gate.set()
        await poller.wait_idle()
        return sm.get_snapshot("players")

    snap = asyncio.run(scenario())
    assert snap.data == ["fresh"]


@pytest.mark.parametrize("latest_wins, expected", [(True, "new"), (False, "old")])
def test_overlapping_cycles_resolution(latest_wins, expected):
    async def scenario():
        sm = StateManager(latest_wins=latest_wins)
        gates = [asyncio.Event(), asyncio.Event()]
        results = ["old", "new"]
        issued = []

        async def fetch():
            idx = len(issued)
            issued.append(idx)
            await gates[idx].wait()
            return results[idx]

        poller = ViewPoller(sm, "mods", fetch)
        poller.start()       # older cycle
        poller.refresh()     # newer cycle
        await asyncio.sleep(0)
        gates[1].set()
        await asyncio.sleep(0.01)
        mid = sm.get_snapshot("mods")
        gates[0].set()
        await poller.wait_idle()
        return mid, sm.get_snapshot("mods")

    mid, final = asyncio.run(scenario())
    assert mid.data == "new"
    assert mid.loading is True
    assert final.data == expected
    assert final.loading is False


def test_stale_failure_does_not_mask_newer_success():
    async def scenario():
        sm = StateManager()
        gate = asyncio.Event()
        calls = []

        async def fetch():
            calls.append(1)
            if len(calls) == 1:
                await gate.wait()
                raise network_error()
            return ["alice"]

        poller = ViewPoller(sm, "players", fetch)
        poller.start()
        poller.refresh()
        await asyncio.sleep(0.01)
        gate.set()
        await poller.wait_idle()
        return sm.get_snapshot("players")

    snap = asyncio.run(scenario())
    assert snap.data == ["alice"]
    assert snap.error is None


def test_notification_replaced_and_timer_restarted():
    async def scenario():
        sm = StateManager(notification_duration=0.2)
        sm.activate("actions")
        sm.notify("actions", "first", "success")
        await asyncio.sleep(0.12)
        sm.notify("actions", "second", "error")
        await asyncio.sleep(0.12)
        # First timer would have fired by now; the replacement restarted it.
        visible = sm.get_snapshot("actions").notification
        await asyncio.sleep(0.15)
        return visible, sm.get_snapshot("actions").notification

    visible, later = asyncio.run(scenario())
    assert visible.message == "second"
    assert visible.kind == "error"
    assert later is None


def test_confirmation_handshake():
    async def scenario():
        sm = StateManager()
        future = sm.request_confirmation("mods", "Delete x.zip?")
        pending = sm.get_snapshot("mods").confirmation
        sm.resolve_confirmation("mods", True)
        return pending, await future, sm.get_snapshot("mods").confirmation

    pending, accepted, after = asyncio.run(scenario())
    assert pending.description == "Delete x.zip?"
    assert accepted is True
    assert after is None


def test_deactivate_declines_pending_confirmation():
    async def scenario():
        sm = StateManager()
        sm.activate("players")
        future = sm.request_confirmation("players", "Kick alice?")
        sm.deactivate("players")
        return await future

    assert asyncio.run(scenario()) is False


def test_snapshot_is_a_copy():
    sm = StateManager()
    sm.activate("players")
    token = sm.begin_cycle("players")
    sm.commit_cycle(token, ["alice"], form_values={"A": "1"})

    snap = sm.get_snapshot("players")
    snap.data.append("mallory")
    snap.form_values["A"] = "2"

    again = sm.get_snapshot("players")
    assert again.data == ["alice"]
    assert again.form_values == {"A": "1"}


def make_backend_mock():
    backend = MagicMock()
    backend.get_server_status = AsyncMock(return_value=ServerStatus(
        name="Race Night", players="2", max_players="8", map="/levels/italy/info.json",
        version="3.4.1", mods_total="1", players_list="alice;bob;"))
    backend.get_server_utilization = AsyncMock(return_value=ServerUtilization(
        state="running", cpu_absolute=5.0, memory_bytes=1024, disk_bytes=2048, uptime_ms=60000))
    backend.list_mods = AsyncMock(return_value=[ModEntry("x.zip", 1048576, False)])
    backend.get_settings = AsyncMock(return_value=[SettingEntry(
        "Max Players", "MAX_PLAYERS", "Player cap", "8", "10", "required|integer")])
    return backend


def test_build_pollers_fetch_each_view():
    async def scenario():
        sm = StateManager()
        pollers = build_pollers(sm, make_backend_mock(), PollingConfig())
        for poller in pollers.values():
            poller.start()
        for poller in pollers.values():
            await poller.wait_idle()
        snaps = {view: sm.get_snapshot(view) for view in pollers}
        for poller in pollers.values():
            poller.stop()
        return pollers, snaps

    pollers, snaps = asyncio.run(scenario())

    assert set(pollers) == {"dashboard", "players", "mods", "settings"}
    assert pollers["dashboard"].interval == 30.0
    assert pollers["players"].interval == 10.0
    assert isinstance(snaps["dashboard"].data, DashboardData)
    assert snaps["dashboard"].data.status.name == "Race Night"
    assert snaps["players"].data == ["alice", "bob"]
    assert snaps["mods"].data[0].name == "x.zip"
    assert snaps["settings"].form_values == {"MAX_PLAYERS": "8"}


def test_dashboard_cycle_is_all_or_nothing():
    async def scenario():
        sm = StateManager()
        backend = make_backend_mock()
        pollers = build_pollers(sm, backend, PollingConfig())
        dashboard = pollers["dashboard"]
        dashboard.start()
        await dashboard.wait_idle()
        before = sm.get_snapshot("dashboard").data

        backend.get_server_status.return_value = ServerStatus(
            "Renamed", "0", "8", "", "", "0")
        backend.get_server_utilization.side_effect = network_error()
        dashboard.refresh()
        await dashboard.wait_idle()
        after = sm.get_snapshot("dashboard")
        dashboard.stop()
        return before, after

    before, after = asyncio.run(scenario())
    assert after.data == before
    assert after.data.status.name == "Race Night"
    assert after.error == "No response received from server"


def test_polling_unchanged_remote_is_idempotent():
    async def scenario():
        sm = StateManager()
        pollers = build_pollers(sm, make_backend_mock(), PollingConfig())
        dashboard = pollers["dashboard"]
        dashboard.start()
        await dashboard.wait_idle()
        first = sm.get_snapshot("dashboard").data
        dashboard.refresh()
        await dashboard.wait_idle()
        second = sm.get_snapshot("dashboard").data
        dashboard.stop()
        return first, second

    first, second = asyncio.run(scenario())
    assert first == second


def test_inactive_view_notification_uses_background_slot():
    async def scenario():
        sm = StateManager(notification_duration=0.05)
        sm.notify("mods", "Mod x.zip deleted", "success")
        record = sm.get_snapshot("mods").notification
        background = sm.get_background_notification()
        await asyncio.sleep(0.1)
        return record, background, sm.get_background_notification()

    record, background, expired = asyncio.run(scenario())
    assert record is None
    assert background.view == "mods"
    assert background.message == "Mod x.zip deleted"
    assert expired is None


def test_busy_survives_reactivation():
    sm = StateManager()
    sm.activate("mods")
    sm.set_busy("mods", True)
    sm.deactivate("mods")
    sm.activate("mods")
    assert sm.get_snapshot("mods").busy is True
    sm.set_busy("mods", False)
    assert sm.get_snapshot("mods").busy is False


def settings_payload(max_players, name, port):
    return [
        SettingEntry("Max Players", "MAX_PLAYERS", "", max_players, "10", "required|integer"),
        SettingEntry("Name", "NAME", "", name, "", "required|string"),
        SettingEntry("Port", "PORT", "", port, "30814", "required|integer"),
    ]


def test_settings_refetch_keeps_unsaved_edits():
    async def scenario():
        sm = StateManager()
        backend = make_backend_mock()
        backend.get_settings = AsyncMock(return_value=settings_payload("8", "Old", "30814"))
        settings = build_pollers(sm, backend, PollingConfig())["settings"]
        settings.start()
        await settings.wait_idle()

        sm.set_form_value("settings", "MAX_PLAYERS", "12")
        sm.set_form_value("settings", "NAME", "New")
        # NAME was saved; PORT changed elsewhere; MAX_PLAYERS is still a local edit.
        backend.get_settings.return_value = settings_payload("8", "New", "30815")
        settings.refresh()
        await settings.wait_idle()
        snap = sm.get_snapshot("settings")
        settings.stop()
        return snap

    snap = asyncio.run(scenario())
    assert snap.form_values == {"MAX_PLAYERS": "12", "NAME": "New", "PORT": "30815"}
    assert snap.dirty_fields == {"MAX_PLAYERS"}
