import asyncio
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from cdplayer.colima import (
    ColimaBackend,
    ColimaManager,
    ProfileConfig,
    merge_instances,
    parse_running_profiles,
    scan_profiles,
    sort_instances,
)
from cdplayer.model import ColimaInstance, ColimaStatus
from cdplayer.store import SettingsStore


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def write_profile(home, name, body="cpu: 2\n"):
    profile = home / name
    profile.mkdir(parents=True)
    (profile / "colima.yaml").write_text(body)


@pytest.fixture
def backend():
    mock = MagicMock(spec=ColimaBackend)
    mock.binary = "colima"
    mock.profiles.return_value = [
        ProfileConfig("default", cpu=4, memory=8, disk=60),
        ProfileConfig("dev", cpu=2),
    ]
    mock.running_profiles.return_value = set()
    mock.socket_path.side_effect = lambda user, profile: Path(f"/Users/{user}/.colima/{profile}/docker.sock")
    return mock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(tmp_path, backend, clock):
    return ColimaManager(SettingsStore(tmp_path), backend=backend, clock=clock, user="alice")


async def drain(manager):
    if manager._tasks:
        await asyncio.gather(*list(manager._tasks))


class TestScanner:
    def test_scan_profiles_reads_hints(self, tmp_path):
        write_profile(tmp_path, "default", "cpu: 4\nmemory: 8\ndisk: 60\narch: aarch64\n")
        write_profile(tmp_path, "dev", "cpu: 2\nmemory: lots\n")
        write_profile(tmp_path, "_lima")
        write_profile(tmp_path, ".hidden")
        (tmp_path / "no-config").mkdir()
        (tmp_path / "stray.txt").write_text("x")

        profiles = scan_profiles(tmp_path)

        assert profiles == [
            ProfileConfig("default", cpu=4, memory=8, disk=60),
            ProfileConfig("dev", cpu=2),
        ]

    def test_unparsable_config_gives_no_hints(self, tmp_path):
        write_profile(tmp_path, "broken", "cpu: [4\n")
        assert scan_profiles(tmp_path) == [ProfileConfig("broken")]

    def test_unreadable_profile_is_skipped(self, tmp_path, mocker):
        write_profile(tmp_path, "default")
        write_profile(tmp_path, "locked")
        real_is_dir = Path.is_dir

        def is_dir(path):
            if path.name == "locked":
                raise PermissionError(13, "Permission denied", str(path))
            return real_is_dir(path)

        mocker.patch.object(Path, "is_dir", autospec=True, side_effect=is_dir)

        assert scan_profiles(tmp_path) == [ProfileConfig("default", cpu=2)]

    def test_backend_profiles_degrade_to_empty(self, mocker):
        mocker.patch("cdplayer.colima.scan_profiles", side_effect=PermissionError("denied"))
        assert ColimaBackend("colima").profiles("alice") == []

    def test_missing_home(self, tmp_path):
        assert scan_profiles(tmp_path / "nope") == []

    def test_parse_running_profiles(self):
        output = "\n".join([
            "alice  123  0.1  /opt/homebrew/bin/colima daemon start default --inotify",
            "alice  456  0.1  colima daemon start work",
            "alice  789  0.1  colima daemon start --verbose",
            "alice  999  0.1  bash",
        ])
        assert parse_running_profiles(output) == {"default", "work"}

    def test_running_profiles_uses_process_list(self, mocker):
        run = mocker.patch("cdplayer.colima.run_shell_command",
                           return_value="u 1 colima daemon start default\n")
        assert ColimaBackend("colima").running_profiles() == {"default"}
        assert "colima daemon start" in run.call_args[0][0]


class TestOrdering:
    def test_default_first_then_ordinal(self):
        names = ["zeta", "Alpha", "default", "beta"]
        instances = [ColimaInstance(n, n, ColimaStatus.STOPPED) for n in names]
        assert [i.name for i in sort_instances(instances)] == ["default", "Alpha", "beta", "zeta"]

    def test_merge_marks_running_and_synthesizes_missing(self):
        instances = merge_instances(
            [ProfileConfig("dev", cpu=2), ProfileConfig("default")],
            {"dev", "ghost"},
        )
        assert [(i.name, i.status) for i in instances] == [
            ("default", ColimaStatus.STOPPED),
            ("dev", ColimaStatus.RUNNING),
            ("ghost", ColimaStatus.RUNNING),
        ]
        assert instances[1].cpu == 2
        assert instances[2].cpu is None


class TestColimaManager:
    def test_refresh_publishes(self, manager, backend):
        backend.running_profiles.return_value = {"default"}
        seen = []
        manager.changes.subscribe(lambda: seen.append(list(manager.instances)))
        assert manager.is_loading

        asyncio.run(manager.refresh())

        assert not manager.is_loading
        assert [i.status for i in manager.instances] == [ColimaStatus.RUNNING, ColimaStatus.STOPPED]
        assert manager.has_running_instance
        assert not manager.has_only_default_profile
        assert len(seen) == 1
        backend.profiles.assert_called_with("alice")

    def test_start_instance_holds_starting_until_settled(self, manager, backend, clock):
        async def scenario():
            await manager.refresh()
            manager.start_instance("default")

            assert manager.instances[0].status is ColimaStatus.STARTING
            assert manager.instances[0].cpu == 4
            assert manager.poller.fast_active
            await drain(manager)
            backend.run_directly.assert_called_once_with(["start", "-p", "default"])

            # Not running yet
            clock.now += 1
            await manager.refresh()
            assert manager.instances[0].status is ColimaStatus.STARTING

            # Running, but within the dwell
            backend.running_profiles.return_value = {"default"}
            clock.now += 1
            await manager.refresh()
            assert manager.instances[0].status is ColimaStatus.STARTING
            assert manager.instances[0].memory == 8

            clock.now += 5
            await manager.refresh()
            assert manager.instances[0].status is ColimaStatus.RUNNING
            assert manager.transitions.is_empty()
            assert not manager.poller.fast_active

        asyncio.run(scenario())

    def test_stop_instance_same_user(self, manager, backend):
        backend.running_profiles.return_value = {"dev"}

        async def scenario():
            await manager.refresh()
            manager.stop_instance("dev")
            assert manager.instances[1].status is ColimaStatus.STOPPING
            await drain(manager)
            manager.poller.stop()

        asyncio.run(scenario())
        backend.run_directly.assert_called_once_with(["stop", "-p", "dev"])
        backend.open_terminal.assert_not_called()

    def test_other_user_goes_through_terminal(self, tmp_path, backend, clock):
        settings = SettingsStore(tmp_path)
        settings.set_colima_user("colima")
        manager = ColimaManager(settings, backend=backend, clock=clock, user="alice")
        assert manager.needs_sudo
        assert manager.effective_user == "colima"

        async def scenario():
            manager.start_instance("default")
            await drain(manager)
            manager.poller.stop()

        asyncio.run(scenario())
        backend.open_terminal.assert_called_once_with("sudo -Hu colima colima start -p default")
        backend.run_directly.assert_not_called()

    def test_start_command_chains_socket_fix(self, tmp_path, backend):
        settings = SettingsStore(tmp_path)
        settings.set_colima_user("colima")
        settings.set_auto_fix_socket_permissions(True)
        manager = ColimaManager(settings, backend=backend, user="alice")

        assert manager.start_command("work") == (
            "sudo -Hu colima colima start -p work"
            " && sudo chmod g+rw /Users/colima/.colima/work/docker.sock"
            " && echo 'Socket permissions updated.'"
        )
        assert manager.stop_command("work") == "sudo -Hu colima colima stop -p work"

    def test_configured_user_equal_to_current_runs_directly(self, tmp_path, backend):
        settings = SettingsStore(tmp_path)
        settings.set_colima_user("alice")
        manager = ColimaManager(settings, backend=backend, user="alice")
        assert not manager.needs_sudo

    def test_set_unknown_user_is_rejected(self, manager, mocker):
        mocker.patch("cdplayer.colima.user_exists", return_value=False)
        assert manager.set_colima_user("ghost") == "User 'ghost' does not exist"
        assert manager.configured_user is None
        assert manager.settings.get_colima_user() is None

    def test_set_user_persists_and_refreshes(self, manager, backend, mocker):
        mocker.patch("cdplayer.colima.user_exists", return_value=True)

        async def scenario():
            assert manager.set_colima_user(" colima ") is None
            await asyncio.sleep(0.05)
            manager.poller.stop()

        asyncio.run(scenario())
        assert manager.configured_user == "colima"
        assert manager.settings.get_colima_user() == "colima"
        backend.profiles.assert_called_with("colima")

    def test_blank_user_clears_setting(self, manager, mocker):
        mocker.patch("cdplayer.colima.user_exists", return_value=True)

        async def scenario():
            manager.set_colima_user("colima")
            manager.set_colima_user("")
            manager.poller.stop()

        asyncio.run(scenario())
        assert manager.configured_user is None
        assert manager.effective_user == "alice"

    def test_auto_fix_flag(self, manager):
        seen = []
        manager.changes.subscribe(lambda: seen.append(1))
        manager.set_auto_fix_socket_permissions(True)
        assert manager.auto_fix_socket_permissions is True
        assert seen == [1]

    def test_stale_refresh_is_dropped(self, manager, backend):
        calls = {"n": 0}

        def running_profiles():
            calls["n"] += 1
            if calls["n"] == 1:
                time.sleep(0.2)
                return set()
            return {"default"}

        backend.running_profiles.side_effect = running_profiles

        async def scenario():
            first = asyncio.create_task(manager.refresh())
            await asyncio.sleep(0.05)
            second = asyncio.create_task(manager.refresh())
            await asyncio.gather(first, second)

        asyncio.run(scenario())
        assert manager.instances[0].status is ColimaStatus.RUNNING

    def test_only_default_profile(self, manager, backend):
        backend.profiles.return_value = [ProfileConfig("default")]
        asyncio.run(manager.refresh())
        assert manager.has_only_default_profile
