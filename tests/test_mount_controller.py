"""Tests for MountController: mount arguments, readiness polling, unmount fallback."""

import dataclasses
from pathlib import Path

import pytest

from poolmgr.errors import AlreadyMountedError, MountError, MountTimeoutError, UnmountError
from poolmgr.services.mount_controller import MountController
from poolmgr.services.runner import CommandResult, FakeRunner


class FakeClock:
    """Monotonic clock that only advances when sleep() is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestMount:

    def test_mount_arguments_and_directory(self, mounts, runner, mount_table, settings, tmp_path) -> None:
        path = str(tmp_path / "mnt" / "p1")
        assert mounts.mount("union_p1:", path) == path

        assert Path(path).is_dir()
        assert mount_table.mounted == {path: "union_p1:"}
        assert runner.calls_for("rclone", "mount") == [[
            "rclone", "mount", "union_p1:", path,
            "--config", settings.rclone_config_path,
            "--allow-other",
            "--vfs-cache-mode", "writes",
            "--daemon",
        ]]

    def test_large_files_raise_cache_ceiling(self, mounts, runner, tmp_path) -> None:
        mounts.mount("union_p1:", str(tmp_path / "p1"), allow_large_files=True)
        args = runner.calls_for("rclone", "mount")[0]
        assert args[-2:] == ["--vfs-cache-max-size", "50G"]

    def test_configured_default_ceiling(self, settings, runner, mount_table, tmp_path) -> None:
        mounts = MountController(dataclasses.replace(settings, cache_size="10G"), runner)
        mounts.mount("union_p1:", str(tmp_path / "p1"))
        assert runner.calls_for("rclone", "mount")[0][-2:] == ["--vfs-cache-max-size", "10G"]

    def test_already_mounted(self, mounts, runner, mount_table, tmp_path) -> None:
        path = str(tmp_path / "p1")
        mount_table.mounted[path] = "other:"

        with pytest.raises(AlreadyMountedError):
            mounts.mount("union_p1:", path)
        assert runner.calls_for("rclone", "mount") == []

    def test_tool_failure(self, mounts, runner, mount_table, tmp_path) -> None:
        runner.on(["rclone", "mount"], returncode=1, stderr="fusermount: option allow_other only allowed")
        with pytest.raises(MountError, match="allow_other"):
            mounts.mount("union_p1:", str(tmp_path / "p1"))

    def test_directory_creation_failure(self, mounts, runner, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(MountError, match="mount directory"):
            mounts.mount("union_p1:", str(blocker / "p1"))
        assert runner.calls == []


class TestReadinessPolling:

    def test_waits_until_mount_appears(self, settings, tmp_path) -> None:
        runner = FakeRunner()
        probes = []

        def mountpoint(argv):
            probes.append(argv)
            # not mounted at the pre-check and the first two polls
            return CommandResult(argv, 0 if len(probes) > 3 else 1)

        runner.on(["mountpoint", "-q"], mountpoint)
        fake = FakeClock()
        settings = dataclasses.replace(settings, mount_timeout_seconds=5, mount_poll_interval_seconds=0.5)
        mounts = MountController(settings, runner, sleep=fake.sleep, clock=fake.clock)

        mounts.mount("union_p1:", str(tmp_path / "p1"))
        assert fake.sleeps == [0.5, 0.5]

    def test_timeout_cleans_up_and_raises(self, settings, tmp_path) -> None:
        runner = FakeRunner()
        runner.on(["mountpoint", "-q"], returncode=1)
        fake = FakeClock()
        settings = dataclasses.replace(settings, mount_timeout_seconds=2, mount_poll_interval_seconds=0.5)
        mounts = MountController(settings, runner, sleep=fake.sleep, clock=fake.clock)
        path = str(tmp_path / "p1")

        with pytest.raises(MountTimeoutError) as excinfo:
            mounts.mount("union_p1:", path)

        assert isinstance(excinfo.value, TimeoutError)
        assert isinstance(excinfo.value, MountError)
        assert fake.sleeps == [0.5, 0.5, 0.5, 0.5]
        assert runner.calls_for("fusermount", "-u") == [["fusermount", "-u", path]]


class TestUnmount:

    def test_fusermount_first(self, mounts, runner, mount_table) -> None:
        mount_table.mounted["/mnt/p1"] = "union_p1:"
        mounts.unmount("/mnt/p1")
        assert runner.calls_for("fusermount") == [["fusermount", "-u", "/mnt/p1"]]
        assert runner.calls_for("umount") == []

    def test_falls_back_to_umount(self, mounts, runner, mount_table) -> None:
        mount_table.mounted["/mnt/p1"] = "union_p1:"
        runner.on(["fusermount", "-u"], returncode=1, stderr="fusermount: not found")

        mounts.unmount("/mnt/p1")
        assert runner.calls_for("umount") == [["umount", "/mnt/p1"]]
        assert mount_table.mounted == {}

    def test_both_fail(self, mounts, runner) -> None:
        runner.on(["fusermount", "-u"], returncode=1, stderr="device busy")
        runner.on(["umount"], returncode=32, stderr="target is busy")

        with pytest.raises(UnmountError, match="target is busy"):
            mounts.unmount("/mnt/p1")

    def test_is_mounted_has_no_side_effects(self, mounts, runner) -> None:
        assert mounts.is_mounted("/mnt/p1") is False
        assert runner.calls == [["mountpoint", "-q", "/mnt/p1"]]

    def test_mount_path_for(self, mounts, settings) -> None:
        assert mounts.mount_path_for("p1") == str(Path(settings.mount_root) / "p1")
