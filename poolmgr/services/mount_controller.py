"""
Mount Controller

Attaches union remotes to local directories with ``rclone mount --daemon``
and detaches them again. Readiness is confirmed by polling ``mountpoint``
rather than sleeping.
"""

import logging
import time
from pathlib import Path
from typing import Callable, List

from poolmgr.config import Settings
from poolmgr.errors import AlreadyMountedError, MountError, MountTimeoutError, UnmountError
from poolmgr.services.runner import CommandRunner

logger = logging.getLogger(__name__)


class MountController:
    """
    Mount/unmount of composed remotes under the configured mount root.
    """

    def __init__(
        self,
        settings: Settings,
        runner: CommandRunner,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.runner = runner
        self._sleep = sleep
        self._clock = clock

    def mount_path_for(self, pool_id: str) -> str:
        return str(Path(self.settings.mount_root) / pool_id)

    def is_mounted(self, path: str) -> bool:
        return self.runner.run(["mountpoint", "-q", str(path)]).ok

    def _mount_args(self, remote: str, path: str, allow_large_files: bool) -> List[str]:
        args = [
            self.settings.rclone_binary, "mount", remote, path,
            "--config", self.settings.rclone_config_path,
            "--allow-other",
            "--vfs-cache-mode", "writes",
            "--daemon",
        ]
        if allow_large_files:
            args += ["--vfs-cache-max-size", self.settings.large_file_cache_size]
        elif self.settings.cache_size:
            args += ["--vfs-cache-max-size", self.settings.cache_size]
        return args

    def mount(self, remote: str, path: str, allow_large_files: bool = False) -> str:
        """
        Mount a remote (e.g. ``union_<id>:``) at path.

        Raises:
            AlreadyMountedError: path is already a mount point
            MountError: directory creation or rclone mount failed
            MountTimeoutError: mount did not appear within the polling budget
        """
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise MountError(f"failed to create mount directory {path}: {e}")

        if self.is_mounted(path):
            raise AlreadyMountedError(f"{path} is already mounted")

        result = self.runner.run(self._mount_args(remote, path, allow_large_files))
        if not result.ok:
            raise MountError(f"failed to mount {remote} at {path}: exit {result.returncode} - {result.output}")

        self._wait_until_mounted(path)
        logger.info(f"Mounted {remote} at {path}")
        return path

    def _wait_until_mounted(self, path: str) -> None:
        timeout = max(0.0, float(self.settings.mount_timeout_seconds))
        interval = max(0.0, float(self.settings.mount_poll_interval_seconds))
        deadline = self._clock() + timeout

        while True:
            if self.is_mounted(path):
                return
            if self._clock() >= deadline:
                break
            self._sleep(interval)

        # daemon may still be starting up; don't leave it behind
        try:
            self.unmount(path)
        except UnmountError:
            logger.warning(f"Could not clean up pending mount at {path}")
        raise MountTimeoutError(f"mount at {path} not ready after {timeout:g}s")

    def unmount(self, path: str) -> None:
        """fusermount -u, falling back to umount; raises only if both fail."""
        primary = self.runner.run(["fusermount", "-u", str(path)])
        if primary.ok:
            logger.info(f"Unmounted {path}")
            return

        logger.warning(f"fusermount -u {path} failed ({primary.output or primary.returncode}), trying umount")
        fallback = self.runner.run(["umount", str(path)])
        if fallback.ok:
            logger.info(f"Unmounted {path} with umount")
            return

        raise UnmountError(
            f"failed to unmount {path}: fusermount: {primary.output or f'exit {primary.returncode}'}; "
            f"umount: {fallback.output or f'exit {fallback.returncode}'}"
        )
