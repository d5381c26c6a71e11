"""
External command execution.

Every call to rclone, fusermount, umount and mountpoint goes through a
CommandRunner so the components above it can be exercised with FakeRunner
instead of spawning real processes.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class CommandResult:
    """Outcome of one external invocation"""
    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr, trimmed"""
        parts = [p.strip() for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)


class CommandRunner:
    """Capability interface for running an external program to completion."""

    def run(self, args: Sequence[str]) -> CommandResult:
        raise NotImplementedError


class SubprocessRunner(CommandRunner):
    """Runs commands with subprocess; blocks until the process exits."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds

    def run(self, args: Sequence[str]) -> CommandResult:
        argv = [str(a) for a in args]
        logger.debug(f"exec: {' '.join(argv)}")
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as e:
            logger.error(f"Executable not found: {argv[0]}")
            return CommandResult(argv, EXIT_NOT_FOUND, "", str(e))
        except subprocess.TimeoutExpired as e:
            logger.error(f"Command timed out after {self.timeout_seconds}s: {' '.join(argv)}")
            stdout = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            return CommandResult(argv, EXIT_TIMEOUT, stdout, f"timed out after {self.timeout_seconds}s")

        if completed.returncode != 0:
            logger.debug(f"exit {completed.returncode}: {' '.join(argv)}")
        return CommandResult(argv, completed.returncode, completed.stdout or "", completed.stderr or "")


Handler = Union[CommandResult, Callable[[List[str]], CommandResult]]


@dataclass
class FakeRunner(CommandRunner):
    """
    Deterministic runner for tests.

    Records every invocation in ``calls``. Results come from handlers
    registered with ``on(prefix, ...)``; the most recently registered handler
    whose prefix matches the leading arguments wins. Unmatched commands
    succeed with empty output.
    """
    calls: List[List[str]] = field(default_factory=list)
    _handlers: List[Tuple[Tuple[str, ...], Handler]] = field(default_factory=list)

    def on(self, prefix: Sequence[str], handler: Optional[Handler] = None, *,
           returncode: int = 0, stdout: str = "", stderr: str = "") -> "FakeRunner":
        if handler is None:
            handler = CommandResult([], returncode, stdout, stderr)
        self._handlers.append((tuple(prefix), handler))
        return self

    def run(self, args: Sequence[str]) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(argv)
        for prefix, handler in reversed(self._handlers):
            if tuple(argv[:len(prefix)]) == prefix:
                if callable(handler):
                    return handler(argv)
                return CommandResult(argv, handler.returncode, handler.stdout, handler.stderr)
        return CommandResult(argv, 0)

    def calls_for(self, *prefix: str) -> List[List[str]]:
        return [c for c in self.calls if tuple(c[:len(prefix)]) == prefix]


class MountTable:
    """
    In-memory mount state for FakeRunner.

    Wires ``mountpoint -q``, ``rclone mount``, ``fusermount -u`` and
    ``umount`` so that mounting and unmounting behave consistently in tests.
    """

    def __init__(self, runner: FakeRunner, rclone_binary: str = "rclone"):
        self.mounted: Dict[str, str] = {}
        self.runner = runner
        runner.on(["mountpoint", "-q"], self._mountpoint)
        runner.on([rclone_binary, "mount"], self._mount)
        runner.on(["fusermount", "-u"], self._unmount)
        runner.on(["umount"], self._unmount)

    def _mountpoint(self, argv: List[str]) -> CommandResult:
        return CommandResult(argv, 0 if argv[-1] in self.mounted else 1)

    def _mount(self, argv: List[str]) -> CommandResult:
        self.mounted[argv[3]] = argv[2]
        return CommandResult(argv, 0)

    def _unmount(self, argv: List[str]) -> CommandResult:
        path = argv[-1]
        if path not in self.mounted:
            return CommandResult(argv, 1, "", f"{path}: not mounted")
        del self.mounted[path]
        return CommandResult(argv, 0)


class RemoteTable:
    """
    In-memory rclone config for FakeRunner.

    Wires ``config create``, ``config delete`` and ``listremotes`` so tests
    can check which remotes are left behind.
    """

    def __init__(self, runner: FakeRunner, rclone_binary: str = "rclone"):
        self.names: Dict[str, str] = {}
        runner.on([rclone_binary, "config", "create"], self._create)
        runner.on([rclone_binary, "config", "delete"], self._delete)
        runner.on([rclone_binary, "listremotes"], self._list)

    def _create(self, argv: List[str]) -> CommandResult:
        self.names[argv[3]] = argv[4]
        return CommandResult(argv, 0)

    def _delete(self, argv: List[str]) -> CommandResult:
        self.names.pop(argv[3], None)
        return CommandResult(argv, 0)

    def _list(self, argv: List[str]) -> CommandResult:
        return CommandResult(argv, 0, "".join(f"{name}:\n" for name in self.names))
