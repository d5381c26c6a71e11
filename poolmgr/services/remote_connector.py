"""
Remote Connector

Maps accounts to named rclone remotes. Creates and removes the remote
configuration, probes connectivity and reads quota through ``rclone about``.
"""

import json
import logging
from typing import List, Optional, Tuple

from poolmgr.config import Settings
from poolmgr.errors import ConfigurationError, ConnectivityError, QuotaUnavailableError
from poolmgr.models import Account, ProviderType
from poolmgr.services.runner import CommandRunner

logger = logging.getLogger(__name__)

# provider tag -> (rclone backend, extra create flags)
PROVIDER_BACKENDS = {
    ProviderType.GOOGLE.value: ("drive", ["--drive-scope", "drive"]),
    ProviderType.MICROSOFT.value: ("onedrive", []),
    ProviderType.DROPBOX.value: ("dropbox", []),
}


def remote_name(account_type: str, account_id: str) -> str:
    """Deterministic rclone remote name for an account"""
    return f"{account_type}_{account_id}"


def is_supported_provider(account_type: str) -> bool:
    return account_type in PROVIDER_BACKENDS


class RemoteConnector:
    """
    Owns the per-account rclone remote configuration.
    """

    def __init__(self, settings: Settings, runner: CommandRunner):
        self.settings = settings
        self.runner = runner

    def _rclone(self, *args: str):
        return self.runner.run(
            [self.settings.rclone_binary, *args, "--config", self.settings.rclone_config_path]
        )

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    def register(self, account: Account) -> str:
        """
        Create the rclone remote for an account.

        Returns:
            The remote name

        Raises:
            ConfigurationError: unsupported provider or rclone failure
        """
        backend = PROVIDER_BACKENDS.get(account.type)
        if backend is None:
            raise ConfigurationError(f"unsupported account type: {account.type}")

        backend_name, extra_flags = backend
        name = remote_name(account.type, account.id)
        result = self._rclone(
            "config", "create", name, backend_name,
            f"--{backend_name}-token", account.access_token or "",
            *extra_flags,
        )
        if not result.ok:
            raise ConfigurationError(f"failed to add remote {name}: exit {result.returncode} - {result.output}")

        logger.info(f"Registered remote {name} ({backend_name})")
        return name

    def delete_remote(self, name: str) -> bool:
        """Best-effort removal of any remote by name; never raises."""
        result = self._rclone("config", "delete", name)
        if not result.ok:
            logger.warning(f"Could not delete remote {name}: {result.output or f'exit {result.returncode}'}")
            return False
        logger.debug(f"Deleted remote {name}")
        return True

    def list_remotes(self) -> Optional[List[str]]:
        """Names of all configured remotes, or None when rclone cannot list them."""
        result = self._rclone("listremotes")
        if not result.ok:
            logger.warning(f"Could not list remotes: {result.output or f'exit {result.returncode}'}")
            return None
        return [line.strip().rstrip(":") for line in result.stdout.splitlines() if line.strip()]

    def deregister(self, account_id: str, account_type: str) -> bool:
        """Idempotent removal of an account's remote; absence is not an error."""
        return self.delete_remote(remote_name(account_type, account_id))

    # ========================================================================
    # PROBES
    # ========================================================================

    def test_connectivity(self, account_id: str, account_type: str) -> None:
        name = remote_name(account_type, account_id)
        result = self._rclone("lsd", f"{name}:", "--max-depth", "1")
        if not result.ok:
            raise ConnectivityError(f"failed to connect to {name}: {result.output or f'exit {result.returncode}'}")

    def query_quota(self, account_id: str, account_type: str) -> Tuple[int, int]:
        """
        Read (total, used) bytes for an account.

        Raises:
            QuotaUnavailableError: rclone failed or printed something unparseable
        """
        name = remote_name(account_type, account_id)
        result = self._rclone("about", f"{name}:", "--json")
        if not result.ok:
            raise QuotaUnavailableError(f"quota query for {name} failed: {result.output or f'exit {result.returncode}'}")

        try:
            payload = json.loads(result.stdout)
            total = int(payload["total"])
            used = int(payload["used"])
        except (ValueError, TypeError, KeyError) as e:
            raise QuotaUnavailableError(f"unparseable quota for {name}: {e}")

        if total < 0 or used < 0:
            raise QuotaUnavailableError(f"negative quota for {name}: total={total} used={used}")
        return total, used

    def tool_version(self) -> Optional[str]:
        result = self.runner.run([self.settings.rclone_binary, "version"])
        if not result.ok or not result.stdout.strip():
            return None
        return result.stdout.strip().splitlines()[0]
