"""
Union Composer

Builds the rclone union remote for a pool from its member accounts in
priority order, optionally wrapping each upstream in a chunker remote.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from poolmgr.config import Settings
from poolmgr.errors import CompositionError
from poolmgr.models import Account, UnionStrategy
from poolmgr.services.remote_connector import RemoteConnector, remote_name
from poolmgr.services.runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnionPolicies:
    """rclone union policy triple"""
    action: str
    create: str
    search: str

    def as_args(self) -> List[str]:
        return [
            "--union-action-policy", self.action,
            "--union-create-policy", self.create,
            "--union-search-policy", self.search,
        ]


STRATEGY_POLICIES = {
    UnionStrategy.UNION.value: UnionPolicies(action="epall", create="epmfs", search="ff"),
    UnionStrategy.EPLUS.value: UnionPolicies(action="epall", create="eplus", search="ff"),
    UnionStrategy.EPFF.value: UnionPolicies(action="epall", create="epff", search="ff"),
    UnionStrategy.MIRROR.value: UnionPolicies(action="all", create="all", search="ff"),
}


def resolve_policies(strategy: str) -> UnionPolicies:
    """Policy triple for a strategy; unknown strategies get the union set."""
    policies = STRATEGY_POLICIES.get(strategy)
    if policies is None:
        logger.warning(f"Unknown strategy '{strategy}', using '{UnionStrategy.UNION.value}' policies")
        return STRATEGY_POLICIES[UnionStrategy.UNION.value]
    return policies


def union_name(pool_id: str) -> str:
    return f"union_{pool_id}"


def chunker_name(pool_id: str, account_id: str) -> str:
    return f"chunk_{pool_id}_{account_id}"


@dataclass
class UnionPlan:
    """Result of a successful composition"""
    name: str
    upstreams: List[str]
    policies: UnionPolicies
    chunkers: List[str] = field(default_factory=list)

    @property
    def remote(self) -> str:
        return f"{self.name}:"


class UnionComposer:
    """
    Creates and removes union remotes (and their chunkers) for pools.
    """

    def __init__(self, settings: Settings, runner: CommandRunner, connector: RemoteConnector):
        self.settings = settings
        self.runner = runner
        self.connector = connector

    def _rclone(self, *args: str):
        return self.runner.run(
            [self.settings.rclone_binary, *args, "--config", self.settings.rclone_config_path]
        )

    def compose(
        self,
        pool_id: str,
        accounts: Sequence[Account],
        strategy: str,
        enable_chunker: bool = False,
        chunk_size: str = "",
    ) -> UnionPlan:
        """
        Create the union remote for a pool.

        Steps:
        1. Derive each account's remote name, in priority order
        2. Wrap each in a chunker when chunking is enabled
        3. Create the union with the strategy's policy triple

        Raises:
            CompositionError: no accounts, or a chunker/union create failed.
                Chunkers created by this call are removed before raising.
        """
        if not accounts:
            raise CompositionError("no accounts in pool")

        chunk_size = chunk_size or self.settings.default_chunk_size
        created_chunkers: List[str] = []
        upstreams: List[str] = []

        try:
            for account in accounts:
                upstream = f"{remote_name(account.type, account.id)}:"
                if enable_chunker:
                    chunker = chunker_name(pool_id, account.id)
                    result = self._rclone(
                        "config", "create", chunker, "chunker",
                        "--chunker-remote", upstream,
                        "--chunker-chunk-size", chunk_size,
                    )
                    if not result.ok:
                        raise CompositionError(
                            f"failed to create chunker {chunker}: exit {result.returncode} - {result.output}"
                        )
                    created_chunkers.append(chunker)
                    upstream = f"{chunker}:"
                upstreams.append(upstream)

            policies = resolve_policies(strategy)
            name = union_name(pool_id)
            result = self._rclone(
                "config", "create", name, "union",
                "--union-upstreams", " ".join(upstreams),
                *policies.as_args(),
            )
            if not result.ok:
                raise CompositionError(f"failed to create union {name}: exit {result.returncode} - {result.output}")
        except CompositionError:
            for chunker in created_chunkers:
                self.connector.delete_remote(chunker)
            raise

        logger.info(
            f"Composed {name} upstreams=[{' '.join(upstreams)}] "
            f"action={policies.action} create={policies.create} search={policies.search}"
        )
        return UnionPlan(name=name, upstreams=upstreams, policies=policies, chunkers=created_chunkers)

    def decompose(self, pool_id: str, accounts: Sequence[Account] = ()) -> None:
        """
        Best-effort removal of a pool's union and chunker remotes.

        Chunkers are found by name prefix in the rclone config, so those
        built for accounts that have since left the pool are removed too.
        The given accounts' chunkers are always attempted, which covers a
        config that cannot be listed.
        """
        self.connector.delete_remote(union_name(pool_id))

        chunkers = [chunker_name(pool_id, account.id) for account in accounts]
        prefix = chunker_name(pool_id, "")
        for name in self.connector.list_remotes() or []:
            if name.startswith(prefix) and name not in chunkers:
                chunkers.append(name)

        for chunker in chunkers:
            self.connector.delete_remote(chunker)
