"""
Pool Lifecycle

Storage pool CRUD, membership ordering and the start/stop/delete state
machine. This class is the only writer of StoragePool.status and
StoragePool.mount_path.

States: stopped (initial), starting, running, error.
    start:  stopped|error -> starting -> running|error
    stop:   running -> stopped
    delete: any state -> removed (stopping first when running)
"""

import logging
import re
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy import update as sql_update
from sqlalchemy import delete as sql_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from poolmgr.config import Settings
from poolmgr.errors import (
    AlreadyRunningError,
    CompositionError,
    NotFoundError,
    NotRunningError,
    PersistenceError,
    UnmountError,
    ValidationError,
)
from poolmgr.models import Account, PoolMembership, PoolStatus, StoragePool, UnionStrategy
from poolmgr.services.mount_controller import MountController
from poolmgr.services.union_composer import UnionComposer

logger = logging.getLogger(__name__)

CHUNK_SIZE_PATTERN = re.compile(r"^[1-9][0-9]*[KMGTP]?$", re.IGNORECASE)


class PoolLockRegistry:
    """One lock per pool id; lifecycle transitions on a pool run under it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, pool_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(pool_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[pool_id] = lock
            return lock

    def discard(self, pool_id: str) -> None:
        with self._guard:
            self._locks.pop(pool_id, None)

    def __len__(self) -> int:
        return len(self._locks)


class PoolManager:
    """
    Manages pool lifecycle: creation, membership, start/stop and deletion.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        settings: Settings,
        composer: UnionComposer,
        mounts: MountController,
        locks: Optional[PoolLockRegistry] = None,
    ):
        """
        Initialize pool manager.

        Args:
            session_factory: SQLAlchemy session factory (expire_on_commit=False)
            settings: Runtime configuration
            composer: Builds and tears down union remotes
            mounts: Mounts and unmounts composed remotes
            locks: Per-pool lock registry, shared by every caller in the process
        """
        self.session_factory = session_factory
        self.settings = settings
        self.composer = composer
        self.mounts = mounts
        self.locks = locks or PoolLockRegistry()

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    def _pool_query():
        return select(StoragePool).options(
            selectinload(StoragePool.memberships).selectinload(PoolMembership.account)
        )

    def _load_pool(self, db: Session, pool_id: str) -> StoragePool:
        pool = db.scalars(self._pool_query().where(StoragePool.id == pool_id)).first()
        if pool is None:
            raise NotFoundError(f"Pool {pool_id} not found")
        return pool

    def _set_status(
        self,
        pool_id: str,
        from_states: Iterable[PoolStatus],
        to_status: PoolStatus,
        **values,
    ) -> bool:
        """
        Compare-and-set the pool status in one UPDATE.

        Any extra column values (mount_path) are written in the same
        statement so they become visible together with the status.

        Returns:
            True if the pool was in one of from_states and is now to_status
        """
        db = self.session_factory()
        try:
            result = db.execute(
                sql_update(StoragePool)
                .where(
                    StoragePool.id == pool_id,
                    StoragePool.status.in_([s.value for s in from_states]),
                )
                .values(status=to_status.value, updated_at=datetime.utcnow(), **values)
            )
            changed = result.rowcount == 1
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to set pool {pool_id} status to {to_status.value}: {e}")
        finally:
            db.close()

        if changed:
            logger.info(f"Pool {pool_id} -> {to_status.value}")
        return changed

    def _mark_error(self, pool_id: str) -> None:
        try:
            self._set_status(pool_id, [PoolStatus.STARTING], PoolStatus.ERROR, mount_path=None)
        except PersistenceError as e:
            logger.error(f"Could not mark pool {pool_id} as error: {e}")

    def _validate_chunk_size(self, chunk_size: Optional[str]) -> str:
        value = str(chunk_size or self.settings.default_chunk_size).strip()
        if not CHUNK_SIZE_PATTERN.match(value):
            raise ValidationError(f"Invalid chunk size '{value}' (expected e.g. 100M, 1G)")
        return value

    @staticmethod
    def _normalize_strategy(strategy: Optional[str]) -> str:
        return str(strategy or "").strip() or UnionStrategy.UNION.value

    # ========================================================================
    # QUERIES
    # ========================================================================

    def list_pools(self) -> List[StoragePool]:
        db = self.session_factory()
        try:
            return list(db.scalars(self._pool_query().order_by(StoragePool.created_at.desc())).all())
        finally:
            db.close()

    def get_pool(self, pool_id: str) -> StoragePool:
        db = self.session_factory()
        try:
            return self._load_pool(db, pool_id)
        finally:
            db.close()

    # ========================================================================
    # POOL CREATION / EDITING
    # ========================================================================

    def create_pool(
        self,
        name: str,
        account_ids: Sequence[str],
        strategy: Optional[str] = None,
        enable_chunker: bool = False,
        chunk_size: Optional[str] = None,
        allow_large_files: bool = False,
    ) -> StoragePool:
        """
        Persist a pool and its membership rows in one transaction.

        Membership priority is the account's index in account_ids.
        Unknown strategies are stored as given.

        Raises:
            ValidationError: empty name, bad chunk size, duplicate accounts
            NotFoundError: an account id does not exist
            PersistenceError: the insert failed
        """
        name = str(name or "").strip()
        if not name:
            raise ValidationError("Pool name is required")
        chunk_size = self._validate_chunk_size(chunk_size)
        account_ids = [str(a) for a in (account_ids or [])]
        if len(set(account_ids)) != len(account_ids):
            raise ValidationError("Duplicate account in pool definition")

        db = self.session_factory()
        try:
            if account_ids:
                known = set(db.scalars(select(Account.id).where(Account.id.in_(account_ids))).all())
                missing = [a for a in account_ids if a not in known]
                if missing:
                    raise NotFoundError(f"Account(s) not found: {', '.join(missing)}")

            now = datetime.utcnow()
            pool = StoragePool(
                name=name,
                strategy=self._normalize_strategy(strategy),
                enable_chunker=bool(enable_chunker),
                chunk_size=chunk_size,
                allow_large_files=bool(allow_large_files),
                status=PoolStatus.STOPPED.value,
                mount_path=None,
                created_at=now,
                updated_at=now,
            )
            pool.memberships = [
                PoolMembership(account_id=account_id, priority=index)
                for index, account_id in enumerate(account_ids)
            ]
            db.add(pool)
            db.commit()
            pool_id = pool.id
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to create pool '{name}': {e}")
        finally:
            db.close()

        logger.info(f"Created pool {pool_id} '{name}' with {len(account_ids)} account(s)")
        return self.get_pool(pool_id)

    def update_pool(
        self,
        pool_id: str,
        name: Optional[str] = None,
        strategy: Optional[str] = None,
        enable_chunker: Optional[bool] = None,
        chunk_size: Optional[str] = None,
        allow_large_files: Optional[bool] = None,
    ) -> StoragePool:
        """Edit pool settings; a running pool picks them up on its next start."""
        values = {}
        if name is not None:
            if not str(name).strip():
                raise ValidationError("Pool name is required")
            values["name"] = str(name).strip()
        if strategy is not None:
            values["strategy"] = self._normalize_strategy(strategy)
        if enable_chunker is not None:
            values["enable_chunker"] = bool(enable_chunker)
        if chunk_size is not None:
            values["chunk_size"] = self._validate_chunk_size(chunk_size)
        if allow_large_files is not None:
            values["allow_large_files"] = bool(allow_large_files)

        with self.locks.lock_for(pool_id):
            db = self.session_factory()
            try:
                pool = self._load_pool(db, pool_id)
                if values:
                    for key, value in values.items():
                        setattr(pool, key, value)
                    db.commit()
                    if pool.status == PoolStatus.RUNNING.value:
                        logger.info(f"Pool {pool_id} updated while running; changes apply on next start")
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to update pool {pool_id}: {e}")
            finally:
                db.close()

        return self.get_pool(pool_id)

    # ========================================================================
    # MEMBERSHIP
    # ========================================================================

    def add_member(self, pool_id: str, account_id: str) -> PoolMembership:
        """
        Append an account to a pool with priority = current max + 1.

        Does not touch a mounted volume; the union is rebuilt on next start.
        """
        with self.locks.lock_for(pool_id):
            db = self.session_factory()
            try:
                pool = self._load_pool(db, pool_id)
                if db.get(Account, account_id) is None:
                    raise NotFoundError(f"Account {account_id} not found")
                if db.get(PoolMembership, (pool_id, account_id)) is not None:
                    raise ValidationError(f"Account {account_id} is already in pool {pool_id}")

                current_max = db.scalar(
                    select(func.max(PoolMembership.priority)).where(PoolMembership.pool_id == pool_id)
                )
                priority = 0 if current_max is None else int(current_max) + 1
                membership = PoolMembership(pool_id=pool_id, account_id=account_id, priority=priority)
                db.add(membership)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to add account {account_id} to pool {pool_id}: {e}")
            finally:
                db.close()

        if pool.status == PoolStatus.RUNNING.value:
            logger.info(f"Account {account_id} added to running pool {pool_id}; applies on next start")
        return membership

    def remove_member(self, pool_id: str, account_id: str) -> None:
        with self.locks.lock_for(pool_id):
            db = self.session_factory()
            try:
                pool = self._load_pool(db, pool_id)
                result = db.execute(
                    sql_delete(PoolMembership).where(
                        PoolMembership.pool_id == pool_id,
                        PoolMembership.account_id == account_id,
                    )
                )
                if result.rowcount == 0:
                    raise NotFoundError(f"Account {account_id} is not in pool {pool_id}")
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to remove account {account_id} from pool {pool_id}: {e}")
            finally:
                db.close()

        if pool.status == PoolStatus.RUNNING.value:
            logger.info(f"Account {account_id} removed from running pool {pool_id}; applies on next start")

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def start_pool(self, pool_id: str) -> StoragePool:
        """
        Compose and mount a pool.

        Steps:
        1. Reject running/starting pools and pools without members
        2. stopped|error -> starting (compare-and-set)
        3. Build the union remote; on failure -> error
        4. Mount it; on failure remove the union and -> error
        5. starting -> running together with mount_path

        Raises:
            AlreadyRunningError, CompositionError, MountError (and subclasses),
            AlreadyMountedError, PersistenceError
        """
        with self.locks.lock_for(pool_id):
            pool = self.get_pool(pool_id)
            if pool.status in (PoolStatus.RUNNING.value, PoolStatus.STARTING.value):
                raise AlreadyRunningError(f"Pool {pool_id} is already {pool.status}")

            accounts = pool.accounts
            if not accounts:
                raise CompositionError(f"Pool {pool_id} has no accounts")

            if not self._set_status(pool_id, [PoolStatus.STOPPED, PoolStatus.ERROR], PoolStatus.STARTING):
                raise AlreadyRunningError(f"Pool {pool_id} changed state concurrently")

            try:
                plan = self.composer.compose(
                    pool_id,
                    accounts,
                    pool.strategy,
                    enable_chunker=bool(pool.enable_chunker),
                    chunk_size=pool.chunk_size,
                )
            except Exception:
                logger.error(f"Pool {pool_id}: union composition failed")
                self._mark_error(pool_id)
                raise

            mount_path = self.mounts.mount_path_for(pool_id)
            try:
                self.mounts.mount(plan.remote, mount_path, allow_large_files=bool(pool.allow_large_files))
            except Exception:
                logger.error(f"Pool {pool_id}: mount at {mount_path} failed")
                self.composer.decompose(pool_id, accounts)
                self._mark_error(pool_id)
                raise

            try:
                self._set_status(pool_id, [PoolStatus.STARTING], PoolStatus.RUNNING, mount_path=mount_path)
            except PersistenceError:
                try:
                    self.mounts.unmount(mount_path)
                except UnmountError as e:
                    logger.error(f"Pool {pool_id}: could not roll back mount: {e}")
                self.composer.decompose(pool_id, accounts)
                self._mark_error(pool_id)
                raise

        return self.get_pool(pool_id)

    def _stop_locked(self, pool: StoragePool) -> None:
        if pool.status != PoolStatus.RUNNING.value:
            raise NotRunningError(f"Pool {pool.id} is not running (status: {pool.status})")

        mount_path = pool.mount_path or self.mounts.mount_path_for(pool.id)
        unmount_error = None
        try:
            self.mounts.unmount(mount_path)
        except UnmountError as e:
            unmount_error = e

        # union config is removed whether or not the unmount worked
        self.composer.decompose(pool.id, pool.accounts)

        if unmount_error is not None:
            logger.error(f"Pool {pool.id}: unmount failed, staying running: {unmount_error}")
            raise unmount_error

        if not self._set_status(pool.id, [PoolStatus.RUNNING], PoolStatus.STOPPED, mount_path=None):
            raise NotRunningError(f"Pool {pool.id} changed state concurrently")

    def stop_pool(self, pool_id: str) -> StoragePool:
        """
        Unmount a running pool and remove its union.

        Raises:
            NotRunningError: pool is not running; nothing changes
            UnmountError: both unmount mechanisms failed; pool stays running
        """
        with self.locks.lock_for(pool_id):
            pool = self.get_pool(pool_id)
            self._stop_locked(pool)
        return self.get_pool(pool_id)

    def delete_pool(self, pool_id: str) -> None:
        """
        Remove a pool and its memberships, stopping it first if running.

        A failed stop aborts the delete and leaves the pool running.
        """
        with self.locks.lock_for(pool_id):
            pool = self.get_pool(pool_id)
            if pool.status == PoolStatus.RUNNING.value:
                self._stop_locked(pool)
            elif pool.status in (PoolStatus.ERROR.value, PoolStatus.STARTING.value):
                self.composer.decompose(pool.id, pool.accounts)

            db = self.session_factory()
            try:
                obj = db.get(StoragePool, pool_id)
                if obj is not None:
                    db.delete(obj)
                    db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise PersistenceError(f"Failed to delete pool {pool_id}: {e}")
            finally:
                db.close()

        self.locks.discard(pool_id)
        logger.info(f"Deleted pool {pool_id}")

    def reconcile(self) -> List[str]:
        """
        Align persisted state with real mounts after a restart.

        Pools stuck in starting, and running pools whose mount point is
        gone, become error with mount_path cleared.

        Returns:
            Ids of pools that were moved to error
        """
        changed: List[str] = []
        for pool in self.list_pools():
            if pool.status not in (PoolStatus.STARTING.value, PoolStatus.RUNNING.value):
                continue
            with self.locks.lock_for(pool.id):
                if pool.status == PoolStatus.RUNNING.value:
                    path = pool.mount_path or self.mounts.mount_path_for(pool.id)
                    if self.mounts.is_mounted(path):
                        continue
                    logger.warning(f"Pool {pool.id} marked running but {path} is not mounted")
                else:
                    logger.warning(f"Pool {pool.id} was left in starting")

                if self._set_status(pool.id, [PoolStatus(pool.status)], PoolStatus.ERROR, mount_path=None):
                    changed.append(pool.id)
        return changed
