"""
Account operations: registration gated on connectivity, quota refresh and
status changes.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from poolmgr.errors import (
    ConnectivityError,
    NotFoundError,
    PersistenceError,
    QuotaUnavailableError,
    ValidationError,
)
from poolmgr.models import Account, AccountStatus, new_id
from poolmgr.services.remote_connector import RemoteConnector, is_supported_provider

logger = logging.getLogger(__name__)


class AccountManager:

    def __init__(self, session_factory: sessionmaker, connector: RemoteConnector):
        self.session_factory = session_factory
        self.connector = connector

    def list_accounts(self) -> List[Account]:
        db = self.session_factory()
        try:
            return list(db.scalars(select(Account).order_by(Account.created_at.desc())).all())
        finally:
            db.close()

    def get_account(self, account_id: str) -> Account:
        db = self.session_factory()
        try:
            account = db.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            return account
        finally:
            db.close()

    def create_account(self, name: str, account_type: str, email: str = "", token: Optional[str] = None) -> Account:
        """
        Register an account with rclone and persist it.

        Steps:
        1. Create the rclone remote
        2. List the remote root; unreachable remotes are removed and rejected
        3. Read quota (failure leaves quota at 0)
        4. Save; on failure the remote is removed again

        Raises:
            ValidationError, ConfigurationError, ConnectivityError, PersistenceError
        """
        name = str(name or "").strip()
        account_type = str(account_type or "").strip().lower()
        if not name:
            raise ValidationError("Account name is required")
        if not is_supported_provider(account_type):
            raise ValidationError(f"unsupported account type: {account_type}")

        now = datetime.utcnow()
        account = Account(
            id=new_id(),
            name=name,
            type=account_type,
            email=str(email or "").strip(),
            access_token=token or None,
            quota_total=0,
            quota_used=0,
            status=AccountStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )

        self.connector.register(account)

        try:
            self.connector.test_connectivity(account.id, account.type)
        except ConnectivityError:
            self.connector.deregister(account.id, account.type)
            raise

        try:
            account.quota_total, account.quota_used = self.connector.query_quota(account.id, account.type)
        except QuotaUnavailableError as e:
            logger.warning(f"Quota unavailable for new account {account.id}: {e}")

        db = self.session_factory()
        try:
            db.add(account)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            self.connector.deregister(account.id, account.type)
            raise PersistenceError(f"failed to save account: {e}")
        finally:
            db.close()

        logger.info(f"Created account {account.id} ({account.type}, {account.email or 'no email'})")
        return account

    def delete_account(self, account_id: str) -> None:
        """
        Remove the account with its memberships, then its remote (best-effort).

        The remote is only removed once the row is gone, so a failed commit
        leaves both in place.
        """
        db = self.session_factory()
        try:
            account = db.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            account_type = account.type
            db.delete(account)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to delete account {account_id}: {e}")
        finally:
            db.close()

        self.connector.deregister(account_id, account_type)
        logger.info(f"Deleted account {account_id}")

    def refresh_quota(self, account_id: str) -> Account:
        """
        Re-read one account's quota.

        Raises:
            QuotaUnavailableError: stored values are kept
        """
        account = self.get_account(account_id)
        total, used = self.connector.query_quota(account.id, account.type)

        db = self.session_factory()
        try:
            account = db.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            account.quota_total = total
            account.quota_used = used
            account.updated_at = datetime.utcnow()
            db.commit()
            return account
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to save quota for {account_id}: {e}")
        finally:
            db.close()

    def update_status(self, account_id: str, status: str) -> Account:
        try:
            new_status = AccountStatus(str(status or "").strip().lower())
        except ValueError:
            allowed = ", ".join(s.value for s in AccountStatus)
            raise ValidationError(f"Invalid account status '{status}' (expected one of: {allowed})")

        db = self.session_factory()
        try:
            account = db.get(Account, account_id)
            if account is None:
                raise NotFoundError(f"Account {account_id} not found")
            account.status = new_status.value
            account.updated_at = datetime.utcnow()
            db.commit()
            return account
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Failed to update account {account_id}: {e}")
        finally:
            db.close()
