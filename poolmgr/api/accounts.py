from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from poolmgr.models import Account
from poolmgr.services.account_manager import AccountManager

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


def get_account_manager(request: Request) -> AccountManager:
    return request.app.state.account_manager


class AccountCreate(BaseModel):
    name: str
    type: str
    email: str = ""
    token: Optional[str] = None


class AccountStatusUpdate(BaseModel):
    status: str


def to_iso(value):
    return value.isoformat() if value is not None else None


def account_to_dict(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type,
        "email": account.email,
        "quota_total": int(account.quota_total or 0),
        "quota_used": int(account.quota_used or 0),
        "status": account.status,
        "created_at": to_iso(account.created_at),
        "updated_at": to_iso(account.updated_at),
    }


@router.get("")
def list_accounts(manager: AccountManager = Depends(get_account_manager)):
    return [account_to_dict(a) for a in manager.list_accounts()]


@router.post("", status_code=201)
def create_account(body: AccountCreate, manager: AccountManager = Depends(get_account_manager)):
    account = manager.create_account(body.name, body.type, email=body.email, token=body.token)
    return account_to_dict(account)


@router.get("/{account_id}")
def get_account(account_id: str, manager: AccountManager = Depends(get_account_manager)):
    return account_to_dict(manager.get_account(account_id))


@router.delete("/{account_id}")
def delete_account(account_id: str, manager: AccountManager = Depends(get_account_manager)):
    manager.delete_account(account_id)
    return {"message": "Account deleted successfully"}


@router.post("/{account_id}/refresh")
def refresh_account_quota(account_id: str, manager: AccountManager = Depends(get_account_manager)):
    return account_to_dict(manager.refresh_quota(account_id))


@router.put("/{account_id}/status")
def update_account_status(
    account_id: str,
    body: AccountStatusUpdate,
    manager: AccountManager = Depends(get_account_manager),
):
    return account_to_dict(manager.update_status(account_id, body.status))
