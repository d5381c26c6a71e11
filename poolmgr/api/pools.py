from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from poolmgr.api.accounts import account_to_dict, to_iso
from poolmgr.models import StoragePool
from poolmgr.services.pool_manager import PoolManager

router = APIRouter(prefix="/api/pools", tags=["pools"])


def get_pool_manager(request: Request) -> PoolManager:
    return request.app.state.pool_manager


class PoolCreate(BaseModel):
    name: str
    strategy: str = "union"
    enable_chunker: bool = False
    allow_large_files: bool = False
    chunk_size: Optional[str] = None
    account_ids: List[str] = []


class PoolUpdate(BaseModel):
    name: Optional[str] = None
    strategy: Optional[str] = None
    enable_chunker: Optional[bool] = None
    allow_large_files: Optional[bool] = None
    chunk_size: Optional[str] = None


class MemberAdd(BaseModel):
    account_id: str


def pool_to_dict(pool: StoragePool) -> dict:
    return {
        "id": pool.id,
        "name": pool.name,
        "strategy": pool.strategy,
        "enable_chunker": bool(pool.enable_chunker),
        "allow_large_files": bool(pool.allow_large_files),
        "chunk_size": pool.chunk_size,
        "mount_path": pool.mount_path,
        "status": pool.status,
        "accounts": [
            dict(account_to_dict(m.account), priority=m.priority)
            for m in pool.memberships
        ],
        "created_at": to_iso(pool.created_at),
        "updated_at": to_iso(pool.updated_at),
    }


@router.get("")
def list_pools(manager: PoolManager = Depends(get_pool_manager)):
    return [pool_to_dict(p) for p in manager.list_pools()]


@router.post("", status_code=201)
def create_pool(body: PoolCreate, manager: PoolManager = Depends(get_pool_manager)):
    pool = manager.create_pool(
        body.name,
        body.account_ids,
        strategy=body.strategy,
        enable_chunker=body.enable_chunker,
        chunk_size=body.chunk_size,
        allow_large_files=body.allow_large_files,
    )
    return pool_to_dict(pool)


@router.get("/{pool_id}")
def get_pool(pool_id: str, manager: PoolManager = Depends(get_pool_manager)):
    return pool_to_dict(manager.get_pool(pool_id))


@router.put("/{pool_id}")
def update_pool(pool_id: str, body: PoolUpdate, manager: PoolManager = Depends(get_pool_manager)):
    pool = manager.update_pool(
        pool_id,
        name=body.name,
        strategy=body.strategy,
        enable_chunker=body.enable_chunker,
        chunk_size=body.chunk_size,
        allow_large_files=body.allow_large_files,
    )
    return pool_to_dict(pool)


@router.delete("/{pool_id}")
def delete_pool(pool_id: str, manager: PoolManager = Depends(get_pool_manager)):
    manager.delete_pool(pool_id)
    return {"message": "Pool deleted successfully"}


@router.post("/{pool_id}/start")
def start_pool(pool_id: str, manager: PoolManager = Depends(get_pool_manager)):
    return pool_to_dict(manager.start_pool(pool_id))


@router.post("/{pool_id}/stop")
def stop_pool(pool_id: str, manager: PoolManager = Depends(get_pool_manager)):
    return pool_to_dict(manager.stop_pool(pool_id))


@router.post("/{pool_id}/accounts")
def add_pool_account(pool_id: str, body: MemberAdd, manager: PoolManager = Depends(get_pool_manager)):
    membership = manager.add_member(pool_id, body.account_id)
    return {
        "message": "Account added to pool",
        "pool_id": membership.pool_id,
        "account_id": membership.account_id,
        "priority": membership.priority,
    }


@router.delete("/{pool_id}/accounts/{account_id}")
def remove_pool_account(pool_id: str, account_id: str, manager: PoolManager = Depends(get_pool_manager)):
    manager.remove_member(pool_id, account_id)
    return {"message": "Account removed from pool"}
