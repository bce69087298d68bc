from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, select, func

from app.core.db import get_db
from app.api.deps import require_admin, get_panel
from app.models.ledger import LedgerTransaction
from app.models.server import ProvisionedServer
from app.models.user import User
from app.schemas.admin import (
    UserOut,
    UserList,
    CoinAdjustRequest,
    CoinAdjustOut,
    GrantResourcesRequest,
    DeleteUserOut,
    StatsOut,
)
from app.services.ledger import ResourceAmounts, adjust_coins, grant_resources
from app.services.panel.client import PanelClient
from app.services.provisioning import delete_owner_servers

router = APIRouter()


def _to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        username=u.username,
        email=u.email,
        role=u.role,
        coins=u.coins,
        server_slots=u.server_slots,
        purchased_ram_mb=u.purchased_ram_mb,
        purchased_cpu_percent=u.purchased_cpu_percent,
        purchased_storage_mb=u.purchased_storage_mb,
        panel_user_id=u.panel_user_id,
        created_at=u.created_at,
    )


async def _get_user(db: AsyncSession, user_id: int, fresh: bool = False) -> User:
    stmt = select(User).where(User.id == user_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    q = await db.execute(stmt)
    u = q.scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=404, detail="User not found")
    return u


@router.get("/users", response_model=UserList)
async def list_users(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
):
    base = select(User).order_by(User.id.desc())
    total_q = await db.execute(select(func.count()).select_from(base.subquery()))
    total = int(total_q.scalar_one())
    q = await db.execute(base.limit(limit).offset(offset))
    return UserList(items=[_to_out(u) for u in q.scalars().all()], total=total)


@router.post("/users/{user_id}/coins", response_model=CoinAdjustOut)
async def adjust_user_coins(
    user_id: int,
    payload: CoinAdjustRequest,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
):
    await _get_user(db, user_id)
    coins = await adjust_coins(db, user_id, payload.amount, payload.reason or f"admin:{admin.username}")
    return CoinAdjustOut(user_id=user_id, coins=coins)


@router.post("/users/{user_id}/grant", response_model=UserOut)
async def grant_user_resources(
    user_id: int,
    payload: GrantResourcesRequest,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
):
    await _get_user(db, user_id)
    await grant_resources(
        db,
        user_id,
        ResourceAmounts(ram=payload.ram_mb, cpu=payload.cpu_percent, storage=payload.storage_mb),
        payload.reason,
    )
    return _to_out(await _get_user(db, user_id, fresh=True))


@router.delete("/users/{user_id}", response_model=DeleteUserOut)
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    u = await _get_user(db, user_id)

    removed, warnings = await delete_owner_servers(db, panel, u.id)
    await db.execute(delete(LedgerTransaction).where(LedgerTransaction.user_id == u.id))
    await db.delete(u)
    await db.commit()
    return DeleteUserOut(servers_removed=removed, warnings=warnings)


@router.get("/stats", response_model=StatsOut)
async def stats(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    users = int((await db.execute(select(func.count(User.id)))).scalar_one())
    servers = int((await db.execute(select(func.count(ProvisionedServer.id)))).scalar_one())
    coins = int((await db.execute(select(func.coalesce(func.sum(User.coins), 0)))).scalar_one())
    return StatsOut(total_users=users, total_servers=servers, total_coins=coins)
