from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from app.core.db import get_db
from app.api.deps import require_admin, get_panel
from app.api.v1.routes.servers import server_out
from app.models.server import ProvisionedServer
from app.schemas.server import ServerList, ServerActionResponse, PowerRequest
from app.services.panel.client import PanelClient
from app.services.provisioning import delete_server, send_power_signal, set_suspended

router = APIRouter()


async def _get_server(db: AsyncSession, server_id: int) -> ProvisionedServer:
    q = await db.execute(select(ProvisionedServer).where(ProvisionedServer.id == server_id))
    s = q.scalar_one_or_none()
    if not s:
        raise HTTPException(status_code=404, detail="Server not found")
    return s


@router.get("", response_model=ServerList)
async def list_all_servers(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    user_id: int | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=1000),
):
    base = select(ProvisionedServer).order_by(ProvisionedServer.id.desc())
    if user_id is not None:
        base = base.where(ProvisionedServer.user_id == user_id)
    total_q = await db.execute(select(func.count()).select_from(base.subquery()))
    total = int(total_q.scalar_one())
    q = await db.execute(base.limit(limit).offset(offset))
    return ServerList(items=[server_out(s) for s in q.scalars().all()], total=total)


@router.delete("/{server_id}", response_model=ServerActionResponse)
async def admin_delete_server(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    s = await _get_server(db, server_id)
    warnings = await delete_server(db, panel, s)
    return ServerActionResponse(warnings=warnings)


@router.post("/{server_id}/power", response_model=ServerActionResponse)
async def admin_power(
    server_id: int,
    payload: PowerRequest,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    s = await _get_server(db, server_id)
    await send_power_signal(panel, s, payload.signal)
    return ServerActionResponse(server=server_out(s))


@router.post("/{server_id}/suspend", response_model=ServerActionResponse)
async def suspend(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    s = await _get_server(db, server_id)
    await set_suspended(panel, s, True)
    return ServerActionResponse(server=server_out(s))


@router.post("/{server_id}/unsuspend", response_model=ServerActionResponse)
async def unsuspend(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    s = await _get_server(db, server_id)
    await set_suspended(panel, s, False)
    return ServerActionResponse(server=server_out(s))
