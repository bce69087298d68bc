from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from app.core.db import get_db
from app.api.deps import require_user, get_panel
from app.models.panel_egg import PanelEgg
from app.models.server import ProvisionedServer
from app.models.user import User
from app.schemas.panel import EggOut
from app.schemas.server import (
    CreateServerRequest,
    ResizeServerRequest,
    PowerRequest,
    ServerOut,
    ServerList,
    ServerActionResponse,
    ServerDetailOut,
)
from app.services.errors import HubError
from app.services.panel.client import PanelClient
from app.services.provisioning import (
    ServerRequest,
    delete_server,
    panel_ready,
    provision_server,
    refresh_public_addresses,
    resize_server,
    send_power_signal,
)

router = APIRouter()


def server_out(s: ProvisionedServer) -> ServerOut:
    return ServerOut(
        id=s.id,
        user_id=s.user_id,
        remote_id=s.remote_id,
        name=s.name,
        ram_mb=s.ram_mb,
        cpu_percent=s.cpu_percent,
        storage_mb=s.storage_mb,
        public_address=s.public_address,
        created_at=s.created_at,
    )


def egg_out(e: PanelEgg) -> EggOut:
    return EggOut(
        id=e.id,
        egg_id=e.egg_id,
        nest_id=e.nest_id,
        name=e.name,
        docker_image=e.docker_image,
        startup_command=e.startup_command,
        environment_variables=e.environment_variables or [],
        is_active=e.is_active,
    )


async def _own_server(db: AsyncSession, server_id: int, user: User) -> ProvisionedServer:
    q = await db.execute(
        select(ProvisionedServer).where(ProvisionedServer.id == server_id, ProvisionedServer.user_id == user.id)
    )
    s = q.scalar_one_or_none()
    if not s:
        raise HTTPException(status_code=404, detail="Server not found")
    return s


@router.get("", response_model=ServerList)
async def list_my_servers(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    panel: PanelClient = Depends(get_panel),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    base = select(ProvisionedServer).where(ProvisionedServer.user_id == user.id).order_by(ProvisionedServer.id.desc())
    total_q = await db.execute(select(func.count()).select_from(base.subquery()))
    total = int(total_q.scalar_one())
    q = await db.execute(base.limit(limit).offset(offset))
    rows = list(q.scalars().all())

    if any(s.remote_id and not s.public_address for s in rows) and await panel_ready(panel):
        await refresh_public_addresses(db, panel, rows)

    return ServerList(items=[server_out(s) for s in rows], total=total)


@router.get("/eggs", response_model=list[EggOut])
async def list_available_eggs(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    q = await db.execute(select(PanelEgg).where(PanelEgg.is_active == True).order_by(PanelEgg.name))  # noqa: E712
    return [egg_out(e) for e in q.scalars().all()]


@router.post("", response_model=ServerActionResponse)
async def create_server(
    payload: CreateServerRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    panel: PanelClient = Depends(get_panel),
):
    outcome = await provision_server(
        db,
        panel,
        user.id,
        ServerRequest(
            name=payload.name,
            ram_mb=payload.ram_mb,
            cpu_percent=payload.cpu_percent,
            storage_mb=payload.storage_mb,
            egg_id=payload.egg_id,
        ),
    )
    return ServerActionResponse(server=server_out(outcome.server), warnings=outcome.warnings)


@router.get("/{server_id}", response_model=ServerDetailOut)
async def get_server(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    panel: PanelClient = Depends(get_panel),
):
    s = await _own_server(db, server_id, user)
    out = ServerDetailOut(server=server_out(s))
    if not s.remote_id:
        return out
    try:
        res = await panel.get_server(s.remote_id)
    except HubError as e:
        out.panel_error = e.message
        return out
    if res.success and isinstance(res.data, dict):
        attrs = res.data.get("attributes") or {}
        out.panel = {
            "identifier": attrs.get("identifier"),
            "status": attrs.get("status"),
            "suspended": attrs.get("suspended"),
            "limits": attrs.get("limits"),
            "feature_limits": attrs.get("feature_limits"),
        }
    else:
        out.panel_error = res.message
    return out


@router.patch("/{server_id}", response_model=ServerActionResponse)
async def resize(
    server_id: int,
    payload: ResizeServerRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    panel: PanelClient = Depends(get_panel),
):
    s = await _own_server(db, server_id, user)
    outcome = await resize_server(
        db, panel, s, ram_mb=payload.ram_mb, cpu_percent=payload.cpu_percent, storage_mb=payload.storage_mb
    )
    return ServerActionResponse(server=server_out(outcome.server), warnings=outcome.warnings)


@router.post("/{server_id}/power", response_model=ServerActionResponse)
async def power(
    server_id: int,
    payload: PowerRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    panel: PanelClient = Depends(get_panel),
):
    s = await _own_server(db, server_id, user)
    await send_power_signal(panel, s, payload.signal)
    return ServerActionResponse(server=server_out(s))


@router.delete("/{server_id}", response_model=ServerActionResponse)
async def remove_server(
    server_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    panel: PanelClient = Depends(get_panel),
):
    s = await _own_server(db, server_id, user)
    warnings = await delete_server(db, panel, s)
    return ServerActionResponse(warnings=warnings)
