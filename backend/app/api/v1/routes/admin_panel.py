from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.config import settings
from app.core.crypto import DecryptionError, LegacyPlaintext, get_cipher
from app.core.db import get_db
from app.api.deps import require_admin, get_panel, get_panel_resolver
from app.api.v1.routes.servers import egg_out
from app.models.panel_allocation import PanelAllocation
from app.models.panel_egg import PanelEgg
from app.schemas.panel import (
    PanelCredentialsRequest,
    PanelConfigOut,
    TestConnectionOut,
    ConnectOut,
    DisconnectOut,
    PanelSettingsSchema,
    EggOut,
    EggSyncRequest,
    AllocationOut,
    AllocationPriorityRequest,
    SyncReportOut,
)
from app.services.errors import ConfigurationError
from app.services.panel.client import PanelClient, test_connection
from app.services.panel.config_resolver import PanelConfigResolver
from app.services.panel_sync import (
    NOT_CONFIGURED,
    SyncReport,
    connect_panel,
    current_config,
    disconnect_panel,
    mask_key,
    set_allocation_priority,
    sync_allocations,
    sync_eggs,
    sync_users,
    validate_panel_url,
)
from app.services.settings_store import get_panel_settings, set_panel_settings

router = APIRouter()


def _report_out(r: SyncReport) -> SyncReportOut:
    return SyncReportOut(synced=r.synced, failed=r.failed, total=r.total, results=r.results, errors=r.errors)


def allocation_out(a: PanelAllocation) -> AllocationOut:
    return AllocationOut(
        id=a.id,
        allocation_id=a.allocation_id,
        ip=a.ip,
        ip_alias=a.ip_alias,
        port=a.port,
        node_id=a.node_id,
        priority=a.priority,
        is_active=a.is_active,
    )


async def _require_panel(panel: PanelClient) -> None:
    if not await panel.is_configured():
        raise ConfigurationError(NOT_CONFIGURED)


@router.get("/config", response_model=PanelConfigOut)
async def get_config(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    row = await current_config(db)
    if row and row.panel_url and row.api_key:
        try:
            secret = get_cipher().decrypt(row.api_key)
        except DecryptionError as e:
            raise ConfigurationError("Stored panel API key cannot be decrypted; reconnect the panel") from e
        return PanelConfigOut(
            panel_url=row.panel_url,
            api_key_masked=mask_key(secret.plaintext),
            source="database",
            last_connected_at=row.last_connected_at,
            legacy_plaintext=isinstance(secret, LegacyPlaintext),
        )
    if settings.PTERODACTYL_URL or settings.PTERODACTYL_API_KEY:
        return PanelConfigOut(
            panel_url=settings.PTERODACTYL_URL,
            api_key_masked=mask_key(settings.PTERODACTYL_API_KEY),
            source="environment",
        )
    return PanelConfigOut(panel_url="", api_key_masked="", source="none")


@router.post("/test", response_model=TestConnectionOut)
async def test(payload: PanelCredentialsRequest, admin=Depends(require_admin)):
    url = validate_panel_url(payload.panel_url)
    r = await test_connection(url, payload.api_key)
    return TestConnectionOut(ok=r.ok, detail=r.detail, meta=r.meta)


@router.post("/connect", response_model=ConnectOut)
async def connect(
    payload: PanelCredentialsRequest,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    resolver: PanelConfigResolver = Depends(get_panel_resolver),
):
    row = await connect_panel(db, resolver, payload.panel_url, payload.api_key)
    return ConnectOut(panel_url=row.panel_url, last_connected_at=row.last_connected_at)


@router.post("/disconnect", response_model=DisconnectOut)
async def disconnect(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    resolver: PanelConfigResolver = Depends(get_panel_resolver),
):
    removed = await disconnect_panel(db, resolver)
    return DisconnectOut(servers_removed=removed)


@router.post("/sync-users", response_model=SyncReportOut)
async def sync_panel_users(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    return _report_out(await sync_users(db, panel))


@router.get("/eggs/remote")
async def remote_eggs(admin=Depends(require_admin), panel: PanelClient = Depends(get_panel)) -> list[dict[str, Any]]:
    await _require_panel(panel)
    return await panel.list_all_eggs()


@router.post("/eggs/sync", response_model=SyncReportOut)
async def sync_selected_eggs(
    payload: EggSyncRequest,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    return _report_out(await sync_eggs(db, panel, payload.egg_ids))


@router.get("/eggs", response_model=list[EggOut])
async def cached_eggs(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    q = await db.execute(select(PanelEgg).where(PanelEgg.is_active == True).order_by(PanelEgg.name))  # noqa: E712
    return [egg_out(e) for e in q.scalars().all()]


@router.get("/allocations/remote")
async def remote_allocations(admin=Depends(require_admin), panel: PanelClient = Depends(get_panel)) -> list[dict[str, Any]]:
    await _require_panel(panel)
    return await panel.list_unassigned_allocations()


@router.post("/allocations/sync", response_model=SyncReportOut)
async def sync_all_allocations(
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
    panel: PanelClient = Depends(get_panel),
):
    return _report_out(await sync_allocations(db, panel))


@router.get("/allocations", response_model=list[AllocationOut])
async def cached_allocations(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    q = await db.execute(
        select(PanelAllocation)
        .where(PanelAllocation.is_active == True)  # noqa: E712
        .order_by(PanelAllocation.priority.desc(), PanelAllocation.id.asc())
    )
    return [allocation_out(a) for a in q.scalars().all()]


@router.put("/allocations/{allocation_pk}/priority", response_model=AllocationOut)
async def update_priority(
    allocation_pk: int,
    payload: AllocationPriorityRequest,
    db: AsyncSession = Depends(get_db),
    admin=Depends(require_admin),
):
    return allocation_out(await set_allocation_priority(db, allocation_pk, payload.priority))


@router.get("/settings", response_model=PanelSettingsSchema)
async def get_settings(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    return PanelSettingsSchema(**await get_panel_settings(db))


@router.put("/settings", response_model=PanelSettingsSchema)
async def put_settings(payload: PanelSettingsSchema, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    saved = await set_panel_settings(db, payload.model_dump())
    await db.commit()
    return PanelSettingsSchema(**saved)
