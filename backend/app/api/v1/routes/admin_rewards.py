from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_admin
from app.core.db import get_db
from app.models.reward import RewardLink
from app.schemas.reward import RewardLinkOut, RewardLinkRequest, RewardSettingsSchema
from app.services.rewards import (
    create_link,
    delete_link,
    get_link,
    get_reward_settings,
    list_links,
    set_reward_settings,
    update_link,
)

router = APIRouter()


def _to_out(link: RewardLink) -> RewardLinkOut:
    return RewardLinkOut(
        id=link.id,
        title=link.title,
        url=link.url,
        coins_earned=link.coins,
        is_active=link.is_active,
        priority=link.priority,
        created_at=link.created_at,
    )


@router.get("/settings", response_model=RewardSettingsSchema)
async def get_settings(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    return RewardSettingsSchema(**await get_reward_settings(db))


@router.put("/settings", response_model=RewardSettingsSchema)
async def put_settings(payload: RewardSettingsSchema, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    saved = await set_reward_settings(db, payload.model_dump())
    await db.commit()
    return RewardSettingsSchema(**saved)


@router.get("/links", response_model=list[RewardLinkOut])
async def all_links(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    return [_to_out(link) for link in await list_links(db)]


@router.get("/links/{link_id}", response_model=RewardLinkOut)
async def one_link(link_id: int, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    return _to_out(await get_link(db, link_id))


@router.post("/links", response_model=RewardLinkOut)
async def add_link(payload: RewardLinkRequest, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    link = await create_link(
        db, payload.title, payload.url, payload.coins_earned, is_active=payload.is_active, priority=payload.priority
    )
    return _to_out(link)


@router.put("/links/{link_id}", response_model=RewardLinkOut)
async def edit_link(
    link_id: int, payload: RewardLinkRequest, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)
):
    link = await update_link(
        db, link_id, payload.title, payload.url, payload.coins_earned, is_active=payload.is_active, priority=payload.priority
    )
    return _to_out(link)


@router.delete("/links/{link_id}")
async def remove_link(link_id: int, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    await delete_link(db, link_id)
    return {"ok": True}
