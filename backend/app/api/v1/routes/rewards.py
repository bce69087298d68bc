from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import require_user
from app.models.user import User
from app.schemas.reward import (
    CompleteLinkRequest,
    CompleteLinkOut,
    RewardCompletionOut,
    RewardCompletionList,
    RewardLinkStatusOut,
    RewardLinkStatusList,
)
from app.services.rewards import complete_link, completion_history, links_for_user

router = APIRouter()


@router.get("/links", response_model=RewardLinkStatusList)
async def links(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    rows = await links_for_user(db, user.id)
    return RewardLinkStatusList(
        items=[
            RewardLinkStatusOut(
                id=s.link.id,
                title=s.link.title,
                url=s.link.url,
                coins_earned=s.link.coins,
                completed=s.completed,
                on_cooldown=s.on_cooldown,
                cooldown_remaining=s.cooldown_remaining,
                cooldown_seconds=s.cooldown_seconds,
            )
            for s in rows
        ]
    )


@router.post("/complete", response_model=CompleteLinkOut)
async def complete(payload: CompleteLinkRequest, db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    res = await complete_link(db, user.id, payload.link_id)
    return CompleteLinkOut(link_id=res.link_id, coins_earned=res.coins_earned, new_balance=res.new_balance)


@router.get("/history", response_model=RewardCompletionList)
async def history(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    rows = await completion_history(db, user.id)
    return RewardCompletionList(
        items=[
            RewardCompletionOut(
                link_id=c.link_id, link_title=c.link_title, coins_earned=c.coins_earned, completed_at=c.completed_at
            )
            for c in rows
        ]
    )
