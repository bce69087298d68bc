from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlparse

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.ledger import LedgerEntryType
from app.models.reward import RewardCompletion, RewardLink
from app.models.user import User
from app.services.errors import CooldownError, NotFoundError, ValidationError
from app.services.ledger import credit_coins
from app.services.settings_store import REWARD_SETTINGS_KEY, get_setting, set_setting

logger = logging.getLogger(__name__)

DEFAULT_LINK_COINS = 10
DEFAULT_COOLDOWN_SECONDS = 30
MAX_LINK_COINS = 10000
TITLE_MAX_LEN = 100
HISTORY_LIMIT = 50

PUBLISHER_ID_RE = re.compile(r"/ac/(\d+)")


@dataclass(frozen=True)
class LinkStatus:
    link: RewardLink
    completed: bool
    cooldown_remaining: int
    cooldown_seconds: int

    @property
    def on_cooldown(self) -> bool:
        return self.cooldown_remaining > 0


@dataclass(frozen=True)
class RewardResult:
    link_id: int
    coins_earned: int
    new_balance: int


def base_reward_settings() -> dict:
    return {
        "publisher_link": "",
        "publisher_id": "",
        "default_coins": DEFAULT_LINK_COINS,
        "cooldown_seconds": DEFAULT_COOLDOWN_SECONDS,
    }


def extract_publisher_id(link: str) -> str:
    m = PUBLISHER_ID_RE.search(link or "")
    return m.group(1) if m else ""


def _int_at_least(v, minimum: int, default: int) -> int:
    if v is None or v == "" or isinstance(v, bool):
        return default
    try:
        n = int(v)
    except (TypeError, ValueError):
        return default
    return n if n >= minimum else default


def normalize_reward_settings(raw: dict | None) -> dict:
    out = base_reward_settings()
    if not isinstance(raw, dict):
        return out
    out["publisher_link"] = str(raw.get("publisher_link") or "").strip()
    out["publisher_id"] = str(raw.get("publisher_id") or "").strip() or extract_publisher_id(out["publisher_link"])
    out["default_coins"] = _int_at_least(raw.get("default_coins"), 0, DEFAULT_LINK_COINS)
    out["cooldown_seconds"] = _int_at_least(raw.get("cooldown_seconds"), 0, DEFAULT_COOLDOWN_SECONDS)
    return out


async def get_reward_settings(db: AsyncSession) -> dict:
    return await get_setting(db, REWARD_SETTINGS_KEY, normalize_reward_settings)


async def set_reward_settings(db: AsyncSession, value: dict) -> dict:
    return await set_setting(db, REWARD_SETTINGS_KEY, value, normalize_reward_settings)


def validate_link(title: str, url: str, coins: int) -> tuple[str, str, int]:
    title = (title or "").strip()
    url = (url or "").strip()
    if not title or not url:
        raise ValidationError("Title and URL are required")
    if len(title) > TITLE_MAX_LEN:
        raise ValidationError(f"Title must be {TITLE_MAX_LEN} characters or less")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid URL format. URL must start with http:// or https://")
    if isinstance(coins, bool) or not 0 <= int(coins) <= MAX_LINK_COINS:
        raise ValidationError(f"Coins earned must be between 0 and {MAX_LINK_COINS}")
    return title, url, int(coins)


def _as_utc(dt: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def cooldown_remaining(last_completed: datetime | None, now: datetime, cooldown_seconds: int) -> int:
    if last_completed is None:
        return 0
    elapsed = int((_as_utc(now) - _as_utc(last_completed)).total_seconds())
    return max(0, cooldown_seconds - elapsed)


async def _last_completed(db: AsyncSession, user_id: int, link_id: int | None = None) -> dict[int, datetime]:
    stmt = (
        select(RewardCompletion.link_id, func.max(RewardCompletion.completed_at))
        .where(RewardCompletion.user_id == user_id, RewardCompletion.link_id.is_not(None))
        .group_by(RewardCompletion.link_id)
    )
    if link_id is not None:
        stmt = stmt.where(RewardCompletion.link_id == link_id)
    q = await db.execute(stmt)
    return {lid: at for lid, at in q.all() if at is not None}


async def links_for_user(db: AsyncSession, user_id: int, now: datetime | None = None) -> list[LinkStatus]:
    now = now or utcnow()
    cooldown = (await get_reward_settings(db))["cooldown_seconds"]
    q = await db.execute(
        select(RewardLink)
        .where(RewardLink.is_active == True)  # noqa: E712
        .order_by(RewardLink.priority.desc(), RewardLink.created_at.asc(), RewardLink.id.asc())
    )
    last = await _last_completed(db, user_id)
    return [
        LinkStatus(
            link=link,
            completed=link.id in last,
            cooldown_remaining=cooldown_remaining(last.get(link.id), now, cooldown),
            cooldown_seconds=cooldown,
        )
        for link in q.scalars().all()
    ]


async def complete_link(db: AsyncSession, user_id: int, link_id: int, now: datetime | None = None) -> RewardResult:
    """Credit the link's coins unless the user is still on cooldown for it. Commits."""
    now = now or utcnow()
    q = await db.execute(select(RewardLink).where(RewardLink.id == link_id, RewardLink.is_active == True))  # noqa: E712
    link = q.scalar_one_or_none()
    if not link:
        raise NotFoundError("Link not found")

    # serializes completions of one user so a double submit cannot pass the cooldown twice
    locked = await db.execute(select(User.id).where(User.id == user_id).with_for_update())
    if locked.scalar_one_or_none() is None:
        raise NotFoundError("User not found")

    cooldown = (await get_reward_settings(db))["cooldown_seconds"]
    remaining = cooldown_remaining((await _last_completed(db, user_id, link.id)).get(link.id), now, cooldown)
    if remaining > 0:
        raise CooldownError(remaining)

    balance = await credit_coins(db, user_id, link.coins, LedgerEntryType.reward, f"reward link {link.id}: {link.title}")
    db.add(
        RewardCompletion(user_id=user_id, link_id=link.id, link_title=link.title, coins_earned=link.coins, completed_at=now)
    )
    await db.commit()
    logger.info("reward link completed user_id=%s link_id=%s coins=%s", user_id, link.id, link.coins)
    return RewardResult(link_id=link.id, coins_earned=link.coins, new_balance=balance)


async def completion_history(db: AsyncSession, user_id: int, limit: int = HISTORY_LIMIT) -> list[RewardCompletion]:
    q = await db.execute(
        select(RewardCompletion)
        .where(RewardCompletion.user_id == user_id)
        .order_by(RewardCompletion.completed_at.desc(), RewardCompletion.id.desc())
        .limit(limit)
    )
    return list(q.scalars().all())


async def list_links(db: AsyncSession) -> list[RewardLink]:
    q = await db.execute(select(RewardLink).order_by(RewardLink.priority.desc(), RewardLink.created_at.desc()))
    return list(q.scalars().all())


async def get_link(db: AsyncSession, link_id: int) -> RewardLink:
    link = await db.get(RewardLink, link_id)
    if not link:
        raise NotFoundError("Link not found")
    return link


async def create_link(
    db: AsyncSession,
    title: str,
    url: str,
    coins: int | None = None,
    is_active: bool = True,
    priority: int = 0,
) -> RewardLink:
    if coins is None:
        coins = (await get_reward_settings(db))["default_coins"]
    title, url, coins = validate_link(title, url, coins)
    link = RewardLink(title=title, url=url, coins=coins, is_active=is_active, priority=int(priority))
    db.add(link)
    await db.commit()
    await db.refresh(link)
    logger.info("reward link created id=%s coins=%s", link.id, coins)
    return link


async def update_link(
    db: AsyncSession,
    link_id: int,
    title: str,
    url: str,
    coins: int | None = None,
    is_active: bool = True,
    priority: int = 0,
) -> RewardLink:
    link = await get_link(db, link_id)
    if coins is None:
        coins = (await get_reward_settings(db))["default_coins"]
    link.title, link.url, link.coins = validate_link(title, url, coins)
    link.is_active = is_active
    link.priority = int(priority)
    await db.commit()
    await db.refresh(link)
    return link


async def delete_link(db: AsyncSession, link_id: int) -> None:
    link = await get_link(db, link_id)
    await db.delete(link)
    await db.commit()
    logger.info("reward link deleted id=%s", link_id)
