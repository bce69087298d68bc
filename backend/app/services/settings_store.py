from __future__ import annotations

from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.app_setting import AppSetting

STORE_PRICES_KEY = "store_prices"
PANEL_SETTINGS_KEY = "panel_settings"
REWARD_SETTINGS_KEY = "reward_settings"


def base_panel_settings() -> dict:
    return {
        "default_nest_id": None,
        "default_location_id": None,
    }


def _positive_int_or_none(v) -> int | None:
    if v is None or v == "" or isinstance(v, bool):
        return None
    try:
        n = int(v)
    except (TypeError, ValueError):
        return None
    return n if n > 0 else None


def normalize_panel_settings(raw: dict | None) -> dict:
    out = base_panel_settings()
    if not isinstance(raw, dict):
        return out
    for k in out:
        out[k] = _positive_int_or_none(raw.get(k))
    return out


async def get_setting(db: AsyncSession, key: str, normalize: Callable[[dict | None], dict]) -> dict:
    q = await db.execute(select(AppSetting).where(AppSetting.key == key))
    row = q.scalar_one_or_none()
    return normalize(row.value if row else None)


async def set_setting(db: AsyncSession, key: str, value: dict, normalize: Callable[[dict | None], dict]) -> dict:
    """Upsert a normalized setting. Caller commits."""
    normalized = normalize(value)
    q = await db.execute(select(AppSetting).where(AppSetting.key == key))
    row = q.scalar_one_or_none()
    if row:
        row.value = normalized
    else:
        db.add(AppSetting(key=key, value=normalized))
    await db.flush()
    return normalized


async def delete_setting(db: AsyncSession, key: str) -> None:
    await db.execute(delete(AppSetting).where(AppSetting.key == key))


async def get_panel_settings(db: AsyncSession) -> dict:
    return await get_setting(db, PANEL_SETTINGS_KEY, normalize_panel_settings)


async def set_panel_settings(db: AsyncSession, value: dict) -> dict:
    return await set_setting(db, PANEL_SETTINGS_KEY, value, normalize_panel_settings)
