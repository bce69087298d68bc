"""Admin-side panel management: connection lifecycle, cache syncs and user mirroring."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.crypto import SecretCipher, get_cipher
from app.core.security import random_panel_password
from app.models.common import utcnow
from app.models.panel_allocation import PanelAllocation
from app.models.panel_config import PanelConfig
from app.models.panel_egg import PanelEgg
from app.models.server import ProvisionedServer
from app.models.user import User
from app.services.errors import ConfigurationError, ConflictError, HubError, NotFoundError, ValidationError
from app.services.panel.client import PanelClient, test_connection
from app.services.panel.config_resolver import PanelConfigResolver
from app.services.panel.normalizer import coerce_id
from app.services.settings_store import PANEL_SETTINGS_KEY, delete_setting

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Panel is not configured. Please connect it first."


@dataclass
class SyncReport:
    synced: int = 0
    failed: int = 0
    total: int = 0
    results: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def validate_panel_url(panel_url: str) -> str:
    url = (panel_url or "").strip().rstrip("/")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid panel URL format")
    return url


def mask_key(api_key: str) -> str:
    if not api_key:
        return ""
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}{'*' * (len(api_key) - 8)}{api_key[-4:]}"


async def current_config(db: AsyncSession) -> PanelConfig | None:
    q = await db.execute(select(PanelConfig).order_by(PanelConfig.id.desc()).limit(1))
    return q.scalar_one_or_none()


async def connect_panel(
    db: AsyncSession,
    resolver: PanelConfigResolver,
    panel_url: str,
    api_key: str,
    cipher: SecretCipher | None = None,
) -> PanelConfig:
    """Test, encrypt and store the panel connection. Commits and clears the resolver cache."""
    url = validate_panel_url(panel_url)
    api_key = (api_key or "").strip()
    if not api_key:
        raise ValidationError("Panel URL and API key are required")

    existing = await current_config(db)
    if existing and existing.last_connected_at and existing.panel_url.rstrip("/") != url:
        raise ConflictError(
            f'A connection to "{existing.panel_url}" is already active. '
            "Disconnect it before connecting to a different panel."
        )

    result = await test_connection(url, api_key)
    if not result.ok:
        raise ValidationError(result.detail or "Connection test failed. Please verify your credentials.")

    encrypted = (cipher or get_cipher()).encrypt(api_key)
    now = utcnow()
    if existing:
        existing.panel_url = url
        existing.api_key = encrypted
        existing.last_connected_at = now
        row = existing
    else:
        row = PanelConfig(panel_url=url, api_key=encrypted, last_connected_at=now)
        db.add(row)
    await db.commit()
    resolver.clear()
    logger.info("panel connected url=%s", url)
    return row


async def disconnect_panel(db: AsyncSession, resolver: PanelConfigResolver) -> int:
    """Drop the connection, cached eggs/allocations, panel settings and remote-backed servers.

    Purchased pools are untouched; capacity held by the deleted servers
    becomes available again by derivation. Returns the number of servers removed.
    """
    q = await db.execute(select(ProvisionedServer.id).where(ProvisionedServer.remote_id.is_not(None)))
    server_ids = list(q.scalars().all())

    await db.execute(delete(PanelConfig))
    await db.execute(delete(PanelEgg))
    await db.execute(delete(PanelAllocation))
    await delete_setting(db, PANEL_SETTINGS_KEY)
    if server_ids:
        await db.execute(delete(ProvisionedServer).where(ProvisionedServer.id.in_(server_ids)))
    await db.commit()
    resolver.clear()
    logger.info("panel disconnected servers_removed=%s", len(server_ids))
    return len(server_ids)


async def _require_configured(client: PanelClient) -> None:
    if not await client.is_configured():
        raise ConfigurationError(NOT_CONFIGURED)


def _split_name(username: str) -> tuple[str, str]:
    parts = (username or "").split(" ")
    first = parts[0] or username
    last = " ".join(parts[1:]) or "User"
    return first, last


async def sync_users(db: AsyncSession, client: PanelClient) -> SyncReport:
    """Mirror every local user without a panel account: link by email, else create. Commits."""
    await _require_configured(client)
    q = await db.execute(
        select(User).where((User.panel_user_id.is_(None)) | (User.panel_user_id == "")).order_by(User.id.asc())
    )
    users = list(q.scalars().all())
    report = SyncReport(total=len(users))

    for user in users:
        try:
            existing = await client.find_user_by_email(user.email)
            if existing:
                status, panel_id = "linked", existing.get("id")
            else:
                first, last = _split_name(user.username)
                data = (
                    await client.create_user(
                        {
                            "email": user.email,
                            "username": user.username,
                            "first_name": first,
                            "last_name": last,
                            "password": random_panel_password(),
                        }
                    )
                ).unwrap("create user")
                attrs = data.get("attributes", data) if isinstance(data, dict) else {}
                status, panel_id = "created", attrs.get("id")
            if panel_id is None:
                raise ValidationError("Panel returned no user id")
        except HubError as e:
            logger.warning("user sync failed user_id=%s err=%s", user.id, str(e.message)[:220])
            report.failed += 1
            report.results.append({"username": user.username, "email": user.email, "status": "failed", "message": e.message})
            continue

        user.panel_user_id = str(panel_id)
        await db.commit()
        report.synced += 1
        report.results.append({"username": user.username, "email": user.email, "status": status, "message": ""})

    logger.info("user sync done synced=%s failed=%s", report.synced, report.failed)
    return report


def normalize_egg_variables(egg: dict[str, Any]) -> list[dict[str, Any]]:
    """Panel variable objects -> ``[{"name": ENV_VAR, "default": value}]``."""
    raw = ((egg.get("relationships") or {}).get("variables") or {}).get("data")
    if raw is None:
        raw = egg.get("environment_variables") or []
    out: list[dict[str, Any]] = []
    if not isinstance(raw, list):
        return out
    for v in raw:
        if not isinstance(v, dict):
            continue
        attrs = v.get("attributes") if isinstance(v.get("attributes"), dict) else v
        name = attrs.get("env_variable") or attrs.get("name")
        if not name:
            continue
        default = attrs.get("default_value", attrs.get("default"))
        out.append({"name": str(name), "default": "" if default is None else default})
    return out


async def sync_eggs(db: AsyncSession, client: PanelClient, egg_ids: list[int]) -> SyncReport:
    """Cache the selected remote eggs (upsert by ``egg_id``). Commits."""
    wanted = {int(x) for x in egg_ids}
    if not wanted:
        raise ValidationError("Please select at least one egg to sync")
    await _require_configured(client)

    remote = await client.list_all_eggs()
    report = SyncReport(total=len(wanted))
    seen: set[int] = set()
    for egg in remote:
        egg_id = coerce_id(egg.get("id"))
        if egg_id is None or egg_id not in wanted:
            continue
        seen.add(egg_id)
        q = await db.execute(select(PanelEgg).where(PanelEgg.egg_id == egg_id))
        row = q.scalar_one_or_none()
        if not row:
            row = PanelEgg(egg_id=egg_id)
            db.add(row)
        row.nest_id = int(egg.get("nest_id") or egg.get("nest") or 0)
        row.name = str(egg.get("name") or f"egg-{egg_id}")[:191]
        row.docker_image = egg.get("docker_image") or None
        row.startup_command = egg.get("startup") or ""
        row.environment_variables = normalize_egg_variables(egg)
        row.is_active = True
        report.synced += 1

    for missing in sorted(wanted - seen):
        report.failed += 1
        report.errors.append(f"Egg {missing} not found on the panel")

    if report.synced == 0:
        raise ValidationError("No eggs were synced. Please check your selection.")
    await db.commit()
    logger.info("eggs synced count=%s missing=%s", report.synced, report.failed)
    return report


async def sync_allocations(db: AsyncSession, client: PanelClient) -> SyncReport:
    """Cache every unassigned remote allocation (upsert by ``allocation_id``, priority kept). Commits."""
    await _require_configured(client)
    remote = await client.list_unassigned_allocations()
    report = SyncReport(total=len(remote))

    for alloc in remote:
        allocation_id = coerce_id(alloc.get("id"))
        port = coerce_id(alloc.get("port"))
        if allocation_id is None or port is None or not alloc.get("ip"):
            report.failed += 1
            report.errors.append(f"Skipped malformed allocation {alloc.get('id')!r}")
            continue
        q = await db.execute(select(PanelAllocation).where(PanelAllocation.allocation_id == allocation_id))
        row = q.scalar_one_or_none()
        if not row:
            row = PanelAllocation(allocation_id=allocation_id, priority=0)
            db.add(row)
        row.ip = str(alloc["ip"])
        row.ip_alias = alloc.get("ip_alias") or alloc.get("alias") or None
        row.port = port
        row.node_id = int(alloc.get("node_id") or 0)
        row.is_active = True
        report.synced += 1

    await db.commit()
    logger.info("allocations synced count=%s skipped=%s", report.synced, report.failed)
    return report


async def set_allocation_priority(db: AsyncSession, allocation_pk: int, priority: int) -> PanelAllocation:
    q = await db.execute(select(PanelAllocation).where(PanelAllocation.id == allocation_pk))
    row = q.scalar_one_or_none()
    if not row:
        raise NotFoundError("Allocation not found")
    row.priority = int(priority)
    await db.commit()
    return row
