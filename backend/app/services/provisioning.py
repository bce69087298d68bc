from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.panel_allocation import PanelAllocation
from app.models.panel_egg import PanelEgg
from app.models.server import ProvisionedServer
from app.models.user import User
from app.services.errors import (
    ConfigurationError,
    HubError,
    InsufficientResourceError,
    NotFoundError,
    PanelIntegrityError,
    ValidationError,
)
from app.services.ledger import ResourceAmounts, check_availability, get_usage
from app.services.panel.build import update_server_build
from app.services.panel.client import PanelClient
from app.services.panel.normalizer import extract_public_address, resource_id
from app.services.settings_store import get_panel_settings

logger = logging.getLogger(__name__)

NAME_MAX_LEN = 50
NAME_RE = re.compile(r"^[A-Za-z0-9 _-]+$")

MIN_RAM_MB = 1024
REQUIRED_CPU_PERCENT = 100
MIN_STORAGE_MB = 5120

DEFAULT_DOCKER_IMAGE = "ghcr.io/pterodactyl/yolks:java_17"
CREATE_LIMITS = {"swap": 0, "io": 500}
CREATE_FEATURE_LIMITS = {"databases": 0, "allocations": 1, "backups": 0}


@dataclass(frozen=True)
class ServerRequest:
    name: str
    ram_mb: int
    cpu_percent: int
    storage_mb: int
    egg_id: int | None = None


@dataclass
class ProvisionOutcome:
    server: ProvisionedServer
    warnings: list[str] = field(default_factory=list)


def validate_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Server name is required")
    if len(name) > NAME_MAX_LEN:
        raise ValidationError(f"Server name must be at most {NAME_MAX_LEN} characters")
    if not NAME_RE.match(name):
        raise ValidationError("Server name can only contain letters, numbers, spaces, hyphens and underscores")
    return name


def validate_limits(ram_mb: int, cpu_percent: int, storage_mb: int) -> None:
    if ram_mb < MIN_RAM_MB:
        raise ValidationError(f"Minimum RAM is {MIN_RAM_MB // 1024}GB ({MIN_RAM_MB}MB)")
    if cpu_percent != REQUIRED_CPU_PERCENT:
        raise ValidationError(f"CPU must be exactly {REQUIRED_CPU_PERCENT}%")
    if storage_mb < MIN_STORAGE_MB:
        raise ValidationError(f"Minimum storage is {MIN_STORAGE_MB // 1024}GB ({MIN_STORAGE_MB}MB)")


def egg_environment(variables: Any) -> dict[str, Any]:
    """``{"NAME": default}`` from the cached egg variable list.

    Accepts the normalized ``{name, default}`` shape as well as raw panel
    variable objects (``env_variable``/``default_value``).
    """
    env: dict[str, Any] = {}
    if not isinstance(variables, list):
        return env
    for v in variables:
        if not isinstance(v, dict):
            continue
        attrs = v.get("attributes") if isinstance(v.get("attributes"), dict) else v
        name = attrs.get("name") if "default" in attrs else attrs.get("env_variable")
        default = attrs.get("default", attrs.get("default_value"))
        if name and default is not None:
            env[str(name)] = default
    return env


async def lock_user(db: AsyncSession, user_id: int) -> User:
    q = await db.execute(
        select(User).where(User.id == user_id).with_for_update().execution_options(populate_existing=True)
    )
    user = q.scalar_one_or_none()
    if not user:
        raise NotFoundError("User not found")
    return user


async def pick_allocation(db: AsyncSession) -> PanelAllocation | None:
    q = await db.execute(
        select(PanelAllocation)
        .where(PanelAllocation.is_active == True)  # noqa: E712
        .order_by(PanelAllocation.priority.desc(), PanelAllocation.id.asc())
        .limit(1)
    )
    return q.scalar_one_or_none()


async def _fetch_address(client: PanelClient, remote_id: str, warnings: list[str]) -> str | None:
    try:
        res = await client.get_server_details(remote_id)
        if res.success:
            return extract_public_address(res.data)
        err = res.message
    except HubError as e:
        err = e.message
    msg = f"public address lookup failed for remote server {remote_id}"
    logger.warning("%s err=%s", msg, str(err)[:220])
    warnings.append(msg)
    return None


async def _resolve_egg(db: AsyncSession, egg_id: int | None, default_nest_id: int | None) -> PanelEgg:
    active = select(PanelEgg).where(PanelEgg.is_active == True)  # noqa: E712
    if egg_id is not None:
        egg = (await db.execute(active.where(PanelEgg.egg_id == egg_id))).scalar_one_or_none()
        if not egg:
            raise NotFoundError("Selected game type (egg) not found. Please contact an administrator.")
        return egg
    if not default_nest_id:
        raise ValidationError("Egg is required")
    # no egg chosen: first cached egg of the default nest
    q = await db.execute(active.where(PanelEgg.nest_id == default_nest_id).order_by(PanelEgg.name, PanelEgg.id).limit(1))
    egg = q.scalar_one_or_none()
    if not egg:
        raise NotFoundError("No game type (egg) is available in the default nest. Please contact an administrator.")
    return egg


async def _create_remote(
    db: AsyncSession, client: PanelClient, user: User, req: ServerRequest, warnings: list[str]
) -> tuple[str, str | None]:
    panel_settings = await get_panel_settings(db)
    egg = await _resolve_egg(db, req.egg_id, panel_settings.get("default_nest_id"))

    allocation = await pick_allocation(db)
    if not allocation:
        raise ConfigurationError("No available server allocations. Please contact an administrator.")

    if not user.panel_user_id:
        raise ValidationError("Panel account not found for this user. Please contact an administrator.")

    location_id = panel_settings.get("default_location_id")

    payload = {
        "name": req.name,
        "user": int(user.panel_user_id),
        "egg": int(egg.egg_id),
        "docker_image": egg.docker_image or DEFAULT_DOCKER_IMAGE,
        "startup": egg.startup_command or "",
        "environment": egg_environment(egg.environment_variables),
        "limits": {
            "memory": req.ram_mb,
            "swap": CREATE_LIMITS["swap"],
            "disk": req.storage_mb,
            "io": CREATE_LIMITS["io"],
            "cpu": req.cpu_percent,
        },
        "feature_limits": dict(CREATE_FEATURE_LIMITS),
        "allocation": {"default": allocation.allocation_id},
        "deploy": {
            "locations": [int(location_id)] if location_id else [],
            "dedicated_ip": False,
            "port_range": [],
        },
    }

    data = (await client.create_server(payload)).unwrap("create server")
    remote_id = resource_id(data)
    if not remote_id:
        raise PanelIntegrityError("Panel created the server but returned no server id")

    address = extract_public_address(data)
    if not address:
        address = await _fetch_address(client, remote_id, warnings)
    return remote_id, address


async def provision_server(db: AsyncSession, client: PanelClient, user_id: int, req: ServerRequest) -> ProvisionOutcome:
    """Check, create remotely (when a panel is connected), then record locally. Commits.

    The owner row stays locked from the checks to the insert so two
    concurrent requests cannot both spend the same capacity.
    """
    name = validate_name(req.name)
    validate_limits(req.ram_mb, req.cpu_percent, req.storage_mb)
    req = ServerRequest(name=name, ram_mb=req.ram_mb, cpu_percent=req.cpu_percent, storage_mb=req.storage_mb, egg_id=req.egg_id)

    user = await lock_user(db, user_id)
    usage = await get_usage(db, user_id)
    if usage.server_count >= usage.server_slots:
        raise InsufficientResourceError(
            "slots",
            have=usage.free_slots,
            need=1,
            message=(
                f"You've reached your server limit ({usage.server_slots} slot"
                f"{'s' if usage.server_slots != 1 else ''}). Purchase more slots to create additional servers."
            ),
        )
    shortfall = check_availability(usage, ResourceAmounts(ram=req.ram_mb, cpu=req.cpu_percent, storage=req.storage_mb))
    if shortfall:
        raise shortfall.to_error()

    warnings: list[str] = []
    remote_id: str | None = None
    address: str | None = None
    if await client.is_configured():
        remote_id, address = await _create_remote(db, client, user, req, warnings)
    else:
        logger.info("panel not configured, recording local-only server user_id=%s", user_id)

    server = ProvisionedServer(
        user_id=user_id,
        remote_id=remote_id,
        name=req.name,
        ram_mb=req.ram_mb,
        cpu_percent=req.cpu_percent,
        storage_mb=req.storage_mb,
        public_address=address,
    )
    db.add(server)
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        if remote_id:
            logger.exception("local insert failed after remote create, removing remote server remote_id=%s", remote_id)
            await _delete_remote(client, remote_id, [])
        raise

    await db.refresh(server)
    logger.info(
        "server provisioned id=%s user_id=%s remote_id=%s ram=%s cpu=%s disk=%s",
        server.id, user_id, remote_id, req.ram_mb, req.cpu_percent, req.storage_mb,
    )
    return ProvisionOutcome(server=server, warnings=warnings)


async def _delete_remote(client: PanelClient, remote_id: str, warnings: list[str]) -> bool:
    try:
        res = await client.delete_server(remote_id)
    except HubError as e:
        err = e.message
    else:
        if res.success or res.status == 404:
            return True
        err = res.message
    msg = f"remote delete failed for server {remote_id}"
    logger.warning("%s err=%s", msg, str(err)[:220])
    warnings.append(msg)
    return False


async def panel_ready(client: PanelClient, warnings: list[str] | None = None) -> bool:
    """Like ``client.is_configured()`` but an unusable stored config counts as not configured."""
    try:
        return await client.is_configured()
    except HubError as e:
        logger.warning("panel config unusable, skipping remote step err=%s", e.message[:220])
        if warnings is not None:
            warnings.append("panel configuration unusable; remote step skipped")
        return False


async def delete_server(db: AsyncSession, client: PanelClient, server: ProvisionedServer) -> list[str]:
    """Best-effort remote delete, then always the local row. Commits; returns partial-failure warnings."""
    warnings: list[str] = []
    if server.remote_id and await panel_ready(client, warnings):
        await _delete_remote(client, server.remote_id, warnings)
    await db.delete(server)
    await db.commit()
    logger.info("server deleted id=%s user_id=%s remote_id=%s", server.id, server.user_id, server.remote_id)
    return warnings


async def delete_owner_servers(db: AsyncSession, client: PanelClient, user_id: int) -> tuple[int, list[str]]:
    """Remove every server of one owner (remote best-effort first). Does not commit."""
    q = await db.execute(select(ProvisionedServer).where(ProvisionedServer.user_id == user_id))
    servers = list(q.scalars().all())
    warnings: list[str] = []
    configured = any(s.remote_id for s in servers) and await panel_ready(client, warnings)
    for s in servers:
        if s.remote_id and configured:
            await _delete_remote(client, s.remote_id, warnings)
        await db.delete(s)
    return len(servers), warnings


async def resize_server(
    db: AsyncSession,
    client: PanelClient,
    server: ProvisionedServer,
    ram_mb: int | None = None,
    cpu_percent: int | None = None,
    storage_mb: int | None = None,
) -> ProvisionOutcome:
    """Change a server's limits. Only the increase is checked against the owner's available pool."""
    new_ram = server.ram_mb if ram_mb is None else int(ram_mb)
    new_cpu = server.cpu_percent if cpu_percent is None else int(cpu_percent)
    new_storage = server.storage_mb if storage_mb is None else int(storage_mb)
    validate_limits(new_ram, new_cpu, new_storage)

    await lock_user(db, server.user_id)
    usage = await get_usage(db, server.user_id)
    increase = ResourceAmounts(
        ram=max(0, new_ram - server.ram_mb),
        cpu=max(0, new_cpu - server.cpu_percent),
        storage=max(0, new_storage - server.storage_mb),
    )
    shortfall = check_availability(usage, increase)
    if shortfall:
        raise shortfall.to_error()

    warnings: list[str] = []
    if server.remote_id:
        if not await client.is_configured():
            raise ConfigurationError("Panel is not configured; cannot resize a panel-backed server")
        outcome = await update_server_build(
            client, server.remote_id, {"memory": new_ram, "cpu": new_cpu, "disk": new_storage}
        )
        if outcome.retried_with_allocation:
            warnings.append("build update required the primary allocation and was retried")

    server.ram_mb = new_ram
    server.cpu_percent = new_cpu
    server.storage_mb = new_storage
    await db.commit()
    logger.info("server resized id=%s ram=%s cpu=%s disk=%s", server.id, new_ram, new_cpu, new_storage)
    return ProvisionOutcome(server=server, warnings=warnings)


def _require_remote(server: ProvisionedServer) -> str:
    if not server.remote_id:
        raise ValidationError("Server is not linked to the panel")
    return server.remote_id


async def send_power_signal(client: PanelClient, server: ProvisionedServer, signal: str) -> None:
    remote_id = _require_remote(server)
    try:
        res = await client.send_power_signal(remote_id, signal)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    res.unwrap(f"power {signal}")
    logger.info("power signal sent id=%s remote_id=%s signal=%s", server.id, remote_id, signal)


async def set_suspended(client: PanelClient, server: ProvisionedServer, suspended: bool) -> None:
    remote_id = _require_remote(server)
    if suspended:
        (await client.suspend_server(remote_id)).unwrap("suspend server")
    else:
        (await client.unsuspend_server(remote_id)).unwrap("unsuspend server")
    logger.info("server %s id=%s remote_id=%s", "suspended" if suspended else "unsuspended", server.id, remote_id)


async def refresh_public_addresses(db: AsyncSession, client: PanelClient, servers: list[ProvisionedServer]) -> int:
    """Fill missing public addresses from the panel. Lookup failures are skipped. Commits when anything changed."""
    updated = 0
    for server in servers:
        if not server.remote_id or server.public_address:
            continue
        address = await _fetch_address(client, server.remote_id, [])
        if address:
            server.public_address = address
            updated += 1
    if updated:
        await db.commit()
    return updated
