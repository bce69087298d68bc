from __future__ import annotations
import asyncio
import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.celery_app import celery_app
from app.core.config import settings
from app.models.server import ProvisionedServer
from app.services.locks import redis_lock
from app.services.panel.client import PanelClient
from app.services.panel.factory import get_panel_client
from app.services.provisioning import panel_ready, refresh_public_addresses
from app.services.task_metrics import TaskRunStats

logger = logging.getLogger(__name__)


@celery_app.task(name="app.tasks.addresses.backfill_public_addresses")
def backfill_public_addresses():
    lock_ttl = max(90, int(settings.ADDRESS_SYNC_SECONDS or 300) * 2)
    with redis_lock("aether:lock:backfill_addresses", ttl_seconds=lock_ttl) as ok:
        if not ok:
            logger.info("backfill_public_addresses skipped: lock not acquired")
            return
        asyncio.run(backfill_addresses_async())


async def backfill_addresses_async(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    client: PanelClient | None = None,
    batch_size: int | None = None,
) -> TaskRunStats:
    """Walk remote-backed servers without a public address and fill them from the panel."""
    if session_factory is None:
        from app.core.db import AsyncSessionLocal

        session_factory = AsyncSessionLocal
    client = client or get_panel_client()
    stats = TaskRunStats()
    size = max(10, min(5000, int(batch_size or settings.ADDRESS_SYNC_BATCH_SIZE or 200)))

    if not await panel_ready(client):
        stats.skipped = True
        logger.info("backfill_public_addresses skipped: panel not configured")
        return stats

    last_id = 0
    async with session_factory() as db:
        while True:
            q = await db.execute(
                select(ProvisionedServer)
                .where(
                    ProvisionedServer.remote_id.is_not(None),
                    ProvisionedServer.public_address.is_(None),
                    ProvisionedServer.id > last_id,
                )
                .order_by(ProvisionedServer.id.asc())
                .limit(size)
            )
            servers = list(q.scalars().all())
            if not servers:
                break

            stats.scanned_servers += len(servers)
            updated = await refresh_public_addresses(db, client, servers)
            stats.updated_servers += updated
            stats.still_missing += len(servers) - updated
            last_id = servers[-1].id
            if len(servers) < size:
                break

    logger.info("backfill_public_addresses stats=%s", stats)
    return stats
