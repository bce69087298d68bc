from __future__ import annotations
from celery import Celery
from celery.signals import worker_ready
import logging
from app.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "aether_hub",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.addresses"],
)

celery_app.conf.timezone = "UTC"

address_every = max(30, min(3600, int(settings.ADDRESS_SYNC_SECONDS or 300)))

celery_app.conf.beat_schedule = {
    "backfill_public_addresses_every_interval": {
        "task": "app.tasks.addresses.backfill_public_addresses",
        "schedule": float(address_every),
    },
}


@worker_ready.connect
def _kickoff_backfill(sender=None, **kwargs):
    app = getattr(sender, "app", celery_app)
    try:
        app.send_task("app.tasks.addresses.backfill_public_addresses")
    except Exception as e:
        logger.warning("celery startup task dispatch failed err=%s", str(e)[:220])
