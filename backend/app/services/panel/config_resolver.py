from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.crypto import DecryptionError, LegacyPlaintext, SecretCipher, get_cipher
from app.models.panel_config import PanelConfig
from app.services.errors import ConfigurationError
from app.services.panel.base import PanelCredentials

logger = logging.getLogger(__name__)


@dataclass
class ConfigCache:
    value: PanelCredentials
    fetched_at: float


class PanelConfigResolver:
    """Resolve the panel URL and API key.

    The stored ``panel_config`` row wins over the environment. Whatever is
    resolved (including "nothing configured") is cached for ``ttl_seconds``;
    every writer of ``panel_config`` must call :meth:`clear`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cipher: SecretCipher | None = None,
        ttl_seconds: float | None = None,
        env_url: str | None = None,
        env_key: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._cipher = cipher
        self.ttl_seconds = float(settings.PANEL_CONFIG_CACHE_SECONDS if ttl_seconds is None else ttl_seconds)
        self._env_url = settings.PTERODACTYL_URL if env_url is None else env_url
        self._env_key = settings.PTERODACTYL_API_KEY if env_key is None else env_key
        self._clock = clock
        self._cache: ConfigCache | None = None

    @property
    def cipher(self) -> SecretCipher:
        if self._cipher is None:
            self._cipher = get_cipher()
        return self._cipher

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            from app.core.db import AsyncSessionLocal

            self._session_factory = AsyncSessionLocal
        return self._session_factory

    def clear(self) -> None:
        self._cache = None

    async def _load_record(self) -> PanelConfig | None:
        async with self._sessions()() as db:
            q = await db.execute(select(PanelConfig).order_by(PanelConfig.id.desc()).limit(1))
            return q.scalar_one_or_none()

    def _decrypt_key(self, stored: str) -> str:
        try:
            secret = self.cipher.decrypt(stored)
        except DecryptionError as e:
            raise ConfigurationError(
                "Stored panel API key cannot be decrypted; check ENCRYPTION_SECRET or reconnect the panel"
            ) from e
        if isinstance(secret, LegacyPlaintext):
            logger.warning("panel api key stored as plaintext; run `python -m app.cli migrate-panel-key`")
        return secret.plaintext

    async def get_config(self) -> PanelCredentials:
        now = self._clock()
        if self._cache is not None and now - self._cache.fetched_at < self.ttl_seconds:
            return self._cache.value

        record: PanelConfig | None = None
        try:
            record = await self._load_record()
        except SQLAlchemyError as e:
            logger.warning("panel config lookup failed, using environment err=%s", str(e)[:220])

        if record is not None and record.panel_url and record.api_key:
            value = PanelCredentials(url=record.panel_url.rstrip("/"), api_key=self._decrypt_key(record.api_key))
        else:
            value = PanelCredentials(url=(self._env_url or "").rstrip("/"), api_key=self._env_key or "")

        self._cache = ConfigCache(value=value, fetched_at=now)
        return value

    async def is_configured(self) -> bool:
        return (await self.get_config()).is_complete
