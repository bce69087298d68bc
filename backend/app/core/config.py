from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import os

DEFAULT_ENCRYPTION_SECRET = "default-secret-key-change-this"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=os.getenv("ENV_FILE", ".env"), extra="ignore")

    APP_NAME: str = "aether-hub"
    ENV: str = "dev"

    SECRET_KEY: str = "please-change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 1 day

    # Used to derive the AES key protecting the panel API key at rest.
    ENCRYPTION_SECRET: str = DEFAULT_ENCRYPTION_SECRET

    DATABASE_URL: str

    REDIS_URL: str = "redis://localhost:6379/0"

    # Environment fallback when no panel connection is stored in the database
    PTERODACTYL_URL: str = ""
    PTERODACTYL_API_KEY: str = ""

    PANEL_CONFIG_CACHE_SECONDS: int = 300
    PANEL_TLS_VERIFY: bool = True
    HTTP_TIMEOUT_SECONDS: int = 15
    PANEL_TEST_TIMEOUT_SECONDS: int = 10

    ADDRESS_SYNC_SECONDS: int = 300
    ADDRESS_SYNC_BATCH_SIZE: int = 200

    CORS_ORIGINS: str = ""  # comma separated

    @property
    def cors_origins_list(self) -> List[str]:
        if not self.CORS_ORIGINS:
            return []
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
