from __future__ import annotations
import httpx
from app.core.config import settings

def build_async_client(base_url: str = "", api_key: str = "", timeout: float | None = None) -> httpx.AsyncClient:
    headers = {
        "User-Agent": f"{settings.APP_NAME}/1.0",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS),
        verify=settings.PANEL_TLS_VERIFY,
        headers=headers,
    )
