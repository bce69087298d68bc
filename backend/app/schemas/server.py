from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class CreateServerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    egg_id: Optional[int] = None
    ram_mb: int = Field(gt=0)
    cpu_percent: int = Field(gt=0)
    storage_mb: int = Field(gt=0)


class ResizeServerRequest(BaseModel):
    ram_mb: Optional[int] = Field(default=None, gt=0)
    cpu_percent: Optional[int] = Field(default=None, gt=0)
    storage_mb: Optional[int] = Field(default=None, gt=0)


class PowerRequest(BaseModel):
    signal: str = Field(pattern="^(start|stop|restart|kill)$")


class ServerOut(BaseModel):
    id: int
    user_id: int
    remote_id: Optional[str]
    name: str
    ram_mb: int
    cpu_percent: int
    storage_mb: int
    public_address: Optional[str]
    created_at: datetime


class ServerList(BaseModel):
    items: List[ServerOut]
    total: int


class ServerActionResponse(BaseModel):
    ok: bool = True
    server: Optional[ServerOut] = None
    warnings: List[str] = []


class ServerDetailOut(BaseModel):
    server: ServerOut
    panel: Optional[dict[str, Any]] = None
    panel_error: Optional[str] = None
