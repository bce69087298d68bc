from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class UserOut(BaseModel):
    id: int
    username: str
    email: str
    role: str
    coins: int
    server_slots: int
    purchased_ram_mb: int
    purchased_cpu_percent: int
    purchased_storage_mb: int
    panel_user_id: Optional[str]
    created_at: datetime


class UserList(BaseModel):
    items: List[UserOut]
    total: int


class CoinAdjustRequest(BaseModel):
    amount: int  # negative to debit
    reason: str = Field(default="", max_length=255)


class CoinAdjustOut(BaseModel):
    user_id: int
    coins: int


class GrantResourcesRequest(BaseModel):
    ram_mb: int = Field(default=0, ge=0)
    cpu_percent: int = Field(default=0, ge=0)
    storage_mb: int = Field(default=0, ge=0)
    reason: str = Field(default="", max_length=255)


class DeleteUserOut(BaseModel):
    ok: bool = True
    servers_removed: int
    warnings: List[str] = []


class StatsOut(BaseModel):
    total_users: int
    total_servers: int
    total_coins: int
