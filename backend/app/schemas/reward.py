from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RewardLinkStatusOut(BaseModel):
    id: int
    title: str
    url: str
    coins_earned: int
    completed: bool
    on_cooldown: bool
    cooldown_remaining: int
    cooldown_seconds: int


class RewardLinkStatusList(BaseModel):
    items: List[RewardLinkStatusOut]


class CompleteLinkRequest(BaseModel):
    link_id: int = Field(gt=0)


class CompleteLinkOut(BaseModel):
    ok: bool = True
    link_id: int
    coins_earned: int
    new_balance: int


class RewardCompletionOut(BaseModel):
    link_id: Optional[int]
    link_title: str
    coins_earned: int
    completed_at: datetime


class RewardCompletionList(BaseModel):
    items: List[RewardCompletionOut]


class RewardSettingsSchema(BaseModel):
    publisher_link: str = Field(default="", max_length=2048)
    publisher_id: str = Field(default="", max_length=64)
    default_coins: int = Field(default=10, ge=0, le=10000)
    cooldown_seconds: int = Field(default=30, ge=0)


class RewardLinkRequest(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    url: str = Field(min_length=1, max_length=2048)
    coins_earned: Optional[int] = None
    is_active: bool = True
    priority: int = 0


class RewardLinkOut(BaseModel):
    id: int
    title: str
    url: str
    coins_earned: int
    is_active: bool
    priority: int
    created_at: datetime
