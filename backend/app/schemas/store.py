from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class StorePricesSchema(BaseModel):
    ram_coins_per_set: int = Field(ge=1)
    ram_gb_per_set: int = Field(ge=1)
    cpu_coins_per_set: int = Field(ge=1)
    cpu_percent_per_set: int = Field(ge=1, le=100)
    storage_coins_per_set: int = Field(ge=1)
    storage_gb_per_set: int = Field(ge=1)
    server_slot_price: int = Field(ge=1)


class PurchaseResourceRequest(BaseModel):
    resource_type: str = Field(pattern="^(ram|cpu|storage)$")
    amount: int = Field(gt=0)  # GB for ram/storage, percent for cpu


class PurchaseOut(BaseModel):
    coins_spent: int
    new_balance: int
    resource_type: Optional[str] = None
    amount: int = 0
    server_slots: Optional[int] = None


class ResourceTriple(BaseModel):
    ram: int
    cpu: int
    storage: int


class ResourceSummaryOut(BaseModel):
    purchased: ResourceTriple
    used: ResourceTriple
    available: ResourceTriple
    server_slots: int
    slots_used: int
    slots_available: int


class LedgerEntryOut(BaseModel):
    id: int
    entry_type: str
    resource_type: Optional[str]
    resource_amount: Optional[int]
    amount: int
    reason: str
    balance_after: int
    occurred_at: datetime


class LedgerEntryList(BaseModel):
    items: List[LedgerEntryOut]
