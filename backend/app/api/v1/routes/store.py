from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.api.deps import require_user
from app.models.user import User
from app.schemas.store import (
    StorePricesSchema,
    PurchaseResourceRequest,
    PurchaseOut,
    ResourceSummaryOut,
    ResourceTriple,
    LedgerEntryOut,
    LedgerEntryList,
)
from app.services.ledger import ResourceAmounts, get_usage, purchase_history, purchase_resource, purchase_slot
from app.services.pricing import get_store_prices

router = APIRouter()


def _triple(r: ResourceAmounts) -> ResourceTriple:
    return ResourceTriple(ram=r.ram, cpu=r.cpu, storage=r.storage)


@router.get("/prices", response_model=StorePricesSchema)
async def prices(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    return StorePricesSchema(**asdict(await get_store_prices(db)))


@router.post("/purchase-resource", response_model=PurchaseOut)
async def buy_resource(payload: PurchaseResourceRequest, db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    res = await purchase_resource(db, user.id, payload.resource_type, payload.amount)
    return PurchaseOut(**asdict(res))


@router.post("/purchase-slot", response_model=PurchaseOut)
async def buy_slot(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    res = await purchase_slot(db, user.id)
    return PurchaseOut(**asdict(res))


@router.get("/history", response_model=LedgerEntryList)
async def history(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    rows = await purchase_history(db, user.id, limit=50)
    return LedgerEntryList(
        items=[
            LedgerEntryOut(
                id=t.id,
                entry_type=t.entry_type.value,
                resource_type=t.resource_type,
                resource_amount=t.resource_amount,
                amount=t.amount,
                reason=t.reason,
                balance_after=t.balance_after,
                occurred_at=t.occurred_at,
            )
            for t in rows
        ]
    )


@router.get("/resources", response_model=ResourceSummaryOut)
async def resources(db: AsyncSession = Depends(get_db), user: User = Depends(require_user)):
    usage = await get_usage(db, user.id)
    return ResourceSummaryOut(
        purchased=_triple(usage.purchased),
        used=_triple(usage.used),
        available=_triple(usage.available),
        server_slots=usage.server_slots,
        slots_used=usage.server_count,
        slots_available=usage.free_slots,
    )
