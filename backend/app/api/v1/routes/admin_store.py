from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import require_admin
from app.core.db import get_db
from app.schemas.store import StorePricesSchema
from app.services.pricing import get_store_prices, set_store_prices

router = APIRouter()


@router.get("/prices", response_model=StorePricesSchema)
async def get_prices(db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    return StorePricesSchema(**asdict(await get_store_prices(db)))


@router.put("/prices", response_model=StorePricesSchema)
async def put_prices(payload: StorePricesSchema, db: AsyncSession = Depends(get_db), admin=Depends(require_admin)):
    saved = await set_store_prices(db, payload.model_dump())
    await db.commit()
    return StorePricesSchema(**asdict(saved))
