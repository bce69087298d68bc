from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.services.errors import ValidationError
from app.services.settings_store import STORE_PRICES_KEY, get_setting, set_setting

RESOURCE_TYPES = ("ram", "cpu", "storage")
MB_PER_GB = 1024


@dataclass(frozen=True)
class StorePrices:
    ram_coins_per_set: int = 1
    ram_gb_per_set: int = 1
    cpu_coins_per_set: int = 1
    cpu_percent_per_set: int = 1
    storage_coins_per_set: int = 1
    storage_gb_per_set: int = 1
    server_slot_price: int = 100

    def per_set(self, resource_type: str) -> tuple[int, int]:
        """(coins_per_set, units_per_set) in purchase units (GB for ram/storage, percent for cpu)."""
        if resource_type == "ram":
            return self.ram_coins_per_set, self.ram_gb_per_set
        if resource_type == "cpu":
            return self.cpu_coins_per_set, self.cpu_percent_per_set
        if resource_type == "storage":
            return self.storage_coins_per_set, self.storage_gb_per_set
        raise ValidationError("Invalid resource type")


PRICE_FIELDS = tuple(StorePrices.__dataclass_fields__)


def normalize_store_prices(raw: dict | None) -> dict:
    """Fill gaps with defaults; anything non-positive falls back too."""
    out = asdict(StorePrices())
    if not isinstance(raw, dict):
        return out
    for k in PRICE_FIELDS:
        v = raw.get(k)
        if v is None or isinstance(v, bool):
            continue
        try:
            n = int(v)
        except (TypeError, ValueError):
            continue
        if n >= 1:
            out[k] = n
    return out


def validate_store_prices(raw: dict) -> dict:
    errors: list[str] = []
    out: dict[str, int] = {}
    for k in PRICE_FIELDS:
        v = raw.get(k)
        if v is None or isinstance(v, bool):
            errors.append(f"{k} is required")
            continue
        try:
            n = int(v)
        except (TypeError, ValueError):
            errors.append(f"{k} must be an integer")
            continue
        if n < 1:
            errors.append(f"{k} must be at least 1")
        out[k] = n
    if out.get("cpu_percent_per_set", 0) > 100:
        errors.append("cpu_percent_per_set cannot exceed 100")
    if errors:
        raise ValidationError("; ".join(errors))
    return out


async def get_store_prices(db: AsyncSession) -> StorePrices:
    return StorePrices(**await get_setting(db, STORE_PRICES_KEY, normalize_store_prices))


async def set_store_prices(db: AsyncSession, raw: dict) -> StorePrices:
    validated = validate_store_prices(raw)
    return StorePrices(**await set_setting(db, STORE_PRICES_KEY, validated, normalize_store_prices))


def resource_cost(prices: StorePrices, resource_type: str, amount: int) -> int:
    """ceil(amount / units_per_set * coins_per_set), amount in purchase units."""
    coins_per_set, units_per_set = prices.per_set(resource_type)
    # integer ceil; float division would round 0.1-style ratios up by one coin
    return -(-int(amount) * coins_per_set // units_per_set)


def to_pool_units(resource_type: str, amount: int) -> int:
    """Purchase units -> stored units (GB -> MB for ram/storage)."""
    if resource_type in ("ram", "storage"):
        return int(amount) * MB_PER_GB
    return int(amount)
