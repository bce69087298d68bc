from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ledger import LedgerEntryType, LedgerTransaction
from app.models.server import ProvisionedServer
from app.models.user import User
from app.services.errors import InsufficientResourceError, NotFoundError, ValidationError
from app.services.pricing import RESOURCE_TYPES, get_store_prices, resource_cost, to_pool_units

POOL_COLUMNS = {
    "ram": User.purchased_ram_mb,
    "cpu": User.purchased_cpu_percent,
    "storage": User.purchased_storage_mb,
}

PURCHASE_ENTRY_TYPES = (LedgerEntryType.resource_purchase, LedgerEntryType.slot_purchase)


@dataclass(frozen=True)
class ResourceAmounts:
    ram: int = 0
    cpu: int = 0
    storage: int = 0

    def get(self, resource: str) -> int:
        return int(getattr(self, resource))


@dataclass(frozen=True)
class ResourceUsage:
    purchased: ResourceAmounts
    used: ResourceAmounts
    server_count: int
    server_slots: int

    @property
    def available(self) -> ResourceAmounts:
        return ResourceAmounts(
            ram=self.purchased.ram - self.used.ram,
            cpu=self.purchased.cpu - self.used.cpu,
            storage=self.purchased.storage - self.used.storage,
        )

    @property
    def free_slots(self) -> int:
        return max(0, self.server_slots - self.server_count)


@dataclass(frozen=True)
class Shortfall:
    resource: str
    have: int
    need: int

    def to_error(self) -> InsufficientResourceError:
        return InsufficientResourceError(self.resource, self.have, self.need)


@dataclass(frozen=True)
class PurchaseResult:
    coins_spent: int
    new_balance: int
    resource_type: str | None = None
    amount: int = 0  # MB or percent actually credited
    server_slots: int | None = None


def check_availability(usage: ResourceUsage, request: ResourceAmounts) -> Shortfall | None:
    """First resource (ram, cpu, storage order) the request cannot be covered by, else None."""
    available = usage.available
    for resource in RESOURCE_TYPES:
        need = request.get(resource)
        have = available.get(resource)
        if need > have:
            return Shortfall(resource=resource, have=max(0, have), need=need)
    return None


async def used_resources(db: AsyncSession, user_id: int) -> tuple[ResourceAmounts, int]:
    q = await db.execute(
        select(
            func.coalesce(func.sum(ProvisionedServer.ram_mb), 0),
            func.coalesce(func.sum(ProvisionedServer.cpu_percent), 0),
            func.coalesce(func.sum(ProvisionedServer.storage_mb), 0),
            func.count(ProvisionedServer.id),
        ).where(ProvisionedServer.user_id == user_id)
    )
    ram, cpu, storage, count = q.one()
    return ResourceAmounts(ram=int(ram), cpu=int(cpu), storage=int(storage)), int(count)


async def _user_numbers(db: AsyncSession, user_id: int):
    q = await db.execute(
        select(
            User.coins,
            User.server_slots,
            User.purchased_ram_mb,
            User.purchased_cpu_percent,
            User.purchased_storage_mb,
        ).where(User.id == user_id)
    )
    row = q.one_or_none()
    if row is None:
        raise NotFoundError("User not found")
    return row


async def get_usage(db: AsyncSession, user_id: int) -> ResourceUsage:
    row = await _user_numbers(db, user_id)
    used, count = await used_resources(db, user_id)
    return ResourceUsage(
        purchased=ResourceAmounts(ram=row.purchased_ram_mb, cpu=row.purchased_cpu_percent, storage=row.purchased_storage_mb),
        used=used,
        server_count=count,
        server_slots=row.server_slots,
    )


async def purchase_resource(db: AsyncSession, user_id: int, resource_type: str, amount: int) -> PurchaseResult:
    """Buy ``amount`` of a resource (GB for ram/storage, percent for cpu). Commits."""
    if resource_type not in RESOURCE_TYPES:
        raise ValidationError("Invalid resource type")
    if isinstance(amount, bool) or int(amount) <= 0:
        raise ValidationError("Amount must be greater than 0")
    amount = int(amount)

    prices = await get_store_prices(db)
    cost = resource_cost(prices, resource_type, amount)
    credit = to_pool_units(resource_type, amount)
    pool = POOL_COLUMNS[resource_type]

    # balance check and debit in one statement
    res = await db.execute(
        update(User)
        .where(User.id == user_id, User.coins >= cost)
        .values({User.coins: User.coins - cost, pool: pool + credit})
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        row = await _user_numbers(db, user_id)
        raise InsufficientResourceError(
            "coins",
            have=row.coins,
            need=cost,
            message=f"Insufficient coins. You need {cost} coins but only have {row.coins}",
        )

    row = await _user_numbers(db, user_id)
    db.add(
        LedgerTransaction(
            user_id=user_id,
            entry_type=LedgerEntryType.resource_purchase,
            resource_type=resource_type,
            resource_amount=credit,
            amount=-cost,
            reason=f"purchase {resource_type} x{amount}",
            balance_after=row.coins,
        )
    )
    await db.commit()
    return PurchaseResult(coins_spent=cost, new_balance=row.coins, resource_type=resource_type, amount=credit)


async def purchase_slot(db: AsyncSession, user_id: int) -> PurchaseResult:
    prices = await get_store_prices(db)
    cost = prices.server_slot_price

    res = await db.execute(
        update(User)
        .where(User.id == user_id, User.coins >= cost)
        .values({User.coins: User.coins - cost, User.server_slots: User.server_slots + 1})
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        row = await _user_numbers(db, user_id)
        raise InsufficientResourceError(
            "coins",
            have=row.coins,
            need=cost,
            message=f"Insufficient coins. You need {cost} coins to purchase a server slot. You currently have {row.coins} coins.",
        )

    row = await _user_numbers(db, user_id)
    db.add(
        LedgerTransaction(
            user_id=user_id,
            entry_type=LedgerEntryType.slot_purchase,
            amount=-cost,
            reason="purchase server slot",
            balance_after=row.coins,
        )
    )
    await db.commit()
    return PurchaseResult(coins_spent=cost, new_balance=row.coins, server_slots=row.server_slots)


async def adjust_coins(db: AsyncSession, user_id: int, delta: int, reason: str = "") -> int:
    """Balance is floored at zero; the ledger records the real delta."""
    delta = int(delta)
    if delta == 0:
        raise ValidationError("Amount cannot be zero")

    before = (await _user_numbers(db, user_id)).coins
    new_value = User.coins + delta
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values({User.coins: case((new_value < 0, 0), else_=new_value)})
        .execution_options(synchronize_session=False)
    )
    after = (await _user_numbers(db, user_id)).coins

    db.add(
        LedgerTransaction(
            user_id=user_id,
            entry_type=LedgerEntryType.coin_adjustment,
            amount=after - before,
            reason=(reason or ("admin credit" if delta > 0 else "admin debit"))[:255],
            balance_after=after,
        )
    )
    await db.commit()
    return after


async def credit_coins(db: AsyncSession, user_id: int, coins: int, entry_type: LedgerEntryType, reason: str) -> int:
    """Add coins and record the entry. Caller commits."""
    if coins < 0:
        raise ValidationError("Credit cannot be negative")
    res = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values({User.coins: User.coins + coins})
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise NotFoundError("User not found")
    after = (await _user_numbers(db, user_id)).coins
    db.add(
        LedgerTransaction(user_id=user_id, entry_type=entry_type, amount=coins, reason=reason[:255], balance_after=after)
    )
    return after


async def grant_resources(db: AsyncSession, user_id: int, grant: ResourceAmounts, reason: str = "") -> ResourceAmounts:
    values = {}
    for resource in RESOURCE_TYPES:
        n = grant.get(resource)
        if n < 0:
            raise ValidationError(f"{resource} grant cannot be negative")
        if n:
            values[POOL_COLUMNS[resource]] = POOL_COLUMNS[resource] + n
    if not values:
        raise ValidationError("Nothing to grant")

    res = await db.execute(
        update(User).where(User.id == user_id).values(values).execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise NotFoundError("User not found")

    row = await _user_numbers(db, user_id)
    for resource in RESOURCE_TYPES:
        n = grant.get(resource)
        if not n:
            continue
        db.add(
            LedgerTransaction(
                user_id=user_id,
                entry_type=LedgerEntryType.resource_grant,
                resource_type=resource,
                resource_amount=n,
                amount=0,
                reason=(reason or f"admin grant {resource}")[:255],
                balance_after=row.coins,
            )
        )
    await db.commit()
    return ResourceAmounts(ram=row.purchased_ram_mb, cpu=row.purchased_cpu_percent, storage=row.purchased_storage_mb)


async def purchase_history(db: AsyncSession, user_id: int, limit: int = 50) -> list[LedgerTransaction]:
    q = await db.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.user_id == user_id, LedgerTransaction.entry_type.in_(PURCHASE_ENTRY_TYPES))
        .order_by(LedgerTransaction.occurred_at.desc(), LedgerTransaction.id.desc())
        .limit(limit)
    )
    return list(q.scalars().all())
