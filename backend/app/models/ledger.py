from sqlalchemy import Integer, ForeignKey, String, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from app.core.db import Base
from app.models.common import TimestampMixin, utcnow
import enum

class LedgerEntryType(str, enum.Enum):
    resource_purchase = "resource_purchase"
    slot_purchase = "slot_purchase"
    coin_adjustment = "coin_adjustment"
    resource_grant = "resource_grant"
    reward = "reward"

class LedgerTransaction(Base, TimestampMixin):
    """Append-only record of every coin movement and pool credit."""

    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    entry_type: Mapped[LedgerEntryType] = mapped_column(Enum(LedgerEntryType), nullable=False)
    resource_type: Mapped[str | None] = mapped_column(String(16), nullable=True)  # ram|cpu|storage
    resource_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)  # MB or percent

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # coin delta, negative when spent
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
