from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin, utcnow


class RewardLink(Base, TimestampMixin):
    """Offer link a user can complete to earn coins."""

    __tablename__ = "reward_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    coins: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class RewardCompletion(Base):
    __tablename__ = "reward_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    # Kept when the link is deleted so history stays intact.
    link_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("reward_links.id", ondelete="SET NULL"), index=True, nullable=True
    )
    link_title: Mapped[str] = mapped_column(String(100), nullable=False)
    coins_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
