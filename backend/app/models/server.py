from __future__ import annotations

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin


class ProvisionedServer(Base, TimestampMixin):
    __tablename__ = "servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)

    # Panel server id; NULL for local-only records created without a connected panel.
    remote_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    ram_mb: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cpu_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    storage_mb: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    public_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
