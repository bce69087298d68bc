from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_users_coins_non_negative"),
        CheckConstraint("server_slots >= 1", name="ck_users_server_slots_min"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    username: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(16), default="user", nullable=False)  # user|admin

    coins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    server_slots: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Purchased pool. RAM/storage in MB, CPU in percent. "Used" is derived from servers.
    purchased_ram_mb: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purchased_cpu_percent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purchased_storage_mb: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Mirrored account id on the panel; required before provisioning.
    panel_user_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
