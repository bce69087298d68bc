from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin


class PanelConfig(Base, TimestampMixin):
    """Single active panel connection. Connecting replaces the row."""

    __tablename__ = "panel_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    panel_url: Mapped[str] = mapped_column(String(255), nullable=False)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)  # ivHex:cipherHex
    last_connected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
