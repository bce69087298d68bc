from __future__ import annotations

from sqlalchemy import JSON, Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.db import Base
from app.models.common import TimestampMixin


class PanelEgg(Base, TimestampMixin):
    __tablename__ = "panel_eggs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    egg_id: Mapped[int] = mapped_column(Integer, unique=True, index=True, nullable=False)
    nest_id: Mapped[int] = mapped_column(Integer, nullable=False)

    name: Mapped[str] = mapped_column(String(191), nullable=False)
    docker_image: Mapped[str | None] = mapped_column(String(255), nullable=True)
    startup_command: Mapped[str | None] = mapped_column(Text, nullable=True)

    # [{"name": "SERVER_JARFILE", "default": "server.jar"}, ...]
    environment_variables: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
