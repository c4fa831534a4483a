from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from . import Base


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(128), default="")
    skills: Mapped[list] = mapped_column(JSON, default=list)
    experience_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    # Currently free to take work; scored by the matcher rather than filtered.
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    # Still employed / enabled; inactive workers are never candidates.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
