"""Bot model: a robot a team can enter in competitions."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from robomania.models.base import Base, new_id, utcnow


class Bot(Base):
    """Robot owned by a team. Reusable across registrations when referenced by id."""

    __tablename__ = "bots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False)  # kg
    dimensions: Mapped[str] = mapped_column(String(64), nullable=False)  # LxWxH
    weapon_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_weapon_bot: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    team: Mapped["Team"] = relationship("Team", back_populates="bots")
    registrations = relationship("CompetitionRegistration", back_populates="bot")
