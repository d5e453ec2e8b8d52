"""Competition registration model - one team entry into one competition."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from robomania.models.base import Base, new_id, utcnow

PAYMENT_PENDING = "PENDING"
PAYMENT_COMPLETED = "COMPLETED"
REGISTRATION_PENDING = "PENDING"
REGISTRATION_CONFIRMED = "CONFIRMED"


class CompetitionRegistration(Base):
    """Entry of a team into a competition, carrying its own payment lifecycle."""

    __tablename__ = "competition_registrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id"), nullable=False, index=True)
    competition_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)  # ROBOWARS, ROBORACE, ROBOSOCCER
    bot_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("bots.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # rupees
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # merchant order reference
    gateway_order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # provider order id
    payment_status: Mapped[str] = mapped_column(String(16), default=PAYMENT_PENDING)
    registration_status: Mapped[str] = mapped_column(String(16), default=REGISTRATION_PENDING)
    payment_gateway: Mapped[str] = mapped_column(String(16), nullable=False)  # RAZORPAY, PHONEPE
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    team: Mapped["Team"] = relationship("Team", back_populates="registrations")
    bot: Mapped[Optional["Bot"]] = relationship("Bot", back_populates="registrations")
    members = relationship("TeamMember", back_populates="registration")
