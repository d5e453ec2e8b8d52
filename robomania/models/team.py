"""Team and team member models."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from robomania.models.base import Base, new_id, utcnow

TEAM_STATUSES = ("PENDING", "APPROVED", "CONFIRMED", "REJECTED", "WAITLISTED")
TEAM_PAYMENT_STATUSES = ("PENDING", "COMPLETED", "FAILED")


class Team(Base):
    """Registering unit: one per signed-in user email."""

    __tablename__ = "teams"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True, index=True)
    team_name: Mapped[str] = mapped_column(String(128), nullable=False)
    institution: Mapped[str] = mapped_column(String(255), nullable=False)
    leader_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    leader_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    leader_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    # Single-robot fields from the one-competition registration form
    robot_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    robot_weight: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    robot_dimensions: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    weapon_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="PENDING")  # see TEAM_STATUSES
    payment_status: Mapped[str] = mapped_column(String(16), default="PENDING")  # see TEAM_PAYMENT_STATUSES
    payment_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)  # last merchant order reference
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_multi_competition: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    members = relationship(
        "TeamMember", back_populates="team", cascade="all, delete-orphan"
    )
    bots = relationship(
        "Bot", back_populates="team", cascade="all, delete-orphan"
    )
    registrations = relationship(
        "CompetitionRegistration", back_populates="team", cascade="all, delete-orphan"
    )


class TeamMember(Base):
    """Team member, optionally scoped to one competition entry."""

    __tablename__ = "team_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(ForeignKey("teams.id"), nullable=False, index=True)
    competition_registration_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("competition_registrations.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    role: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    team: Mapped["Team"] = relationship("Team", back_populates="members")
    registration: Mapped[Optional["CompetitionRegistration"]] = relationship(
        "CompetitionRegistration", back_populates="members"
    )
