"""Pydantic request schemas shared by the API and the registration services."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MemberIn(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None


class TeamData(BaseModel):
    """Team creation payload from the registration wizard."""

    model_config = ConfigDict(populate_by_name=True)

    team_name: Optional[str] = Field(None, alias="teamName")
    institution: Optional[str] = None
    leader_name: Optional[str] = Field(None, alias="leaderName")
    leader_email: Optional[str] = Field(None, alias="leaderEmail")
    leader_phone: Optional[str] = Field(None, alias="leaderPhone")
    contact_email: Optional[str] = Field(None, alias="contactEmail")
    contact_phone: Optional[str] = Field(None, alias="contactPhone")
    robot_name: Optional[str] = Field(None, alias="robotName")
    robot_weight: Optional[float] = Field(None, alias="robotWeight")
    robot_dimensions: Optional[str] = Field(None, alias="robotDimensions")
    weapon_type: Optional[str] = Field(None, alias="weaponType")
    members: Optional[list[MemberIn]] = None


class BotSpec(BaseModel):
    """Robot for one competition entry: an existing bot id, or fields for a new bot."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = Field(None, alias="robotName")
    weight: Optional[float] = Field(None, alias="robotWeight")
    dimensions: Optional[str] = Field(None, alias="robotDimensions")
    weapon_type: Optional[str] = Field(None, alias="weaponType")

    def has_robot_fields(self) -> bool:
        return bool(self.name or self.weight or self.dimensions)


class CompetitionEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(alias="competition")
    amount: Optional[int] = None  # rupees; defaults to the list price
    bot: Optional[BotSpec] = Field(None, alias="botSpec")
    members: list[MemberIn] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def strip_type(cls, v):
        return v.strip().upper() if isinstance(v, str) else v
