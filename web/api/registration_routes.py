"""Participant API routes: team registration and edits, registration status, bot library, contact form."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from robomania.errors import NotFound, ValidationError
from robomania.models import Bot, CompetitionRegistration, Contact, TeamMember
from robomania.models.base import async_session_factory
from robomania.schemas import TeamData
from robomania.services import pricing
from robomania.services.teams import find_team_by_email, resolve_team, update_team_details
from web.api.utils import bot_to_dict, member_to_dict, registration_to_dict, team_to_dict
from web.auth import require_email

logger = logging.getLogger("robomania.api")

router = APIRouter(prefix="/api", tags=["registration"])

LEGACY_COMPETITION = pricing.ROBORACE


class BotCreate(BaseModel):
    name: str = Field(alias="robotName")
    weight: float = Field(alias="robotWeight")
    dimensions: Optional[str] = Field(None, alias="robotDimensions")
    weapon_type: Optional[str] = Field(None, alias="weaponType")
    competition: Optional[str] = None  # validate against this competition's weight limit

    model_config = {"populate_by_name": True}


class ContactCreate(BaseModel):
    name: str
    email: str
    subject: Optional[str] = None
    message: str


@router.post("/register")
async def register_team(body: TeamData, email: str = Depends(require_email)):
    """Create the caller's team, or return the one already registered for this email."""
    async with async_session_factory() as session:
        existing = await find_team_by_email(session, email)
        team = existing or await resolve_team(session, email, team_data=body)
        await session.commit()
        if existing is None:
            logger.info("Registered team %s (%s) for %s", team.id, team.team_name, email)
        return {"success": True, "teamId": team.id, "created": existing is None}


@router.put("/team-details")
async def update_team(body: TeamData, email: str = Depends(require_email)):
    """Edit the caller's team. Registration, status and payment fields are not editable here."""
    async with async_session_factory() as session:
        team = await find_team_by_email(session, email)
        if not team:
            raise NotFound("Team not found")
        await update_team_details(session, team, body)
        await session.commit()

        result = await session.execute(
            select(TeamMember)
            .where(TeamMember.team_id == team.id, TeamMember.competition_registration_id.is_(None))
            .order_by(TeamMember.created_at)
        )
        members = [member_to_dict(m) for m in result.scalars().all()]
        return {"success": True, "team": team_to_dict(team), "members": members}


def _legacy_entry(team) -> dict:
    """Single-robot teams registered before per-competition entries, shown as one RoboRace entry."""
    bot = None
    if team.robot_name:
        bot = {
            "id": None,
            "name": team.robot_name,
            "weight": team.robot_weight,
            "dimensions": team.robot_dimensions,
            "weaponType": team.weapon_type,
            "isWeaponBot": bool(team.weapon_type),
        }
    return {
        "id": team.id,
        "teamId": team.id,
        "competitionType": LEGACY_COMPETITION,
        "botId": None,
        "bot": bot,
        "amount": pricing.price_of(LEGACY_COMPETITION),
        "paymentId": team.payment_id,
        "paymentStatus": team.payment_status or "PENDING",
        "registrationStatus": team.status or "PENDING",
        "paymentDate": team.payment_date.isoformat() if team.payment_date else None,
    }


@router.get("/check-registration")
async def check_registration(email: str = Depends(require_email)):
    """Registration state for the signed-in participant: team, members, entries and saved bots."""
    async with async_session_factory() as session:
        team = await find_team_by_email(session, email)
        if not team:
            return {"hasRegistered": False, "team": None, "members": [], "registrations": [], "savedBots": []}

        result = await session.execute(
            select(CompetitionRegistration)
            .where(CompetitionRegistration.team_id == team.id)
            .options(selectinload(CompetitionRegistration.bot))
            .order_by(CompetitionRegistration.created_at)
        )
        regs = result.scalars().all()
        if regs:
            registrations = [registration_to_dict(r, r.bot) for r in regs]
        else:
            registrations = [_legacy_entry(team)]

        result = await session.execute(
            select(TeamMember)
            .where(TeamMember.team_id == team.id, TeamMember.competition_registration_id.is_(None))
            .order_by(TeamMember.created_at)
        )
        members = [member_to_dict(m) for m in result.scalars().all()]

        result = await session.execute(
            select(Bot).where(Bot.team_id == team.id).order_by(Bot.created_at.desc())
        )
        bots = [bot_to_dict(b) for b in result.scalars().all()]

        return {
            "hasRegistered": True,
            "team": team_to_dict(team),
            "members": members,
            "registrations": registrations,
            "savedBots": bots,
        }


@router.get("/bots")
async def list_bots(email: str = Depends(require_email)):
    """Bots saved by the caller's team, newest first."""
    async with async_session_factory() as session:
        team = await find_team_by_email(session, email)
        if not team:
            return {"success": True, "count": 0, "bots": []}
        result = await session.execute(
            select(Bot).where(Bot.team_id == team.id).order_by(Bot.created_at.desc())
        )
        bots = [bot_to_dict(b) for b in result.scalars().all()]
        return {"success": True, "count": len(bots), "bots": bots}


@router.post("/bots")
async def create_bot(body: BotCreate, email: str = Depends(require_email)):
    """Save a bot to the caller's team library."""
    if body.competition:
        code = pricing.normalize_competition(body.competition)
        if not code:
            raise ValidationError(f"Unknown competition: {body.competition}")
        if pricing.requires_weapon(code) and not (body.weapon_type or "").strip():
            raise ValidationError(f"Weapon type is required for {pricing.display_name(code)}")
    else:
        # No target competition yet: the most permissive ceiling applies
        code = max(pricing.WEIGHT_LIMITS, key=pricing.WEIGHT_LIMITS.get)
    check = pricing.validate_weight(body.weight, code)
    if not check.valid:
        raise ValidationError(check.reason)
    if not body.name.strip():
        raise ValidationError("Bot name is required")

    async with async_session_factory() as session:
        team = await find_team_by_email(session, email)
        if not team:
            raise NotFound("Register a team before saving bots")
        weapon = (body.weapon_type or "").strip() or None
        bot = Bot(
            team_id=team.id,
            name=body.name.strip(),
            weight=body.weight,
            dimensions=body.dimensions or "30x30x30",
            weapon_type=weapon,
            is_weapon_bot=bool(weapon),
        )
        session.add(bot)
        await session.commit()
        logger.info("Saved bot %s for team %s", bot.id, team.id)
        return {"success": True, "bot": bot_to_dict(bot)}


async def _own_bot(session, bot_id: str, email: str) -> Bot:
    team = await find_team_by_email(session, email)
    result = await session.execute(
        select(Bot).where(Bot.id == bot_id).options(selectinload(Bot.registrations))
    )
    bot = result.scalar_one_or_none()
    if not bot or not team or bot.team_id != team.id:
        raise NotFound("Bot not found")
    return bot


@router.get("/bots/{bot_id}")
async def get_bot(bot_id: str, email: str = Depends(require_email)):
    async with async_session_factory() as session:
        bot = await _own_bot(session, bot_id, email)
        return {"success": True, "bot": bot_to_dict(bot)}


@router.delete("/bots/{bot_id}")
async def delete_bot(bot_id: str, email: str = Depends(require_email)):
    """Delete a bot. Its registrations stay, with the bot reference cleared."""
    async with async_session_factory() as session:
        bot = await _own_bot(session, bot_id, email)
        for reg in bot.registrations:
            reg.bot_id = None
        await session.delete(bot)
        await session.commit()
        logger.info("Deleted bot %s", bot_id)
        return {"success": True, "message": "Bot deleted successfully"}


@router.post("/contact")
async def submit_contact(body: ContactCreate):
    """Public contact form."""
    if not (body.name.strip() and body.email.strip() and body.message.strip()):
        raise ValidationError("Missing required fields")
    if not pricing.validate_email(body.email.strip()):
        raise ValidationError("Invalid email address")
    async with async_session_factory() as session:
        contact = Contact(
            name=body.name.strip(),
            email=body.email.strip(),
            subject=body.subject,
            message=body.message.strip(),
        )
        session.add(contact)
        await session.commit()
        return {"success": True, "id": contact.id}
