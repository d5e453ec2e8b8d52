"""Registration writer: competition entries, bots and competition-scoped members."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from robomania.errors import AlreadyRegistered, InvalidAmount, NotFound, ValidationError
from robomania.models import Bot, CompetitionRegistration, Team, TeamMember
from robomania.models.registration import (
    PAYMENT_COMPLETED,
    PAYMENT_PENDING,
    REGISTRATION_PENDING,
)
from robomania.schemas import BotSpec, CompetitionEntry
from robomania.services import pricing

logger = logging.getLogger("robomania.registrations")

DEFAULT_DIMENSIONS = "30x30x30"


@dataclass
class _PlannedEntry:
    competition: str
    amount: int
    entry: CompetitionEntry
    bot: Optional[Bot] = None  # existing bot referenced by id


@dataclass
class WriteResult:
    registrations: list[CompetitionRegistration] = field(default_factory=list)
    total_amount: int = 0

    @property
    def competitions(self) -> list[str]:
        return [r.competition_type for r in self.registrations]


def new_merchant_order_id(team_id: str) -> str:
    """Merchant order reference shared by every registration paid in one checkout."""
    return f"ROBOMANIA_{team_id.replace('-', '')[:8]}_{uuid.uuid4().hex[:8]}"


def _check_weight(weight: Optional[float], competition: str) -> None:
    check = pricing.validate_weight(weight, competition)
    if not check.valid:
        raise ValidationError(check.reason)


def _check_new_bot(spec: BotSpec, competition: str) -> None:
    _check_weight(spec.weight, competition)
    if pricing.requires_weapon(competition) and not (spec.weapon_type or "").strip():
        raise ValidationError(f"Weapon type is required for {pricing.display_name(competition)}")


async def _existing_robowars_entry(
    session: AsyncSession, team_id: str, bot_id: str
) -> Optional[CompetitionRegistration]:
    result = await session.execute(
        select(CompetitionRegistration)
        .where(
            CompetitionRegistration.team_id == team_id,
            CompetitionRegistration.competition_type == pricing.ROBOWARS,
            CompetitionRegistration.bot_id == bot_id,
        )
        .order_by(CompetitionRegistration.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _plan(
    session: AsyncSession, team: Team, competitions: list[CompetitionEntry]
) -> list[_PlannedEntry]:
    """Validate the whole batch. Reads only; raises before anything is written."""
    if not competitions:
        raise ValidationError("At least one competition must be selected")
    planned = []
    robowars_bots: set[str] = set()
    for entry in competitions:
        code = pricing.normalize_competition(entry.type)
        if not code:
            raise ValidationError(f"Unknown competition: {entry.type}")
        price = pricing.price_of(code)
        amount = price if entry.amount is None else entry.amount
        if amount <= 0:
            raise InvalidAmount(f"Amount for {pricing.display_name(code)} must be greater than 0")
        if amount != price:
            raise InvalidAmount(f"Amount for {pricing.display_name(code)} must be {price}")

        item = _PlannedEntry(competition=code, amount=amount, entry=entry)
        spec = entry.bot
        if spec and spec.id:
            bot = await session.get(Bot, spec.id)
            if not bot or bot.team_id != team.id:
                raise NotFound("Bot not found")
            _check_weight(bot.weight, code)
            if code == pricing.ROBOWARS:
                if bot.id in robowars_bots:
                    raise ValidationError(f"{bot.name} is entered in RoboWars more than once")
                robowars_bots.add(bot.id)
                existing = await _existing_robowars_entry(session, team.id, bot.id)
                if existing and existing.payment_status == PAYMENT_COMPLETED:
                    raise AlreadyRegistered(f"{bot.name} is already registered and paid for RoboWars")
            item.bot = bot
        elif spec and spec.has_robot_fields():
            _check_new_bot(spec, code)
        planned.append(item)

    total = sum(p.amount for p in planned)
    if total <= 0:
        raise InvalidAmount("Invalid payment amount. Total must be greater than 0.")
    return planned


async def write_registrations(
    session: AsyncSession,
    team: Team,
    competitions: list[CompetitionEntry],
    merchant_order_id: str,
    gateway: str,
) -> WriteResult:
    """Write one PENDING registration per competition entry under ``merchant_order_id``.

    RoboWars keeps one row per (team, bot): resubmitting the same bot moves the
    existing PENDING row onto the new order instead of inserting. RoboRace and
    RoboSoccer allow multiple entries, so every submission inserts.

    Does not talk to the payment gateway and does not commit.
    """
    planned = await _plan(session, team, competitions)
    result = WriteResult()

    for item in planned:
        bot_id = item.bot.id if item.bot else None
        spec = item.entry.bot
        if bot_id is None and spec and spec.has_robot_fields():
            weapon = (spec.weapon_type or "").strip() or None
            bot = Bot(
                team_id=team.id,
                name=spec.name or f"Bot for {pricing.display_name(item.competition)}",
                weight=spec.weight,
                dimensions=spec.dimensions or DEFAULT_DIMENSIONS,
                weapon_type=weapon,
                is_weapon_bot=bool(weapon),
            )
            session.add(bot)
            await session.flush()
            bot_id = bot.id
            logger.info("Created bot %s for %s (team %s)", bot_id, item.competition, team.id)

        reg = None
        if item.competition == pricing.ROBOWARS and bot_id:
            reg = await _existing_robowars_entry(session, team.id, bot_id)
        if reg is not None:
            reg.payment_id = merchant_order_id
            reg.gateway_order_id = None
            reg.amount = item.amount
            reg.payment_gateway = gateway
            reg.payment_status = PAYMENT_PENDING
            reg.registration_status = REGISTRATION_PENDING
            logger.info("Updated existing RoboWars registration %s (same bot)", reg.id)
        else:
            reg = CompetitionRegistration(
                team_id=team.id,
                competition_type=item.competition,
                bot_id=bot_id,
                amount=item.amount,
                payment_id=merchant_order_id,
                payment_status=PAYMENT_PENDING,
                registration_status=REGISTRATION_PENDING,
                payment_gateway=gateway,
            )
            session.add(reg)
        await session.flush()

        for m in item.entry.members:
            session.add(
                TeamMember(
                    team_id=team.id,
                    competition_registration_id=reg.id,
                    name=m.name,
                    email=m.email,
                    phone=m.phone,
                    role=m.role,
                )
            )
        result.registrations.append(reg)
        result.total_amount += item.amount

    team.payment_id = merchant_order_id
    team.is_multi_competition = team.is_multi_competition or len(planned) > 1
    await session.flush()
    logger.info(
        "Wrote %d registration(s) for team %s under %s (total %d)",
        len(result.registrations), team.id, merchant_order_id, result.total_amount,
    )
    return result


async def attach_gateway_order(
    session: AsyncSession, merchant_order_id: str, gateway_order_id: str
) -> None:
    """Record the provider-side order id on every registration of a merchant order."""
    result = await session.execute(
        select(CompetitionRegistration).where(CompetitionRegistration.payment_id == merchant_order_id)
    )
    for reg in result.scalars().all():
        reg.gateway_order_id = gateway_order_id
    await session.flush()
