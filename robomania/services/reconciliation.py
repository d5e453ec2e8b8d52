"""Payment reconciliation: apply authoritative gateway state to registrations and teams.

Webhooks, browser redirects and manual polls all funnel into ``reconcile``.
The gateway's order status is always fetched, never taken from a callback body.
Every write is a conditional UPDATE to fixed final values
(``WHERE payment_status != 'COMPLETED'``), so concurrent or repeated runs for
the same order converge on the same rows and only the first run that
transitions a row triggers the confirmation email.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

import config
from robomania.errors import GatewayError, NotFound, ValidationError
from robomania.models import CompetitionRegistration, Team
from robomania.models.base import utcnow
from robomania.models.registration import PAYMENT_COMPLETED, REGISTRATION_CONFIRMED
from robomania.services.gateways import (
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_PENDING,
    PaymentGateway,
    normalize_gateway,
)
from robomania.services.notifications import NotificationDispatcher

logger = logging.getLogger("robomania.reconcile")


@dataclass
class ReconcileResult:
    merchant_order_id: str
    state: str
    gateway: Optional[str] = None
    team_id: Optional[str] = None
    amount: int = 0
    transaction_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None  # set when the gateway could not be reached
    updated: int = 0  # rows transitioned to COMPLETED by this call
    registrations: list[CompetitionRegistration] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "merchantOrderId": self.merchant_order_id,
            "state": self.state,
            "gateway": self.gateway,
            "teamId": self.team_id,
            "amount": self.amount,
            "transactionId": self.transaction_id,
            "errorCode": self.error_code,
            "error": self.error,
            "updatedRegistrations": self.updated,
            "registrations": [
                {
                    "id": r.id,
                    "competitionType": r.competition_type,
                    "paymentStatus": r.payment_status,
                    "registrationStatus": r.registration_status,
                }
                for r in self.registrations
            ],
        }


def recipient_of(team: Optional[Team]) -> Optional[str]:
    """Address notifications for a team go to."""
    if not team:
        return None
    return team.user_email or team.contact_email or team.leader_email


async def find_registrations(session: AsyncSession, order_ref: str) -> list[CompetitionRegistration]:
    """Registrations whose merchant order reference or provider order id equals ``order_ref``."""
    result = await session.execute(
        select(CompetitionRegistration)
        .where(
            or_(
                CompetitionRegistration.payment_id == order_ref,
                CompetitionRegistration.gateway_order_id == order_ref,
            )
        )
        .order_by(CompetitionRegistration.created_at)
    )
    return list(result.scalars().all())


async def resolve_merchant_order_id(session: AsyncSession, order_ref: str) -> Optional[str]:
    """Map a provider order id (or a merchant reference) to the merchant order reference."""
    regs = await find_registrations(session, order_ref)
    if regs:
        return regs[0].payment_id
    result = await session.execute(select(Team.id).where(Team.payment_id == order_ref).limit(1))
    return order_ref if result.scalar_one_or_none() else None


async def order_team(session: AsyncSession, merchant_order_id: str) -> Optional[Team]:
    """Team that owns a merchant order, through its registrations or the legacy team reference."""
    result = await session.execute(
        select(Team)
        .join(CompetitionRegistration, CompetitionRegistration.team_id == Team.id)
        .where(CompetitionRegistration.payment_id == merchant_order_id)
        .limit(1)
    )
    team = result.scalar_one_or_none()
    if team is None:
        result = await session.execute(select(Team).where(Team.payment_id == merchant_order_id).limit(1))
        team = result.scalar_one_or_none()
    return team


async def reconcile(
    session: AsyncSession,
    gateways: Mapping[str, PaymentGateway],
    merchant_order_id: str,
    gateway_name: Optional[str] = None,
    notifier: Optional[NotificationDispatcher] = None,
) -> ReconcileResult:
    """Fetch the order's state from its gateway and apply it. Safe to call any number of times.

    Raises NotFound for an order no registration or team refers to. Gateway
    failures do not raise: the result comes back PENDING with ``error`` set
    and nothing is written.
    """
    result = await session.execute(
        select(CompetitionRegistration)
        .where(CompetitionRegistration.payment_id == merchant_order_id)
        .order_by(CompetitionRegistration.created_at)
    )
    regs = list(result.scalars().all())
    legacy_team = None
    if not regs:
        result = await session.execute(select(Team).where(Team.payment_id == merchant_order_id).limit(1))
        legacy_team = result.scalar_one_or_none()
        if legacy_team is None:
            raise NotFound(f"Order {merchant_order_id} not found")

    name = normalize_gateway(regs[0].payment_gateway if regs else gateway_name)
    gateway = gateways.get(name)
    if gateway is None:
        raise ValidationError(f"Unknown payment gateway: {name or 'none'}")

    out = ReconcileResult(
        merchant_order_id=merchant_order_id,
        state=STATE_PENDING,
        gateway=name,
        team_id=regs[0].team_id if regs else legacy_team.id,
        amount=sum(r.amount for r in regs),
        registrations=regs,
    )
    team = legacy_team or await session.get(Team, out.team_id)

    try:
        status = await gateway.get_order_status(merchant_order_id, detailed=True)
    except GatewayError as e:
        logger.warning("Status check for %s failed, leaving it pending: %s", merchant_order_id, e)
        out.error = e.provider_message
        return out

    out.state = status.state
    out.transaction_id = status.transaction_id
    out.error_code = status.error_code
    if not regs:
        out.amount = status.amount
    logger.info("Order %s (%s) is %s", merchant_order_id, name, status.state)

    if status.state == STATE_COMPLETED:
        now = utcnow()
        if regs:
            res = await session.execute(
                update(CompetitionRegistration)
                .where(
                    CompetitionRegistration.payment_id == merchant_order_id,
                    CompetitionRegistration.payment_status != PAYMENT_COMPLETED,
                )
                .values(
                    payment_status=PAYMENT_COMPLETED,
                    registration_status=REGISTRATION_CONFIRMED,
                    transaction_id=status.transaction_id,
                    payment_date=now,
                    updated_at=now,
                )
            )
            out.updated = res.rowcount or 0
            team_ids = sorted({r.team_id for r in regs})
            await session.execute(
                update(Team)
                .where(Team.id.in_(team_ids), Team.payment_status != PAYMENT_COMPLETED)
                .values(payment_status=PAYMENT_COMPLETED, payment_date=now, updated_at=now)
            )
        else:
            # Single-payment teams from before per-competition registrations
            res = await session.execute(
                update(Team)
                .where(Team.id == legacy_team.id, Team.payment_status != PAYMENT_COMPLETED)
                .values(
                    payment_status=PAYMENT_COMPLETED,
                    status="CONFIRMED",
                    payment_date=now,
                    updated_at=now,
                )
            )
            out.updated = res.rowcount or 0
        await session.commit()
        if out.updated:
            logger.info("Order %s completed: %d row(s) confirmed", merchant_order_id, out.updated)
        if out.updated and notifier is not None:
            await notifier.submit(
                "payment_confirmed",
                recipient_of(team),
                {
                    "team_name": team.team_name if team else "",
                    "competitions": [r.competition_type for r in regs],
                    "amount": out.amount,
                    "merchant_order_id": merchant_order_id,
                    "transaction_id": status.transaction_id,
                },
                dedupe_key=f"payment_confirmed:{merchant_order_id}",
            )
    elif status.state == STATE_FAILED and notifier is not None:
        await notifier.submit(
            "payment_failed",
            recipient_of(team),
            {
                "team_name": team.team_name if team else "",
                "merchant_order_id": merchant_order_id,
                "reason": status.error_code or "",
                "retry_url": f"{config.APP_URL}/dashboard" if config.APP_URL else "",
            },
            dedupe_key=f"payment_failed:{merchant_order_id}",
        )
    return out
