"""Admin API routes: dashboard aggregates, team list, status changes and payment reminders."""
from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from robomania.errors import NotFound, ValidationError
from robomania.models import CompetitionRegistration, Contact, Team, User
from robomania.models.base import async_session_factory, utcnow
from robomania.models.registration import PAYMENT_COMPLETED, PAYMENT_PENDING
from robomania.models.team import TEAM_STATUSES
from robomania.services.notifications import NotificationDispatcher
from robomania.services.reconciliation import recipient_of
from web.api.utils import base_url, get_notifier, member_to_dict, registration_to_dict, team_to_dict
from web.auth import require_admin_user, require_moderator_user

logger = logging.getLogger("robomania.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])

REMINDER_MIN_DAYS = 1
TREND_DAYS = 30


class TeamStatusUpdate(BaseModel):
    status: str
    message: Optional[str] = None


@router.get("/stats")
async def get_stats(user: User = Depends(require_moderator_user)):
    """Headline numbers for the dashboard."""
    async with async_session_factory() as session:
        total_teams = await session.scalar(select(func.count()).select_from(Team))
        by_status = dict(
            (await session.execute(select(Team.status, func.count()).group_by(Team.status))).all()
        )
        completed_payments = await session.scalar(
            select(func.count()).select_from(Team).where(Team.payment_status == PAYMENT_COMPLETED)
        )
        total_contacts = await session.scalar(select(func.count()).select_from(Contact))
        revenue = await session.scalar(
            select(func.coalesce(func.sum(CompetitionRegistration.amount), 0)).where(
                CompetitionRegistration.payment_status == PAYMENT_COMPLETED
            )
        )
        registrations = dict(
            (
                await session.execute(
                    select(CompetitionRegistration.competition_type, func.count())
                    .where(CompetitionRegistration.payment_status == PAYMENT_COMPLETED)
                    .group_by(CompetitionRegistration.competition_type)
                )
            ).all()
        )
    return {
        "success": True,
        "stats": {
            "totalTeams": total_teams or 0,
            "pendingTeams": by_status.get("PENDING", 0),
            "approvedTeams": by_status.get("APPROVED", 0),
            "confirmedTeams": by_status.get("CONFIRMED", 0),
            "completedPayments": completed_payments or 0,
            "totalContacts": total_contacts or 0,
            "totalRevenue": int(revenue or 0),
            "paidRegistrationsByCompetition": registrations,
        },
    }


@router.get("/analytics")
async def get_analytics(user: User = Depends(require_moderator_user)):
    """Registrations per day over the last 30 days, plus status and payment distributions."""
    since = utcnow() - timedelta(days=TREND_DAYS)
    async with async_session_factory() as session:
        result = await session.execute(select(Team.created_at, Team.status, Team.payment_status))
        rows = result.all()

    trend = Counter(created.date().isoformat() for created, _, _ in rows if created and created >= since)
    return {
        "success": True,
        "analytics": {
            "registrationTrends": [{"date": d, "count": trend[d]} for d in sorted(trend)],
            "statusDistribution": dict(Counter(status for _, status, _ in rows)),
            "paymentDistribution": dict(Counter(payment for _, _, payment in rows)),
        },
    }


@router.get("/teams")
async def list_teams(status: Optional[str] = None, user: User = Depends(require_moderator_user)):
    """All teams with members and competition entries, newest first."""
    async with async_session_factory() as session:
        stmt = (
            select(Team)
            .options(
                selectinload(Team.members),
                selectinload(Team.registrations).selectinload(CompetitionRegistration.bot),
            )
            .order_by(Team.created_at.desc())
        )
        if status:
            stmt = stmt.where(Team.status == status.upper())
        result = await session.execute(stmt)
        teams = result.scalars().all()
        return {
            "success": True,
            "teams": [
                {
                    **team_to_dict(t),
                    "members": [member_to_dict(m) for m in t.members],
                    "registrations": [registration_to_dict(r, r.bot) for r in t.registrations],
                }
                for t in teams
            ],
        }


@router.patch("/teams/{team_id}/status")
async def update_team_status(
    team_id: str,
    body: TeamStatusUpdate,
    admin: User = Depends(require_admin_user),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Change a team's review status and email the team about it."""
    new_status = body.status.strip().upper()
    if new_status not in TEAM_STATUSES:
        raise ValidationError(f"Invalid status: {body.status}")
    async with async_session_factory() as session:
        team = await session.get(Team, team_id)
        if not team:
            raise NotFound("Team not found")
        team.status = new_status
        await session.commit()
    logger.info("%s set team %s status to %s", admin.username, team_id, new_status)
    await notifier.submit(
        "status_update",
        recipient_of(team),
        {"team_name": team.team_name, "status": new_status, "message": body.message or ""},
    )
    return {"success": True, "team": team_to_dict(team)}


async def _pending_by_team(session, team_id: Optional[str] = None) -> dict[str, list[CompetitionRegistration]]:
    stmt = (
        select(CompetitionRegistration)
        .where(CompetitionRegistration.payment_status == PAYMENT_PENDING)
        .options(selectinload(CompetitionRegistration.team))
        .order_by(CompetitionRegistration.created_at)
    )
    if team_id:
        stmt = stmt.where(CompetitionRegistration.team_id == team_id)
    result = await session.execute(stmt)
    grouped: dict[str, list[CompetitionRegistration]] = {}
    for reg in result.scalars().all():
        grouped.setdefault(reg.team_id, []).append(reg)
    return grouped


async def _remind(
    notifier: NotificationDispatcher, team: Team, regs: list[CompetitionRegistration], days: int, app_url: str
) -> bool:
    return await notifier.submit(
        "payment_reminder",
        recipient_of(team),
        {
            "team_name": team.team_name,
            "leader_name": team.leader_name,
            "competitions": [r.competition_type for r in regs],
            "total_amount": sum(r.amount for r in regs),
            "days_pending": days,
            "app_url": app_url,
        },
    )


@router.post("/send-reminders")
async def send_reminders(
    request: Request,
    admin: User = Depends(require_admin_user),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Queue a payment reminder for every team whose oldest unpaid entry is at least a day old."""
    now = utcnow()
    results = []
    async with async_session_factory() as session:
        grouped = await _pending_by_team(session)
        for regs in grouped.values():
            team = regs[0].team
            days = (now - min(r.created_at for r in regs)).days
            if days < REMINDER_MIN_DAYS:
                continue
            queued = await _remind(notifier, team, regs, days, base_url(request))
            results.append({"teamId": team.id, "teamName": team.team_name, "email": recipient_of(team), "queued": queued})
    sent = sum(1 for r in results if r["queued"])
    logger.info("Queued %d payment reminder(s) out of %d team(s) with pending payments", sent, len(grouped))
    return {
        "success": True,
        "message": f"Sent {sent} reminder emails",
        "sent": sent,
        "total": len(grouped),
        "results": results,
    }


@router.post("/send-reminders/{team_id}")
async def send_team_reminder(
    team_id: str,
    request: Request,
    admin: User = Depends(require_admin_user),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Queue a payment reminder for one team regardless of how long it has been pending."""
    async with async_session_factory() as session:
        team = await session.get(Team, team_id)
        if not team:
            raise NotFound("Team not found")
        regs = (await _pending_by_team(session, team_id)).get(team_id)
        if not regs:
            raise ValidationError("Team has no pending payments")
        days = (utcnow() - min(r.created_at for r in regs)).days
        queued = await _remind(notifier, team, regs, days, base_url(request))
    return {"success": queued, "teamId": team_id, "email": recipient_of(team)}
