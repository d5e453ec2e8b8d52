"""Shared API utilities."""
from __future__ import annotations

from typing import Optional

from fastapi import Request

import config
from robomania.models import Bot, CompetitionRegistration, Team, TeamMember
from robomania.services.gateways import PaymentGateway
from robomania.services.notifications import NotificationDispatcher


def base_url(request: Request) -> str:
    """Public origin for redirect URLs. APP_URL wins; otherwise derived from the proxy headers."""
    if config.APP_URL:
        return config.APP_URL.rstrip("/")
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    proto = request.headers.get("x-forwarded-proto")
    if not proto:
        proto = "http" if host.startswith(("localhost", "127.0.0.1")) else "https"
    return f"{proto}://{host}"


def get_gateways(request: Request) -> dict[str, PaymentGateway]:
    return request.app.state.gateways


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def bot_to_dict(bot: Bot) -> dict:
    return {
        "id": bot.id,
        "teamId": bot.team_id,
        "name": bot.name,
        "weight": bot.weight,
        "dimensions": bot.dimensions,
        "weaponType": bot.weapon_type,
        "isWeaponBot": bot.is_weapon_bot,
        "createdAt": _iso(bot.created_at),
    }


def member_to_dict(member: TeamMember) -> dict:
    return {
        "id": member.id,
        "name": member.name,
        "email": member.email,
        "phone": member.phone,
        "role": member.role,
        "competitionRegistrationId": member.competition_registration_id,
    }


def registration_to_dict(reg: CompetitionRegistration, bot: Optional[Bot] = None) -> dict:
    return {
        "id": reg.id,
        "teamId": reg.team_id,
        "competitionType": reg.competition_type,
        "botId": reg.bot_id,
        "bot": bot_to_dict(bot) if bot else None,
        "amount": reg.amount,
        "paymentId": reg.payment_id,
        "gatewayOrderId": reg.gateway_order_id,
        "paymentStatus": reg.payment_status,
        "registrationStatus": reg.registration_status,
        "paymentGateway": reg.payment_gateway,
        "paymentDate": _iso(reg.payment_date),
        "transactionId": reg.transaction_id,
        "createdAt": _iso(reg.created_at),
    }


def team_to_dict(team: Team) -> dict:
    return {
        "id": team.id,
        "userEmail": team.user_email,
        "teamName": team.team_name,
        "institution": team.institution,
        "leaderName": team.leader_name,
        "leaderEmail": team.leader_email,
        "leaderPhone": team.leader_phone,
        "contactEmail": team.contact_email,
        "contactPhone": team.contact_phone,
        "robotName": team.robot_name,
        "robotWeight": team.robot_weight,
        "robotDimensions": team.robot_dimensions,
        "weaponType": team.weapon_type,
        "status": team.status,
        "paymentStatus": team.payment_status,
        "paymentId": team.payment_id,
        "paymentDate": _iso(team.payment_date),
        "isMultiCompetition": team.is_multi_competition,
        "createdAt": _iso(team.created_at),
    }
