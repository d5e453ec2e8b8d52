"""Team resolution and editing: the single team owned by a user."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from robomania.errors import NotFound, ValidationError
from robomania.models import Team, TeamMember
from robomania.schemas import TeamData
from robomania.services import pricing

logger = logging.getLogger("robomania.teams")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


async def find_team_by_email(session: AsyncSession, email: str) -> Optional[Team]:
    """The team owned by ``email``; failing that, the newest legacy team using it as contact email."""
    email = normalize_email(email)
    if not email:
        return None
    result = await session.execute(select(Team).where(Team.user_email == email))
    team = result.scalar_one_or_none()
    if team is not None:
        return team
    result = await session.execute(
        select(Team)
        .where(Team.user_email.is_(None), Team.contact_email == email)
        .order_by(Team.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _check_team_data(team_data: TeamData) -> None:
    missing = [
        label
        for label, value in (
            ("teamName", (team_data.team_name or "").strip()),
            ("institution", (team_data.institution or "").strip()),
            ("members", team_data.members),
        )
        if value is None or value == ""
    ]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


async def resolve_team(
    session: AsyncSession,
    email: Optional[str],
    team_id: Optional[str] = None,
    team_data: Optional[TeamData] = None,
) -> Team:
    """Return the caller's team, creating it on first registration.

    An existing team is returned untouched: later competition sign-ups never
    overwrite its identity or contact fields. The new team is flushed, not
    committed; the caller owns the transaction. Call this before any other
    write in the session: losing the unique-email race rolls the session back.

    A team owned by a user email is only returned to that user, even by id.
    Legacy teams without an owner stay reachable by id.
    """
    email = normalize_email(email)
    if team_id:
        team = await session.get(Team, team_id)
        if not team or (team.user_email and team.user_email != email):
            raise NotFound("Team not found")
        return team

    if not email:
        raise ValidationError("Either an email or a team id is required")

    team = await find_team_by_email(session, email)
    if team:
        return team

    if team_data is None:
        raise NotFound("No team registered for this email")
    _check_team_data(team_data)

    team = Team(
        user_email=email,
        team_name=team_data.team_name.strip(),
        institution=team_data.institution.strip(),
        leader_name=team_data.leader_name,
        leader_email=team_data.leader_email,
        leader_phone=team_data.leader_phone,
        contact_email=normalize_email(team_data.contact_email or team_data.leader_email) or None,
        contact_phone=team_data.contact_phone or team_data.leader_phone,
        robot_name=team_data.robot_name,
        robot_weight=team_data.robot_weight,
        robot_dimensions=team_data.robot_dimensions,
        weapon_type=team_data.weapon_type,
        status="PENDING",
        payment_status="PENDING",
    )
    session.add(team)
    try:
        await session.flush()
    except IntegrityError:
        # Another request created the team for this email first
        await session.rollback()
        logger.info("Team for %s created concurrently, reusing it", email)
        existing = await find_team_by_email(session, email)
        if existing is None:
            raise
        return existing

    for m in team_data.members or []:
        session.add(
            TeamMember(team_id=team.id, name=m.name, email=m.email, phone=m.phone, role=m.role)
        )
    await session.flush()
    logger.info("Created team %s (%s) for %s", team.id, team.team_name, email)
    return team


# Columns a team may edit on itself. Status and payment fields are never listed.
EDITABLE_FIELDS = (
    "team_name",
    "institution",
    "leader_name",
    "leader_email",
    "leader_phone",
    "contact_email",
    "contact_phone",
    "robot_name",
    "robot_weight",
    "robot_dimensions",
    "weapon_type",
)


async def update_team_details(session: AsyncSession, team: Team, data: TeamData) -> Team:
    """Apply the fields present in ``data`` to ``team``.

    A ``members`` list replaces the team-wide roster only; members attached to
    a competition registration are kept. Flushes, the caller commits.
    """
    sent = data.model_fields_set
    for field in EDITABLE_FIELDS:
        if field not in sent:
            continue
        value = getattr(data, field)
        if field in ("team_name", "institution"):
            value = (value or "").strip()
            if not value:
                raise ValidationError(f"{field} cannot be blank")
        elif field == "contact_email":
            value = normalize_email(value) or None
            if value and not pricing.validate_email(value):
                raise ValidationError("Invalid contact email")
        setattr(team, field, value)

    if data.members is not None:
        await session.execute(
            delete(TeamMember).where(
                TeamMember.team_id == team.id,
                TeamMember.competition_registration_id.is_(None),
            )
        )
        for m in data.members:
            session.add(
                TeamMember(team_id=team.id, name=m.name, email=m.email, phone=m.phone, role=m.role)
            )
    await session.flush()
    logger.info("Team %s updated its details (%s)", team.id, ", ".join(sorted(sent)) or "nothing")
    return team
