"""Database models."""
from robomania.models.base import Base, init_db
from robomania.models.team import Team, TeamMember
from robomania.models.bot import Bot
from robomania.models.registration import CompetitionRegistration
from robomania.models.contact import Contact
from robomania.models.notification_log import NotificationLog
from robomania.models.user import User

__all__ = [
    "Base",
    "Team",
    "TeamMember",
    "Bot",
    "CompetitionRegistration",
    "Contact",
    "NotificationLog",
    "User",
    "init_db",
]
