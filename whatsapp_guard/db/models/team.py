"""
Team + TeamMembership Models

הצוותים והחברויות מנוהלים במערכת ניהול המשתמשים; השכבה הזו רק קוראת אותם.
"""
import enum
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum

from whatsapp_guard.core.clock import utcnow
from whatsapp_guard.db.database import Base


class TeamRole(str, enum.Enum):
    """תפקיד בצוות — owner ⊇ admin ⊇ member"""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class Team(Base):
    """Team that can share an integration"""

    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(150), nullable=False)
    created_at = Column(DateTime, default=utcnow)


class TeamMembership(Base):
    """חברות של משתמש בצוות, עם תפקיד יחיד"""

    __tablename__ = "team_memberships"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(
        SQLEnum(
            TeamRole,
            name="team_role",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=TeamRole.MEMBER,
    )
    joined_at = Column(DateTime, default=utcnow)

    # משתמש מחזיק לכל היותר תפקיד אחד בכל צוות
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_membership"),
    )
