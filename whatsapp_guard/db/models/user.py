"""
User Model — read-only mirror of the user-management subsystem
"""
import uuid
from sqlalchemy import Column, String, DateTime

from whatsapp_guard.core.clock import utcnow
from whatsapp_guard.db.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """משתמש בפלטפורמה — נדרש לשם/אימייל ברשימת משתמשים למיפוי טלפון"""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(150), nullable=True)
    email = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime, default=utcnow)
