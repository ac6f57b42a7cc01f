"""
Integration Model — חיבור WhatsApp Business אחד

בדיוק אחד מהשדות owner_id (אישי) או team_id (צוות) מוגדר. ה-scope קבוע
מרגע היצירה.
"""
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, CheckConstraint

from whatsapp_guard.core.clock import utcnow
from whatsapp_guard.db.database import Base


class Integration(Base):
    """WhatsApp integration owned by a single user or shared by a team"""

    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(150), nullable=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "(owner_id IS NULL AND team_id IS NOT NULL) OR "
            "(owner_id IS NOT NULL AND team_id IS NULL)",
            name="ck_integration_single_scope",
        ),
    )
