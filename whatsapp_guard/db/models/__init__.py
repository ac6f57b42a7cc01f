"""
Database Models
"""
from whatsapp_guard.db.models.user import User
from whatsapp_guard.db.models.team import Team, TeamMembership, TeamRole
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.db.models.rate_limit_window import RateLimitWindow, WindowType, AlertLevel
from whatsapp_guard.db.models.security_event import (
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
)

__all__ = [
    "User",
    "Team",
    "TeamMembership",
    "TeamRole",
    "Integration",
    "RateLimitWindow",
    "WindowType",
    "AlertLevel",
    "SecurityEvent",
    "SecurityEventType",
    "SecuritySeverity",
]
