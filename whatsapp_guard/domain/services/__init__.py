"""
Domain Services
"""
from whatsapp_guard.domain.services.integration_scope import IntegrationScopeResolver
from whatsapp_guard.domain.services.permission_service import PermissionService, WhatsAppPermission
from whatsapp_guard.domain.services.rate_limit_service import RateLimitService
from whatsapp_guard.domain.services.security_audit_service import SecurityAuditService
from whatsapp_guard.domain.services.message_gate import MessageGate

__all__ = [
    "IntegrationScopeResolver",
    "PermissionService",
    "WhatsAppPermission",
    "RateLimitService",
    "SecurityAuditService",
    "MessageGate",
]
