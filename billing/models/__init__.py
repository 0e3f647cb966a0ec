"""SQLAlchemy models for the billing service."""

from .base import Base
from .user import User
from .subscription_status import SubscriptionStatus
from .webhook_log import WebhookLog
from .audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "SubscriptionStatus",
    "WebhookLog",
    "AuditLog",
]
