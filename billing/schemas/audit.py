"""Audit log Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int | None = None
    user_email: str | None = None
    action: str
    entity_type: str
    entity_id: str | None = None
    details: dict[str, Any] = {}
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime


class AuditLogPage(BaseModel):
    data: list[AuditLogEntry]
    total: int


class TopUser(BaseModel):
    user_email: str
    count: int


class AuditStats(BaseModel):
    total_actions: int
    actions_by_type: dict[str, int]
    actions_by_entity: dict[str, int]
    top_users: list[TopUser]
