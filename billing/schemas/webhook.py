"""Webhook log Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class WebhookLogSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    event_type: str
    status: str
    error_message: str | None = None
    attempts: int
    created_at: datetime
    processed_at: datetime


class WebhookLogDetail(WebhookLogSummary):
    payload: dict[str, Any]


class ReplayResult(BaseModel):
    event_id: str
    event_type: str
    status: str
    error_message: str | None = None
    outcome: str | None = None
