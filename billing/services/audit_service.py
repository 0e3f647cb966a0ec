"""Audit trail — record admin actions and query them for the master console."""

import csv
import io
import json
import logging
from collections import Counter
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing.constants import AUDIT_EXPORT_LIMIT, AUDIT_LOGS_PER_PAGE, AUDIT_TOP_USERS
from billing.models.audit_log import AuditLog
from billing.models.user import User
from billing.utils import as_utc, now_utc

logger = logging.getLogger(__name__)

CSV_HEADERS = ["Data/Hora", "Usuário", "Ação", "Tipo", "ID Entidade", "Detalhes"]


class AuditAction(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    VIEW = "VIEW"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    EXPORT = "EXPORT"
    REPLAY = "REPLAY"


class EntityType(StrEnum):
    CLINIC = "clinic"
    USER = "user"
    PATIENT = "patient"
    PROFESSIONAL = "professional"
    MEDICATION = "medication"
    BED = "bed"
    APPOINTMENT = "appointment"
    FINANCE = "finance"
    REPORT = "report"
    SUBSCRIPTION = "subscription"
    WEBHOOK = "webhook"


async def log_action(
    db: AsyncSession,
    user: User | None,
    action: AuditAction,
    entity_type: EntityType,
    entity_id: str | None = None,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
) -> AuditLog | None:
    """Record an action. A failure is logged and swallowed so it never breaks the caller."""
    entry = AuditLog(
        user_id=user.id if user else None,
        user_email=user.email if user else None,
        action=str(action),
        entity_type=str(entity_type),
        entity_id=entity_id,
        details=details or {},
        ip_address=request.client.host if request and request.client else None,
        user_agent=request.headers.get("user-agent") if request else None,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error("Error logging audit action %s on %s: %s", action, entity_type, e)
        return None
    return entry


def _filtered(
    query,
    action: str | None = None,
    entity_type: str | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    if action:
        query = query.where(AuditLog.action == action)
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if user_id is not None:
        query = query.where(AuditLog.user_id == user_id)
    if start_date:
        query = query.where(AuditLog.created_at >= as_utc(start_date))
    if end_date:
        query = query.where(AuditLog.created_at <= as_utc(end_date))
    return query


async def get_logs(
    db: AsyncSession,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    user_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = AUDIT_LOGS_PER_PAGE,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Newest-first page of logs matching the filters, plus the total match count."""
    filters = dict(
        action=action, entity_type=entity_type, user_id=user_id,
        start_date=start_date, end_date=end_date,
    )
    total = await db.scalar(_filtered(select(func.count(AuditLog.id)), **filters))
    result = await db.execute(
        _filtered(select(AuditLog), **filters)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all()), total or 0


async def get_recent_logs(db: AsyncSession, limit: int = AUDIT_LOGS_PER_PAGE) -> list[AuditLog]:
    logs, _ = await get_logs(db, limit=limit)
    return logs


async def get_stats(db: AsyncSession, days: int = 7) -> dict[str, Any]:
    """Counts over the last ``days`` days: total, per action, per entity, top users."""
    logs, _ = await get_logs(
        db, start_date=now_utc() - timedelta(days=days), limit=AUDIT_EXPORT_LIMIT
    )
    by_action = Counter(log.action for log in logs)
    by_entity = Counter(log.entity_type for log in logs)
    by_user = Counter(log.user_email for log in logs if log.user_email)

    return {
        "total_actions": len(logs),
        "actions_by_type": dict(by_action),
        "actions_by_entity": dict(by_entity),
        "top_users": [
            {"user_email": email, "count": count}
            for email, count in by_user.most_common(AUDIT_TOP_USERS)
        ],
    }


def _format_timestamp(value: datetime) -> str:
    return as_utc(value).strftime("%d/%m/%Y %H:%M:%S")


async def export_logs_csv(
    db: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> str:
    """Render matching logs as CSV with Portuguese column headers."""
    logs, _ = await get_logs(db, start_date=start_date, end_date=end_date, limit=AUDIT_EXPORT_LIMIT)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)
    for log in logs:
        writer.writerow([
            _format_timestamp(log.created_at),
            log.user_email or "N/A",
            log.action,
            log.entity_type,
            log.entity_id or "N/A",
            json.dumps(log.details or {}, ensure_ascii=False),
        ])
    return buffer.getvalue()
