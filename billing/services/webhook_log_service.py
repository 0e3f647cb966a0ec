"""Webhook log persistence — the durable record of every verified event."""

import logging
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billing.constants import (
    ERROR_MESSAGE_MAX_LENGTH,
    WEBHOOK_LOGS_PER_PAGE,
    WEBHOOK_STALE_MESSAGE,
    WEBHOOK_STATUS_ERROR,
    WEBHOOK_STATUS_PROCESSING,
    WEBHOOK_STATUS_SUCCESS,
)
from billing.models.webhook_log import WebhookLog
from billing.utils import now_utc

logger = logging.getLogger(__name__)


async def get_log(db: AsyncSession, event_id: str) -> WebhookLog | None:
    result = await db.execute(
        select(WebhookLog)
        .where(WebhookLog.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def record_processing(db: AsyncSession, event_id: str, event_type: str, payload: dict) -> WebhookLog:
    """Write the "processing" row for an event and commit it.

    A redelivered event reuses its row: status goes back to processing and
    ``attempts`` is incremented.
    """
    log = await get_log(db, event_id)
    if log is None:
        log = WebhookLog(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=WEBHOOK_STATUS_PROCESSING,
            attempts=1,
        )
        db.add(log)
    else:
        log.status = WEBHOOK_STATUS_PROCESSING
        log.error_message = None
        log.attempts = (log.attempts or 0) + 1
        log.processed_at = now_utc()
    await db.commit()
    return log


async def finalize(db: AsyncSession, event_id: str, error_message: str | None) -> int:
    """Set the final status of an event's row; returns the number of rows touched."""
    values = {
        "status": WEBHOOK_STATUS_ERROR if error_message else WEBHOOK_STATUS_SUCCESS,
        "error_message": error_message[:ERROR_MESSAGE_MAX_LENGTH] if error_message else None,
        "processed_at": now_utc(),
    }
    result = await db.execute(
        update(WebhookLog)
        .where(WebhookLog.event_id == event_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount


async def list_logs(
    db: AsyncSession,
    status: str | None = None,
    limit: int = WEBHOOK_LOGS_PER_PAGE,
) -> list[WebhookLog]:
    query = (
        select(WebhookLog)
        .order_by(WebhookLog.processed_at.desc(), WebhookLog.id.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    if status:
        query = query.where(WebhookLog.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def mark_stale_processing(db: AsyncSession, older_than_minutes: int) -> list[str]:
    """Flag rows stuck in "processing" (crash between dispatch and finalize) as errors.

    Returns the ids of the events that were flagged.
    """
    cutoff = now_utc() - timedelta(minutes=older_than_minutes)
    stale = (
        WebhookLog.status == WEBHOOK_STATUS_PROCESSING,
        WebhookLog.processed_at <= cutoff,
    )
    result = await db.execute(select(WebhookLog.event_id).where(*stale).order_by(WebhookLog.event_id))
    event_ids = list(result.scalars().all())
    if not event_ids:
        return []

    await db.execute(
        update(WebhookLog)
        .where(WebhookLog.event_id.in_(event_ids), *stale)
        .values(status=WEBHOOK_STATUS_ERROR, error_message=WEBHOOK_STALE_MESSAGE, processed_at=now_utc())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.warning("Marked %d webhook log(s) stuck in processing as error", len(event_ids))
    return event_ids
