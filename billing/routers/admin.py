"""Master admin routes — webhook logs, audit trail, financial dashboard, plan products."""

import logging
from datetime import datetime

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from billing.constants import AUDIT_LOGS_PER_PAGE, WEBHOOK_LOGS_PER_PAGE, WEBHOOK_STATUSES
from billing.db.session import get_db
from billing.models.user import User
from billing.routers.webhooks import get_webhook_processor
from billing.schemas.audit import AuditLogEntry, AuditLogPage, AuditStats
from billing.schemas.finance import FinancialStats, ProductCreate, ProductCreated
from billing.schemas.webhook import ReplayResult, WebhookLogDetail, WebhookLogSummary
from billing.services import audit_service, webhook_log_service
from billing.services.audit_service import AuditAction, EntityType
from billing.services.auth_service import require_master_admin
from billing.services.events import MalformedEvent
from billing.services.financial_stats_service import get_financial_stats
from billing.services.product_service import create_product
from billing.services.stripe_gateway import StripeGateway, get_gateway
from billing.services.webhook_processor import WebhookProcessor
from billing.utils import now_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# --- Webhook logs ---


@router.get("/webhooks", response_model=list[WebhookLogSummary])
async def list_webhook_logs(
    status: str | None = Query(None),
    limit: int = Query(WEBHOOK_LOGS_PER_PAGE, ge=1, le=500),
    admin: User = Depends(require_master_admin),
    db: AsyncSession = Depends(get_db),
):
    if status and status not in WEBHOOK_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status: {status}")
    return await webhook_log_service.list_logs(db, status=status, limit=limit)


@router.get("/webhooks/{event_id}", response_model=WebhookLogDetail)
async def get_webhook_log(
    event_id: str,
    admin: User = Depends(require_master_admin),
    db: AsyncSession = Depends(get_db),
):
    log = await webhook_log_service.get_log(db, event_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    return log


@router.post("/webhooks/{event_id}/replay", response_model=ReplayResult)
async def replay_webhook(
    event_id: str,
    request: Request,
    admin: User = Depends(require_master_admin),
    processor: WebhookProcessor | None = Depends(get_webhook_processor),
    db: AsyncSession = Depends(get_db),
):
    if processor is None:
        raise HTTPException(status_code=500, detail="Server configuration error")
    try:
        result = await processor.replay(db, event_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    except MalformedEvent as e:
        raise HTTPException(status_code=422, detail=f"Stored payload cannot be replayed: {e}")

    # A failed replay rolls the session back, expiring the loaded admin
    await db.refresh(admin)
    await audit_service.log_action(
        db, admin, AuditAction.REPLAY, EntityType.WEBHOOK, entity_id=event_id,
        details={"event_type": result.event_type, "status": result.status},
        request=request,
    )
    return ReplayResult(
        event_id=result.event_id,
        event_type=result.event_type,
        status=result.status,
        error_message=result.error_message,
        outcome=str(result.outcome.outcome) if result.outcome else None,
    )


# --- Audit logs ---


@router.get("/audit-logs", response_model=AuditLogPage)
async def list_audit_logs(
    action: str | None = Query(None),
    entity_type: str | None = Query(None),
    user_id: int | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    limit: int = Query(AUDIT_LOGS_PER_PAGE, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: User = Depends(require_master_admin),
    db: AsyncSession = Depends(get_db),
):
    logs, total = await audit_service.get_logs(
        db,
        action=action,
        entity_type=entity_type,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return AuditLogPage(data=[AuditLogEntry.model_validate(log) for log in logs], total=total)


@router.get("/audit-logs/stats", response_model=AuditStats)
async def audit_log_stats(
    days: int = Query(7, ge=1, le=365),
    admin: User = Depends(require_master_admin),
    db: AsyncSession = Depends(get_db),
):
    return await audit_service.get_stats(db, days=days)


@router.get("/audit-logs/export")
async def export_audit_logs(
    request: Request,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    admin: User = Depends(require_master_admin),
    db: AsyncSession = Depends(get_db),
):
    content = await audit_service.export_logs_csv(db, start_date=start_date, end_date=end_date)
    await audit_service.log_action(
        db, admin, AuditAction.EXPORT, EntityType.REPORT,
        details={"report": "audit_logs"},
        request=request,
    )
    filename = f"audit_logs_{now_utc().date().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# --- Financial ---


@router.get("/financial-stats", response_model=FinancialStats)
async def financial_stats(
    admin: User = Depends(require_master_admin),
    gateway: StripeGateway = Depends(get_gateway),
):
    try:
        return await get_financial_stats(gateway)
    except stripe.StripeError as e:
        logger.error("Financial stats failed: %s", e)
        raise HTTPException(status_code=502, detail="Stripe request failed")


# --- Plan products ---


@router.post("/products", response_model=ProductCreated)
async def create_plan_product(
    body: ProductCreate,
    request: Request,
    admin: User = Depends(require_master_admin),
    gateway: StripeGateway = Depends(get_gateway),
    db: AsyncSession = Depends(get_db),
):
    try:
        created = await create_product(
            gateway,
            name=body.product_name,
            price_amount=body.price_amount,
            currency=body.price_currency,
            description=body.product_description,
            interval=body.recurring_interval,
        )
    except stripe.StripeError as e:
        logger.error("Product creation failed: %s", e)
        raise HTTPException(status_code=400, detail=e.user_message or "Product could not be created")

    await audit_service.log_action(
        db, admin, AuditAction.CREATE, EntityType.SUBSCRIPTION, entity_id=created["product_id"],
        details={"name": created["name"], "price_id": created["price_id"], "unit_amount": created["unit_amount"]},
        request=request,
    )
    return created
