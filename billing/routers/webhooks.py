"""Webhook routes — Stripe."""

import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from billing.config import get_settings
from billing.constants import CORS_ALLOW_HEADERS, SIGNATURE_HEADER
from billing.db.session import get_db
from billing.services.webhook_processor import (
    ConfigurationError,
    MissingSignature,
    WebhookProcessor,
    WebhookRejected,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _cors_headers() -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": get_settings().cors_allow_origin,
        "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
    }


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=_cors_headers())


def get_webhook_processor(request: Request) -> WebhookProcessor | None:
    """The processor built at startup; None when configuration is incomplete."""
    return getattr(request.app.state, "webhook_processor", None)


@router.options("/stripe")
async def stripe_webhook_preflight():
    return Response(status_code=200, headers=_cors_headers())


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    processor: WebhookProcessor | None = Depends(get_webhook_processor),
    db: AsyncSession = Depends(get_db),
):
    if not stripe_signature:
        logger.warning("Stripe webhook without %s header", SIGNATURE_HEADER)
        return _error(MissingSignature.status_code, MissingSignature.message)

    if processor is None:
        logger.error("Stripe webhook received but the processor is not configured")
        return _error(ConfigurationError.status_code, ConfigurationError.message)

    payload = await request.body()
    logger.info("Stripe webhook received (%d bytes)", len(payload))

    try:
        result = await processor.process(db, payload, stripe_signature)
    except WebhookRejected as e:
        return _error(e.status_code, e.message)
    except Exception as e:
        # Already logged and recorded by the processor; a 500 makes Stripe redeliver
        return _error(500, str(e) or "Internal server error")

    return JSONResponse(result.to_response(), headers=_cors_headers())
