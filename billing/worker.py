"""ARQ worker — background maintenance and replays of the webhook log."""

import logging

from arq import ArqRedis, cron
from arq.connections import RedisSettings

from billing.config import get_settings
from billing.constants import ARQ_JOB_TIMEOUT, ARQ_MAX_JOBS

logger = logging.getLogger(__name__)


async def replay_webhook_job(ctx: dict, event_id: str) -> str:
    """ARQ job: replay one stored webhook event; returns the final status."""
    from billing.app import build_webhook_processor
    from billing.db.session import async_session_factory

    processor = build_webhook_processor(get_settings())
    if processor is None:
        raise RuntimeError("Webhook processor is not configured")
    async with async_session_factory() as db:
        result = await processor.replay(db, event_id)
    logger.info("Replayed %s: %s", event_id, result.status)
    return result.status


async def sweep_stale_webhooks(ctx: dict) -> int:
    """Cron job: flag webhook logs stuck in "processing" as errors and enqueue a replay for each."""
    from billing.db.session import async_session_factory
    from billing.services.webhook_log_service import mark_stale_processing

    redis: ArqRedis = ctx.get("redis") or ctx.get("arq_redis")

    async with async_session_factory() as db:
        event_ids = await mark_stale_processing(db, get_settings().webhook_stale_after_minutes)

    enqueued = 0
    for event_id in event_ids:
        if redis:
            await redis.enqueue_job("replay_webhook_job", event_id)
            enqueued += 1
    logger.info("Stale webhook sweep: %d marked, %d replays enqueued", len(event_ids), enqueued)
    return len(event_ids)


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [replay_webhook_job]
    cron_jobs = [cron(sweep_stale_webhooks, minute={0, 15, 30, 45})]  # Every 15 minutes

    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)

    max_jobs = ARQ_MAX_JOBS
    job_timeout = ARQ_JOB_TIMEOUT
