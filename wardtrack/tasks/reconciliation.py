"""
WardTrack - Reconciliation Tasks
Celery tasks pushing unsynced local writes to the remote store
"""

import asyncio
import logging

import redis
from redis.exceptions import LockError

from wardtrack.celery_app import celery_app
from wardtrack.config import settings
from wardtrack.dependencies import PATIENTS, TREATMENT_PLANS, run_with_plan_service
from wardtrack.exceptions import ValidationError

logger = logging.getLogger(__name__)


async def _reconcile(collection: str) -> dict:
    async def operation(service):
        coordinator = service.plans if collection == TREATMENT_PLANS else service.patients
        result = await coordinator.reconcile()
        return result.model_dump()

    return await run_with_plan_service(operation)


@celery_app.task(name="wardtrack.tasks.reconciliation.reconcile_collection", bind=True, max_retries=3)
def reconcile_collection_task(self, collection: str) -> dict:
    """
    Reconcile one collection

    A Redis lock per collection keeps passes on different workers from overlapping.

    Args:
        collection: Collection name (patients or treatment_plans)

    Returns:
        Reconcile result as dictionary
    """
    if collection not in (PATIENTS, TREATMENT_PLANS):
        raise ValidationError(f"Unknown sync collection: {collection}")

    client = redis.from_url(settings.redis_url)
    lock = client.lock(
        f"wardtrack:reconcile:{collection}",
        timeout=settings.reconcile_lock_timeout_seconds
    )
    if not lock.acquire(blocking=False):
        logger.info(f"Reconcile of {collection} already running elsewhere; skipping")
        return {"collection": collection, "skipped": True}

    try:
        logger.info(f"Starting reconcile of {collection}")
        result = asyncio.run(_reconcile(collection))
        logger.info(f"✓ Reconcile of {collection}: {result['synced']} synced, {result['failed']} failed")
        return result

    except Exception as e:
        logger.error(f"Reconcile task failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=30 * (2 ** self.request.retries))

    finally:
        try:
            lock.release()
        except LockError:
            logger.warning(f"Reconcile lock for {collection} expired before release")
