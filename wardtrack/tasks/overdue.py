"""
WardTrack - Overdue Scan Tasks
Periodic overdue classification across active plans (counts only, no delivery)
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from wardtrack.celery_app import celery_app
from wardtrack.dependencies import run_with_plan_service

logger = logging.getLogger(__name__)


def summarize_report(report) -> dict:
    return {
        "as_of": report.as_of.isoformat(),
        "reviews": len(report.reviews),
        "procedures": len(report.procedures),
        "medications": len(report.medications),
        "total": report.total,
        "plans": sorted({entry.plan_id for entry in report.reviews + report.procedures + report.medications}),
    }


@celery_app.task(name="wardtrack.tasks.overdue.scan_overdue", bind=True, max_retries=3)
def scan_overdue_task(self, as_of: Optional[str] = None) -> dict:
    """
    Scan every active plan for overdue work

    Args:
        as_of: ISO timestamp to scan against (default: now)

    Returns:
        Overdue counts per category
    """
    try:
        now = datetime.fromisoformat(as_of) if as_of else None
        report = asyncio.run(run_with_plan_service(lambda service: service.scan_overdue(now)))
        summary = summarize_report(report)

        if report.total:
            logger.warning(
                f"{report.total} overdue entries across {len(summary['plans'])} plans "
                f"({summary['reviews']} reviews, {summary['procedures']} procedures, "
                f"{summary['medications']} doses)"
            )
        else:
            logger.info("✓ No overdue work on active plans")
        return summary

    except Exception as e:
        logger.error(f"Overdue scan failed: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))
