"""
Prefect Workflow Orchestration - Hourly Sync

Scheduled execution of the dashboard sync job with:
- Retries on upstream failures
- Failure alerting through the run logger
- A post-sync freshness check on the hourly table
"""

from datetime import timedelta
from typing import Optional

from prefect import flow, get_run_logger, task

from salesdash.config import get_settings
from salesdash.core.calendar import to_iso
from salesdash.database.connection import open_row_store
from salesdash.ingestion.sync_job import sync_once
from salesdash.metrics.aggregation import build_quality
from salesdash.reports.context import utc_now


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="sync_store",
    description="Pull Shopify orders and marketing spend into the row store",
    retries=2,
    retry_delay_seconds=120,
)
async def sync_store(days: Optional[int] = None) -> dict:
    """Run the sync job once"""
    logger = get_run_logger()

    summary = await sync_once(days=days)

    logger.info(
        f"Sync complete: {summary.shopify.orders_fetched} orders, "
        f"{summary.store.hourly_rows_written} hourly rows written"
    )
    return summary.model_dump()


@task(
    name="check_freshness",
    description="Check that the hourly table holds recent rows",
)
async def check_freshness(max_age_hours: int = 3) -> dict:
    """Quality stats for the last day of hourly rows"""
    logger = get_run_logger()
    settings = get_settings()

    now = utc_now()
    async with open_row_store(settings) as store:
        rows = await store.fetch_hourly_since(now - timedelta(days=1))

    quality = build_quality(rows, now)
    age = quality["latest_row_age_minutes"]
    stale = age is None or age > max_age_hours * 60

    logger.info(f"Freshness: {quality['row_count']} rows in the last day, latest row {age} minutes old")
    return {"stale": stale, "quality": quality}


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="hourly_dashboard_sync",
    description="Hourly sync of Shopify orders and Apps Script marketing spend",
    retries=1,
    retry_delay_seconds=300,
)
async def hourly_dashboard_sync(days: Optional[int] = None, max_age_hours: int = 3) -> dict:
    """
    Hourly sync pipeline.

    Steps:
    1. Sync orders and marketing into the row store
    2. Check hourly table freshness
    3. Alert on failure or stale data
    """
    logger = get_run_logger()
    logger.info(f"Starting hourly dashboard sync at {to_iso(utc_now())}")

    results = {"steps": {}}

    try:
        results["steps"]["sync"] = await sync_store(days)
        freshness = await check_freshness(max_age_hours)
        results["steps"]["freshness"] = freshness

        if freshness["stale"]:
            await send_alert(
                alert_type="Stale Dashboard Data",
                message=f"No hourly row within the last {max_age_hours} hours",
                severity="warning",
            )

        results["status"] = "success"

    except Exception as e:
        logger.error(f"Hourly sync failed: {e}")

        await send_alert(
            alert_type="Sync Failed",
            message=f"Hourly dashboard sync failed: {str(e)}",
            severity="critical",
        )

        results["status"] = "failed"
        results["error"] = str(e)
        raise

    return results


# =============================================================================
# DEPLOYMENT CONFIGURATION
# =============================================================================

if __name__ == "__main__":
    import asyncio

    asyncio.run(hourly_dashboard_sync())
