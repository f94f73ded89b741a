"""
Scheduled ingestion entry point.

Runs as a cron service (e.g. schedule: 0 5 * * *, daily at 5 AM UTC).
One invocation = one IngestionJob run; no timers are kept between runs.

IMPORTANT: This script must exit cleanly after completion.
Open DB connections will prevent the scheduler from marking the job as finished.
"""

from __future__ import annotations

import asyncio
import sys
import uuid

from harvester.core.config import get_settings
from harvester.core.logging import get_logger, setup_logging

setup_logging()
logger = get_logger("cron")
settings = get_settings()


async def main() -> int:
    """Run one ingestion job and report its summary."""
    run_id = str(uuid.uuid4())
    logger.info("cron_triggered", run_id=run_id, environment=settings.app_env)

    from harvester.models.database import async_session, engine, init_db
    from harvester.services.ingestion_job import IngestionJob

    try:
        await init_db()
        summary = await IngestionJob(async_session).run(run_id)
        logger.info(
            "cron_completed",
            run_id=run_id,
            duration_ms=summary.duration_ms,
            created=summary.total_created,
            duplicates=summary.duplicates_found,
            analyzed=summary.analysis.analyzed,
            errors=summary.errors,
        )
        # Partial failures are reported in the summary, not the exit code
        return 0

    except Exception as e:
        logger.error("cron_failed", run_id=run_id, error=str(e))
        return 1

    finally:
        await engine.dispose()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
