"""Scheduled task for the consent expiry sweep.

Moves every pending or granted consent whose expiry has passed to
expired. Overlapping runs are safe: each consent is moved by a
conditional update, so a second run finds nothing left to do.

Usage:
    # Run directly
    python -m hospital_service.tasks.consent_expiry

    # Or via cron (every 15 minutes)
    */15 * * * * cd /path/to/project && python -m hospital_service.tasks.consent_expiry

    # Environment variables:
    DATABASE_URL - PostgreSQL connection string
"""

import argparse
import asyncio
import logging
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hospital_service.core.config import settings
from hospital_service.core.logging import setup_logging
from hospital_service.services.consent import ConsentService
from hospital_service.services.events import EventPublisher
from hospital_service.utils.time import utc_now

logger = logging.getLogger(__name__)


async def run_consent_expiry_task(
    database_url: str | None = None,
    publisher: EventPublisher | None = None,
) -> dict:
    """Run the consent expiry sweep once.

    Args:
        database_url: Database connection string. Defaults to settings.database_url.
        publisher: Sink for consent.expired events

    Returns:
        Job results summary
    """
    db_url = database_url or settings.database_url

    # Convert sync URL to async if needed
    if db_url.startswith("postgresql://"):
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    started_at = utc_now()
    logger.info(f"Starting consent expiry task at {started_at.isoformat()}")

    engine = create_async_engine(db_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with async_session() as session:
            service = ConsentService(session, publisher=publisher)
            expired = await service.expire_consents()

        results = {
            "started_at": started_at.isoformat(),
            "expired": expired,
        }
        logger.info(f"Consent expiry complete: {results}")
        return results

    finally:
        await engine.dispose()


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Expire consents past their expiry time")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database URL (overrides DATABASE_URL env var)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level (overrides LOG_LEVEL env var)",
    )
    args = parser.parse_args()

    setup_logging(args.log_level)

    try:
        results = asyncio.run(run_consent_expiry_task(database_url=args.database_url))
        print(f"Job completed successfully: {results}")
        sys.exit(0)
    except Exception as e:
        logger.exception(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
