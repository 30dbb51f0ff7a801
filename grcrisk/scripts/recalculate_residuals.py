"""
Recompute the stored residual of every risk.

Usage:
    python -m grcrisk.scripts.recalculate_residuals [--prewarm]

Run after bulk imports or configuration edits made outside the service.
"""

import argparse
import asyncio

import structlog

from grcrisk.config import settings
from grcrisk.db.engine import close_db, get_db_session
from grcrisk.logging_setup import configure_logging
from grcrisk.services.registry import get_services

logger = structlog.get_logger(__name__)


async def main(prewarm: bool = False) -> None:
    configure_logging(settings)
    services = get_services()
    try:
        async with get_db_session(settings) as session:
            written = await services.aggregation_service.handle_config_change(session)
        if prewarm:
            async with get_db_session(settings) as session:
                await services.aggregation_service.prewarm(session)
        logger.info("recalculation_finished", risks_written=written, prewarmed=prewarm)
        print(f"Recalculated residuals for {written} risks.")
    finally:
        await services.close()
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--prewarm", action="store_true", help="populate the result cache afterwards")
    args = parser.parse_args()
    asyncio.run(main(prewarm=args.prewarm))
