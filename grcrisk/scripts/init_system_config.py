"""
Seed the aggregation configuration keys.

Usage:
    python -m grcrisk.scripts.init_system_config

Inserts every aggregation key with its documented default. Existing rows are
left untouched, so running it twice is harmless.
"""

import asyncio
from typing import Dict, List, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grcrisk.config import Settings, settings
from grcrisk.db.engine import close_db, get_db_session, init_db
from grcrisk.db.models import SystemConfig
from grcrisk.engine.types import RiskLevel
from grcrisk.logging_setup import configure_logging
from grcrisk.services.config_provider import (
    KEY_HIGH_MAX,
    KEY_LOW_MAX,
    KEY_MAX_EFFECTIVENESS,
    KEY_MEDIUM_MAX,
    KEY_METHOD,
    WEIGHT_KEYS,
)

logger = structlog.get_logger(__name__)


def default_entries(settings: Settings = settings) -> List[Tuple[str, str, str, str]]:
    """(key, value, data_type, description) for every aggregation key."""
    weights: Dict[RiskLevel, float] = {
        RiskLevel.LOW: settings.default_weight_low,
        RiskLevel.MEDIUM: settings.default_weight_medium,
        RiskLevel.HIGH: settings.default_weight_high,
        RiskLevel.CRITICAL: settings.default_weight_critical,
    }
    entries = [
        (
            KEY_METHOD,
            settings.default_aggregation_method,
            "string",
            "Aggregation method: average, worst_case or weighted",
        ),
        (KEY_LOW_MAX, f"{settings.default_low_max:g}", "number", "Upper bound of the low risk level"),
        (KEY_MEDIUM_MAX, f"{settings.default_medium_max:g}", "number", "Upper bound of the medium risk level"),
        (KEY_HIGH_MAX, f"{settings.default_high_max:g}", "number", "Upper bound of the high risk level"),
        (
            KEY_MAX_EFFECTIVENESS,
            str(settings.default_max_effectiveness),
            "number",
            "Ceiling applied to every control's effectiveness percentage",
        ),
    ]
    for level, key in WEIGHT_KEYS.items():
        entries.append(
            (key, f"{weights[level]:g}", "number", f"Weight of {level.value} risks in weighted aggregation")
        )
    return entries


async def seed_config(session: AsyncSession, settings: Settings = settings) -> int:
    """Insert missing keys; returns how many rows were created."""
    entries = default_entries(settings)
    result = await session.execute(
        select(SystemConfig.config_key).where(
            SystemConfig.config_key.in_([key for key, _, _, _ in entries])
        )
    )
    existing = set(result.scalars().all())

    created = 0
    for key, value, data_type, description in entries:
        if key in existing:
            continue
        session.add(
            SystemConfig(
                config_key=key,
                config_value=value,
                data_type=data_type,
                description=description,
            )
        )
        created += 1
    await session.flush()
    logger.info("system_config_seeded", created=created, existing=len(existing))
    return created


async def main() -> None:
    configure_logging(settings)
    await init_db(settings)
    try:
        async with get_db_session(settings) as session:
            created = await seed_config(session)
        print(f"Created {created} configuration keys.")
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main())
