"""
Test fixtures for the GRC risk engine.

Provides:
- Async DB session fixtures (SQLite in-memory, fresh per test)
- Static config store, memory result cache and a wired aggregation service
- Sample data helpers for the organizational tree, risks and controls
"""

from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grcrisk.config import Settings
from grcrisk.db.engine import Base
from grcrisk.db.models import (  # noqa: F401  register all models
    Control,
    Division,
    ProcessGroup,
    ProcessUnit,
    Risk,
    RiskControl,
    RiskOrgLink,
    SystemConfig,
)
from grcrisk.services.aggregation_service import RiskAggregationService
from grcrisk.services.config_provider import ConfigProvider, StaticConfigStore
from grcrisk.services.result_cache import AggregationCache, MemoryResultStore

# In-memory SQLite for fast, isolated tests
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def engine():
    """Create a test database engine with all tables."""
    eng = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    """Create a session factory bound to the test engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean DB session per test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Services ─────────────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="test",
        database_url=TEST_DB_URL,
        result_cache_backend="memory",
        config_store_backend="static",
        default_aggregation_method="weighted",
    )


@pytest.fixture
def config_store() -> StaticConfigStore:
    return StaticConfigStore()


@pytest.fixture
def config_provider(config_store, test_settings) -> ConfigProvider:
    return ConfigProvider(config_store, test_settings)


@pytest.fixture
def result_store() -> MemoryResultStore:
    return MemoryResultStore()


@pytest.fixture
def aggregation_cache(result_store) -> AggregationCache:
    return AggregationCache(result_store, ttl_seconds=300)


@pytest.fixture
def service(config_provider, aggregation_cache, test_settings) -> RiskAggregationService:
    return RiskAggregationService(config_provider, aggregation_cache, test_settings)


# ── Sample data helpers ──────────────────────────────────────────────────


async def create_division(session: AsyncSession, code: str = "DIV", **kwargs) -> Division:
    division = Division(code=code, name=kwargs.pop("name", f"Division {code}"), **kwargs)
    session.add(division)
    await session.flush()
    return division


async def create_group(
    session: AsyncSession, division_id: Optional[str], code: str = "GRP", **kwargs
) -> ProcessGroup:
    group = ProcessGroup(
        division_id=division_id, code=code, name=kwargs.pop("name", f"Group {code}"), **kwargs
    )
    session.add(group)
    await session.flush()
    return group


async def create_unit(
    session: AsyncSession, group_id: Optional[str], code: str = "UNIT", **kwargs
) -> ProcessUnit:
    unit = ProcessUnit(
        group_id=group_id, code=code, name=kwargs.pop("name", f"Unit {code}"), **kwargs
    )
    session.add(unit)
    await session.flush()
    return unit


async def create_risk(
    session: AsyncSession,
    probability: float,
    impact: float,
    code: str = "R",
    **kwargs,
) -> Risk:
    """A risk with stored inherent = probability × impact."""
    risk = Risk(
        code=code,
        name=kwargs.pop("name", f"Risk {code}"),
        probability=Decimal(str(probability)),
        impact=Decimal(str(impact)),
        inherent_risk=Decimal(str(round(probability * impact, 1))),
        **kwargs,
    )
    session.add(risk)
    await session.flush()
    return risk


async def create_control(
    session: AsyncSession,
    effectiveness: int,
    effect_target: str = "both",
    code: str = "C",
    **kwargs,
) -> Control:
    control = Control(
        code=code,
        name=kwargs.pop("name", f"Control {code}"),
        effectiveness=effectiveness,
        effect_target=effect_target,
        **kwargs,
    )
    session.add(control)
    await session.flush()
    return control


async def link_control(session: AsyncSession, risk_id: str, control_id: str) -> RiskControl:
    link = RiskControl(risk_id=risk_id, control_id=control_id, residual_risk=Decimal("0"))
    session.add(link)
    await session.flush()
    return link


async def create_org_link(
    session: AsyncSession,
    risk_id: str,
    validation_status: str = "validated",
    **node_ids,
) -> RiskOrgLink:
    org_link = RiskOrgLink(risk_id=risk_id, validation_status=validation_status, **node_ids)
    session.add(org_link)
    await session.flush()
    return org_link
