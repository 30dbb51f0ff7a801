"""
Risk Aggregation Service Integration Tests.

Tests the full path: bulk loads → residuals → index → rollup → cache,
against an in-memory database (file-backed where a second connection
must not see the caller's uncommitted work).
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from grcrisk.db import queries
from grcrisk.db.engine import Base
from grcrisk.db.models import SystemConfig
from grcrisk.engine.types import Level
from grcrisk.exceptions import RiskNotFoundError
from grcrisk.services.aggregation_service import RiskAggregationService
from grcrisk.services.config_provider import ConfigProvider, DatabaseConfigStore
from grcrisk.services.result_cache import KEY_PREFIX

from tests.conftest import (
    create_control,
    create_division,
    create_group,
    create_org_link,
    create_risk,
    create_unit,
    link_control,
)


@pytest_asyncio.fixture
async def tree(db) -> dict:
    """
    D ─ G ─ U
    U holds R1 (2 × 5 = 10, no controls) and R2 (4 × 4 = 16, one 50% control).
    """
    division = await create_division(db, "D")
    group = await create_group(db, division.id, "G")
    unit = await create_unit(db, group.id, "U")
    r1 = await create_risk(db, 2, 5, "R1", unit_id=unit.id)
    r2 = await create_risk(db, 4, 4, "R2", unit_id=unit.id)
    control = await create_control(db, 50, "both", "C1")
    await link_control(db, r2.id, control.id)
    return {
        "division": division, "group": group, "unit": unit,
        "r1": r1, "r2": r2, "control": control,
    }


def _count_statements(engine):
    counter = {"n": 0}

    def _before(conn, cursor, statement, parameters, context, executemany):
        counter["n"] += 1

    event.listen(engine.sync_engine, "before_cursor_execute", _before)
    return counter


@pytest.mark.asyncio
class TestComputeResidual:

    async def test_residual_with_control(self, service, db, tree):
        result = await service.compute_residual(db, tree["r2"].id)
        assert result.probability == 2.0
        assert result.impact == 2.0
        assert result.risk == 4.0
        assert result.inherent_risk == 16.0

    async def test_residual_without_controls(self, service, db, tree):
        result = await service.compute_residual(db, tree["r1"].id)
        assert result.risk == result.inherent_risk == 10.0

    async def test_unknown_risk(self, service, db):
        with pytest.raises(RiskNotFoundError) as exc:
            await service.compute_residual(db, "nope")
        assert exc.value.to_dict()["error_code"] == "E2000"

    async def test_soft_deleted_risk(self, service, db, tree):
        tree["r1"].is_deleted = True
        await db.flush()
        with pytest.raises(RiskNotFoundError):
            await service.compute_residual(db, tree["r1"].id)

    async def test_inactive_and_deleted_controls_ignored(self, service, db, tree):
        tree["control"].is_active = False
        await db.flush()
        assert (await service.compute_residual(db, tree["r2"].id)).risk == 16.0

        tree["control"].is_active = True
        tree["control"].is_deleted = True
        await db.flush()
        assert (await service.compute_residual(db, tree["r2"].id)).risk == 16.0


@pytest.mark.asyncio
class TestAggregatedRiskLevels:

    async def test_average(self, service, config_store, db, tree):
        config_store.set("risk_aggregation_method", "average")
        result = await service.get_aggregated_risk_levels(db)

        group = result.group[tree["group"].id]
        assert group.residual_risk == 7.0
        assert group.inherent_risk == 13.0
        assert group.risk_count == 2
        assert result.division[tree["division"].id].risk_count == 2
        assert result.unit[tree["unit"].id].residual_risk == 7.0
        assert result.method == "average"
        assert result.levels == ["division", "group", "unit"]

    async def test_worst_case(self, service, config_store, db, tree):
        config_store.set("risk_aggregation_method", "worst_case")
        result = await service.get_aggregated_risk_levels(db)
        assert result.group[tree["group"].id].residual_risk == 10.0
        assert result.division[tree["division"].id].inherent_risk == 16.0

    async def test_level_subset(self, service, db, tree):
        result = await service.get_aggregated_risk_levels(db, levels=["unit", "division"])
        assert result.group == {}
        assert set(result.unit) == {tree["unit"].id}
        assert result.levels == ["division", "unit"]

    async def test_soft_deleted_risk_excluded(self, service, config_store, db, tree):
        config_store.set("risk_aggregation_method", "average")
        tree["r1"].is_deleted = True
        await db.flush()
        result = await service.get_aggregated_risk_levels(db)
        assert result.group[tree["group"].id].risk_count == 1
        assert result.group[tree["group"].id].residual_risk == 4.0

    async def test_empty_tree_nodes(self, service, db, tree):
        lonely = await create_division(db, "Z")
        result = await service.get_aggregated_risk_levels(db)
        assert result.division[lonely.id].risk_count == 0
        assert result.division[lonely.id].residual_risk == 0.0

    async def test_dangling_group_reported_as_root(self, service, db, tree):
        orphan = await create_group(db, "missing-division", "ORPHAN")
        await create_risk(db, 3, 3, "R3", group_id=orphan.id)
        result = await service.get_aggregated_risk_levels(db)
        assert result.group[orphan.id].risk_count == 1
        assert result.division[tree["division"].id].risk_count == 2

    async def test_bounded_number_of_queries(self, service, engine, db, tree):
        """Query count does not grow with the size of the tree."""
        counter = _count_statements(engine)
        await service.get_aggregated_risk_levels(db)
        small = counter["n"]

        for n in range(5):
            group = await create_group(db, tree["division"].id, f"G{n}")
            for m in range(3):
                unit = await create_unit(db, group.id, f"U{n}{m}")
                await create_risk(db, 3, 3, f"R{n}{m}", unit_id=unit.id)
        await service.invalidate_cache()

        counter["n"] = 0
        await service.get_aggregated_risk_levels(db)
        assert counter["n"] == small


@pytest.mark.asyncio
class TestResultCaching:

    async def test_second_call_served_from_cache(self, service, db, tree):
        first = await service.get_aggregated_risk_levels(db)
        await create_risk(db, 5, 5, "R9", unit_id=tree["unit"].id)
        second = await service.get_aggregated_risk_levels(db)
        assert second.generated_at == first.generated_at
        assert second.unit[tree["unit"].id].risk_count == 2

    async def test_mutation_invalidates(self, service, db, tree):
        await service.get_aggregated_risk_levels(db)
        risk = await create_risk(db, 5, 5, "R9", unit_id=tree["unit"].id)
        await service.handle_risk_mutation(db, risk.id)
        result = await service.get_aggregated_risk_levels(db)
        assert result.unit[tree["unit"].id].risk_count == 3

    async def test_structure_mutation_invalidates(self, service, db, tree):
        await service.get_aggregated_risk_levels(db)
        unit = await create_unit(db, tree["group"].id, "U2")
        await service.handle_structure_mutation()
        result = await service.get_aggregated_risk_levels(db)
        assert unit.id in result.unit

    async def test_prewarm_fills_both_views(self, service, result_store, db, tree):
        await service.prewarm(db)
        all_levels = ",".join(sorted(level.value for level in Level))
        assert await result_store.get(f"{KEY_PREFIX}all:{all_levels}") is not None
        assert await result_store.get(f"{KEY_PREFIX}validated:{all_levels}") is not None


@pytest.mark.asyncio
class TestResidualWriteBack:

    async def test_recalculate_all(self, service, db, tree):
        written = await service.recalculate_all_residual_risks(db)
        assert written == 1
        residuals = await queries.load_link_residuals(db, tree["r2"].id)
        assert [float(r) for r in residuals] == [4.0]

    async def test_every_link_row_carries_risk_residual(self, service, db, tree):
        second = await create_control(db, 50, "probability", "C2")
        await link_control(db, tree["r2"].id, second.id)
        await service.handle_link_mutation(db, tree["r2"].id)
        residuals = await queries.load_link_residuals(db, tree["r2"].id)
        # probability 4 × 0.5 × 0.5 = 1, impact 4 × 0.5 = 2
        assert [float(r) for r in residuals] == [2.0, 2.0]

    async def test_control_mutation(self, service, db, tree):
        await service.recalculate_all_residual_risks(db)
        tree["control"].effectiveness = 0
        written = await service.handle_control_mutation(db, tree["control"].id)
        assert written == 1
        residuals = await queries.load_link_residuals(db, tree["r2"].id)
        assert [float(r) for r in residuals] == [16.0]

    async def test_risk_mutation_in_same_unit_of_work(self, service, session_factory, tree, db):
        await db.commit()
        async with session_factory() as session:
            risk = await session.get(type(tree["r2"]), tree["r2"].id)
            risk.probability = Decimal("2.0")
            risk.inherent_risk = Decimal("8.0")
            await service.handle_risk_mutation(session, risk.id)
            await session.commit()

        async with session_factory() as session:
            residuals = await queries.load_link_residuals(session, tree["r2"].id)
        # probability 2 × 0.5 = 1, impact 4 × 0.5 = 2
        assert [float(r) for r in residuals] == [2.0]

    async def test_rollback_discards_residual(self, service, session_factory, tree, db):
        await db.commit()
        async with session_factory() as session:
            await service.recalculate_all_residual_risks(session)
            await session.rollback()

        async with session_factory() as session:
            residuals = await queries.load_link_residuals(session, tree["r2"].id)
        assert [float(r) for r in residuals] == [0.0]

    async def test_config_change_recomputes(self, service, config_store, db, tree):
        await service.recalculate_all_residual_risks(db)
        assert await service.config_provider.get_max_effectiveness() == 100
        config_store.set("max_effectiveness_limit", "0")
        await service.handle_config_change(db)
        residuals = await queries.load_link_residuals(db, tree["r2"].id)
        assert [float(r) for r in residuals] == [16.0]

    async def test_config_edit_in_same_unit_of_work(self, tmp_path, aggregation_cache, test_settings):
        """A config row edited in the caller's session drives the recompute before commit."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/grc.db")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        provider = ConfigProvider(DatabaseConfigStore(factory), test_settings)
        service = RiskAggregationService(provider, aggregation_cache, test_settings)
        try:
            async with factory() as session:
                risk = await create_risk(session, 4, 4, "R")
                control = await create_control(session, 50, "both", "C")
                await link_control(session, risk.id, control.id)
                session.add(SystemConfig(config_key="max_effectiveness_limit", config_value="100"))
                await session.commit()
            assert await provider.get_max_effectiveness() == 100

            async with factory() as session:
                await session.execute(
                    update(SystemConfig)
                    .where(SystemConfig.config_key == "max_effectiveness_limit")
                    .values(config_value="0")
                )
                await service.handle_config_change(session)
                await session.commit()

            async with factory() as session:
                residuals = await queries.load_link_residuals(session, risk.id)
            assert [float(r) for r in residuals] == [16.0]
            assert await provider.get_max_effectiveness() == 0
        finally:
            await engine.dispose()

    async def test_no_links_nothing_written(self, service, db):
        await create_risk(db, 3, 3, "LONE")
        assert await service.recalculate_all_residual_risks(db) == 0


@pytest.mark.asyncio
class TestValidatedAggregatedRiskLevels:

    async def test_only_validated_associations(self, service, config_store, db, tree):
        config_store.set("risk_aggregation_method", "average")
        await create_org_link(db, tree["r1"].id, "validated", unit_id=tree["unit"].id)
        await create_org_link(db, tree["r2"].id, "pending_validation", unit_id=tree["unit"].id)

        result = await service.get_validated_aggregated_risk_levels(db)
        unit = result.unit[tree["unit"].id]
        assert unit.risk_count == 1
        assert unit.residual_risk == 10.0
        assert unit.risk_level == "medium"
        assert unit.risk_level_label == "Medium"
        assert result.division[tree["division"].id].risk_count == 1
        assert result.message is None

    async def test_association_node_not_risk_columns(self, service, db, tree):
        """The validated view places a risk where its association says."""
        other = await create_group(db, tree["division"].id, "G2")
        await create_org_link(db, tree["r2"].id, "validated", group_id=other.id)

        result = await service.get_validated_aggregated_risk_levels(db)
        assert result.group[other.id].risk_count == 1
        assert result.unit[tree["unit"].id].risk_count == 0
        assert result.group[other.id].risk_level == "low"

    async def test_group_and_unit_associations_counted_once(self, service, db, tree):
        """A risk validated at a group and at a unit below it is counted once per node."""
        await create_org_link(db, tree["r1"].id, "validated", group_id=tree["group"].id)
        await create_org_link(db, tree["r1"].id, "validated", unit_id=tree["unit"].id)

        result = await service.get_validated_aggregated_risk_levels(db)
        assert result.unit[tree["unit"].id].risk_count == 1
        assert result.group[tree["group"].id].risk_count == 1
        assert result.division[tree["division"].id].risk_count == 1
        assert result.division[tree["division"].id].residual_risk == 10.0

    async def test_no_validated_risks(self, service, db, tree):
        await create_org_link(db, tree["r1"].id, "rejected", unit_id=tree["unit"].id)
        result = await service.get_validated_aggregated_risk_levels(db)
        assert result.message is not None
        assert all(node.risk_count == 0 for node in result.unit.values())
        assert result.unit[tree["unit"].id].risk_level == "low"

    async def test_deleted_risk_excluded(self, service, db, tree):
        await create_org_link(db, tree["r1"].id, "validated", unit_id=tree["unit"].id)
        tree["r1"].is_deleted = True
        await db.flush()
        result = await service.get_validated_aggregated_risk_levels(db)
        assert result.unit[tree["unit"].id].risk_count == 0

    async def test_labels_from_settings(self, config_provider, aggregation_cache, test_settings, db, tree):
        labelled = test_settings.model_copy(update={"risk_level_labels": {"medium": "Medio"}})
        service = RiskAggregationService(config_provider, aggregation_cache, labelled)
        await create_org_link(db, tree["r1"].id, "validated", unit_id=tree["unit"].id)
        result = await service.get_validated_aggregated_risk_levels(db, levels=[Level.UNIT])
        assert result.unit[tree["unit"].id].risk_level_label == "Medio"
        assert result.division == {}
