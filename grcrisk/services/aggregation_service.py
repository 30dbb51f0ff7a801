"""
Risk Aggregation Service: the engine's public entry point.

Orchestrates one call as:
    1. Serve from the result cache when possible
    2. Load inputs with a fixed number of bulk reads
    3. Score every risk (inherent + residual)
    4. Build the organizational index
    5. Roll up the requested levels
    6. Store the result

Sessions are passed in by the caller. Mutation hooks write the denormalized
per-link residual inside the caller's unit of work (flush, never commit), so
a commit never exposes a changed risk with a stale residual.
"""

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from grcrisk.config import Settings, settings as default_settings
from grcrisk.db import queries
from grcrisk.engine.hierarchy import OrgIndex, build_org_index
from grcrisk.engine.residual import compute_inherent, compute_residual, controls_by_risk, score_risks
from grcrisk.engine.rollup import normalize_levels, rollup, summarize_by_level
from grcrisk.engine.strategy import classify_level
from grcrisk.engine.types import (
    AggregationConfig,
    Attachment,
    Level,
    ResidualRisk,
    RiskLevel,
    RollupResult,
)
from grcrisk.exceptions import RiskNotFoundError
from grcrisk.schemas.aggregation import (
    AggregatedRiskLevels,
    NodeRiskAggregate,
    ResidualResult,
    ValidatedAggregatedRiskLevels,
    ValidatedNodeRiskAggregate,
)
from grcrisk.services.config_provider import ConfigProvider
from grcrisk.services.result_cache import VIEW_ALL, VIEW_VALIDATED, AggregationCache

logger = structlog.get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _level_names(levels: Iterable[Level]) -> List[str]:
    return sorted(level.value for level in levels)


class RiskAggregationService:
    """Residual computation, hierarchical rollup and cache maintenance."""

    def __init__(
        self,
        config_provider: ConfigProvider,
        cache: AggregationCache,
        settings: Settings = default_settings,
    ):
        self.config_provider = config_provider
        self.cache = cache
        self.settings = settings

    # ── Residual risk ─────────────────────────────────────────────────

    async def compute_residual(self, session: AsyncSession, risk_id: str) -> ResidualResult:
        """Residual probability, impact and risk of one risk (read-only)."""
        risks = await queries.load_risks(session, [risk_id])
        if not risks:
            raise RiskNotFoundError(risk_id)
        risk = risks[0]

        links = await queries.load_links(session, [risk_id])
        controls = await queries.load_controls(session, [link.control_id for link in links]) if links else {}
        max_effectiveness = await self.config_provider.get_max_effectiveness()

        residual = compute_residual(
            risk, controls_by_risk(links, controls).get(risk_id, []), max_effectiveness
        )
        return ResidualResult(
            risk_id=risk_id,
            probability=residual.probability,
            impact=residual.impact,
            risk=residual.risk,
            inherent_risk=compute_inherent(risk),
        )

    async def _recalculate(self, session: AsyncSession, risk_ids: Optional[Sequence[str]] = None) -> int:
        """Recompute and write back residuals for ``risk_ids`` (all when None)."""
        if risk_ids is not None and not risk_ids:
            return 0
        risks = await queries.load_risks(session, risk_ids)
        links = await queries.load_links(session, risk_ids)
        controls = await queries.load_controls(session)
        max_effectiveness = await self.config_provider.get_max_effectiveness()

        residuals: Dict[str, ResidualRisk] = {}
        score_risks(risks, controls, links, max_effectiveness, residuals=residuals)

        linked = {link.risk_id for link in links}
        written = await queries.write_residuals(
            session,
            {risk_id: residual.risk for risk_id, residual in residuals.items() if risk_id in linked},
        )
        logger.info("residuals_recalculated", risks=len(risks), written=written)
        return written

    async def recalculate_all_residual_risks(self, session: AsyncSession) -> int:
        """
        Batch recompute of every risk's residual.

        Triggered by configuration or control-effectiveness changes. Runs in
        the caller's transaction and invalidates the result cache.
        """
        written = await self._recalculate(session)
        await self.invalidate_cache()
        return written

    # ── Mutation hooks ────────────────────────────────────────────────

    async def handle_risk_mutation(self, session: AsyncSession, risk_id: str) -> int:
        """A risk was created, re-scored or soft-deleted."""
        written = await self._recalculate(session, [risk_id])
        await self.invalidate_cache()
        return written

    async def handle_link_mutation(self, session: AsyncSession, risk_id: str) -> int:
        """A control was linked to or unlinked from ``risk_id``."""
        return await self.handle_risk_mutation(session, risk_id)

    async def handle_control_mutation(self, session: AsyncSession, control_id: str) -> int:
        """A control's effectiveness, target or status changed."""
        risk_ids = await queries.risk_ids_for_control(session, control_id)
        written = await self._recalculate(session, risk_ids)
        await self.invalidate_cache()
        return written

    async def handle_structure_mutation(self) -> None:
        """Divisions, groups, units or risk-to-node associations changed."""
        await self.invalidate_cache()

    async def handle_config_change(self, session: AsyncSession) -> int:
        """
        Aggregation configuration changed: reload it and recompute every residual.

        The configuration is re-read through ``session`` so an edit made in the
        same unit of work drives the recompute before it is committed.
        """
        await self.config_provider.reload(session)
        return await self.recalculate_all_residual_risks(session)

    async def invalidate_cache(self) -> None:
        await self.cache.invalidate()

    # ── Rollup ────────────────────────────────────────────────────────

    async def _score_all(self, session: AsyncSession, config: AggregationConfig):
        risks = await queries.load_risks(session)
        controls = await queries.load_controls(session)
        links = await queries.load_links(session)
        return risks, score_risks(risks, controls, links, config.max_effectiveness)

    async def _build_index(self, session: AsyncSession, attachments: List[Attachment]) -> OrgIndex:
        divisions, groups, units = await queries.load_org_nodes(session)
        return build_org_index(divisions, groups, units, attachments)

    async def _compute(
        self,
        session: AsyncSession,
        config: AggregationConfig,
        levels: frozenset,
        validated_only: bool,
    ) -> RollupResult:
        risks, scores = await self._score_all(session, config)
        if validated_only:
            attachments = await queries.load_validated_attachments(session)
        else:
            attachments = [Attachment.of_risk(risk) for risk in risks]
        index = await self._build_index(session, attachments)
        result = rollup(index, scores, config, levels)
        logger.info(
            "risk_aggregation_computed",
            validated_only=validated_only,
            method=config.method.value,
            risks=len(scores),
            **summarize_by_level(result),
        )
        return result

    async def get_aggregated_risk_levels(
        self,
        session: AsyncSession,
        levels: Optional[Iterable] = None,
    ) -> AggregatedRiskLevels:
        """Per-node {inherent, residual, count} for the requested levels (all by default)."""
        requested = normalize_levels(levels)
        cached = await self.cache.get(VIEW_ALL, requested)
        if cached is not None:
            return AggregatedRiskLevels.model_validate(cached)

        config = await self.config_provider.get_aggregation_config()
        result = await self._compute(session, config, requested, validated_only=False)

        response = AggregatedRiskLevels(
            division={k: NodeRiskAggregate(**asdict(v)) for k, v in result.division.items()},
            group={k: NodeRiskAggregate(**asdict(v)) for k, v in result.group.items()},
            unit={k: NodeRiskAggregate(**asdict(v)) for k, v in result.unit.items()},
            levels=_level_names(requested),
            method=config.method.value,
            generated_at=_now(),
        )
        await self.cache.set(VIEW_ALL, requested, response.model_dump(mode="json"))
        return response

    def risk_level_label(self, level: RiskLevel) -> str:
        return self.settings.risk_level_labels.get(level.value, level.value)

    def _labelled(self, aggregates, config: AggregationConfig) -> Dict[str, ValidatedNodeRiskAggregate]:
        labelled = {}
        for node_id, aggregate in aggregates.items():
            level = classify_level(aggregate.residual_risk, config.thresholds)
            labelled[node_id] = ValidatedNodeRiskAggregate(
                **asdict(aggregate),
                risk_level=level.value,
                risk_level_label=self.risk_level_label(level),
            )
        return labelled

    async def get_validated_aggregated_risk_levels(
        self,
        session: AsyncSession,
        levels: Optional[Iterable] = None,
    ) -> ValidatedAggregatedRiskLevels:
        """
        Dashboard view: only risks whose organizational association is validated,
        with a display label for each node's aggregated residual.
        """
        requested = normalize_levels(levels)
        cached = await self.cache.get(VIEW_VALIDATED, requested)
        if cached is not None:
            return ValidatedAggregatedRiskLevels.model_validate(cached)

        config = await self.config_provider.get_aggregation_config()
        result = await self._compute(session, config, requested, validated_only=True)

        message = None
        if not any(a.risk_count for level in Level for a in result.for_level(level).values()):
            message = "No validated risks yet. Aggregates will appear once risk associations are validated."

        response = ValidatedAggregatedRiskLevels(
            division=self._labelled(result.division, config),
            group=self._labelled(result.group, config),
            unit=self._labelled(result.unit, config),
            levels=_level_names(requested),
            method=config.method.value,
            generated_at=_now(),
            message=message,
        )
        await self.cache.set(VIEW_VALIDATED, requested, response.model_dump(mode="json"))
        return response

    async def prewarm(self, session: AsyncSession) -> None:
        """Populate the cache for the full-tree request of both views."""
        await self.get_aggregated_risk_levels(session)
        await self.get_validated_aggregated_risk_levels(session)
        logger.info("aggregation_cache_prewarmed")
