"""
Hierarchical Rollup Engine.

Per-node {inherent, residual, count} for every node of the requested levels:

    unit:     its direct risks
    group:    its direct risks ∪ the direct risks of its units
    division: its direct risks ∪ the group sets of its groups

Risk sets are deduplicated by risk id before aggregation, so a risk reachable
through more than one path (for example attached both to a group and, through
a second association, to one of its units) counts once. Levels that were not
requested are skipped entirely.
"""

from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from grcrisk.engine.hierarchy import OrgIndex
from grcrisk.engine.residual import round1
from grcrisk.engine.strategy import aggregate
from grcrisk.engine.types import (
    AggregationConfig,
    Level,
    NodeAggregate,
    RiskScore,
    RollupResult,
)

logger = structlog.get_logger(__name__)

ALL_LEVELS = frozenset(Level)


def normalize_levels(levels: Optional[Iterable] = None) -> frozenset:
    """None or empty → every level; strings are accepted alongside Level members."""
    if not levels:
        return ALL_LEVELS
    return frozenset(Level(level) for level in levels)


def _unique(risk_ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(risk_ids))


def unit_risk_ids(index: OrgIndex, unit_id: str) -> List[str]:
    return index.risks_by_unit.get(unit_id, [])


def group_risk_ids(index: OrgIndex, group_id: str) -> List[str]:
    ids = list(index.risks_by_group.get(group_id, []))
    for unit_id in index.units_by_group.get(group_id, []):
        ids.extend(unit_risk_ids(index, unit_id))
    return _unique(ids)


def division_risk_ids(index: OrgIndex, division_id: str) -> List[str]:
    ids = list(index.risks_by_division.get(division_id, []))
    for group_id in index.groups_by_division.get(division_id, []):
        ids.extend(index.risks_by_group.get(group_id, []))
        for unit_id in index.units_by_group.get(group_id, []):
            ids.extend(unit_risk_ids(index, unit_id))
    return _unique(ids)


def aggregate_node(
    risk_ids: Iterable[str],
    scores: Mapping[str, RiskScore],
    config: AggregationConfig,
) -> NodeAggregate:
    """
    Aggregate one node. Ids without a score (deleted risks) are ignored.

    Inherent and residual series are aggregated independently, each
    classified by its own values.
    """
    node_scores = [scores[rid] for rid in risk_ids if rid in scores]
    if not node_scores:
        return NodeAggregate()
    inherent = aggregate([s.inherent for s in node_scores], config)
    residual = aggregate([s.residual for s in node_scores], config)
    return NodeAggregate(
        inherent_risk=round1(inherent),
        residual_risk=round1(residual),
        risk_count=len(node_scores),
    )


def rollup(
    index: OrgIndex,
    scores: Mapping[str, RiskScore],
    config: AggregationConfig,
    levels: Optional[Iterable] = None,
) -> RollupResult:
    """Aggregate every node of the requested levels."""
    requested = normalize_levels(levels)
    result = RollupResult()

    if Level.UNIT in requested:
        result.unit = {
            unit_id: aggregate_node(unit_risk_ids(index, unit_id), scores, config)
            for unit_id in index.unit_ids
        }
    if Level.GROUP in requested:
        result.group = {
            group_id: aggregate_node(group_risk_ids(index, group_id), scores, config)
            for group_id in index.group_ids
        }
    if Level.DIVISION in requested:
        result.division = {
            division_id: aggregate_node(division_risk_ids(index, division_id), scores, config)
            for division_id in index.division_ids
        }

    logger.debug(
        "rollup_computed",
        levels=sorted(level.value for level in requested),
        method=config.method.value,
        nodes=len(result.unit) + len(result.group) + len(result.division),
    )
    return result


def summarize_by_level(result: RollupResult) -> Dict[str, int]:
    """Node counts per level (for logging)."""
    return {level.value: len(result.for_level(level)) for level in Level}
