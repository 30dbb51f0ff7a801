"""
Bulk query functions for the aggregation engine.

Each loader is a single SELECT returning plain engine records, so a full
rollup costs a fixed number of round trips regardless of tree size.
The residual write-back is one executemany UPDATE.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import structlog
from sqlalchemy import and_, bindparam, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from grcrisk.db.models import (
    Control,
    Division,
    ProcessGroup,
    ProcessUnit,
    Risk,
    RiskControl,
    RiskOrgLink,
    SystemConfig,
)
from grcrisk.engine.types import (
    Attachment,
    ControlRecord,
    EffectTarget,
    LinkRecord,
    OrgNodeRecord,
    RiskRecord,
    ValidationStatus,
)

logger = structlog.get_logger(__name__)


def _parse_effect_target(value: Optional[str], control_id: str) -> EffectTarget:
    try:
        return EffectTarget((value or "").strip().lower())
    except ValueError:
        logger.warning("control_effect_target_invalid", control_id=control_id, value=value)
        return EffectTarget.BOTH


# ── Risks ────────────────────────────────────────────────────────────────


async def load_risks(
    session: AsyncSession, risk_ids: Optional[Sequence[str]] = None
) -> List[RiskRecord]:
    """Non-deleted risks, optionally restricted to ``risk_ids``."""
    stmt = select(
        Risk.id, Risk.probability, Risk.impact,
        Risk.division_id, Risk.group_id, Risk.unit_id,
    ).where(Risk.is_deleted.is_(False))
    if risk_ids is not None:
        stmt = stmt.where(Risk.id.in_(list(risk_ids)))
    result = await session.execute(stmt)
    return [
        RiskRecord(
            id=row.id,
            probability=float(row.probability),
            impact=float(row.impact),
            division_id=row.division_id,
            group_id=row.group_id,
            unit_id=row.unit_id,
        )
        for row in result.all()
    ]


# ── Controls + Links ─────────────────────────────────────────────────────


async def load_controls(
    session: AsyncSession, control_ids: Optional[Sequence[str]] = None
) -> Dict[str, ControlRecord]:
    """Non-deleted controls keyed by id (inactive ones included, flagged)."""
    stmt = select(
        Control.id, Control.effectiveness, Control.effect_target, Control.is_active,
    ).where(Control.is_deleted.is_(False))
    if control_ids is not None:
        stmt = stmt.where(Control.id.in_(list(control_ids)))
    result = await session.execute(stmt)
    return {
        row.id: ControlRecord(
            id=row.id,
            effectiveness=int(row.effectiveness),
            effect_target=_parse_effect_target(row.effect_target, row.id),
            is_active=bool(row.is_active),
        )
        for row in result.all()
    }


async def load_links(
    session: AsyncSession, risk_ids: Optional[Sequence[str]] = None
) -> List[LinkRecord]:
    stmt = select(RiskControl.id, RiskControl.risk_id, RiskControl.control_id)
    if risk_ids is not None:
        stmt = stmt.where(RiskControl.risk_id.in_(list(risk_ids)))
    result = await session.execute(stmt)
    return [
        LinkRecord(id=row.id, risk_id=row.risk_id, control_id=row.control_id)
        for row in result.all()
    ]


async def risk_ids_for_control(session: AsyncSession, control_id: str) -> List[str]:
    """Risks linked to a control (the blast radius of a control edit)."""
    result = await session.execute(
        select(RiskControl.risk_id).where(RiskControl.control_id == control_id).distinct()
    )
    return list(result.scalars().all())


async def load_link_residuals(session: AsyncSession, risk_id: str) -> List[Decimal]:
    """Stored residual of every link row of a risk."""
    result = await session.execute(
        select(RiskControl.residual_risk).where(RiskControl.risk_id == risk_id)
    )
    return list(result.scalars().all())


async def write_residuals(session: AsyncSession, residuals: Mapping[str, float]) -> int:
    """
    Write each risk's residual onto all of its link rows.

    Runs inside the caller's transaction; nothing is committed here.
    Returns the number of risks written.
    """
    if not residuals:
        return 0
    table = RiskControl.__table__
    stmt = (
        update(table)
        .where(table.c.risk_id == bindparam("b_risk_id"))
        .values(residual_risk=bindparam("b_residual"))
    )
    params = [
        {"b_risk_id": risk_id, "b_residual": Decimal(str(value))}
        for risk_id, value in residuals.items()
    ]
    await session.execute(stmt, params)
    await session.flush()
    return len(params)


# ── Organizational tree ──────────────────────────────────────────────────


async def load_org_nodes(
    session: AsyncSession,
) -> Tuple[List[OrgNodeRecord], List[OrgNodeRecord], List[OrgNodeRecord]]:
    """Live divisions, groups and units (three SELECTs)."""
    divisions = await session.execute(
        select(Division.id).where(Division.is_deleted.is_(False)).order_by(Division.code)
    )
    groups = await session.execute(
        select(ProcessGroup.id, ProcessGroup.division_id)
        .where(ProcessGroup.is_deleted.is_(False))
        .order_by(ProcessGroup.code)
    )
    units = await session.execute(
        select(ProcessUnit.id, ProcessUnit.group_id)
        .where(ProcessUnit.is_deleted.is_(False))
        .order_by(ProcessUnit.code)
    )
    return (
        [OrgNodeRecord(id=row.id) for row in divisions.all()],
        [OrgNodeRecord(id=row.id, parent_id=row.division_id) for row in groups.all()],
        [OrgNodeRecord(id=row.id, parent_id=row.group_id) for row in units.all()],
    )


async def load_validated_attachments(session: AsyncSession) -> List[Attachment]:
    """Validated risk-to-node associations of non-deleted risks."""
    result = await session.execute(
        select(
            RiskOrgLink.risk_id, RiskOrgLink.division_id,
            RiskOrgLink.group_id, RiskOrgLink.unit_id,
        )
        .join(Risk, Risk.id == RiskOrgLink.risk_id)
        .where(
            and_(
                RiskOrgLink.validation_status == ValidationStatus.VALIDATED.value,
                Risk.is_deleted.is_(False),
            )
        )
    )
    return [
        Attachment(
            risk_id=row.risk_id,
            division_id=row.division_id,
            group_id=row.group_id,
            unit_id=row.unit_id,
        )
        for row in result.all()
    ]


# ── Configuration store ──────────────────────────────────────────────────


async def load_config_values(session: AsyncSession, keys: Iterable[str]) -> Dict[str, str]:
    """Active config rows for ``keys`` in one query."""
    result = await session.execute(
        select(SystemConfig.config_key, SystemConfig.config_value).where(
            and_(
                SystemConfig.config_key.in_(list(keys)),
                SystemConfig.is_active.is_(True),
            )
        )
    )
    return {row.config_key: row.config_value for row in result.all()}
