"""
GRC SQLAlchemy Models.

Only the tables the aggregation engine reads (and the one column it writes).
Record CRUD for these tables belongs to the surrounding service.

Organizational hierarchy, most specific first:
    ProcessUnit (unit) → ProcessGroup (group) → Division (division)
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from grcrisk.db.engine import Base


def _genuuid() -> str:
    return str(uuid.uuid4())


# ──────────────────────────────────────────────────────────────────────────────
# 1.1 Organizational hierarchy
# ──────────────────────────────────────────────────────────────────────────────


class Division(Base):
    __tablename__ = "grc_divisions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ProcessGroup(Base):
    """Middle level. ``division_id`` is not a hard FK: dangling parents are tolerated."""

    __tablename__ = "grc_process_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    division_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ProcessUnit(Base):
    __tablename__ = "grc_process_units"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    group_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 1.2 Risks & Controls
# ──────────────────────────────────────────────────────────────────────────────


class Risk(Base):
    """
    A scored risk.

    Attachment: at most one of division/group/unit is meaningful; when more than
    one is set the most specific one wins (unit > group > division).
    """

    __tablename__ = "grc_risks"
    __table_args__ = (
        Index("ix_grc_risks_unit", "unit_id"),
        Index("ix_grc_risks_group", "group_id"),
        Index("ix_grc_risks_division", "division_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    probability: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False)
    impact: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False)
    inherent_risk: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False)
    division_id: Mapped[Optional[str]] = mapped_column(String(36))
    group_id: Mapped[Optional[str]] = mapped_column(String(36))
    unit_id: Mapped[Optional[str]] = mapped_column(String(36))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Control(Base):
    __tablename__ = "grc_controls"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    effectiveness: Mapped[int] = mapped_column(Integer, nullable=False)
    # "probability" | "impact" | "both"
    effect_target: Mapped[str] = mapped_column(String(20), default="both", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class RiskControl(Base):
    """
    Risk ↔ Control association.

    ``residual_risk`` is a denormalized copy of the owning risk's residual;
    every row of the same risk carries the same value.
    """

    __tablename__ = "grc_risk_controls"
    __table_args__ = (
        UniqueConstraint("risk_id", "control_id", name="uq_grc_risk_controls_pair"),
        Index("ix_grc_risk_controls_risk", "risk_id"),
        Index("ix_grc_risk_controls_control", "control_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    risk_id: Mapped[str] = mapped_column(String(36), ForeignKey("grc_risks.id"), nullable=False)
    control_id: Mapped[str] = mapped_column(String(36), ForeignKey("grc_controls.id"), nullable=False)
    residual_risk: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False, default=0)


class RiskOrgLink(Base):
    """
    Association of a risk to an organizational node, with its validation state.

    validation_status: "pending_validation" | "validated" | "rejected"
    """

    __tablename__ = "grc_risk_org_links"
    __table_args__ = (
        Index("ix_grc_risk_org_links_risk", "risk_id"),
        Index("ix_grc_risk_org_links_status", "validation_status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    risk_id: Mapped[str] = mapped_column(String(36), ForeignKey("grc_risks.id"), nullable=False)
    division_id: Mapped[Optional[str]] = mapped_column(String(36))
    group_id: Mapped[Optional[str]] = mapped_column(String(36))
    unit_id: Mapped[Optional[str]] = mapped_column(String(36))
    validation_status: Mapped[str] = mapped_column(String(30), default="pending_validation", nullable=False)
    validated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


# ──────────────────────────────────────────────────────────────────────────────
# 1.3 Configuration store
# ──────────────────────────────────────────────────────────────────────────────


class SystemConfig(Base):
    __tablename__ = "grc_system_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_genuuid)
    config_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    config_value: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    data_type: Mapped[str] = mapped_column(String(20), default="string", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
