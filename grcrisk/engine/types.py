"""
Engine value types.

Closed enumerations for every dispatch point (hierarchy level, control effect
target, aggregation method, risk level) and the frozen records the engine
consumes. Records are plain data loaded in bulk by ``grcrisk.db.queries``;
nothing in ``grcrisk.engine`` touches the database.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class Level(str, Enum):
    """Organizational hierarchy level, most general first."""
    DIVISION = "division"
    GROUP = "group"
    UNIT = "unit"


class EffectTarget(str, Enum):
    """Which residual component a control reduces."""
    PROBABILITY = "probability"
    IMPACT = "impact"
    BOTH = "both"

    def reduces(self, component: "EffectTarget") -> bool:
        return self is EffectTarget.BOTH or self is component


class AggregationMethod(str, Enum):
    AVERAGE = "average"
    WORST_CASE = "worst_case"
    WEIGHTED = "weighted"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ValidationStatus(str, Enum):
    PENDING = "pending_validation"
    VALIDATED = "validated"
    REJECTED = "rejected"


# ── Configuration ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LevelThresholds:
    """Cut points: value ≤ low_max → low, ≤ medium_max → medium, ≤ high_max → high, else critical."""
    low_max: float
    medium_max: float
    high_max: float

    def is_valid(self) -> bool:
        return self.low_max < self.medium_max < self.high_max


@dataclass(frozen=True)
class AggregationConfig:
    """Everything the rollup needs from configuration."""
    method: AggregationMethod
    weights: Dict[RiskLevel, float]
    thresholds: LevelThresholds
    max_effectiveness: int = 100


# ── Input records ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RiskRecord:
    id: str
    probability: float
    impact: float
    division_id: Optional[str] = None
    group_id: Optional[str] = None
    unit_id: Optional[str] = None


@dataclass(frozen=True)
class ControlRecord:
    id: str
    effectiveness: int
    effect_target: EffectTarget = EffectTarget.BOTH
    is_active: bool = True


@dataclass(frozen=True)
class LinkRecord:
    """A risk ↔ control association row."""
    id: str
    risk_id: str
    control_id: str


@dataclass(frozen=True)
class OrgNodeRecord:
    """A live (non-deleted) node; ``parent_id`` may dangle."""
    id: str
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class Attachment:
    """
    Where a risk hangs in the tree.

    Carries up to one id per level; the most specific id that resolves to a
    live node wins.
    """
    risk_id: str
    division_id: Optional[str] = None
    group_id: Optional[str] = None
    unit_id: Optional[str] = None

    @classmethod
    def of_risk(cls, risk: RiskRecord) -> "Attachment":
        return cls(
            risk_id=risk.id,
            division_id=risk.division_id,
            group_id=risk.group_id,
            unit_id=risk.unit_id,
        )


# ── Results ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ResidualRisk:
    probability: float
    impact: float
    risk: float


@dataclass(frozen=True)
class RiskScore:
    """Per-risk figures fed into the rollup."""
    risk_id: str
    inherent: float
    residual: float


@dataclass(frozen=True)
class NodeAggregate:
    inherent_risk: float = 0.0
    residual_risk: float = 0.0
    risk_count: int = 0


@dataclass
class RollupResult:
    division: Dict[str, NodeAggregate] = field(default_factory=dict)
    group: Dict[str, NodeAggregate] = field(default_factory=dict)
    unit: Dict[str, NodeAggregate] = field(default_factory=dict)

    def for_level(self, level: Level) -> Dict[str, NodeAggregate]:
        return getattr(self, level.value)
