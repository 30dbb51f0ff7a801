"""
Aggregation API Schemas.

Response models handed to the surrounding service. Every number is computed
from the current risks, controls and organizational tree.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ResidualResult(BaseModel):
    """Residual figures of a single risk."""
    risk_id: str
    probability: float = Field(ge=0.1, le=5.0)
    impact: float = Field(ge=0.1, le=5.0)
    risk: float
    inherent_risk: float


class NodeRiskAggregate(BaseModel):
    """Summary of all risks under one organizational node."""
    inherent_risk: float = 0.0
    residual_risk: float = 0.0
    risk_count: int = 0


class ValidatedNodeRiskAggregate(NodeRiskAggregate):
    """Dashboard variant: adds the level of the aggregated residual."""
    risk_level: str
    risk_level_label: str


class AggregatedRiskLevels(BaseModel):
    """Per-level maps keyed by node id. Levels not requested stay empty."""
    division: Dict[str, NodeRiskAggregate] = Field(default_factory=dict)
    group: Dict[str, NodeRiskAggregate] = Field(default_factory=dict)
    unit: Dict[str, NodeRiskAggregate] = Field(default_factory=dict)
    levels: List[str] = Field(default_factory=list)
    method: str
    generated_at: str


class ValidatedAggregatedRiskLevels(BaseModel):
    division: Dict[str, ValidatedNodeRiskAggregate] = Field(default_factory=dict)
    group: Dict[str, ValidatedNodeRiskAggregate] = Field(default_factory=dict)
    unit: Dict[str, ValidatedNodeRiskAggregate] = Field(default_factory=dict)
    levels: List[str] = Field(default_factory=list)
    method: str
    generated_at: str
    message: Optional[str] = None
