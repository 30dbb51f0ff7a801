"""
Residual Risk Calculator.

Independent-reduction model: every qualifying control is an independent
chance of mitigating the risk, so the surviving share of a component is the
product of the individual failure shares:

    factor_t = Π (1 - effectiveness_i / 100)   over controls targeting t or both

    residual_probability = clamp(round1(probability × factor_probability))
    residual_impact      = clamp(round1(impact × factor_impact))
    residual_risk        = max(0.1, round1(residual_probability × residual_impact))

Components are clamped to [0.1, 5.0] and the product is floored at 0.1, so
stacking fully effective controls bottoms out at 0.1 instead of zero. A risk
without qualifying controls keeps factor 1.0 and its residual equals its
inherent value.
"""

from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional

import structlog

from grcrisk.engine.types import (
    ControlRecord,
    EffectTarget,
    LinkRecord,
    ResidualRisk,
    RiskRecord,
    RiskScore,
)

logger = structlog.get_logger(__name__)

MIN_FACTOR = 0.1
MAX_FACTOR = 5.0
MIN_EFFECTIVENESS = 0
MAX_EFFECTIVENESS = 100

_ONE_DECIMAL = Decimal("0.1")


def round1(value: float) -> float:
    """Round half-up to one decimal place (2.25 → 2.3, unlike built-in round)."""
    return float(Decimal(str(value)).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_factor_input(value: float, risk_id: str, field_name: str) -> float:
    """Clamp a stored probability/impact into range, logging data errors."""
    if value < MIN_FACTOR or value > MAX_FACTOR:
        logger.warning(
            "risk_factor_out_of_range",
            risk_id=risk_id,
            field=field_name,
            value=value,
        )
    return clamp(value, MIN_FACTOR, MAX_FACTOR)


def effective_percentage(control: ControlRecord, max_effectiveness: int = MAX_EFFECTIVENESS) -> int:
    """Effectiveness clamped to [0, 100] and then capped by the system ceiling."""
    value = control.effectiveness
    if value < MIN_EFFECTIVENESS or value > MAX_EFFECTIVENESS:
        logger.warning(
            "control_effectiveness_out_of_range",
            control_id=control.id,
            value=value,
        )
        value = int(clamp(value, MIN_EFFECTIVENESS, MAX_EFFECTIVENESS))
    ceiling = int(clamp(max_effectiveness, MIN_EFFECTIVENESS, MAX_EFFECTIVENESS))
    return min(value, ceiling)


def qualifying_controls(controls: Iterable[ControlRecord]) -> List[ControlRecord]:
    """Only active controls reduce risk."""
    return [c for c in controls if c.is_active]


def reduction_factor(
    controls: Iterable[ControlRecord],
    component: EffectTarget,
    max_effectiveness: int = MAX_EFFECTIVENESS,
) -> float:
    """Share of ``component`` that survives all controls targeting it."""
    factor = 1.0
    for control in controls:
        if control.effect_target.reduces(component):
            factor *= 1 - effective_percentage(control, max_effectiveness) / 100
    return factor


def compute_inherent(risk: RiskRecord) -> float:
    """probability × impact, using the same clamp and rounding as the residual path."""
    probability = clamp(round1(clamp_factor_input(risk.probability, risk.id, "probability")), MIN_FACTOR, MAX_FACTOR)
    impact = clamp(round1(clamp_factor_input(risk.impact, risk.id, "impact")), MIN_FACTOR, MAX_FACTOR)
    return max(MIN_FACTOR, round1(probability * impact))


def compute_residual(
    risk: RiskRecord,
    controls: Iterable[ControlRecord],
    max_effectiveness: int = MAX_EFFECTIVENESS,
) -> ResidualRisk:
    """Residual probability, impact and risk for one risk and its linked controls."""
    active = qualifying_controls(controls)
    probability = clamp_factor_input(risk.probability, risk.id, "probability")
    impact = clamp_factor_input(risk.impact, risk.id, "impact")

    prob_factor = reduction_factor(active, EffectTarget.PROBABILITY, max_effectiveness)
    impact_factor = reduction_factor(active, EffectTarget.IMPACT, max_effectiveness)

    residual_probability = clamp(round1(probability * prob_factor), MIN_FACTOR, MAX_FACTOR)
    residual_impact = clamp(round1(impact * impact_factor), MIN_FACTOR, MAX_FACTOR)

    return ResidualRisk(
        probability=residual_probability,
        impact=residual_impact,
        risk=max(MIN_FACTOR, round1(residual_probability * residual_impact)),
    )


def controls_by_risk(
    links: Iterable[LinkRecord],
    controls: Mapping[str, ControlRecord],
) -> Dict[str, List[ControlRecord]]:
    """Group linked controls per risk; links to unknown (deleted) controls are skipped."""
    grouped: Dict[str, List[ControlRecord]] = defaultdict(list)
    for link in links:
        control = controls.get(link.control_id)
        if control is not None:
            grouped[link.risk_id].append(control)
    return grouped


def score_risks(
    risks: Iterable[RiskRecord],
    controls: Mapping[str, ControlRecord],
    links: Iterable[LinkRecord],
    max_effectiveness: int = MAX_EFFECTIVENESS,
    residuals: Optional[Dict[str, ResidualRisk]] = None,
) -> Dict[str, RiskScore]:
    """
    Inherent and residual value for every risk, keyed by risk id.

    If ``residuals`` is given it is filled with the full per-risk residual
    breakdown (used by the batch write-back).
    """
    grouped = controls_by_risk(links, controls)
    scores: Dict[str, RiskScore] = {}
    for risk in risks:
        residual = compute_residual(risk, grouped.get(risk.id, ()), max_effectiveness)
        if residuals is not None:
            residuals[risk.id] = residual
        scores[risk.id] = RiskScore(
            risk_id=risk.id,
            inherent=compute_inherent(risk),
            residual=residual.risk,
        )
    return scores
