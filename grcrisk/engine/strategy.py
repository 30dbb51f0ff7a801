"""
Aggregation Strategy.

Reduces a set of risk values to one number:

- average:    arithmetic mean
- worst_case: maximum
- weighted:   Σ(value × weight[level(value)]) / Σ(weight[level(value)])

Every method returns 0 for an empty input, and ``weighted`` returns 0 when
all weights involved are zero.

The weighted method classifies each value by the value itself, so an
inherent-risk run and a residual-risk run over the same risks may put the
same risk in different levels. Callers run the strategy once per series and
never share classifications between runs.
"""

from typing import Callable, Dict, Optional, Sequence

from grcrisk.engine.types import AggregationConfig, AggregationMethod, LevelThresholds, RiskLevel

LevelOf = Callable[[float], RiskLevel]


def classify_level(value: float, thresholds: LevelThresholds) -> RiskLevel:
    """Map a risk value onto low / medium / high / critical."""
    if value <= thresholds.low_max:
        return RiskLevel.LOW
    if value <= thresholds.medium_max:
        return RiskLevel.MEDIUM
    if value <= thresholds.high_max:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def _average(values: Sequence[float], level_of: LevelOf, weights: Dict[RiskLevel, float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _worst_case(values: Sequence[float], level_of: LevelOf, weights: Dict[RiskLevel, float]) -> float:
    if not values:
        return 0.0
    return max(values)


def _weighted(values: Sequence[float], level_of: LevelOf, weights: Dict[RiskLevel, float]) -> float:
    weighted_sum = 0.0
    weight_total = 0.0
    for value in values:
        weight = weights.get(level_of(value), 0.0)
        weighted_sum += value * weight
        weight_total += weight
    if weight_total == 0:
        return 0.0
    return weighted_sum / weight_total


_STRATEGIES: Dict[AggregationMethod, Callable[[Sequence[float], LevelOf, Dict[RiskLevel, float]], float]] = {
    AggregationMethod.AVERAGE: _average,
    AggregationMethod.WORST_CASE: _worst_case,
    AggregationMethod.WEIGHTED: _weighted,
}

# A new AggregationMethod member without a strategy fails at import time.
_unhandled = set(AggregationMethod) - set(_STRATEGIES)
if _unhandled:
    raise RuntimeError(f"No aggregation strategy for: {sorted(m.value for m in _unhandled)}")


def aggregate(
    values: Sequence[float],
    config: AggregationConfig,
    level_of: Optional[LevelOf] = None,
) -> float:
    """
    Reduce ``values`` with the configured method.

    The classifier comes last, after ``config``, because it is optional:
    ``level_of`` defaults to classifying each value against
    ``config.thresholds`` and only matters for the weighted method. Pass it
    by keyword when supplying one.
    """
    if level_of is None:
        thresholds = config.thresholds
        level_of = lambda value: classify_level(value, thresholds)  # noqa: E731
    return _STRATEGIES[config.method](values, level_of, config.weights)
