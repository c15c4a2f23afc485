"""
Strategy Builder Module

Scenario projection of option/futures strategies: per-leg valuation,
aggregate P&L and Greeks, payoff curve, SD bands and payoff table.
"""

from greekfeed.strategy_builder.models import (
    LegDirection,
    LegProjection,
    PayoffPoint,
    PayoffSummary,
    PayoffTableRow,
    ProjectionResult,
    ProjectionTotals,
    Scenario,
    SDBands,
    StrategyLeg,
)
from greekfeed.strategy_builder.projection import ScenarioProjectionEngine, summarize_payoff

__all__ = [
    "LegDirection",
    "LegProjection",
    "PayoffPoint",
    "PayoffSummary",
    "PayoffTableRow",
    "ProjectionResult",
    "ProjectionTotals",
    "Scenario",
    "SDBands",
    "StrategyLeg",
    "ScenarioProjectionEngine",
    "summarize_payoff",
]
