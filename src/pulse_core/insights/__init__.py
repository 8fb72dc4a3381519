"""Aggregation orchestrator and subscription gate."""
from .orchestrator import (
    InsightsOrchestrator,
    UnitOutcome,
    UnitState,
    merge_outcomes,
    to_source_error,
)
from .singleflight import SingleFlight
from .subscription import available_analytics_types, includes_ads_data

__all__ = [
    "InsightsOrchestrator",
    "SingleFlight",
    "UnitOutcome",
    "UnitState",
    "available_analytics_types",
    "includes_ads_data",
    "merge_outcomes",
    "to_source_error",
]
