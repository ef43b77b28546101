"""Routing: config validation, candidate scoring, and fallback control."""

from modelpilot.routing.fallback import (
    AttemptFailure,
    FallbackController,
    FallbackResult,
    FallbackState,
    backoff_delay,
)
from modelpilot.routing.scoring import ScoringEngine, selection_reason, summarize_history
from modelpilot.routing.validation import WEIGHT_SUM_TOLERANCE, validate_router_config

__all__ = [
    "AttemptFailure",
    "FallbackController",
    "FallbackResult",
    "FallbackState",
    "ScoringEngine",
    "WEIGHT_SUM_TOLERANCE",
    "backoff_delay",
    "selection_reason",
    "summarize_history",
    "validate_router_config",
]
