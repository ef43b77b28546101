"""Objective presets: named weightings of cost, latency, quality and carbon.

Each preset is a tuple of (cost, latency, quality, carbon) weights summing
to 1.0. Routers name a preset as a starting point instead of spelling out
their weights.
"""

from __future__ import annotations

from modelpilot.schemas.config import ObjectiveWeights

PRESETS: dict[str, tuple[float, float, float, float]] = {
    "balanced": (0.30, 0.25, 0.35, 0.10),
    "cheapest": (0.80, 0.05, 0.15, 0.00),
    "fastest": (0.10, 0.75, 0.15, 0.00),
    "best": (0.05, 0.10, 0.85, 0.00),
    "greenest": (0.15, 0.05, 0.20, 0.60),
}

DEFAULT_PRESET = "balanced"

# Short labels for table display
_PRESET_SHORT = {
    "balanced": "bal",
    "cheapest": "cost",
    "fastest": "fast",
    "best": "qual",
    "greenest": "eco",
}


def objective_for_preset(preset: str | None = None) -> ObjectiveWeights:
    """Resolve a preset name into ObjectiveWeights.

    Raises:
        KeyError: If the preset name is unknown.
    """
    cost, latency, quality, carbon = PRESETS[preset or DEFAULT_PRESET]
    return ObjectiveWeights(cost=cost, latency=latency, quality=quality, carbon=carbon)


def preset_label(weights: ObjectiveWeights) -> str:
    """Short label for weights matching a preset, else ``custom``."""
    for name, values in PRESETS.items():
        if values == (weights.cost, weights.latency, weights.quality, weights.carbon):
            return _PRESET_SHORT[name]
    return "custom"
