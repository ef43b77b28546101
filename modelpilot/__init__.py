"""ModelPilot: intelligent model-selection router for chat completions."""

__version__ = "0.4.0"
