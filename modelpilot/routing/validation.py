"""Cross-field validation of router configurations.

Field-level constraints are enforced by the pydantic schema; the invariants
here span several fields. Violations raise ConfigurationError: a config is
never silently coerced into a valid one.
"""

from __future__ import annotations

from modelpilot.errors import ConfigurationError
from modelpilot.schemas.config import RouterConfig, RouterMode

# Allowed deviation of the objective weight sum from 1.0
WEIGHT_SUM_TOLERANCE = 1e-3


def validate_router_config(config: RouterConfig) -> None:
    """Check every RouterConfig invariant.

    Raises:
        ConfigurationError: On the first violated invariant.
    """
    router = config.router_id

    if not config.available_models:
        raise ConfigurationError(
            f"Router '{router}' has no available models",
            code="no_available_models",
        )

    duplicates = sorted({
        m for m in config.available_models
        if config.available_models.count(m) > 1
    })
    if duplicates:
        raise ConfigurationError(
            f"Router '{router}' lists duplicate models: {', '.join(duplicates)}",
            code="duplicate_models",
        )

    total = config.objective.total
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ConfigurationError(
            f"Router '{router}' objective weights sum to {total:.4f}, expected 1.0",
            code="invalid_weights",
        )

    available = set(config.available_models)
    stray = [m for m in config.fallback.fallback_models if m not in available]
    if stray:
        raise ConfigurationError(
            f"Router '{router}' fallback models not in available models: "
            f"{', '.join(stray)}",
            code="invalid_fallback",
        )

    if config.mode == RouterMode.PASSTHROUGH:
        if not config.preferred_model:
            raise ConfigurationError(
                f"Router '{router}' is in passthrough mode without a preferred model",
                code="missing_preferred_model",
            )
        if config.preferred_model not in available:
            raise ConfigurationError(
                f"Router '{router}' preferred model '{config.preferred_model}' "
                f"is not in available models",
                code="missing_preferred_model",
            )
