"""Tests for router config validation and the RouterConfig schema."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from modelpilot.errors import ConfigurationError
from modelpilot.routing.validation import validate_router_config
from modelpilot.schemas.config import (
    FallbackConfig,
    ObjectiveWeights,
    RouterConfig,
    RouterMode,
)
from modelpilot.schemas.models import Capability

# ── Helpers ───────────────────────────────────────────────────


def _make_config(**overrides) -> RouterConfig:
    defaults = {
        "router_id": "r1",
        "mode": RouterMode.SMART,
        "available_models": ["a", "b", "c"],
        "objective": ObjectiveWeights(cost=0.4, latency=0.2, quality=0.3, carbon=0.1),
        "fallback": FallbackConfig(retry_attempts=2, fallback_models=["b", "c"]),
    }
    defaults.update(overrides)
    return RouterConfig(**defaults)


def _code(config: RouterConfig) -> str:
    with pytest.raises(ConfigurationError) as exc_info:
        validate_router_config(config)
    return exc_info.value.code


# ── Invariants ────────────────────────────────────────────────


class TestValidateRouterConfig:
    def test_valid_config_passes(self):
        validate_router_config(_make_config())

    def test_weights_within_tolerance(self):
        weights = ObjectiveWeights(cost=0.3333, latency=0.3333, quality=0.3334, carbon=0.0)
        validate_router_config(_make_config(objective=weights))

    def test_weights_must_sum_to_one(self):
        weights = ObjectiveWeights(cost=0.5, latency=0.5, quality=0.5, carbon=0.0)
        assert _code(_make_config(objective=weights)) == "invalid_weights"

    def test_zero_weights_rejected(self):
        weights = ObjectiveWeights(cost=0, latency=0, quality=0, carbon=0)
        assert _code(_make_config(objective=weights)) == "invalid_weights"

    def test_empty_available_models(self):
        config = _make_config(
            available_models=[], fallback=FallbackConfig(fallback_models=[]),
        )
        assert _code(config) == "no_available_models"

    def test_duplicate_models(self):
        assert _code(_make_config(available_models=["a", "b", "a"])) == "duplicate_models"

    def test_fallback_must_be_subset(self):
        config = _make_config(fallback=FallbackConfig(fallback_models=["z"]))
        assert _code(config) == "invalid_fallback"

    def test_passthrough_requires_preferred(self):
        config = _make_config(mode=RouterMode.PASSTHROUGH, preferred_model="")
        assert _code(config) == "missing_preferred_model"

    def test_passthrough_preferred_must_be_available(self):
        config = _make_config(mode=RouterMode.PASSTHROUGH, preferred_model="z")
        assert _code(config) == "missing_preferred_model"

    def test_passthrough_valid(self):
        validate_router_config(
            _make_config(mode=RouterMode.PASSTHROUGH, preferred_model="a"),
        )


# ── Schema ────────────────────────────────────────────────────


class TestRouterConfigSchema:
    def test_accepts_external_aliases(self):
        config = RouterConfig.model_validate({
            "routerId": "ext",
            "mode": "passthrough",
            "preferredModel": "a",
            "availableModels": ["a", "b"],
            "objective": {"cost": 1.0, "latency": 0, "quality": 0, "carbon": 0},
            "fallback": {"enabled": True, "retryAttempts": 1, "fallbackModels": ["b"]},
            "requirements": {
                "maxLatencyMs": 2000,
                "maxCostPerToken": 0.00001,
                "requiredCapabilities": ["functions"],
            },
        })

        assert config.router_id == "ext"
        assert config.mode == RouterMode.PASSTHROUGH
        assert config.fallback.retry_attempts == 1
        assert config.requirements.required_capabilities == frozenset(
            {Capability.FUNCTIONS},
        )
        validate_router_config(config)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            ObjectiveWeights(cost=-0.1, latency=0.5, quality=0.6, carbon=0.0)

    def test_negative_retry_attempts_rejected(self):
        with pytest.raises(ValidationError):
            FallbackConfig(retry_attempts=-1)

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            _make_config(mode="roundRobin")

    def test_config_is_frozen(self):
        config = _make_config()
        with pytest.raises(ValidationError):
            config.router_id = "other"
