"""Router configuration schemas.

RouterConfig is supplied by the external configuration store and describes
the policy a request is routed under: candidate models, objective weights,
fallback rules, and hard requirements. Field-level constraints live here;
cross-field invariants are checked by routing.validation so that a config
can be loaded, inspected, and rejected with a ConfigurationError.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from modelpilot.schemas.models import Capability


class RouterMode(StrEnum):
    """How a router picks its model."""

    SMART = "smartRouter"
    PASSTHROUGH = "passthrough"


class ObjectiveWeights(BaseModel):
    """Relative importance of each objective. Must sum to 1.0."""

    model_config = ConfigDict(frozen=True)

    cost: float = Field(default=0.25, ge=0.0, description="Weight on low cost")
    latency: float = Field(default=0.25, ge=0.0, description="Weight on low latency")
    quality: float = Field(default=0.25, ge=0.0, description="Weight on high quality")
    carbon: float = Field(default=0.25, ge=0.0, description="Weight on low carbon")

    @property
    def total(self) -> float:
        return self.cost + self.latency + self.quality + self.carbon

    def as_dict(self) -> dict[str, float]:
        return {
            "cost": self.cost,
            "latency": self.latency,
            "quality": self.quality,
            "carbon": self.carbon,
        }


class FallbackConfig(BaseModel):
    """Retry and fallback policy for failed dispatches."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = Field(default=True, description="Whether fallback is active")
    retry_attempts: int = Field(
        default=2, ge=0, alias="retryAttempts",
        description="Maximum number of retries after the first attempt",
    )
    fallback_models: list[str] = Field(
        default_factory=list, alias="fallbackModels",
        description="Ordered fallback model ids, cycled when shorter than retry_attempts",
    )


class HardRequirements(BaseModel):
    """Constraints that exclude a model before scoring."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_latency_ms: float | None = Field(
        default=None, gt=0, alias="maxLatencyMs",
        description="Exclude models whose latency baseline exceeds this",
    )
    max_cost_per_token: float | None = Field(
        default=None, gt=0, alias="maxCostPerToken",
        description="Exclude models whose blended per-token cost exceeds this (USD)",
    )
    required_capabilities: frozenset[Capability] = Field(
        default_factory=frozenset, alias="requiredCapabilities",
        description="Capabilities every candidate must support",
    )


class RouterConfig(BaseModel):
    """A configured routing policy, fetched by router id."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    router_id: str = Field(alias="routerId", description="Router identity")
    name: str = Field(default="", description="Human-friendly router name")
    mode: RouterMode = Field(default=RouterMode.SMART, description="Routing mode")
    preferred_model: str = Field(
        default="", alias="preferredModel",
        description="Model used in passthrough mode",
    )
    available_models: list[str] = Field(
        alias="availableModels",
        description="Candidate model ids; order is the scoring tie-break order",
    )
    objective: ObjectiveWeights = Field(
        default_factory=ObjectiveWeights, description="Objective weights",
    )
    fallback: FallbackConfig = Field(
        default_factory=FallbackConfig, description="Fallback policy",
    )
    requirements: HardRequirements | None = Field(
        default=None, description="Optional hard constraints",
    )


class RouterSettings(BaseModel):
    """Process-wide tunables, loaded from defaults.toml."""

    request_timeout: float = Field(
        default=60.0, gt=0, description="Per-attempt timeout in seconds",
    )
    base_backoff: float = Field(
        default=0.5, ge=0, description="Base delay for exponential backoff in seconds",
    )
    history_top_k: int = Field(
        default=50, ge=0, description="Similar outcomes consulted per request",
    )
    min_history_samples: int = Field(
        default=3, ge=1,
        description="Similar samples needed before history outweighs the static baseline",
    )
    history_weight: float = Field(
        default=0.7, ge=0.0, le=1.0,
        description="Weight of historical latency once enough samples exist",
    )
    min_similarity: float = Field(
        default=0.0, ge=-1.0, le=1.0,
        description="Cosine similarity floor for history lookups",
    )
    history_max_records: int = Field(
        default=10_000, ge=1,
        description="Outcomes kept per embedding dimension in the similarity index",
    )
    config_ttl_seconds: float = Field(
        default=300.0, gt=0, description="Router config cache TTL",
    )
    default_max_tokens: int = Field(
        default=512, gt=0,
        description="Completion length assumed for cost estimation when max_tokens is unset",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small", description="LiteLLM embedding model",
    )
    outcome_db_path: str = Field(
        default="~/.modelpilot/outcomes.db", description="SQLite outcome database",
    )
    outcome_log_path: str = Field(
        default="", description="Optional JSONL outcome log for analytics export",
    )
