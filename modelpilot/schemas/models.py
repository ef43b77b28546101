"""Model registry schemas.

Defines the capability vocabulary, provider families, and the
ModelDescriptor that the scoring engine reads for every candidate.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ProviderFamily(StrEnum):
    """Upstream provider families with a dedicated adapter variant."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    XAI = "xai"
    MISTRAL = "mistral"


class Capability(StrEnum):
    """Features a model may support."""

    CHAT = "chat"
    FUNCTIONS = "functions"
    VISION = "vision"
    STREAMING = "streaming"
    JSON_MODE = "json_mode"


class ModelDescriptor(BaseModel):
    """Static and rolling data for one routable model.

    Loaded from models.toml. The rolling fields (avg_latency_ms, quality)
    are only ever replaced by registry aggregation, which builds a new
    descriptor rather than mutating this one.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Router-facing model identifier (registry key)")
    provider: ProviderFamily = Field(description="Upstream provider family")
    model: str = Field(description="LiteLLM model name (e.g. 'gpt-4o-mini')")
    display_name: str = Field(default="", description="Human-friendly model name")
    api_key_env: str = Field(default="", description="Env var holding the API key")
    api_base: str = Field(default="", description="Custom API base URL (empty = default)")
    capabilities: frozenset[Capability] = Field(
        default=frozenset({Capability.CHAT}),
        description="Supported features",
    )
    cost_input: float = Field(ge=0.0, description="Cost per 1M input tokens in USD")
    cost_output: float = Field(ge=0.0, description="Cost per 1M output tokens in USD")
    context_window: int = Field(default=8192, gt=0, description="Context window in tokens")
    max_output_tokens: int = Field(default=4096, gt=0, description="Output token limit")
    avg_latency_ms: float = Field(
        default=1000.0, ge=0.0, description="Rolling average latency in milliseconds",
    )
    quality: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Rolling quality score",
    )
    carbon_g_per_1k: float = Field(
        default=0.0, ge=0.0,
        description="Estimated grams CO2e per 1K tokens (static proxy)",
    )

    @property
    def input_cost_per_token(self) -> float:
        return self.cost_input / 1_000_000

    @property
    def output_cost_per_token(self) -> float:
        return self.cost_output / 1_000_000

    @property
    def blended_cost_per_token(self) -> float:
        """Mean of input and output per-token cost.

        This is the figure compared against a router's maxCostPerToken.
        """
        return (self.input_cost_per_token + self.output_cost_per_token) / 2

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """USD cost for the given token counts at this model's prices."""
        return (
            prompt_tokens * self.input_cost_per_token
            + completion_tokens * self.output_cost_per_token
        )

    def estimate_carbon(self, total_tokens: int) -> float:
        """Grams CO2e for ``total_tokens`` using the static proxy."""
        return (total_tokens / 1000) * self.carbon_g_per_1k
