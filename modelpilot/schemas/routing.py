"""Routing decision schemas.

ScoredCandidate is produced by the scoring engine and consumed within one
request. RoutingMetadata is attached to every response so callers can see
which model served them and why.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ComponentScores(BaseModel):
    """Per-objective scores in [0, 1], higher is better."""

    model_config = ConfigDict(frozen=True)

    cost: float = Field(ge=0.0, le=1.0)
    latency: float = Field(ge=0.0, le=1.0)
    quality: float = Field(ge=0.0, le=1.0)
    carbon: float = Field(ge=0.0, le=1.0)

    def as_dict(self) -> dict[str, float]:
        return {
            "cost": self.cost,
            "latency": self.latency,
            "quality": self.quality,
            "carbon": self.carbon,
        }


class ScoredCandidate(BaseModel):
    """A candidate model with its composite and component scores."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str = Field(description="Registry id of the candidate")
    score: float = Field(description="Weighted composite score")
    components: ComponentScores
    history_samples: int = Field(
        default=0, ge=0, description="Similar outcomes that informed this score",
    )


class RoutingMetadata(BaseModel):
    """Routing block attached to every response."""

    selected_model: str = Field(description="Model that produced the response")
    selection_reason: str = Field(description="Short justification for the selection")
    cost_usd: float = Field(default=0.0, ge=0.0, description="Cost of the serving attempt")
    latency_ms: float = Field(default=0.0, ge=0.0, description="Latency of the serving attempt")
    carbon_g: float = Field(default=0.0, ge=0.0, description="Estimated grams CO2e")
    fallback_used: bool = Field(default=False, description="Whether any retry happened")
    retry_count: int = Field(default=0, ge=0, description="Retries performed")
    total_cost_usd: float = Field(
        default=0.0, ge=0.0,
        description="Cost billed for the request; failed attempts are not billed",
    )
    total_latency_ms: float = Field(
        default=0.0, ge=0.0, description="Wall-clock time across all attempts and backoff",
    )
    router_id: str = Field(default="", description="Router the request was routed under")
    request_id: str = Field(default="", description="Request identifier")
