"""Outcome records: the append-only fact log of dispatch attempts.

One OutcomeRecord is written per attempt, successful or not. Records are
never mutated after creation; the similarity index and the registry
aggregation read them back for future scoring.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from modelpilot.errors import ProviderErrorKind


class OutcomeStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    INCOMPLETE = "incomplete"


class OutcomeRecord(BaseModel):
    """The result of one dispatch attempt."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    router_id: str = Field(default="", description="Router the attempt ran under")
    request_id: str = Field(default="", description="Request the attempt belongs to")
    embedding: tuple[float, ...] = Field(
        default=(), description="Semantic fingerprint of the request",
    )
    model_id: str = Field(description="Model that was dispatched to")
    attempt_index: int = Field(default=0, ge=0, description="0 for the primary attempt")
    status: OutcomeStatus
    error_kind: ProviderErrorKind | None = Field(
        default=None, description="Failure category for failed attempts",
    )
    cost_usd: float = Field(default=0.0, ge=0.0)
    latency_ms: float = Field(default=0.0, ge=0.0)
    quality_proxy: float = Field(
        default=0.0, ge=0.0, le=1.0,
        description="Cheap quality signal: 1.0 for a clean finish, lower otherwise",
    )
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS


class ModelStats(BaseModel):
    """Aggregate outcome statistics for one model."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: str
    attempts: int = Field(default=0, ge=0)
    successes: int = Field(default=0, ge=0)
    avg_latency_ms: float = Field(default=0.0, ge=0.0, description="Mean over successes")
    avg_quality: float = Field(default=0.0, ge=0.0, le=1.0)
    total_cost_usd: float = Field(default=0.0, ge=0.0)

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0
