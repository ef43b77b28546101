"""Normalized provider response schema."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from modelpilot.schemas.response import Usage


class ProviderResponse(BaseModel):
    """Uniform result of a successful non-streaming dispatch."""

    model: str = Field(description="Upstream model name that answered")
    content: str | None = Field(default=None, description="Assistant text")
    tool_calls: list[dict[str, Any]] | None = Field(
        default=None, description="Tool calls requested by the model",
    )
    finish_reason: str | None = Field(default="stop")
    usage: Usage = Field(default_factory=Usage)
    cost_usd: float = Field(default=0.0, ge=0.0, description="Cost from reported usage")
    latency_ms: float = Field(default=0.0, ge=0.0, description="Measured wall-clock time")
