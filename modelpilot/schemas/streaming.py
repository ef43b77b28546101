"""Streaming schemas for incremental provider output.

Defines the StreamDelta that provider adapters yield while a stream is
open. The orchestrator wraps these in StreamFragment envelopes.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from modelpilot.schemas.response import Usage


class StreamDelta(BaseModel):
    """A single increment of streamed output from a provider."""

    content: str = Field(default="", description="New text in this increment")
    finish_reason: str | None = Field(
        default=None, description="Set on the provider's stop signal",
    )
    usage: Usage | None = Field(
        default=None, description="Token usage, when the provider reports it",
    )

    @property
    def is_final(self) -> bool:
        return self.finish_reason is not None
