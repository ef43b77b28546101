"""Inbound chat-completion request schemas.

ChatRequest mirrors the OpenAI-compatible request body the boundary layer
receives. RequestContext pairs it with the semantic fingerprint computed
once per request.
"""

from __future__ import annotations

import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from modelpilot.schemas.models import Capability

# Rough chars-per-token ratio used for pre-dispatch estimates
_CHARS_PER_TOKEN = 4


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatMessage(BaseModel):
    """A single conversation message.

    ``content`` is either plain text or a list of OpenAI-style content
    parts (``{"type": "text", ...}`` / ``{"type": "image_url", ...}``).
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None

    @property
    def text(self) -> str:
        """Concatenated text content, ignoring non-text parts."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return " ".join(
            part.get("text", "")
            for part in self.content
            if part.get("type") == "text"
        )

    @property
    def has_image(self) -> bool:
        if not isinstance(self.content, list):
            return False
        return any(part.get("type") == "image_url" for part in self.content)

    def to_provider_dict(self) -> dict[str, Any]:
        """OpenAI-format dict with unset optional fields dropped."""
        return self.model_dump(mode="json", exclude_none=True)


class ToolDefinition(BaseModel):
    """A function tool the model may call."""

    model_config = ConfigDict(frozen=True)

    type: str = "function"
    function: dict[str, Any] = Field(description="Function name, description and JSON schema")


class ChatRequest(BaseModel):
    """The immutable inbound chat-completion request."""

    model_config = ConfigDict(frozen=True)

    messages: list[ChatMessage] = Field(min_length=1)
    stream: bool = False
    max_tokens: int | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    presence_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    frequency_penalty: float | None = Field(default=None, ge=-2.0, le=2.0)
    stop: str | list[str] | None = None
    tools: list[ToolDefinition] | None = None
    tool_choice: str | dict[str, Any] | None = None

    def sampling_params(self) -> dict[str, Any]:
        """Sampling parameters that were explicitly set."""
        params = {
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
            "stop": self.stop,
        }
        return {k: v for k, v in params.items() if v is not None}

    def fingerprint_text(self) -> str:
        """Text used to compute the request's semantic embedding.

        System prompts are included, tool results are not.
        """
        return "\n".join(
            f"{m.role.value}: {m.text}"
            for m in self.messages
            if m.role != Role.TOOL and m.text
        )

    def estimated_prompt_tokens(self) -> int:
        chars = sum(len(m.text) for m in self.messages)
        return max(1, chars // _CHARS_PER_TOKEN)

    def implied_capabilities(self) -> frozenset[Capability]:
        """Capabilities any serving model must have for this request."""
        caps = {Capability.CHAT}
        if self.tools:
            caps.add(Capability.FUNCTIONS)
        if self.stream:
            caps.add(Capability.STREAMING)
        if any(m.has_image for m in self.messages):
            caps.add(Capability.VISION)
        return frozenset(caps)


class RequestContext(BaseModel):
    """A request plus the data derived from it once, before routing."""

    model_config = ConfigDict(frozen=True)

    request: ChatRequest
    embedding: tuple[float, ...] = Field(
        default=(), description="Semantic fingerprint; empty when unavailable",
    )
    router_id: str = ""
    request_id: str = Field(default_factory=lambda: f"req-{uuid.uuid4().hex}")
