"""Outbound response schemas.

ChatCompletion and StreamFragment keep the OpenAI envelope so existing
clients can consume them unchanged; the routing block rides alongside under
the ``modelpilot`` key.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from pydantic import BaseModel, Field

from modelpilot.schemas.routing import RoutingMetadata


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex[:24]}"


class Usage(BaseModel):
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None
    tool_calls: list[dict[str, Any]] | None = None


class Choice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str | None = "stop"


class ChatCompletion(BaseModel):
    """A whole (non-streaming) completion with routing metadata."""

    id: str = Field(default_factory=new_completion_id)
    object: str = "chat.completion"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str = ""
    choices: list[Choice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    modelpilot: RoutingMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"usage", "modelpilot"})
        data["usage"] = self.usage.to_dict()
        if self.modelpilot is not None:
            data["modelpilot"] = self.modelpilot.model_dump(mode="json")
        return data


class Delta(BaseModel):
    role: str | None = None
    content: str | None = None


class StreamChoice(BaseModel):
    index: int = 0
    delta: Delta = Field(default_factory=Delta)
    finish_reason: str | None = None


class StreamFragment(BaseModel):
    """One incremental chunk of a streamed completion.

    The terminal fragment has an empty delta, a finish reason, and the
    routing metadata block.
    """

    id: str
    object: str = "chat.completion.chunk"
    created: int = Field(default_factory=lambda: int(time.time()))
    model: str = ""
    choices: list[StreamChoice] = Field(default_factory=list)
    modelpilot: RoutingMetadata | None = None

    @property
    def content(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].delta.content or ""

    @property
    def is_terminal(self) -> bool:
        return self.modelpilot is not None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RoutedResponse(BaseModel):
    """Result of Router.route(): the completion body plus its metadata."""

    body: ChatCompletion
    metadata: RoutingMetadata
