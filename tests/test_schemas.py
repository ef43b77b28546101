"""Tests for request, response, model and error schemas."""

from __future__ import annotations

import pytest

from modelpilot.errors import (
    AuthenticationError,
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
    RateLimitError,
    StreamInterruptedError,
)
from modelpilot.schemas.models import Capability, ModelDescriptor
from modelpilot.schemas.request import ChatMessage, ChatRequest, Role, ToolDefinition
from modelpilot.schemas.response import (
    AssistantMessage,
    ChatCompletion,
    Choice,
    Delta,
    StreamChoice,
    StreamFragment,
    Usage,
)
from modelpilot.schemas.routing import RoutingMetadata


def _make_request(*messages: ChatMessage, **overrides) -> ChatRequest:
    if not messages:
        messages = (ChatMessage(role=Role.USER, content="Hello there"),)
    return ChatRequest(messages=list(messages), **overrides)


# ── ChatRequest ───────────────────────────────────────────────


class TestChatRequest:
    def test_requires_a_message(self):
        with pytest.raises(ValueError):
            ChatRequest(messages=[])

    def test_sampling_params_only_set_values(self):
        request = _make_request(temperature=0.2, max_tokens=100)

        assert request.sampling_params() == {"temperature": 0.2, "max_tokens": 100}

    def test_implied_capabilities(self):
        image = ChatMessage(role=Role.USER, content=[
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": "https://example.com/x.png"}},
        ])
        request = _make_request(
            image,
            stream=True,
            tools=[ToolDefinition(function={"name": "lookup", "parameters": {}})],
        )

        assert request.implied_capabilities() == frozenset({
            Capability.CHAT, Capability.VISION, Capability.STREAMING,
            Capability.FUNCTIONS,
        })

    def test_plain_request_needs_chat_only(self):
        assert _make_request().implied_capabilities() == frozenset({Capability.CHAT})

    def test_fingerprint_skips_tool_messages(self):
        request = _make_request(
            ChatMessage(role=Role.SYSTEM, content="Be brief."),
            ChatMessage(role=Role.USER, content="Weather?"),
            ChatMessage(role=Role.TOOL, content='{"temp": 20}', tool_call_id="t1"),
        )

        assert request.fingerprint_text() == "system: Be brief.\nuser: Weather?"

    def test_estimated_prompt_tokens(self):
        request = _make_request(ChatMessage(role=Role.USER, content="x" * 400))
        assert request.estimated_prompt_tokens() == 100

    def test_provider_dict_drops_unset_fields(self):
        message = ChatMessage(role=Role.USER, content="hi")
        assert message.to_provider_dict() == {"role": "user", "content": "hi"}


# ── ModelDescriptor ───────────────────────────────────────────


class TestModelDescriptor:
    def test_cost_per_million(self):
        model = ModelDescriptor(
            id="m", provider="openai", model="m", cost_input=2.0, cost_output=8.0,
        )

        assert model.calculate_cost(1_000_000, 500_000) == pytest.approx(6.0)
        assert model.blended_cost_per_token == pytest.approx(5e-6)

    def test_carbon_estimate(self):
        model = ModelDescriptor(
            id="m", provider="openai", model="m", cost_input=0, cost_output=0,
            carbon_g_per_1k=0.4,
        )

        assert model.estimate_carbon(2500) == pytest.approx(1.0)

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError):
            ModelDescriptor(id="m", provider="acme", model="m", cost_input=0, cost_output=0)


# ── Responses ─────────────────────────────────────────────────


def _make_metadata(**overrides) -> RoutingMetadata:
    defaults = {
        "selected_model": "gpt-4o-mini",
        "selection_reason": "lowest estimated cost among 3 candidates",
        "cost_usd": 0.0001,
        "latency_ms": 420.0,
    }
    defaults.update(overrides)
    return RoutingMetadata(**defaults)


class TestResponses:
    def test_completion_dict_carries_routing_block(self):
        completion = ChatCompletion(
            model="gpt-4o-mini",
            choices=[Choice(message=AssistantMessage(content="Hi"))],
            usage=Usage(prompt_tokens=10, completion_tokens=5),
            modelpilot=_make_metadata(),
        )

        data = completion.to_dict()

        assert data["object"] == "chat.completion"
        assert data["id"].startswith("chatcmpl-")
        assert data["usage"] == {
            "prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15,
        }
        assert data["modelpilot"]["selected_model"] == "gpt-4o-mini"
        assert data["choices"][0]["message"]["content"] == "Hi"

    def test_terminal_fragment(self):
        fragment = StreamFragment(
            id="chatcmpl-1",
            choices=[StreamChoice(delta=Delta(), finish_reason="stop")],
            modelpilot=_make_metadata(total_cost_usd=0.0001, total_latency_ms=500.0),
        )

        data = fragment.to_dict()

        assert fragment.is_terminal
        assert fragment.content == ""
        assert data["object"] == "chat.completion.chunk"
        assert data["modelpilot"]["total_latency_ms"] == 500.0

    def test_content_fragment(self):
        fragment = StreamFragment(
            id="chatcmpl-1", choices=[StreamChoice(delta=Delta(content="Hel"))],
        )

        assert not fragment.is_terminal
        assert fragment.content == "Hel"
        assert "modelpilot" not in fragment.to_dict()


# ── Errors ────────────────────────────────────────────────────


class TestErrors:
    def test_to_dict_has_no_traceback(self):
        error = ConfigurationError("bad weights", code="invalid_weights")

        assert error.to_dict() == {
            "error": {
                "code": "invalid_weights",
                "kind": "configuration",
                "message": "bad weights",
            },
        }

    def test_provider_error_retryable(self):
        assert ProviderError(ProviderErrorKind.TIMEOUT, "t").retryable
        assert ProviderError(ProviderErrorKind.RATE_LIMITED, "r").retryable
        assert not ProviderError(ProviderErrorKind.INVALID_REQUEST, "i").retryable
        assert not ProviderError(ProviderErrorKind.UNKNOWN, "u").retryable

    def test_provider_error_code(self):
        error = ProviderError(ProviderErrorKind.RATE_LIMITED, "slow down", model_id="a")

        payload = error.to_dict()["error"]
        assert payload["code"] == "provider_rate_limited"
        assert payload["model"] == "a"

    def test_router_rate_limit_distinct_from_provider(self):
        assert RateLimitError("quota").code != ProviderError(
            ProviderErrorKind.RATE_LIMITED, "x",
        ).code
        assert AuthenticationError("nope").code == "authentication_failed"

    def test_stream_interrupted_keeps_cause(self):
        cause = ProviderError(ProviderErrorKind.PROVIDER_UNAVAILABLE, "reset")
        error = StreamInterruptedError("a", cause)

        assert error.cause is cause
        assert error.code == "stream_interrupted"
