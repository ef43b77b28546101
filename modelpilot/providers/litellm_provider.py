"""LiteLLM-backed provider adapters, one variant per upstream family.

Every family goes through litellm.acompletion(). The variants differ in how
a registry model name maps onto a LiteLLM model string, which sampling
parameters the upstream API rejects, and whether max_tokens is mandatory.
LiteLLM exceptions are translated into ProviderError here and never leak
past this module.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import AsyncIterator

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from modelpilot.errors import ProviderError, ProviderErrorKind
from modelpilot.providers.base import ProviderAdapter
from modelpilot.schemas.models import ModelDescriptor, ProviderFamily
from modelpilot.schemas.provider import ProviderResponse
from modelpilot.schemas.request import ChatRequest
from modelpilot.schemas.response import Usage
from modelpilot.schemas.streaming import StreamDelta

logger = logging.getLogger(__name__)

# Exceptions translated into ProviderError. Order matters in
# _classify_error: subclasses must be tested before their parents.
LITELLM_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    litellm.Timeout,
    litellm.RateLimitError,
    litellm.BadRequestError,
    litellm.UnprocessableEntityError,
    litellm.AuthenticationError,
    litellm.PermissionDeniedError,
    litellm.NotFoundError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIConnectionError,
    litellm.APIError,
)


def _classify_error(error: BaseException) -> ProviderErrorKind:
    """Map a LiteLLM (or asyncio) exception onto a ProviderErrorKind."""
    if isinstance(error, (TimeoutError, litellm.Timeout)):
        return ProviderErrorKind.TIMEOUT
    if isinstance(error, litellm.RateLimitError):
        return ProviderErrorKind.RATE_LIMITED
    if isinstance(error, (litellm.BadRequestError, litellm.UnprocessableEntityError)):
        return ProviderErrorKind.INVALID_REQUEST
    # Bad credentials or an unknown upstream model are our problem, not the
    # caller's; another provider may still serve the request.
    if isinstance(
        error,
        (
            litellm.AuthenticationError,
            litellm.PermissionDeniedError,
            litellm.NotFoundError,
            litellm.ServiceUnavailableError,
            litellm.InternalServerError,
            litellm.APIConnectionError,
        ),
    ):
        return ProviderErrorKind.PROVIDER_UNAVAILABLE
    return ProviderErrorKind.UNKNOWN


def to_provider_error(error: BaseException, model_id: str) -> ProviderError:
    """Wrap an upstream exception in a ProviderError with a short message."""
    kind = _classify_error(error)
    detail = str(error)[:200] or type(error).__name__
    return ProviderError(kind, f"{model_id}: {detail}", model_id=model_id)


def _tool_call_dict(tool_call: object) -> dict:
    if isinstance(tool_call, dict):
        return tool_call
    function = getattr(tool_call, "function", None)
    return {
        "id": getattr(tool_call, "id", ""),
        "type": getattr(tool_call, "type", "function") or "function",
        "function": {
            "name": getattr(function, "name", ""),
            "arguments": getattr(function, "arguments", "") or "",
        },
    }


class LiteLLMProvider(ProviderAdapter):
    """Universal adapter powered by LiteLLM.

    Subclasses set the family-specific class attributes; the dispatch and
    streaming logic is shared.
    """

    family = ProviderFamily.OPENAI

    # LiteLLM model prefix, applied when the registry name has none
    _prefix: str = ""
    # Sampling parameters the upstream API rejects
    _unsupported_params: frozenset[str] = frozenset()
    # Whether the upstream API refuses requests without max_tokens
    _requires_max_tokens: bool = False

    async def dispatch(
        self,
        model: ModelDescriptor,
        request: ChatRequest,
        *,
        timeout: float = 60.0,
    ) -> ProviderResponse:
        """Send a completion request via LiteLLM and normalize the result.

        Args:
            model: Descriptor of the model to call.
            request: The inbound request.
            timeout: Timeout in seconds for the call.

        Returns:
            ProviderResponse with content, usage, cost and measured latency.

        Raises:
            ProviderError: Normalized upstream failure.
        """
        kwargs = self._build_completion_kwargs(model, request, timeout)

        start = time.perf_counter()
        try:
            response = await litellm.acompletion(**kwargs)
        except LITELLM_ERRORS as e:
            raise to_provider_error(e, model.id) from e
        latency_ms = (time.perf_counter() - start) * 1000

        usage = self._build_usage(response)
        content, tool_calls, finish_reason = self._extract_message(response)

        logger.debug(
            "%s answered in %.0fms (%d/%d tokens)",
            model.id, latency_ms, usage.prompt_tokens, usage.completion_tokens,
        )
        return ProviderResponse(
            model=getattr(response, "model", None) or model.model,
            content=content,
            tool_calls=tool_calls,
            finish_reason=finish_reason,
            usage=usage,
            cost_usd=self.calculate_cost(
                model, usage.prompt_tokens, usage.completion_tokens,
            ),
            latency_ms=latency_ms,
        )

    async def stream(
        self,
        model: ModelDescriptor,
        request: ChatRequest,
        *,
        timeout: float = 60.0,
    ) -> AsyncIterator[StreamDelta]:
        """Stream a completion via LiteLLM, yielding one delta per chunk.

        The final delta carries the finish reason and token usage. When the
        provider does not report usage, prompt tokens are estimated from
        the request and completion tokens from the chunk count.
        A stream that closes with neither content nor a finish reason raises
        an Unknown provider error.
        """
        kwargs = self._build_completion_kwargs(model, request, timeout)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        try:
            response = await litellm.acompletion(**kwargs)
        except LITELLM_ERRORS as e:
            raise to_provider_error(e, model.id) from e

        chunk_count = 0
        finish_reason: str | None = None
        usage: Usage | None = None
        try:
            async for chunk in response:
                reported = getattr(chunk, "usage", None)
                if reported:
                    usage = Usage(
                        prompt_tokens=getattr(reported, "prompt_tokens", 0) or 0,
                        completion_tokens=getattr(reported, "completion_tokens", 0) or 0,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                if getattr(choice, "finish_reason", None):
                    finish_reason = choice.finish_reason
                delta = choice.delta.content if choice.delta else None
                if delta:
                    chunk_count += 1  # approximate, 1 chunk ~= 1 token
                    yield StreamDelta(content=delta)
        except LITELLM_ERRORS as e:
            raise to_provider_error(e, model.id) from e
        finally:
            close = getattr(response, "aclose", None)
            if close is not None:
                await close()

        if chunk_count == 0 and finish_reason is None:
            raise ProviderError(
                ProviderErrorKind.UNKNOWN,
                f"{model.id}: stream ended without output",
                model_id=model.id,
            )

        if usage is None:
            usage = Usage(
                prompt_tokens=request.estimated_prompt_tokens(),
                completion_tokens=chunk_count,
            )
        yield StreamDelta(finish_reason=finish_reason or "stop", usage=usage)

    # ── Request building ──────────────────────────────────────

    def litellm_model(self, model: ModelDescriptor) -> str:
        """LiteLLM model string for a registry descriptor."""
        if "/" in model.model or not self._prefix:
            return model.model
        return f"{self._prefix}{model.model}"

    def _build_completion_kwargs(
        self,
        model: ModelDescriptor,
        request: ChatRequest,
        timeout: float,
    ) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self.litellm_model(model),
            "messages": [m.to_provider_dict() for m in request.messages],
            "timeout": float(timeout),
        }

        for name, value in request.sampling_params().items():
            if name in self._unsupported_params:
                logger.debug("Dropping %s for %s (unsupported)", name, model.id)
                continue
            kwargs[name] = value

        if "max_tokens" in kwargs:
            kwargs["max_tokens"] = min(kwargs["max_tokens"], model.max_output_tokens)
        elif self._requires_max_tokens:
            kwargs["max_tokens"] = model.max_output_tokens

        if request.tools:
            kwargs["tools"] = [t.model_dump(mode="json") for t in request.tools]
            if request.tool_choice is not None:
                kwargs["tool_choice"] = request.tool_choice

        # Set API key if available
        api_key = os.environ.get(model.api_key_env, "") if model.api_key_env else ""
        if api_key:
            kwargs["api_key"] = api_key

        # Set custom API base if configured
        if model.api_base:
            kwargs["api_base"] = model.api_base

        return kwargs

    # ── Response parsing ──────────────────────────────────────

    def _extract_message(
        self, response: litellm.ModelResponse,
    ) -> tuple[str | None, list[dict] | None, str | None]:
        """Extract content, tool calls and finish reason from a response."""
        if not response.choices:
            return None, None, None
        choice = response.choices[0]
        message = choice.message
        if message is None:
            return None, None, choice.finish_reason
        tool_calls = None
        if getattr(message, "tool_calls", None):
            tool_calls = [_tool_call_dict(tc) for tc in message.tool_calls]
        return message.content, tool_calls, choice.finish_reason

    def _build_usage(self, response: litellm.ModelResponse) -> Usage:
        """Build Usage from the LiteLLM response usage data."""
        usage = getattr(response, "usage", None)
        return Usage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )


class OpenAIProvider(LiteLLMProvider):
    family = ProviderFamily.OPENAI


class AnthropicProvider(LiteLLMProvider):
    family = ProviderFamily.ANTHROPIC
    _prefix = "anthropic/"
    _unsupported_params = frozenset({"presence_penalty", "frequency_penalty"})
    _requires_max_tokens = True


class GoogleProvider(LiteLLMProvider):
    family = ProviderFamily.GOOGLE
    _prefix = "gemini/"
    _unsupported_params = frozenset({"presence_penalty", "frequency_penalty"})


class XAIProvider(LiteLLMProvider):
    family = ProviderFamily.XAI
    _prefix = "xai/"
    _unsupported_params = frozenset({"presence_penalty"})


class MistralProvider(LiteLLMProvider):
    family = ProviderFamily.MISTRAL
    _prefix = "mistral/"


# Closed dispatch table: provider family → adapter variant
ADAPTER_CLASSES: dict[ProviderFamily, type[LiteLLMProvider]] = {
    ProviderFamily.OPENAI: OpenAIProvider,
    ProviderFamily.ANTHROPIC: AnthropicProvider,
    ProviderFamily.GOOGLE: GoogleProvider,
    ProviderFamily.XAI: XAIProvider,
    ProviderFamily.MISTRAL: MistralProvider,
}


def default_adapters() -> dict[ProviderFamily, ProviderAdapter]:
    """One adapter instance per provider family."""
    return {family: cls() for family, cls in ADAPTER_CLASSES.items()}
