"""Abstract base class for all provider adapters.

Defines the ProviderAdapter interface that every upstream family variant
must implement. The orchestrator interacts exclusively through this
interface and never calls provider SDKs directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from modelpilot.schemas.models import ModelDescriptor, ProviderFamily
from modelpilot.schemas.provider import ProviderResponse
from modelpilot.schemas.request import ChatRequest
from modelpilot.schemas.streaming import StreamDelta


class ProviderAdapter(ABC):
    """Uniform interface over one upstream provider family.

    One adapter instance serves every model of its family; the model to
    call is passed per dispatch as a ModelDescriptor. Failures must be
    raised as ProviderError with a normalized kind.
    """

    family: ProviderFamily

    # ── Core interface ────────────────────────────────────────

    @abstractmethod
    async def dispatch(
        self,
        model: ModelDescriptor,
        request: ChatRequest,
        *,
        timeout: float = 60.0,
    ) -> ProviderResponse:
        """Send a non-streaming completion request.

        Args:
            model: Descriptor of the model to call.
            request: The normalized inbound request.
            timeout: Timeout in seconds for this single call.

        Returns:
            A ProviderResponse with content, usage, cost_usd and latency_ms
            populated.

        Raises:
            ProviderError: On any upstream failure, with a normalized kind.
        """

    @abstractmethod
    def stream(
        self,
        model: ModelDescriptor,
        request: ChatRequest,
        *,
        timeout: float = 60.0,
    ) -> AsyncIterator[StreamDelta]:
        """Open a streaming completion.

        Returns a lazy, finite, non-restartable async iterator of
        StreamDelta. The last delta carries the finish reason and, when the
        provider reports it, token usage. Closing the iterator early
        cancels the upstream call.

        Raises:
            ProviderError: While opening or while iterating.
        """

    # ── Helpers ───────────────────────────────────────────────

    def calculate_cost(
        self,
        model: ModelDescriptor,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> float:
        """Calculate the USD cost for a given token count."""
        return model.calculate_cost(prompt_tokens, completion_tokens)
