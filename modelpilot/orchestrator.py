"""Router orchestrator for ModelPilot.

Routes one chat-completion request under a router config: validates the
config, picks the primary model (scoring in smartRouter mode, the preferred
model in passthrough mode), dispatches through the fallback controller,
records one outcome per attempt, and attaches routing metadata to the
response.

Streaming follows the same selection and fallback rules until the first
delta arrives. After that the serving model is fixed: a provider failure
surfaces as StreamInterruptedError after the partial output, and a consumer
that stops reading cancels the upstream stream and leaves an incomplete
outcome behind.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from modelpilot.config_store import CachedConfigStore
from modelpilot.errors import (
    ConfigurationError,
    ProviderError,
    ProviderErrorKind,
    StreamInterruptedError,
)
from modelpilot.history.embedding import Embedder
from modelpilot.history.similarity import SimilarityIndex
from modelpilot.providers.base import ProviderAdapter
from modelpilot.providers.litellm_provider import default_adapters
from modelpilot.providers.registry import ModelRegistry, RegistrySnapshot
from modelpilot.routing.fallback import AttemptFailure, FallbackController, FallbackResult
from modelpilot.routing.scoring import ScoringEngine, selection_reason
from modelpilot.routing.validation import validate_router_config
from modelpilot.schemas.config import RouterConfig, RouterMode, RouterSettings
from modelpilot.schemas.models import ModelDescriptor, ProviderFamily
from modelpilot.schemas.outcome import OutcomeRecord, OutcomeStatus
from modelpilot.schemas.provider import ProviderResponse
from modelpilot.schemas.request import ChatRequest, RequestContext
from modelpilot.schemas.response import (
    AssistantMessage,
    ChatCompletion,
    Choice,
    Delta,
    RoutedResponse,
    StreamChoice,
    StreamFragment,
    Usage,
    new_completion_id,
)
from modelpilot.schemas.routing import RoutingMetadata, ScoredCandidate
from modelpilot.schemas.streaming import StreamDelta
from modelpilot.telemetry import TelemetryRecorder

logger = logging.getLogger(__name__)

# quality_proxy by finish reason; anything else scores _DEGRADED_QUALITY
_FINISH_QUALITY: dict[str, float] = {
    "stop": 1.0,
    "tool_calls": 1.0,
    "function_call": 1.0,
    "length": 0.6,
}
_DEGRADED_QUALITY = 0.3

PASSTHROUGH_REASON = "passthrough: preferred model"


def quality_proxy(
    finish_reason: str | None, has_output: bool,
) -> float:
    """Cheap quality signal for a successful attempt."""
    if not has_output:
        return _DEGRADED_QUALITY
    return _FINISH_QUALITY.get(finish_reason or "", _DEGRADED_QUALITY)


@dataclass
class RoutePlan:
    """Everything decided before the first dispatch."""

    context: RequestContext
    snapshot: RegistrySnapshot
    primary: str
    reason: str
    ranked: list[ScoredCandidate] = field(default_factory=list)


@dataclass
class _OpenStream:
    descriptor: ModelDescriptor
    iterator: AsyncIterator[StreamDelta]
    first: StreamDelta


async def _aclose(iterator: AsyncIterator[StreamDelta]) -> None:
    close = getattr(iterator, "aclose", None)
    if close is not None:
        await close()


class RouterOrchestrator:
    """Routes requests across models under a router config.

    Args:
        registry: Model registry; a snapshot is taken per request.
        adapters: Provider adapter per family. Defaults to the LiteLLM variants.
        embedder: Computes request fingerprints. Without one, smart routing
            scores from the static registry alone.
        similarity: Index of past outcomes consulted during scoring.
        recorder: Telemetry recorder. By default one is created that feeds
            the similarity index.
        scoring: Scoring engine. Built from ``settings`` when omitted.
        settings: Process tunables (timeouts, backoff, history lookup).
        config_store: Resolves router ids for route_by_id().
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        adapters: Mapping[ProviderFamily, ProviderAdapter] | None = None,
        embedder: Embedder | None = None,
        similarity: SimilarityIndex | None = None,
        recorder: TelemetryRecorder | None = None,
        scoring: ScoringEngine | None = None,
        settings: RouterSettings | None = None,
        config_store: CachedConfigStore | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or RouterSettings()
        self._registry = registry
        self._adapters = dict(adapters) if adapters is not None else default_adapters()
        self._embedder = embedder
        if similarity is None:
            similarity = SimilarityIndex(
                min_similarity=self._settings.min_similarity,
                max_records=self._settings.history_max_records,
            )
        self._similarity = similarity
        self._recorder = recorder or TelemetryRecorder([similarity])
        self._scoring = scoring or ScoringEngine.from_settings(self._settings)
        self._config_store = config_store
        self._sleep = sleep

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    @property
    def similarity(self) -> SimilarityIndex:
        return self._similarity

    @property
    def recorder(self) -> TelemetryRecorder:
        return self._recorder

    # ── Selection ─────────────────────────────────────────────

    async def _embed(self, request: ChatRequest) -> tuple[float, ...]:
        if self._embedder is None:
            return ()
        return await self._embedder.embed(request.fingerprint_text())

    async def plan(self, config: RouterConfig, request: ChatRequest) -> RoutePlan:
        """Validate the config and choose the primary model.

        Raises:
            ConfigurationError: Invalid config, or no eligible candidate.
        """
        validate_router_config(config)
        snapshot = self._registry.snapshot()

        if config.mode == RouterMode.PASSTHROUGH:
            context = RequestContext(request=request, router_id=config.router_id)
            if config.preferred_model not in snapshot:
                raise ConfigurationError(
                    f"Preferred model '{config.preferred_model}' is not in the registry",
                    code="unknown_model",
                )
            logger.info("[%s] passthrough to %s", config.router_id, config.preferred_model)
            return RoutePlan(context, snapshot, config.preferred_model, PASSTHROUGH_REASON)

        embedding = await self._embed(request)
        context = RequestContext(
            request=request, embedding=embedding, router_id=config.router_id,
        )
        history: list[OutcomeRecord] = []
        if embedding:
            history = await self._similarity.find_similar(
                embedding, self._settings.history_top_k, router_id=config.router_id,
            )
        ranked = self._scoring.score(
            context,
            config.available_models,
            snapshot,
            history,
            config.objective,
            config.requirements,
        )
        winner = ranked[0]
        reason = selection_reason(winner, config.objective, len(ranked), ranked)
        logger.info(
            "[%s] selected %s (score %.3f, %d history sample(s)): %s",
            config.router_id, winner.model_id, winner.score,
            len(history), reason,
        )
        return RoutePlan(context, snapshot, winner.model_id, reason, ranked)

    async def preview(
        self, config: RouterConfig, request: ChatRequest,
    ) -> list[ScoredCandidate]:
        """Ranking the router would use for ``request``, without dispatching."""
        plan = await self.plan(config, request)
        return plan.ranked

    # ── Dispatch helpers ──────────────────────────────────────

    def _resolve(
        self, snapshot: RegistrySnapshot, model_id: str,
    ) -> tuple[ModelDescriptor, ProviderAdapter]:
        descriptor = snapshot.get(model_id)
        if descriptor is None:
            raise ProviderError(
                ProviderErrorKind.PROVIDER_UNAVAILABLE,
                f"{model_id}: not in the model registry",
                model_id=model_id,
            )
        adapter = self._adapters.get(descriptor.provider)
        if adapter is None:
            raise ConfigurationError(
                f"No adapter for provider '{descriptor.provider.value}'",
                code="no_adapter",
            )
        return descriptor, adapter

    def _controller(self, config: RouterConfig, plan: RoutePlan) -> FallbackController:
        context = plan.context
        needed = context.request.implied_capabilities()

        def on_failure(failure: AttemptFailure) -> None:
            self._recorder.emit(self._failure_record(context, failure))

        def on_cancel(model_id: str, attempt_index: int, latency_ms: float) -> None:
            logger.info(
                "[%s] request cancelled during dispatch to %s", context.router_id, model_id,
            )
            self._recorder.emit(OutcomeRecord(
                router_id=context.router_id,
                request_id=context.request_id,
                embedding=context.embedding,
                model_id=model_id,
                attempt_index=attempt_index,
                status=OutcomeStatus.INCOMPLETE,
                latency_ms=latency_ms,
            ))

        def eligible(model_id: str) -> bool:
            return self._scoring.is_eligible(
                plan.snapshot.get(model_id), config.requirements, needed,
            )

        return FallbackController(
            config.fallback,
            base_delay=self._settings.base_backoff,
            timeout=self._settings.request_timeout,
            sleep=self._sleep,
            on_failure=on_failure,
            on_cancel=on_cancel,
            eligible=eligible,
        )

    @staticmethod
    def _failure_record(context: RequestContext, failure: AttemptFailure) -> OutcomeRecord:
        return OutcomeRecord(
            router_id=context.router_id,
            request_id=context.request_id,
            embedding=context.embedding,
            model_id=failure.model_id,
            attempt_index=failure.attempt_index,
            status=OutcomeStatus.FAILED,
            error_kind=failure.error.error_kind,
            latency_ms=failure.latency_ms,
        )

    @staticmethod
    def _reason(plan: RoutePlan, result: FallbackResult) -> str:
        if not result.failures:
            return plan.reason
        first = result.failures[0]
        return (
            f"fallback to {result.model_id} after "
            f"{first.error.error_kind.value} on {first.model_id}"
        )

    def _metadata(
        self,
        plan: RoutePlan,
        result: FallbackResult,
        descriptor: ModelDescriptor,
        usage: Usage,
        cost_usd: float,
        latency_ms: float,
        total_latency_ms: float,
    ) -> RoutingMetadata:
        # Failed attempts are not billed; only the serving attempt has a cost
        return RoutingMetadata(
            selected_model=descriptor.id,
            selection_reason=self._reason(plan, result),
            cost_usd=cost_usd,
            latency_ms=latency_ms,
            carbon_g=descriptor.estimate_carbon(usage.total_tokens),
            fallback_used=result.fallback_used,
            retry_count=result.retry_count,
            total_cost_usd=cost_usd,
            total_latency_ms=total_latency_ms,
            router_id=plan.context.router_id,
            request_id=plan.context.request_id,
        )

    # ── Whole responses ───────────────────────────────────────

    async def route(self, config: RouterConfig, request: ChatRequest) -> RoutedResponse:
        """Route a request and return the whole completion.

        Raises:
            ConfigurationError: Invalid config or no eligible model.
            ProviderError: The request itself was rejected (InvalidRequest).
            RoutingExhaustedError: Every attempt failed.
        """
        if request.stream:
            request = request.model_copy(update={"stream": False})
        plan = await self.plan(config, request)
        controller = self._controller(config, plan)

        async def attempt(model_id: str) -> tuple[ModelDescriptor, ProviderResponse]:
            descriptor, adapter = self._resolve(plan.snapshot, model_id)
            response = await adapter.dispatch(
                descriptor, request, timeout=self._settings.request_timeout,
            )
            return descriptor, response

        result = await controller.run(plan.primary, attempt)
        descriptor, response = result.value

        has_output = bool(response.content) or bool(response.tool_calls)
        self._recorder.emit(OutcomeRecord(
            router_id=plan.context.router_id,
            request_id=plan.context.request_id,
            embedding=plan.context.embedding,
            model_id=descriptor.id,
            attempt_index=result.attempt_index,
            status=OutcomeStatus.SUCCESS,
            cost_usd=response.cost_usd,
            latency_ms=response.latency_ms or result.latency_ms,
            quality_proxy=quality_proxy(response.finish_reason, has_output),
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
        ))

        metadata = self._metadata(
            plan,
            result,
            descriptor,
            response.usage,
            response.cost_usd,
            response.latency_ms or result.latency_ms,
            result.elapsed_ms,
        )
        body = ChatCompletion(
            model=response.model or descriptor.model,
            choices=[Choice(
                message=AssistantMessage(
                    content=response.content, tool_calls=response.tool_calls,
                ),
                finish_reason=response.finish_reason,
            )],
            usage=response.usage,
            modelpilot=metadata,
        )
        logger.info(
            "[%s] served by %s in %.0fms ($%.6f, %d retr%s)",
            plan.context.router_id, descriptor.id, metadata.total_latency_ms,
            metadata.cost_usd, metadata.retry_count,
            "y" if metadata.retry_count == 1 else "ies",
        )
        return RoutedResponse(body=body, metadata=metadata)

    # ── Streaming ─────────────────────────────────────────────

    async def route_stream(
        self, config: RouterConfig, request: ChatRequest,
    ) -> AsyncIterator[StreamFragment]:
        """Route a request and stream the completion.

        Yields content fragments followed by one terminal fragment that
        carries the routing metadata.

        Raises:
            ConfigurationError: Invalid config or no eligible model.
            ProviderError: The request itself was rejected (InvalidRequest).
            RoutingExhaustedError: No model produced a first delta.
            StreamInterruptedError: The serving model failed mid-stream.
        """
        if not request.stream:
            request = request.model_copy(update={"stream": True})
        plan = await self.plan(config, request)
        controller = self._controller(config, plan)
        timeout = self._settings.request_timeout

        async def attempt(model_id: str) -> _OpenStream:
            descriptor, adapter = self._resolve(plan.snapshot, model_id)
            iterator = adapter.stream(descriptor, request, timeout=timeout)
            try:
                first = await anext(iterator)
            except StopAsyncIteration:
                raise ProviderError(
                    ProviderErrorKind.UNKNOWN,
                    f"{model_id}: stream ended without output",
                    model_id=model_id,
                ) from None
            except BaseException:
                await _aclose(iterator)
                raise
            return _OpenStream(descriptor, iterator, first)

        result = await controller.run(plan.primary, attempt)
        opened = result.value
        descriptor = opened.descriptor
        opened_at = time.perf_counter()

        def elapsed() -> tuple[float, float]:
            extra = (time.perf_counter() - opened_at) * 1000
            return result.latency_ms + extra, result.elapsed_ms + extra

        completion_id = new_completion_id()
        created = int(time.time())
        parts: list[str] = []
        finish_reason: str | None = None
        usage: Usage | None = None

        def fragment(delta: Delta) -> StreamFragment:
            return StreamFragment(
                id=completion_id,
                created=created,
                model=descriptor.model,
                choices=[StreamChoice(delta=delta)],
            )

        def interrupted(status: OutcomeStatus, kind: ProviderErrorKind | None) -> OutcomeRecord:
            latency_ms, _ = elapsed()
            return OutcomeRecord(
                router_id=plan.context.router_id,
                request_id=plan.context.request_id,
                embedding=plan.context.embedding,
                model_id=descriptor.id,
                attempt_index=result.attempt_index,
                status=status,
                error_kind=kind,
                latency_ms=latency_ms,
                prompt_tokens=request.estimated_prompt_tokens(),
                completion_tokens=len(parts),
            )

        delta = opened.first
        try:
            if delta.content:
                parts.append(delta.content)
            yield fragment(Delta(role="assistant", content=delta.content))
            while not delta.is_final:
                try:
                    delta = await anext(opened.iterator)
                except StopAsyncIteration:
                    break
                if delta.content:
                    parts.append(delta.content)
                    yield fragment(Delta(content=delta.content))
            finish_reason = delta.finish_reason
            usage = delta.usage
        except ProviderError as e:
            logger.warning(
                "[%s] stream from %s interrupted after %d fragment(s): %s",
                plan.context.router_id, descriptor.id, len(parts), e.message,
            )
            self._recorder.emit(interrupted(OutcomeStatus.FAILED, e.error_kind))
            raise StreamInterruptedError(descriptor.id, e) from e
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(
                "[%s] stream from %s closed by consumer", plan.context.router_id,
                descriptor.id,
            )
            self._recorder.emit(interrupted(OutcomeStatus.INCOMPLETE, None))
            raise
        finally:
            await _aclose(opened.iterator)

        text = "".join(parts)
        if usage is None:
            usage = Usage(
                prompt_tokens=request.estimated_prompt_tokens(),
                completion_tokens=len(parts),
            )
        cost_usd = descriptor.calculate_cost(usage.prompt_tokens, usage.completion_tokens)
        latency_ms, total_latency_ms = elapsed()
        self._recorder.emit(OutcomeRecord(
            router_id=plan.context.router_id,
            request_id=plan.context.request_id,
            embedding=plan.context.embedding,
            model_id=descriptor.id,
            attempt_index=result.attempt_index,
            status=OutcomeStatus.SUCCESS,
            cost_usd=cost_usd,
            latency_ms=latency_ms,
            quality_proxy=quality_proxy(finish_reason, bool(text)),
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        ))
        metadata = self._metadata(
            plan, result, descriptor, usage, cost_usd, latency_ms, total_latency_ms,
        )
        yield StreamFragment(
            id=completion_id,
            created=created,
            model=descriptor.model,
            choices=[StreamChoice(delta=Delta(), finish_reason=finish_reason or "stop")],
            modelpilot=metadata,
        )

    # ── Config store ──────────────────────────────────────────

    async def route_by_id(self, router_id: str, request: ChatRequest) -> RoutedResponse:
        """Resolve ``router_id`` through the config store and route."""
        config = await self._get_config(router_id)
        return await self.route(config, request)

    async def route_stream_by_id(
        self, router_id: str, request: ChatRequest,
    ) -> AsyncIterator[StreamFragment]:
        config = await self._get_config(router_id)
        async for fragment in self.route_stream(config, request):
            yield fragment

    async def _get_config(self, router_id: str) -> RouterConfig:
        if self._config_store is None:
            raise ConfigurationError(
                "No config store configured", code="no_config_store",
            )
        return await self._config_store.get(router_id)

    async def close(self) -> None:
        """Flush pending outcome records."""
        await self._recorder.close()
