"""Multi-objective scoring engine.

Ranks candidate models for a request by a weighted sum of four component
scores (cost, latency, quality, carbon), each mapped into [0, 1] with
higher meaning better. Cost is scored relative to the cheapest candidate;
latency and carbon are min-max normalized. Hard requirements exclude models
before any scoring happens. Historical outcomes of similar requests refine
the latency and quality components once enough samples exist; with no
history the result is exactly the static-registry computation.

Ranking is deterministic: identical inputs always produce the same order,
and ties keep the candidates' input order.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from modelpilot.errors import ConfigurationError
from modelpilot.providers.registry import RegistrySnapshot
from modelpilot.schemas.config import HardRequirements, ObjectiveWeights, RouterSettings
from modelpilot.schemas.models import Capability, ModelDescriptor
from modelpilot.schemas.outcome import OutcomeRecord, OutcomeStatus
from modelpilot.schemas.request import RequestContext
from modelpilot.schemas.routing import ComponentScores, ScoredCandidate

logger = logging.getLogger(__name__)

# Objectives in tie-break order for the dominant-component reason
_OBJECTIVES: tuple[str, ...] = ("cost", "latency", "quality", "carbon")

# (phrase when the winner is best on that axis, phrase otherwise)
_REASON_PHRASES: dict[str, tuple[str, str]] = {
    "cost": ("lowest estimated cost", "strong cost efficiency"),
    "latency": ("fastest expected response", "low expected latency"),
    "quality": ("highest expected quality", "high expected quality"),
    "carbon": ("lowest carbon footprint", "low carbon footprint"),
}


@dataclass(frozen=True)
class HistoryStats:
    """Per-model summary of similar past outcomes."""

    samples: int
    successes: int
    mean_latency_ms: float

    @property
    def success_rate(self) -> float:
        return self.successes / self.samples if self.samples else 0.0


def summarize_history(history: Sequence[OutcomeRecord]) -> dict[str, HistoryStats]:
    """Group similar outcomes by model.

    Incomplete records (caller cancelled) say nothing about the model and
    are ignored. Mean latency is taken over successful attempts only.
    """
    samples: dict[str, int] = {}
    successes: dict[str, int] = {}
    latency_sum: dict[str, float] = {}
    for record in history:
        if record.status == OutcomeStatus.INCOMPLETE:
            continue
        samples[record.model_id] = samples.get(record.model_id, 0) + 1
        if record.success:
            successes[record.model_id] = successes.get(record.model_id, 0) + 1
            latency_sum[record.model_id] = (
                latency_sum.get(record.model_id, 0.0) + record.latency_ms
            )

    summary: dict[str, HistoryStats] = {}
    for model_id, count in samples.items():
        ok = successes.get(model_id, 0)
        summary[model_id] = HistoryStats(
            samples=count,
            successes=ok,
            mean_latency_ms=latency_sum.get(model_id, 0.0) / ok if ok else 0.0,
        )
    return summary


def _inverse_normalize(values: list[float]) -> list[float]:
    """Min-max normalize so the smallest value maps to 1.0, the largest to 0.0."""
    lo, hi = min(values), max(values)
    span = hi - lo
    if span <= 0:
        return [1.0 for _ in values]
    return [max(0.0, 1.0 - (v - lo) / span) for v in values]


def _relative_to_cheapest(values: list[float]) -> list[float]:
    """Score each value by its excess over the smallest: 1.0 at the minimum,
    0.0 at twice the minimum or more, linear between.

    A zero minimum leaves every strictly larger value at 0.0.
    """
    lo = min(values)
    if lo <= 0:
        return [1.0 if v <= lo else 0.0 for v in values]
    return [max(0.0, 1.0 - (v - lo) / lo) for v in values]


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class ScoringEngine:
    """Ranks candidate models for a request.

    Args:
        min_history_samples: Similar samples required before historical
            latency and success rate are taken into account.
        history_weight: Weight of historical latency in the blend with the
            static baseline once enough samples exist.
        default_max_tokens: Completion length assumed for cost estimation
            when the request does not set max_tokens.
    """

    def __init__(
        self,
        *,
        min_history_samples: int = 3,
        history_weight: float = 0.7,
        default_max_tokens: int = 512,
    ) -> None:
        self._min_samples = min_history_samples
        self._history_weight = history_weight
        self._default_max_tokens = default_max_tokens

    @classmethod
    def from_settings(cls, settings: RouterSettings) -> ScoringEngine:
        return cls(
            min_history_samples=settings.min_history_samples,
            history_weight=settings.history_weight,
            default_max_tokens=settings.default_max_tokens,
        )

    # ── Hard requirements ─────────────────────────────────────

    def is_eligible(
        self,
        model: ModelDescriptor | None,
        requirements: HardRequirements | None = None,
        required_capabilities: frozenset[Capability] = frozenset(),
    ) -> bool:
        """Whether a single model satisfies every hard requirement."""
        if model is None:
            return False
        needed = set(required_capabilities)
        if requirements is not None:
            needed |= requirements.required_capabilities
            if (
                requirements.max_latency_ms is not None
                and model.avg_latency_ms > requirements.max_latency_ms
            ):
                return False
            if (
                requirements.max_cost_per_token is not None
                and model.blended_cost_per_token > requirements.max_cost_per_token
            ):
                return False
        return needed.issubset(model.capabilities)

    def filter_candidates(
        self,
        candidate_ids: Sequence[str],
        registry: RegistrySnapshot,
        requirements: HardRequirements | None = None,
        required_capabilities: frozenset[Capability] = frozenset(),
    ) -> list[ModelDescriptor]:
        """Drop every candidate that violates a hard requirement.

        Latency is checked against the static registry baseline so that the
        filter depends only on the registry snapshot and the constraints.

        Raises:
            ConfigurationError: If no candidate survives.
        """
        eligible: list[ModelDescriptor] = []
        for model_id in candidate_ids:
            model = registry.get(model_id)
            if model is None:
                logger.warning("Model '%s' is not in the registry, skipping", model_id)
                continue
            if self.is_eligible(model, requirements, required_capabilities):
                eligible.append(model)

        if not eligible:
            needed = set(required_capabilities)
            if requirements is not None:
                needed |= requirements.required_capabilities
            raise ConfigurationError(
                f"No model among {list(candidate_ids)} satisfies the hard "
                f"requirements (capabilities: {sorted(c.value for c in needed)})",
                code="no_eligible_models",
            )
        return eligible

    # ── Scoring ───────────────────────────────────────────────

    def score(
        self,
        context: RequestContext,
        candidate_ids: Sequence[str],
        registry: RegistrySnapshot,
        history: Sequence[OutcomeRecord],
        objective: ObjectiveWeights,
        requirements: HardRequirements | None = None,
    ) -> list[ScoredCandidate]:
        """Rank eligible candidates, best first.

        Args:
            context: The request being routed.
            candidate_ids: Router's available models, in tie-break order.
            registry: Registry snapshot taken for this request.
            history: Similar past outcomes (may be empty).
            objective: Objective weights.
            requirements: Optional hard constraints.

        Raises:
            ConfigurationError: If hard requirements leave no candidate.
        """
        request = context.request
        models = self.filter_candidates(
            candidate_ids, registry, requirements, request.implied_capabilities(),
        )
        stats = summarize_history(history)

        prompt_tokens = request.estimated_prompt_tokens()
        completion_tokens = request.max_tokens or self._default_max_tokens

        costs = [m.calculate_cost(prompt_tokens, completion_tokens) for m in models]
        latencies = [self._effective_latency(m, stats.get(m.id)) for m in models]
        carbons = [m.carbon_g_per_1k for m in models]

        cost_scores = _relative_to_cheapest(costs)
        latency_scores = _inverse_normalize(latencies)
        carbon_scores = _inverse_normalize(carbons)

        scored: list[ScoredCandidate] = []
        for i, model in enumerate(models):
            model_stats = stats.get(model.id)
            components = ComponentScores(
                cost=cost_scores[i],
                latency=latency_scores[i],
                quality=self._effective_quality(model, model_stats),
                carbon=carbon_scores[i],
            )
            composite = (
                components.cost * objective.cost
                + components.latency * objective.latency
                + components.quality * objective.quality
                + components.carbon * objective.carbon
            )
            scored.append(ScoredCandidate(
                model_id=model.id,
                score=composite,
                components=components,
                history_samples=model_stats.samples if model_stats else 0,
            ))
            logger.debug(
                "Scored %s: %.4f (cost=%.3f latency=%.3f quality=%.3f carbon=%.3f, "
                "history=%d)",
                model.id, composite, components.cost, components.latency,
                components.quality, components.carbon,
                model_stats.samples if model_stats else 0,
            )

        # sorted() is stable: equal scores keep candidate input order
        return sorted(scored, key=lambda c: -c.score)

    def _effective_latency(
        self, model: ModelDescriptor, stats: HistoryStats | None,
    ) -> float:
        if stats is None or stats.successes < self._min_samples:
            return model.avg_latency_ms
        return (
            self._history_weight * stats.mean_latency_ms
            + (1 - self._history_weight) * model.avg_latency_ms
        )

    def _effective_quality(
        self, model: ModelDescriptor, stats: HistoryStats | None,
    ) -> float:
        if stats is None or stats.samples < self._min_samples:
            return model.quality
        return _clamp(model.quality * stats.success_rate)


def selection_reason(
    winner: ScoredCandidate,
    objective: ObjectiveWeights,
    candidate_count: int,
    ranked: Sequence[ScoredCandidate] = (),
) -> str:
    """Short human-readable justification from the dominant weighted component."""
    if candidate_count <= 1:
        return "only eligible candidate"

    weights = objective.as_dict()
    components = winner.components.as_dict()
    dominant = max(_OBJECTIVES, key=lambda name: weights[name] * components[name])

    best_on_axis = all(
        components[dominant] >= other.components.as_dict()[dominant]
        for other in ranked
    )
    phrase = _REASON_PHRASES[dominant][0 if best_on_axis else 1]
    return (
        f"{phrase} among {candidate_count} candidates "
        f"({dominant} weight {weights[dominant]:.2f})"
    )
