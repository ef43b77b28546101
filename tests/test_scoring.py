"""Tests for modelpilot.routing.scoring: hard filters, ranking and reasons."""

from __future__ import annotations

import pytest

from modelpilot.errors import ConfigurationError, ProviderErrorKind
from modelpilot.providers.registry import ModelRegistry
from modelpilot.routing.scoring import ScoringEngine, selection_reason, summarize_history
from modelpilot.schemas.config import HardRequirements, ObjectiveWeights
from modelpilot.schemas.models import Capability, ModelDescriptor
from modelpilot.schemas.outcome import OutcomeRecord, OutcomeStatus
from modelpilot.schemas.request import (
    ChatMessage,
    ChatRequest,
    RequestContext,
    Role,
    ToolDefinition,
)

# ── Helpers ───────────────────────────────────────────────────


def _make_model(model_id: str, **overrides) -> ModelDescriptor:
    defaults = {
        "id": model_id,
        "provider": "openai",
        "model": model_id,
        "capabilities": frozenset({Capability.CHAT, Capability.STREAMING}),
        "cost_input": 1.0,
        "cost_output": 2.0,
        "avg_latency_ms": 1000.0,
        "quality": 0.8,
        "carbon_g_per_1k": 0.5,
    }
    defaults.update(overrides)
    return ModelDescriptor(**defaults)


def _make_snapshot(*models: ModelDescriptor):
    return ModelRegistry({m.id: m for m in models}).snapshot()


def _make_context(text: str = "Summarize this paragraph", **request_kw) -> RequestContext:
    request = ChatRequest(
        messages=[ChatMessage(role=Role.USER, content=text)], **request_kw,
    )
    return RequestContext(request=request, router_id="r1")


def _make_outcome(model_id: str, *, success: bool = True, latency_ms: float = 1000.0,
                  status: OutcomeStatus | None = None) -> OutcomeRecord:
    if status is None:
        status = OutcomeStatus.SUCCESS if success else OutcomeStatus.FAILED
    return OutcomeRecord(
        router_id="r1",
        model_id=model_id,
        status=status,
        error_kind=None if status != OutcomeStatus.FAILED else ProviderErrorKind.TIMEOUT,
        latency_ms=latency_ms,
        embedding=(1.0, 0.0),
    )


def _weights(cost=0.0, latency=0.0, quality=0.0, carbon=0.0) -> ObjectiveWeights:
    return ObjectiveWeights(cost=cost, latency=latency, quality=quality, carbon=carbon)


# ── Cost-driven ranking ───────────────────────────────────────


class TestCostRanking:
    def test_cheaper_model_wins_under_cost_weight(self):
        a = _make_model("a", cost_input=0.1, cost_output=0.4)
        b = _make_model("b", cost_input=5.0, cost_output=15.0)
        engine = ScoringEngine()

        ranked = engine.score(
            _make_context(), ["a", "b"], _make_snapshot(a, b), [], _weights(cost=1.0),
        )

        assert [c.model_id for c in ranked] == ["a", "b"]
        assert ranked[0].components.cost == 1.0
        assert ranked[1].components.cost == 0.0
        assert ranked[0].score == pytest.approx(1.0)

    def test_candidate_order_does_not_change_the_winner(self):
        a = _make_model("a", cost_input=0.1, cost_output=0.4)
        b = _make_model("b", cost_input=5.0, cost_output=15.0)

        ranked = ScoringEngine().score(
            _make_context(), ["b", "a"], _make_snapshot(a, b), [], _weights(cost=1.0),
        )

        assert ranked[0].model_id == "a"

    def test_cost_decays_linearly_from_cheapest(self):
        a = _make_model("a", cost_input=1.0, cost_output=1.0)
        b = _make_model("b", cost_input=1.5, cost_output=1.5)
        c = _make_model("c", cost_input=3.0, cost_output=3.0)

        ranked = ScoringEngine().score(
            _make_context(), ["a", "b", "c"], _make_snapshot(a, b, c), [],
            _weights(cost=1.0),
        )

        by_id = {r.model_id: r for r in ranked}
        assert by_id["b"].components.cost == pytest.approx(0.5)
        assert by_id["c"].components.cost == 0.0

    def test_near_cheapest_scores_near_one(self):
        a = _make_model("a", cost_input=1.0, cost_output=1.0)
        b = _make_model("b", cost_input=1.01, cost_output=1.01)
        c = _make_model("c", cost_input=100.0, cost_output=100.0)

        ranked = ScoringEngine().score(
            _make_context(), ["a", "b", "c"], _make_snapshot(a, b, c), [],
            _weights(cost=1.0),
        )

        by_id = {r.model_id: r for r in ranked}
        assert by_id["b"].components.cost == pytest.approx(0.99)
        assert by_id["c"].components.cost == 0.0

    def test_free_cheapest_zeroes_paid_models(self):
        a = _make_model("a", cost_input=0.0, cost_output=0.0)
        b = _make_model("b", cost_input=0.1, cost_output=0.1)

        ranked = ScoringEngine().score(
            _make_context(), ["a", "b"], _make_snapshot(a, b), [], _weights(cost=1.0),
        )

        by_id = {r.model_id: r for r in ranked}
        assert by_id["a"].components.cost == 1.0
        assert by_id["b"].components.cost == 0.0

    def test_all_equal_costs_score_one(self):
        a = _make_model("a")
        b = _make_model("b")

        ranked = ScoringEngine().score(
            _make_context(), ["a", "b"], _make_snapshot(a, b), [], _weights(cost=1.0),
        )

        assert all(c.components.cost == 1.0 for c in ranked)


# ── Determinism and ties ──────────────────────────────────────


class TestDeterminism:
    def test_ties_keep_input_order(self):
        models = [_make_model(m) for m in ("x", "y", "z")]

        ranked = ScoringEngine().score(
            _make_context(), ["y", "z", "x"], _make_snapshot(*models), [],
            ObjectiveWeights(),
        )

        assert [c.model_id for c in ranked] == ["y", "z", "x"]

    def test_identical_inputs_identical_output(self):
        a = _make_model("a", quality=0.9, avg_latency_ms=2000)
        b = _make_model("b", quality=0.6, avg_latency_ms=500, cost_input=0.2)
        snapshot = _make_snapshot(a, b)
        context = _make_context()
        history = [_make_outcome("a"), _make_outcome("b", latency_ms=700)]
        engine = ScoringEngine()

        first = engine.score(context, ["a", "b"], snapshot, history, ObjectiveWeights())
        second = engine.score(context, ["a", "b"], snapshot, history, ObjectiveWeights())

        assert first == second

    def test_empty_history_is_static_computation(self):
        a = _make_model("a", avg_latency_ms=800)
        b = _make_model("b", avg_latency_ms=1600)
        snapshot = _make_snapshot(a, b)
        engine = ScoringEngine()
        weights = _weights(latency=0.5, quality=0.5)

        without = engine.score(_make_context(), ["a", "b"], snapshot, [], weights)
        # History below the sample threshold contributes nothing either
        sparse = engine.score(
            _make_context(), ["a", "b"], snapshot,
            [_make_outcome("a", latency_ms=9000)], weights,
        )

        assert [c.score for c in without] == [c.score for c in sparse]
        assert [c.components for c in without] == [c.components for c in sparse]


# ── History ───────────────────────────────────────────────────


class TestHistory:
    def test_slow_history_demotes_model(self):
        a = _make_model("a")
        b = _make_model("b")
        history = [_make_outcome("a", latency_ms=5000) for _ in range(3)]

        ranked = ScoringEngine().score(
            _make_context(), ["a", "b"], _make_snapshot(a, b), history,
            _weights(latency=1.0),
        )

        assert ranked[0].model_id == "b"
        assert ranked[1].history_samples == 3

    def test_blended_latency_uses_history_weight(self):
        engine = ScoringEngine(history_weight=0.7)
        stats = summarize_history([_make_outcome("a", latency_ms=5000) for _ in range(3)])

        latency = engine._effective_latency(_make_model("a"), stats["a"])

        assert latency == pytest.approx(0.7 * 5000 + 0.3 * 1000)

    def test_below_threshold_history_ignored(self):
        a = _make_model("a")
        b = _make_model("b")
        history = [_make_outcome("a", latency_ms=5000) for _ in range(2)]

        ranked = ScoringEngine().score(
            _make_context(), ["a", "b"], _make_snapshot(a, b), history,
            _weights(latency=1.0),
        )

        assert ranked[0].model_id == "a"

    def test_failures_lower_quality(self):
        a = _make_model("a", quality=0.9)
        history = [
            _make_outcome("a"),
            _make_outcome("a"),
            _make_outcome("a", success=False),
            _make_outcome("a", success=False),
        ]

        ranked = ScoringEngine().score(
            _make_context(), ["a"], _make_snapshot(a), history, _weights(quality=1.0),
        )

        assert ranked[0].components.quality == pytest.approx(0.45)

    def test_incomplete_records_ignored(self):
        history = [
            _make_outcome("a", status=OutcomeStatus.INCOMPLETE),
            _make_outcome("a"),
        ]

        stats = summarize_history(history)

        assert stats["a"].samples == 1
        assert stats["a"].success_rate == 1.0


# ── Hard requirements ─────────────────────────────────────────


class TestFilterCandidates:
    def test_max_latency_excludes(self):
        fast = _make_model("fast", avg_latency_ms=400)
        slow = _make_model("slow", avg_latency_ms=4000)
        req = HardRequirements(max_latency_ms=1000)

        eligible = ScoringEngine().filter_candidates(
            ["fast", "slow"], _make_snapshot(fast, slow), req,
        )

        assert [m.id for m in eligible] == ["fast"]

    def test_max_cost_uses_blended_per_token_cost(self):
        cheap = _make_model("cheap", cost_input=0.5, cost_output=1.5)
        pricey = _make_model("pricey", cost_input=3.0, cost_output=15.0)
        req = HardRequirements(max_cost_per_token=0.000002)

        eligible = ScoringEngine().filter_candidates(
            ["cheap", "pricey"], _make_snapshot(cheap, pricey), req,
        )

        assert [m.id for m in eligible] == ["cheap"]

    def test_required_capability(self):
        tools = _make_model(
            "tools", capabilities=frozenset({Capability.CHAT, Capability.FUNCTIONS}),
        )
        plain = _make_model("plain")
        req = HardRequirements(required_capabilities=frozenset({Capability.FUNCTIONS}))

        eligible = ScoringEngine().filter_candidates(
            ["plain", "tools"], _make_snapshot(tools, plain), req,
        )

        assert [m.id for m in eligible] == ["tools"]

    def test_request_tools_imply_functions(self):
        tools = _make_model(
            "tools", capabilities=frozenset({Capability.CHAT, Capability.FUNCTIONS}),
        )
        plain = _make_model("plain")
        context = _make_context(tools=[ToolDefinition(function={"name": "lookup"})])

        ranked = ScoringEngine().score(
            context, ["plain", "tools"], _make_snapshot(tools, plain), [],
            ObjectiveWeights(),
        )

        assert [c.model_id for c in ranked] == ["tools"]

    def test_unknown_model_skipped(self):
        a = _make_model("a")

        eligible = ScoringEngine().filter_candidates(["ghost", "a"], _make_snapshot(a))

        assert [m.id for m in eligible] == ["a"]

    def test_nothing_eligible_raises(self):
        slow = _make_model("slow", avg_latency_ms=4000)
        req = HardRequirements(max_latency_ms=100)

        with pytest.raises(ConfigurationError) as exc_info:
            ScoringEngine().score(
                _make_context(), ["slow"], _make_snapshot(slow), [],
                ObjectiveWeights(), req,
            )

        assert exc_info.value.code == "no_eligible_models"

    def test_tightening_never_adds_candidates(self):
        models = [
            _make_model("a", avg_latency_ms=300),
            _make_model("b", avg_latency_ms=900),
            _make_model("c", avg_latency_ms=2500),
        ]
        snapshot = _make_snapshot(*models)
        engine = ScoringEngine()

        loose = engine.filter_candidates(
            ["a", "b", "c"], snapshot, HardRequirements(max_latency_ms=3000),
        )
        tight = engine.filter_candidates(
            ["a", "b", "c"], snapshot, HardRequirements(max_latency_ms=1000),
        )

        assert {m.id for m in tight} <= {m.id for m in loose}
        assert len(tight) == 2


# ── Selection reason ──────────────────────────────────────────


class TestSelectionReason:
    def test_single_candidate(self):
        ranked = ScoringEngine().score(
            _make_context(), ["a"], _make_snapshot(_make_model("a")), [],
            ObjectiveWeights(),
        )

        assert selection_reason(ranked[0], ObjectiveWeights(), 1, ranked) == (
            "only eligible candidate"
        )

    def test_cost_dominant(self):
        a = _make_model("a", cost_input=0.1, cost_output=0.4)
        b = _make_model("b", cost_input=5.0, cost_output=15.0)
        weights = _weights(cost=0.8, quality=0.2)
        ranked = ScoringEngine().score(
            _make_context(), ["a", "b"], _make_snapshot(a, b), [], weights,
        )

        reason = selection_reason(ranked[0], weights, len(ranked), ranked)

        assert reason.startswith("lowest estimated cost among 2 candidates")
        assert "cost weight 0.80" in reason
