"""ModelPilot CLI: Typer + Rich terminal interface.

Commands: models, routers, score, route, stats.
All output is Rich-powered with color-coded tables and panels.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import StrEnum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from modelpilot import __version__
from modelpilot.errors import RouterError
from modelpilot.history.embedding import Embedder, HashingEmbedder, LiteLLMEmbedder
from modelpilot.history.similarity import SimilarityIndex
from modelpilot.keys import has_key, load_keys_env
from modelpilot.orchestrator import RouterOrchestrator
from modelpilot.persistence.database import close_db, init_db
from modelpilot.persistence.jsonl import JsonlOutcomeLog
from modelpilot.persistence.outcomes import OutcomeStore
from modelpilot.presets import preset_label
from modelpilot.providers.litellm_provider import default_adapters
from modelpilot.providers.registry import (
    ModelRegistry,
    load_models,
    load_router_configs,
    load_settings,
)
from modelpilot.routing.validation import validate_router_config
from modelpilot.schemas.config import RouterConfig, RouterSettings
from modelpilot.schemas.request import ChatMessage, ChatRequest, Role
from modelpilot.telemetry import TelemetryRecorder

# Outcomes loaded into the similarity index on startup
_HISTORY_WARM_START = 5000

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="modelpilot",
    help="Intelligent model selection for chat completions.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

models_app = typer.Typer(
    name="models",
    help="Inspect the model registry.",
    no_args_is_help=True,
)
app.add_typer(models_app, name="models")

routers_app = typer.Typer(
    name="routers",
    help="Inspect and validate router configurations.",
    no_args_is_help=True,
)
app.add_typer(routers_app, name="routers")


class EmbedderChoice(StrEnum):
    LITELLM = "litellm"
    HASHING = "hashing"
    NONE = "none"


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"modelpilot {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Show routing logs.",
    ),
) -> None:
    """ModelPilot: route each request to the best model for its objective."""
    load_keys_env()
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )
        logging.getLogger("LiteLLM").setLevel(logging.WARNING)


# ── Helpers ──────────────────────────────────────────────────────

def _load_registry():
    """Load the model registry, exit on error."""
    try:
        return load_models()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading models:[/red] {e}")
        raise typer.Exit(1) from None


def _load_routers(path: Path | None = None) -> dict[str, RouterConfig]:
    """Load router configs, exit on error."""
    try:
        return load_router_configs(path)
    except (FileNotFoundError, RouterError) as e:
        console.print(f"[red]Error loading routers:[/red] {e}")
        raise typer.Exit(1) from None


def _load_settings() -> RouterSettings:
    try:
        return load_settings()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading settings:[/red] {e}")
        raise typer.Exit(1) from None


def _get_router(router_id: str) -> RouterConfig:
    routers = _load_routers()
    if router_id not in routers:
        console.print(f"[red]Router not found:[/red] '{router_id}'")
        console.print(f"[dim]Available: {', '.join(sorted(routers))}[/dim]")
        raise typer.Exit(1) from None
    return routers[router_id]


def _fail(error: RouterError) -> typer.Exit:
    console.print(f"[red]Error ({error.code}):[/red] {error.message}")
    return typer.Exit(1)


def _build_request(
    prompt: str, system: str | None, max_tokens: int | None, stream: bool,
) -> ChatRequest:
    messages = []
    if system:
        messages.append(ChatMessage(role=Role.SYSTEM, content=system))
    messages.append(ChatMessage(role=Role.USER, content=prompt))
    return ChatRequest(messages=messages, max_tokens=max_tokens, stream=stream)


def _make_embedder(choice: EmbedderChoice, settings: RouterSettings) -> Embedder | None:
    if choice == EmbedderChoice.LITELLM:
        return LiteLLMEmbedder(settings.embedding_model)
    if choice == EmbedderChoice.HASHING:
        return HashingEmbedder()
    return None


@asynccontextmanager
async def _open_orchestrator(
    settings: RouterSettings, embedder: Embedder | None,
) -> AsyncIterator[RouterOrchestrator]:
    """Wire an orchestrator to the outcome database and warm its history."""
    registry = ModelRegistry(_load_registry())
    db = await init_db(settings.outcome_db_path)
    store = OutcomeStore(db)
    similarity = SimilarityIndex(
        min_similarity=settings.min_similarity,
        max_records=settings.history_max_records,
    )
    similarity.load(await store.recent(_HISTORY_WARM_START))
    await registry.refresh(store)

    recorder = TelemetryRecorder([store, similarity])
    if settings.outcome_log_path:
        recorder.add_sink(JsonlOutcomeLog(settings.outcome_log_path))

    orchestrator = RouterOrchestrator(
        registry,
        adapters=default_adapters(),
        embedder=embedder,
        similarity=similarity,
        recorder=recorder,
        settings=settings,
    )
    try:
        yield orchestrator
    finally:
        await orchestrator.close()
        await close_db(db)


# ── modelpilot models ─────────────────────────────────────────────

@models_app.command("list")
def models_list() -> None:
    """Show all registered models as a table."""
    registry = _load_registry()

    table = Table(title="Registered Models", show_lines=True)
    table.add_column("Key", style="bold cyan")
    table.add_column("Display Name")
    table.add_column("Provider", style="dim")
    table.add_column("Context", justify="right")
    table.add_column("Input $/M", justify="right")
    table.add_column("Output $/M", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("gCO2e/1K", justify="right")

    for key, model in sorted(registry.items()):
        table.add_row(
            key,
            model.display_name,
            model.provider.value,
            f"{model.context_window:,}",
            f"${model.cost_input:.2f}",
            f"${model.cost_output:.2f}",
            f"{model.avg_latency_ms:.0f}ms",
            f"{model.quality:.2f}",
            f"{model.carbon_g_per_1k:.2f}",
        )

    console.print(table)
    console.print(f"\n[dim]{len(registry)} models registered[/dim]")


@models_app.command("show")
def models_show(
    key: str = typer.Argument(..., help="Model registry key"),
) -> None:
    """Show full details for one model."""
    registry = _load_registry()

    if key not in registry:
        console.print(f"[red]Model not found:[/red] '{key}'")
        console.print(f"[dim]Available: {', '.join(sorted(registry))}[/dim]")
        raise typer.Exit(1) from None

    model = registry[key]
    table = Table(title=f"Model: {key}", show_header=False, show_lines=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Display Name", model.display_name)
    table.add_row("Provider", model.provider.value)
    table.add_row("Model ID", model.model)
    table.add_row("API Key Env", model.api_key_env)
    if model.api_base:
        table.add_row("API Base", model.api_base)
    table.add_row("Context Window", f"{model.context_window:,}")
    table.add_row("Max Output", f"{model.max_output_tokens:,}")
    table.add_row("Cost (Input)", f"${model.cost_input:.2f}/M tokens")
    table.add_row("Cost (Output)", f"${model.cost_output:.2f}/M tokens")
    table.add_row("Blended $/token", f"{model.blended_cost_per_token:.8f}")
    table.add_row(
        "Capabilities", ", ".join(sorted(c.value for c in model.capabilities)),
    )
    table.add_row("Latency Baseline", f"{model.avg_latency_ms:.0f}ms")
    table.add_row("Quality", f"{model.quality:.2f}")
    table.add_row("Carbon", f"{model.carbon_g_per_1k:.2f} g/1K tokens")

    key_status = "[green]set[/green]" if has_key(model) else "[red]not set[/red]"
    table.add_row("API Key Status", key_status)

    console.print(table)


# ── modelpilot routers ────────────────────────────────────────────

@routers_app.command("list")
def routers_list() -> None:
    """Show all configured routers."""
    routers = _load_routers()

    table = Table(title="Routers")
    table.add_column("ID", style="bold cyan")
    table.add_column("Mode")
    table.add_column("Objective")
    table.add_column("Models", justify="right")
    table.add_column("Fallback", style="dim")

    for router_id, config in sorted(routers.items()):
        fallback = (
            f"{config.fallback.retry_attempts}x "
            f"{', '.join(config.fallback.fallback_models) or '-'}"
            if config.fallback.enabled else "off"
        )
        table.add_row(
            router_id,
            config.mode.value,
            preset_label(config.objective),
            str(len(config.available_models)),
            fallback,
        )

    console.print(table)


@routers_app.command("show")
def routers_show(
    router_id: str = typer.Argument(..., help="Router id"),
) -> None:
    """Show full details for one router."""
    config = _get_router(router_id)

    table = Table(title=f"Router: {router_id}", show_header=False, show_lines=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("Name", config.name or "-")
    table.add_row("Mode", config.mode.value)
    if config.preferred_model:
        table.add_row("Preferred Model", config.preferred_model)
    table.add_row("Available Models", ", ".join(config.available_models))
    weights = config.objective
    table.add_row(
        "Objective",
        f"{preset_label(weights)} (cost {weights.cost:.2f}, latency "
        f"{weights.latency:.2f}, quality {weights.quality:.2f}, "
        f"carbon {weights.carbon:.2f})",
    )
    table.add_row("Fallback", "enabled" if config.fallback.enabled else "disabled")
    table.add_row("Retry Attempts", str(config.fallback.retry_attempts))
    table.add_row("Fallback Models", ", ".join(config.fallback.fallback_models) or "-")
    req = config.requirements
    if req is not None:
        if req.max_latency_ms is not None:
            table.add_row("Max Latency", f"{req.max_latency_ms:.0f}ms")
        if req.max_cost_per_token is not None:
            table.add_row("Max $/token", f"{req.max_cost_per_token:.8f}")
        if req.required_capabilities:
            table.add_row(
                "Required Capabilities",
                ", ".join(sorted(c.value for c in req.required_capabilities)),
            )

    console.print(table)


@routers_app.command("validate")
def routers_validate(
    router_id: str = typer.Argument(None, help="Router id (default: all)"),
    file: Path = typer.Option(None, "--file", "-f", help="routers.toml to check"),
) -> None:
    """Check router configs against every cross-field invariant."""
    routers = _load_routers(file)
    if router_id is not None:
        if router_id not in routers:
            console.print(f"[red]Router not found:[/red] '{router_id}'")
            raise typer.Exit(1) from None
        routers = {router_id: routers[router_id]}

    models = _load_registry()
    failures = 0
    for rid, config in sorted(routers.items()):
        try:
            validate_router_config(config)
        except RouterError as e:
            failures += 1
            console.print(f"  [red]✗[/red] {rid}: {e.message}")
            continue
        unknown = [m for m in config.available_models if m not in models]
        if unknown:
            console.print(
                f"  [yellow]![/yellow] {rid}: not in registry: {', '.join(unknown)}",
            )
        else:
            console.print(f"  [green]✓[/green] {rid}")

    if failures:
        console.print(f"\n[red]{failures} invalid router(s)[/red]")
        raise typer.Exit(1)
    console.print(f"\n[dim]{len(routers)} router(s) valid[/dim]")


# ── modelpilot score ──────────────────────────────────────────────

@app.command()
def score(
    prompt: str = typer.Argument(..., help="Prompt to rank models for"),
    router_id: str = typer.Option("default", "--router", "-r", help="Router id"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Expected completion length"),
    embedder: EmbedderChoice = typer.Option(
        EmbedderChoice.LITELLM, "--embedder", help="Request fingerprinting",
    ),
) -> None:
    """Preview the ranking a router would use, without calling any model."""
    config = _get_router(router_id)
    settings = _load_settings()
    request = _build_request(prompt, None, max_tokens, stream=False)

    async def _score():
        async with _open_orchestrator(settings, _make_embedder(embedder, settings)) as orch:
            return await orch.plan(config, request)

    try:
        plan = asyncio.run(_score())
    except RouterError as e:
        raise _fail(e) from None

    if not plan.ranked:
        console.print(f"[cyan]{router_id}[/cyan] → [bold]{plan.primary}[/bold] ({plan.reason})")
        return

    table = Table(title=f"Ranking for router '{router_id}'")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Model", style="bold cyan")
    table.add_column("Score", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("Latency", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Carbon", justify="right")
    table.add_column("History", justify="right", style="dim")

    for i, cand in enumerate(plan.ranked, 1):
        c = cand.components
        table.add_row(
            str(i),
            cand.model_id,
            f"{cand.score:.3f}",
            f"{c.cost:.2f}",
            f"{c.latency:.2f}",
            f"{c.quality:.2f}",
            f"{c.carbon:.2f}",
            str(cand.history_samples),
        )

    console.print(table)
    console.print(f"\n[dim]Selected {plan.primary}: {plan.reason}[/dim]")


# ── modelpilot route ──────────────────────────────────────────────

@app.command()
def route(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    router_id: str = typer.Option("default", "--router", "-r", help="Router id"),
    system: str = typer.Option(None, "--system", "-s", help="System prompt"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Completion token limit"),
    stream: bool = typer.Option(False, "--stream", help="Stream the response"),
    as_json: bool = typer.Option(False, "--json", help="Print the raw response JSON"),
    embedder: EmbedderChoice = typer.Option(
        EmbedderChoice.LITELLM, "--embedder", help="Request fingerprinting",
    ),
) -> None:
    """Route one prompt and print the response with its routing metadata."""
    config = _get_router(router_id)
    settings = _load_settings()
    request = _build_request(prompt, system, max_tokens, stream)

    async def _whole():
        async with _open_orchestrator(settings, _make_embedder(embedder, settings)) as orch:
            return await orch.route(config, request)

    async def _streamed():
        async with _open_orchestrator(settings, _make_embedder(embedder, settings)) as orch:
            metadata = None
            async for fragment in orch.route_stream(config, request):
                if fragment.is_terminal:
                    metadata = fragment.modelpilot
                elif as_json:
                    console.print_json(json.dumps(fragment.to_dict()))
                else:
                    console.print(fragment.content, end="", markup=False, highlight=False)
            if not as_json:
                console.print()
            return metadata

    try:
        if stream:
            metadata = asyncio.run(_streamed())
        else:
            result = asyncio.run(_whole())
            metadata = result.metadata
            if as_json:
                console.print_json(json.dumps(result.body.to_dict()))
                return
            message = result.body.choices[0].message if result.body.choices else None
            console.print(Panel(
                Text((message.content if message else None) or "(no content)"),
                title=f"[bold]{metadata.selected_model}[/bold]",
                border_style="cyan",
            ))
    except RouterError as e:
        raise _fail(e) from None

    if metadata is not None and not as_json:
        retries = f", {metadata.retry_count} retr{'y' if metadata.retry_count == 1 else 'ies'}"
        console.print(
            f"[dim]{metadata.selected_model} · {metadata.selection_reason} · "
            f"${metadata.cost_usd:.6f} · {metadata.latency_ms:.0f}ms · "
            f"{metadata.carbon_g:.3f} gCO2e"
            f"{retries if metadata.fallback_used else ''}[/dim]",
        )


# ── modelpilot stats ──────────────────────────────────────────────

@app.command()
def stats(
    router_id: str = typer.Option(None, "--router", "-r", help="Only this router"),
) -> None:
    """Show per-model outcome aggregates from the outcome database."""
    settings = _load_settings()

    async def _stats():
        db = await init_db(settings.outcome_db_path)
        try:
            return await OutcomeStore(db).model_stats(router_id)
        finally:
            await close_db(db)

    rows = asyncio.run(_stats())
    if not rows:
        console.print("[dim]No outcomes recorded yet.[/dim]")
        return

    table = Table(title="Model Outcomes")
    table.add_column("Model", style="bold cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Avg Latency", justify="right")
    table.add_column("Avg Quality", justify="right")
    table.add_column("Total Cost", justify="right")

    for row in rows:
        rate = row.success_rate
        style = "green" if rate >= 0.95 else "yellow" if rate >= 0.8 else "red"
        table.add_row(
            row.model_id,
            str(row.attempts),
            Text(f"{rate:.0%}", style=style),
            f"{row.avg_latency_ms:.0f}ms",
            f"{row.avg_quality:.2f}",
            f"${row.total_cost_usd:.4f}",
        )

    console.print(table)
