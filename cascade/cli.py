"""Cascade CLI: Typer + Rich terminal interface.

Commands: tiers, select, run, probe, history.
"""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cascade import __version__
from cascade.errors import ConfigurationError
from cascade.keys import has_key, load_keys_env
from cascade.providers.registry import ProviderRegistry, load_engine_config, load_registry
from cascade.schemas.context import (
    BudgetConstraint,
    CallerRequest,
    ConversationContext,
    DomainContext,
    QualityRequirement,
    UserPreferences,
)
from cascade.schemas.engine import EngineConfig
from cascade.schemas.execution import AttemptOutcome, ExecutionRecord
from cascade.schemas.health import HealthStatus
from cascade.schemas.selection import SelectionStrategy

# Load API keys from ~/.cascade/keys.env and .env on startup
load_keys_env()

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="cascade",
    help="Tiered provider fallback and context-aware model selection.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

history_app = typer.Typer(
    name="history",
    help="Query persisted fallback executions.",
    no_args_is_help=True,
)
app.add_typer(history_app, name="history")


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"cascade {__version__}")
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
        help="Show engine logs.",
    ),
) -> None:
    """Cascade: tiered provider fallback and context-aware model selection."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


# ── Helpers ──────────────────────────────────────────────────────


def _load_registry() -> ProviderRegistry:
    """Load the tier registry, exit on error."""
    try:
        return load_registry()
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error loading tiers:[/red] {e}")
        raise typer.Exit(1) from None


def _load_config() -> EngineConfig:
    """Load engine config, exit on error."""
    try:
        return load_engine_config()
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None


def _build_engine(**overrides):
    """Engine for one-shot CLI commands; background loops stay off."""
    from cascade.engine import CascadeEngine
    from cascade.providers.litellm_client import LiteLLMClient

    config = _load_config().model_copy(update={
        "enable_health_monitoring": False,
        "enable_optimizer": False,
        **overrides,
    })
    return CascadeEngine(_load_registry(), LiteLLMClient(), config=config)


_STATUS_STYLE = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.FAILING: "red",
    HealthStatus.OFFLINE: "dim",
}

_OUTCOME_STYLE = {
    AttemptOutcome.SUCCESS: "green",
    AttemptOutcome.QUALITY_FAIL: "yellow",
    AttemptOutcome.TIMEOUT: "red",
    AttemptOutcome.FAILURE: "red",
    AttemptOutcome.CANCELLED: "dim",
}


def _status_text(record: ExecutionRecord) -> Text:
    if record.final.cancelled:
        return Text("CANCELLED", style="dim")
    if record.success:
        return Text(f"OK (tier {record.final.fallback_level})", style="green")
    return Text("EXHAUSTED", style="bright_red")


def _attempts_table(record: ExecutionRecord) -> Table:
    table = Table(title="Attempts")
    table.add_column("Tier", justify="right")
    table.add_column("#", justify="right")
    table.add_column("Provider", style="cyan")
    table.add_column("Outcome")
    table.add_column("Latency", justify="right")
    table.add_column("Quality", justify="right")
    table.add_column("Error", style="dim", max_width=50)
    for a in record.attempts:
        table.add_row(
            str(a.tier),
            str(a.attempt),
            a.provider_id,
            Text(a.outcome.value, style=_OUTCOME_STYLE[a.outcome]),
            f"{a.latency_ms:.0f}ms",
            f"{a.quality_score:.2f}" if a.quality_score is not None else "-",
            a.error or "",
        )
    return table


# ── cascade tiers ────────────────────────────────────────────────


@app.command()
def tiers() -> None:
    """Show the fallback tiers and their providers."""
    registry = _load_registry()

    for tier in registry.tiers():
        table = Table(
            title=f"Tier {tier.rank}: {tier.name}",
            caption=(
                f"quality >= {tier.quality_threshold:.2f} | "
                f"max retries {tier.max_retries} | timeout {tier.timeout_seconds:.0f}s"
            ),
        )
        table.add_column("Provider", style="bold cyan")
        table.add_column("Model", style="dim")
        table.add_column("Input $/M", justify="right")
        table.add_column("Output $/M", justify="right")
        table.add_column("Avg Cap", justify="right")
        table.add_column("Key")
        for p in tier.providers:
            key_status = "[green]set[/green]" if has_key(p) else "[red]not set[/red]"
            table.add_row(
                p.id,
                p.model,
                f"${p.cost_input:.2f}",
                f"${p.cost_output:.2f}",
                f"{p.capabilities.average():.0f}",
                key_status,
            )
        console.print(table)

    console.print(
        f"\n[dim]{len(registry)} providers across {len(registry.ranks())} tiers[/dim]"
    )


# ── cascade select ───────────────────────────────────────────────


@app.command()
def select(
    prompt: str = typer.Argument(..., help="Prompt to select a provider for"),
    strategy: SelectionStrategy = typer.Option(
        SelectionStrategy.HYBRID, "--strategy", "-s", help="Selection strategy",
    ),
    budget: BudgetConstraint = typer.Option(
        BudgetConstraint.MEDIUM, "--budget", "-b", help="Budget constraint",
    ),
    quality: QualityRequirement = typer.Option(
        None, "--quality", "-q", help="Quality requirement",
    ),
    domain: str = typer.Option("general", "--domain", "-d", help="Primary domain"),
) -> None:
    """Pick a provider for a prompt without calling it."""
    engine = _build_engine()
    request = CallerRequest(prompt=prompt, quality_requirement=quality)
    conversation = ConversationContext(
        user_preferences=UserPreferences(budget_constraint=budget),
        domain=DomainContext(primary_domain=domain),
    )

    result = asyncio.run(engine.select(request, conversation, strategy))

    table = Table(title=f"Selection ({result.strategy.value})", show_header=False, show_lines=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Provider", f"[bold cyan]{result.chosen.id}[/bold cyan]")
    table.add_row("Model", result.chosen.model)
    table.add_row("Score", f"{result.score:.3f}")
    table.add_row("Confidence", f"{result.confidence:.2f}")
    table.add_row("Est. Cost", f"${result.estimated_cost:.4f}")
    table.add_row("Est. Latency", f"{result.estimated_latency_ms:.0f}ms")
    table.add_row("Alternates", ", ".join(p.id for p in result.alternates) or "-")
    console.print(table)
    for reason in result.reasoning:
        console.print(f"[dim]- {reason}[/dim]")


# ── cascade run ──────────────────────────────────────────────────


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Prompt to execute"),
    original_provider: str = typer.Option(
        None, "--original-provider", "-p", help="Provider id that already failed",
    ),
    failure_reason: str = typer.Option(
        "", "--failure-reason", "-r", help="Why the original call failed",
    ),
    session: str = typer.Option("", "--session", help="Session id to tag the run with"),
    persist: bool = typer.Option(
        None, "--persist/--no-persist", help="Save the execution to the history database",
    ),
) -> None:
    """Run a request through the fallback tiers."""
    overrides = {} if persist is None else {"persist_executions": persist}
    engine = _build_engine(**overrides)
    request = CallerRequest(prompt=prompt)

    async def _run() -> ExecutionRecord:
        async with engine:
            return await engine.execute(
                original_provider, request, session_id=session, failure_reason=failure_reason,
            )

    with console.status("[bold blue]Running fallback sequence...", spinner="dots"):
        record = asyncio.run(_run())

    console.print(_attempts_table(record))
    final = record.final
    console.print(Panel(
        final.content or "[dim]no accepted response[/dim]",
        title=Text.assemble("Result: ", _status_text(record)),
        subtitle=(
            f"{final.provider_id or '-'} | quality {final.quality_score:.2f} | "
            f"${final.cost:.4f} | {final.total_time_ms:.0f}ms"
        ),
    ))
    console.print(f"[dim]Execution {record.id}[/dim]")

    if not record.success:
        raise typer.Exit(1)


# ── cascade probe ────────────────────────────────────────────────


@app.command()
def probe() -> None:
    """Send a health probe to every provider."""
    engine = _build_engine()

    with console.status("[bold blue]Probing providers...", spinner="dots"):
        results = asyncio.run(engine.prober.probe_all())

    snapshot = engine.health.snapshot()
    table = Table(title="Health Probe")
    table.add_column("Provider", style="cyan")
    table.add_column("Probe")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    for provider_id, ok in results.items():
        health = snapshot[provider_id]
        table.add_row(
            provider_id,
            "[green]OK[/green]" if ok else "[red]FAIL[/red]",
            Text(health.status.value, style=_STATUS_STYLE[health.status]),
            f"{health.average_latency_ms:.0f}ms",
        )
    console.print(table)

    healthy = sum(1 for ok in results.values() if ok)
    console.print(f"\n[dim]{healthy}/{len(results)} providers responded[/dim]")


# ── cascade history ──────────────────────────────────────────────


@history_app.command("list")
def history_list(
    limit: int = typer.Option(20, "--limit", "-n", help="Max executions to show"),
    failed: bool = typer.Option(False, "--failed", help="Only show unsuccessful runs"),
) -> None:
    """Show recent persisted executions."""
    from cascade.persistence.database import close_db, init_db
    from cascade.persistence.store import ExecutionStore

    config = _load_config()

    async def _list():
        db = await init_db(config.execution_db_path)
        store = ExecutionStore(db)
        records = await store.list_records(limit=limit, success=False if failed else None)
        await close_db(db)
        return records

    records = asyncio.run(_list())

    if not records:
        console.print("[dim]No executions found.[/dim]")
        return

    table = Table(title=f"Executions ({len(records)} shown)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Started", style="dim")
    table.add_column("Prompt", max_width=40)
    table.add_column("Status")
    table.add_column("Provider")
    table.add_column("Attempts", justify="right")
    table.add_column("Cost", justify="right")

    for r in records:
        table.add_row(
            r.id,
            r.started_at.strftime("%Y-%m-%d %H:%M"),
            r.original_request.prompt[:40],
            _status_text(r),
            r.final.provider_id or "-",
            str(len(r.attempts)),
            f"${r.final.cost:.4f}",
        )
    console.print(table)


@history_app.command("show")
def history_show(
    execution_id: str = typer.Argument(..., help="Execution ID or prefix (min 4 chars)"),
) -> None:
    """Show one execution with its attempt log."""
    from cascade.persistence.database import close_db, init_db
    from cascade.persistence.store import ExecutionStore

    config = _load_config()

    async def _get():
        db = await init_db(config.execution_db_path)
        store = ExecutionStore(db)
        record = await store.get_record(execution_id)
        await close_db(db)
        return record

    record = asyncio.run(_get())

    if not record:
        console.print(f"[red]Execution not found:[/red] {execution_id}")
        raise typer.Exit(1) from None

    meta = Table(title=f"Execution: {record.id}", show_header=False, show_lines=True)
    meta.add_column("Field", style="bold")
    meta.add_column("Value")
    meta.add_row("Prompt", record.original_request.prompt)
    meta.add_row("Original Provider", record.original_provider_id or "-")
    meta.add_row("Failure Reason", record.failure_reason or "-")
    meta.add_row("Start Tier", str(record.start_tier))
    meta.add_row("Started", record.started_at.isoformat())
    if record.completed_at:
        meta.add_row("Completed", record.completed_at.isoformat())
    meta.add_row("Status", _status_text(record))
    meta.add_row("Provider", record.final.provider_id or "-")
    meta.add_row("Quality", f"{record.final.quality_score:.2f}")
    meta.add_row("Cost", f"${record.final.cost:.4f}")
    meta.add_row("Duration", f"{record.final.total_time_ms:.0f}ms")
    console.print(meta)

    if record.attempts:
        console.print()
        console.print(_attempts_table(record))
