"""CLI interface for turnbudget.

Requires the 'cli' extra: pip install turnbudget[cli]
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

try:
    import typer
    from rich.console import Console
    from rich.table import Table
except ImportError:
    print(
        "CLI dependencies not installed. Install with: pip install turnbudget[cli]",
        file=sys.stderr,
    )
    sys.exit(1)

from pydantic import ValidationError

from turnbudget import __version__
from turnbudget.catalog import ModelCatalog
from turnbudget.context.allocator import BudgetAllocator
from turnbudget.exceptions import TurnBudgetError
from turnbudget.models.budget import BudgetParameters
from turnbudget.models.turn import ConversationTurn, sort_chronologically
from turnbudget.settings import Settings
from turnbudget.tokens.estimator import TokenEstimator

app = typer.Typer(
    name="turnbudget",
    help="Token-budgeted conversation history for capped chat models.",
    add_completion=False,
)
console = Console()


def _estimator(provider_id: str, use_tiktoken: bool) -> TokenEstimator:
    if not use_tiktoken:
        return TokenEstimator(provider_id)
    from turnbudget.tokens import get_default_counter

    return TokenEstimator(provider_id, get_default_counter())


def _load_transcript(path: Path) -> tuple[list[ConversationTurn], str | None]:
    """Read ``[turn, ...]`` or ``{"turns": [...], "system": "..."}`` from JSON."""
    data: Any = json.loads(path.read_text(encoding="utf-8"))
    system = None
    if isinstance(data, dict):
        system = data.get("system")
        data = data.get("turns", [])
    if not isinstance(data, list):
        msg = "transcript must be a list of turns or an object with a 'turns' list"
        raise ValueError(msg)
    turns = [ConversationTurn.model_validate(item) for item in data]
    return sort_chronologically(turns), system


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", "-v", help="Show version"),
) -> None:
    if version:
        console.print(f"turnbudget {__version__}")
        raise typer.Exit()


@app.command()
def info() -> None:
    """Show information about the turnbudget installation."""
    table = Table(title="turnbudget info")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Version", __version__)
    table.add_row("Python", sys.version.split()[0])

    for dep_name in ["pydantic", "tiktoken", "anthropic", "opentelemetry.sdk"]:
        try:
            mod = __import__(dep_name)
            ver = getattr(mod, "__version__", "installed")
            table.add_row(dep_name, str(ver))
        except ImportError:
            table.add_row(dep_name, "[red]not installed[/red]")

    console.print(table)


@app.command()
def estimate(
    text: str = typer.Argument(..., help="Text to estimate"),
    cpt: float = typer.Option(4.0, "--cpt", help="Characters per token"),
    provider: str = typer.Option("openai", "--provider", "-p", help="Provider id"),
    use_tiktoken: bool = typer.Option(False, "--tiktoken", help="Count with tiktoken"),
) -> None:
    """Estimate the token cost of a piece of text."""
    tokens = _estimator(provider, use_tiktoken).estimate_text(text, cpt)
    console.print(f"{len(text)} chars -> [bold]{tokens}[/bold] tokens")


@app.command()
def plan(
    transcript: Path = typer.Argument(..., help="Transcript JSON file"),  # noqa: B008
    model: str = typer.Option(..., "--model", "-m", help="Catalog model id"),
    message: str = typer.Option("", "--message", help="Outgoing user message"),
    system: str | None = typer.Option(None, "--system", "-s", help="System preamble"),
    use_tiktoken: bool = typer.Option(False, "--tiktoken", help="Count with tiktoken"),
) -> None:
    """Show which turns of a transcript would be sent with a new message."""
    if not transcript.exists():
        console.print(f"[red]Error: {transcript} does not exist[/red]")
        raise typer.Exit(code=1)
    try:
        turns, file_system = _load_transcript(transcript)
    except (ValueError, ValidationError) as exc:
        console.print(f"[red]Error: invalid transcript: {exc}[/red]")
        raise typer.Exit(code=1) from None

    settings = Settings.from_env()
    info = ModelCatalog().resolve(model)
    estimator = _estimator(info.provider_id, use_tiktoken)
    allocator = BudgetAllocator(estimator)
    cpt = settings.chars_per_token
    params = BudgetParameters(
        max_context=info.max_context,
        user_request_allowance=settings.user_request_allowance,
        provider_reserve=info.provider_reserve(settings),
        system_tokens=estimator.estimate_text(system or file_system, cpt),
        chars_per_token=cpt,
    )
    try:
        prediction, final = allocator.compute_envelope(turns, params, message)
    except TurnBudgetError as exc:
        console.print(f"[red]{exc.code}: {exc}[/red]")
        raise typer.Exit(code=1) from None

    included = {t.id for t in final.included}
    evicted = {t.id for t in final.evicted}
    table = Table(title=f"{model} ({info.provider_id})")
    table.add_column("Turn", style="cyan")
    table.add_column("Tokens", justify="right")
    table.add_column("Status")
    for turn in turns:
        if turn.id in included:
            status = "[green]included[/green]"
        elif turn.id in evicted:
            status = "[yellow]trimmed[/yellow]"
        else:
            status = "[dim]excluded[/dim]"
        table.add_row(turn.id, str(estimator.estimate_turn(turn, cpt)), status)
    console.print(table)

    summary = Table(show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", justify="right")
    summary.add_row("max context", str(final.max_context))
    summary.add_row("predicted history", str(prediction.predicted_token_sum))
    summary.add_row("history limit", str(final.history_limit))
    summary.add_row("history sent", str(final.history_tokens))
    summary.add_row("user tokens", str(final.user_tokens))
    summary.add_row("system tokens", str(final.system_tokens))
    summary.add_row("input tokens", str(final.input_tokens))
    summary.add_row("remaining", str(final.remaining_context))
    console.print(summary)
    console.print(f"{len(final.included)} of {len(turns)} turns included")


@app.command()
def models() -> None:
    """List the built-in model catalog."""
    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Provider")
    table.add_column("Window", justify="right")
    table.add_column("TPM", justify="right")
    table.add_column("Max context", justify="right")
    table.add_column("OTPM", justify="right")
    for m in ModelCatalog().list_models():
        table.add_row(
            m.id,
            m.provider_id,
            str(m.context_window),
            str(m.tpm or "-"),
            str(m.max_context),
            str(m.otpm or "-"),
        )
    console.print(table)


if __name__ == "__main__":
    app()
