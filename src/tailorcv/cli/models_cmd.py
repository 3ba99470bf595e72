"""Model catalog CLI commands."""

from __future__ import annotations

import sqlite3
from typing import Optional

import typer
from rich.table import Table

from tailorcv.cli import cli_error, console, db_connection, resolve_model
from tailorcv.core.database import ModelInUseError, delete_model, list_models, save_model, set_model_status
from tailorcv.core.models import LlmModel, LLMProvider, ModelStatus

models_app = typer.Typer(
    name="models",
    help="Manage the LLM model catalog.",
    no_args_is_help=True,
)


def _price(value: float | None) -> str:
    return f"${value:.2f}" if value is not None else "-"


@models_app.command("list")
def list_command(
    status: Optional[ModelStatus] = typer.Option(None, "--status", "-s", help="Only show this status."),
) -> None:
    """Show catalog models with their prices per 1M tokens."""
    with db_connection() as conn:
        models = list_models(conn, status)

    if not models:
        console.print("[yellow]No models in the catalog. Add one with `tailorcv models add`.[/yellow]")
        return

    table = Table(title="LLM Models")
    table.add_column("ID", style="dim", max_width=10)
    table.add_column("Provider", style="cyan")
    table.add_column("Model key", style="green")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Cached", justify="right")
    table.add_column("JSON", justify="center")

    for model in models:
        status_style = "green" if model.status == ModelStatus.ACTIVE else "dim"
        table.add_row(
            model.id[:8],
            model.provider.value,
            model.model_key,
            model.display_name,
            f"[{status_style}]{model.status.value}[/{status_style}]",
            _price(model.input_price_per_1m_usd),
            _price(model.output_price_per_1m_usd),
            _price(model.cached_input_price_per_1m_usd),
            "yes" if model.supports_json else "",
        )
    console.print(table)


@models_app.command("add")
def add_command(
    provider: LLMProvider = typer.Argument(..., help="Provider of the model."),
    model_key: str = typer.Argument(..., help="Provider model key, e.g. gpt-4.1-mini."),
    display_name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name (defaults to key)."),
    input_price: float = typer.Option(0.0, "--input-price", help="USD per 1M input tokens."),
    output_price: float = typer.Option(0.0, "--output-price", help="USD per 1M output tokens."),
    cached_price: Optional[float] = typer.Option(None, "--cached-price", help="USD per 1M cached input tokens."),
    max_context: Optional[int] = typer.Option(None, "--max-context", help="Context window in tokens."),
    max_output: Optional[int] = typer.Option(None, "--max-output", help="Output limit in tokens."),
    supports_json: bool = typer.Option(False, "--json/--no-json", help="Supports JSON mode."),
    supports_tools: bool = typer.Option(False, "--tools/--no-tools", help="Supports tool calls."),
    supports_streaming: bool = typer.Option(False, "--streaming/--no-streaming", help="Supports streaming."),
    notes: Optional[str] = typer.Option(None, "--notes", help="Free-form notes."),
) -> None:
    """Add a model to the catalog."""
    if min(input_price, output_price, cached_price or 0.0) < 0:
        cli_error("Prices must not be negative.")

    model = LlmModel(
        provider=provider,
        model_key=model_key,
        display_name=display_name or model_key,
        input_price_per_1m_usd=input_price,
        output_price_per_1m_usd=output_price,
        cached_input_price_per_1m_usd=cached_price,
        max_context_tokens=max_context,
        max_output_tokens=max_output,
        supports_json=supports_json,
        supports_tools=supports_tools,
        supports_streaming=supports_streaming,
        notes=notes,
    )
    with db_connection() as conn:
        try:
            save_model(conn, model)
        except sqlite3.IntegrityError:
            cli_error(f"Model {provider.value}/{model_key} is already in the catalog.")
    console.print(f"[green]Added[/green] {provider.value}/{model_key} [dim]({model.id})[/dim]")


def _set_status(model_id: str, status: ModelStatus) -> None:
    with db_connection() as conn:
        model = resolve_model(conn, model_id)
        set_model_status(conn, model.id, status)
    console.print(f"{model.provider.value}/{model.model_key} is now [bold]{status.value}[/bold].")


@models_app.command("deactivate")
def deactivate_command(model_id: str = typer.Argument(..., help="Model ID or prefix.")) -> None:
    """Deactivate a model. Routes that use it stop resolving to it."""
    _set_status(model_id, ModelStatus.INACTIVE)


@models_app.command("activate")
def activate_command(model_id: str = typer.Argument(..., help="Model ID or prefix.")) -> None:
    """Reactivate a model."""
    _set_status(model_id, ModelStatus.ACTIVE)


@models_app.command("delete")
def delete_command(
    model_id: str = typer.Argument(..., help="Model ID or prefix."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a model no routing assignment references."""
    with db_connection() as conn:
        model = resolve_model(conn, model_id)
        if not yes and not typer.confirm(f"Delete {model.provider.value}/{model.model_key}?"):
            raise typer.Abort()
        try:
            delete_model(conn, model.id)
        except ModelInUseError as exc:
            cli_error(str(exc))
    console.print(f"[green]Deleted[/green] {model.provider.value}/{model.model_key}")
