"""Scenario routing CLI commands."""

from __future__ import annotations

import sqlite3
from typing import Optional

import typer
from pydantic import ValidationError
from rich.table import Table

from tailorcv.cli import cli_error, console, db_connection, resolve_model
from tailorcv.core.database import (
    delete_role_enabled_override,
    delete_role_override,
    get_model,
    get_scenario_default,
    list_role_overrides,
    list_scenarios,
    set_scenario_enabled,
    upsert_role_enabled_override,
)
from tailorcv.core.models import (
    ModelStatus,
    ReasoningEffort,
    ResponseFormat,
    Role,
    RoutingAssignment,
    RoutingAssignmentInput,
    ScenarioKey,
    StrategyKey,
)
from tailorcv.llm.routing import RoutingError, resolve_scenario_model, set_role_override, set_scenario_default

routing_app = typer.Typer(
    name="routing",
    help="Assign models to generation scenarios.",
    no_args_is_help=True,
)


def _model_label(conn: sqlite3.Connection, model_id: str | None) -> str:
    if not model_id:
        return "-"
    model = get_model(conn, model_id)
    if model is None:
        return f"[red]missing {model_id[:8]}[/red]"
    label = f"{model.provider.value}/{model.model_key}"
    return label if model.status == ModelStatus.ACTIVE else f"[dim]{label} (inactive)[/dim]"


def _assignment_row(conn: sqlite3.Connection, who: str, assignment: RoutingAssignment) -> list[str]:
    return [
        who,
        _model_label(conn, assignment.model_id),
        _model_label(conn, assignment.retry_model_id),
        assignment.strategy_key.value if assignment.strategy_key else "-",
        str(assignment.temperature) if assignment.temperature is not None else "-",
        str(assignment.max_tokens) if assignment.max_tokens is not None else "-",
    ]


@routing_app.command("show")
def show_command() -> None:
    """Show every scenario with its default and role overrides."""
    with db_connection() as conn:
        table = Table(title="Scenario Routing")
        table.add_column("Scenario", style="cyan")
        table.add_column("Enabled", justify="center")
        table.add_column("Applies to")
        table.add_column("Model", style="green")
        table.add_column("Retry model")
        table.add_column("Strategy")
        table.add_column("Temp", justify="right")
        table.add_column("Max tokens", justify="right")

        for scenario in list_scenarios(conn):
            enabled = "[green]yes[/green]" if scenario.enabled else "[red]no[/red]"
            default = get_scenario_default(conn, scenario.key)
            rows = [_assignment_row(conn, "default", default)] if default else [["default", "-", "-", "-", "-", "-"]]
            rows += [
                _assignment_row(conn, override.role.value, override)
                for override in list_role_overrides(conn, scenario.key)
                if override.role is not None
            ]
            for index, row in enumerate(rows):
                label = scenario.key.value if index == 0 else ""
                table.add_row(label, enabled if index == 0 else "", *row)
            table.add_section()

    console.print(table)


def _build_input(
    conn: sqlite3.Connection,
    model_id: str,
    retry_model_id: str | None,
    temperature: float | None,
    max_tokens: int | None,
    response_format: ResponseFormat | None,
    reasoning_effort: ReasoningEffort | None,
    strategy: StrategyKey | None,
) -> RoutingAssignmentInput:
    try:
        return RoutingAssignmentInput(
            model_id=resolve_model(conn, model_id).id,
            retry_model_id=resolve_model(conn, retry_model_id).id if retry_model_id else None,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format=response_format,
            reasoning_effort=reasoning_effort,
            strategy_key=strategy,
        )
    except ValidationError as exc:
        cli_error(f"Invalid assignment: {exc}")


def _report(submitted: RoutingAssignmentInput, assignment: RoutingAssignment, target: str) -> None:
    dropped = []
    if submitted.retry_model_id and assignment.retry_model_id is None:
        dropped.append("retry model")
    if submitted.strategy_key and assignment.strategy_key is None:
        dropped.append("strategy")
    console.print(f"[green]Saved[/green] {target}")
    if dropped:
        console.print(f"[yellow]Ignored, the scenario does not use: {', '.join(dropped)}[/yellow]")


@routing_app.command("set-default")
def set_default_command(
    scenario: ScenarioKey = typer.Argument(..., help="Scenario key."),
    model_id: str = typer.Argument(..., help="Primary model ID or prefix."),
    retry: Optional[str] = typer.Option(None, "--retry", help="Retry model ID or prefix."),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", help="0..2"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Output token cap."),
    response_format: Optional[ResponseFormat] = typer.Option(None, "--format", help="Response format."),
    reasoning: Optional[ReasoningEffort] = typer.Option(None, "--reasoning", help="Reasoning effort."),
    strategy: Optional[StrategyKey] = typer.Option(None, "--strategy", help="Adaptation strategy."),
) -> None:
    """Set the role-agnostic default route for a scenario."""
    with db_connection() as conn:
        assignment = _build_input(
            conn, model_id, retry, temperature, max_tokens, response_format, reasoning, strategy
        )
        try:
            saved = set_scenario_default(conn, scenario, assignment)
        except RoutingError as exc:
            cli_error(str(exc))
    _report(assignment, saved, f"default for {scenario.value}")


@routing_app.command("set-override")
def set_override_command(
    scenario: ScenarioKey = typer.Argument(..., help="Scenario key."),
    role: Role = typer.Argument(..., help="Role the override applies to."),
    model_id: str = typer.Argument(..., help="Primary model ID or prefix."),
    retry: Optional[str] = typer.Option(None, "--retry", help="Retry model ID or prefix."),
    temperature: Optional[float] = typer.Option(None, "--temperature", "-t", help="0..2"),
    max_tokens: Optional[int] = typer.Option(None, "--max-tokens", help="Output token cap."),
    response_format: Optional[ResponseFormat] = typer.Option(None, "--format", help="Response format."),
    reasoning: Optional[ReasoningEffort] = typer.Option(None, "--reasoning", help="Reasoning effort."),
    strategy: Optional[StrategyKey] = typer.Option(None, "--strategy", help="Adaptation strategy."),
) -> None:
    """Set a role override; it wins over the scenario default."""
    with db_connection() as conn:
        assignment = _build_input(
            conn, model_id, retry, temperature, max_tokens, response_format, reasoning, strategy
        )
        try:
            saved = set_role_override(conn, scenario, role, assignment)
        except RoutingError as exc:
            cli_error(str(exc))
    _report(assignment, saved, f"{role.value} override for {scenario.value}")


@routing_app.command("clear-override")
def clear_override_command(
    scenario: ScenarioKey = typer.Argument(..., help="Scenario key."),
    role: Role = typer.Argument(..., help="Role whose override to remove."),
) -> None:
    """Remove a role override so the role falls back to the default."""
    with db_connection() as conn:
        removed = delete_role_override(conn, scenario, role)
    if not removed:
        cli_error(f"No {role.value} override for {scenario.value}.")
    console.print(f"[green]Cleared[/green] {role.value} override for {scenario.value}")


def _toggle(scenario: ScenarioKey, role: Optional[Role], enabled: bool, inherit: bool) -> None:
    word = "enabled" if enabled else "disabled"
    with db_connection() as conn:
        if role is None:
            set_scenario_enabled(conn, scenario, enabled)
            console.print(f"{scenario.value} {word} for all roles without an override")
        elif inherit:
            delete_role_enabled_override(conn, scenario, role)
            console.print(f"{scenario.value} now follows the scenario flag for {role.value}")
        else:
            upsert_role_enabled_override(conn, scenario, role, enabled)
            console.print(f"{scenario.value} {word} for {role.value}")


@routing_app.command("enable")
def enable_command(
    scenario: ScenarioKey = typer.Argument(..., help="Scenario key."),
    role: Optional[Role] = typer.Option(None, "--role", "-r", help="Only for this role."),
    inherit: bool = typer.Option(False, "--inherit", help="Drop the role's own flag instead."),
) -> None:
    """Enable a scenario, globally or for one role."""
    _toggle(scenario, role, True, inherit)


@routing_app.command("disable")
def disable_command(
    scenario: ScenarioKey = typer.Argument(..., help="Scenario key."),
    role: Optional[Role] = typer.Option(None, "--role", "-r", help="Only for this role."),
) -> None:
    """Disable a scenario, globally or for one role. Disabled scenarios never resolve."""
    _toggle(scenario, role, False, inherit=False)


@routing_app.command("resolve")
def resolve_command(
    scenario: ScenarioKey = typer.Argument(..., help="Scenario key."),
    role: Role = typer.Option(Role.PUBLIC, "--role", "-r", help="Role to resolve for."),
) -> None:
    """Show the route a role would get for a scenario right now."""
    with db_connection() as conn:
        route = resolve_scenario_model(conn, role, scenario)

    if route is None:
        console.print(f"[yellow]{scenario.value} is unresolved for {role.value}; the fallback model is used.[/yellow]")
        return

    console.print(f"[bold]{scenario.value}[/bold] for [cyan]{role.value}[/cyan] via {route.source.value}")
    console.print(f"  model:    {route.primary.provider.value}/{route.primary.model_key}")
    if route.retry:
        console.print(f"  retry:    {route.retry.provider.value}/{route.retry.model_key}")
    if route.strategy_key:
        console.print(f"  strategy: {route.strategy_key.value}")
    if route.temperature is not None:
        console.print(f"  temperature: {route.temperature}")
    if route.max_tokens is not None:
        console.print(f"  max tokens:  {route.max_tokens}")
