"""Generation CLI commands: tailor a resume, score it in detail, humanize a letter."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.panel import Panel
from rich.table import Table

from tailorcv.cli import cli_error, console, db_connection, load_or_exit
from tailorcv.core.documents import load_profile, load_resume, load_text, load_vacancy, save_resume
from tailorcv.core.models import (
    CandidateProfile,
    CoverLetterSettings,
    CoverLetterType,
    Role,
    ScoreBreakdown,
    StepUsage,
)
from tailorcv.generation.resume_generator import GenerateOptions, GenerationError, generate_resume_with_llm
from tailorcv.humanizer.config import load_runtime_config, resolve_cover_letter_humanizer_config
from tailorcv.humanizer.loop import humanize
from tailorcv.scoring.score_details import (
    ScoreDetailsError,
    ScoreDetailsOptions,
    generate_score_details_with_llm,
)


def _maybe_profile(path: Optional[Path]) -> CandidateProfile | None:
    return load_or_exit(load_profile, path) if path else None


def _usage_line(label: str, usage: StepUsage | None) -> str:
    if usage is None:
        return f"{label}: [dim]none[/dim]"
    return (
        f"{label}: {usage.provider.value}/{usage.model} ({usage.provider_type.value}) "
        f"tokens={usage.tokens_used} cost=${usage.cost:.5f} attempts={usage.attempts_used}"
    )


def _breakdown_table(breakdown: ScoreBreakdown) -> Table:
    table = Table(title=f"Score breakdown ({breakdown.version})")
    table.add_column("Component", style="cyan")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    table.add_column("Weight", justify="right")
    for name, component in breakdown.components:
        table.add_row(name, str(component.before), str(component.after), f"{component.weight:.2f}")
    return table


def generate_command(
    resume_path: Path = typer.Argument(..., help="Base resume (YAML or JSON)."),
    vacancy_path: Path = typer.Argument(..., help="Vacancy (YAML or JSON)."),
    role: Role = typer.Option(Role.PUBLIC, "--role", "-r", help="Role used for routing."),
    profile_path: Optional[Path] = typer.Option(None, "--profile", help="Candidate profile (YAML)."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the tailored resume here."),
) -> None:
    """Tailor a resume to a vacancy and score the match."""
    base = load_or_exit(load_resume, resume_path)
    vacancy = load_or_exit(load_vacancy, vacancy_path)
    profile = _maybe_profile(profile_path)

    with db_connection() as conn:
        with console.status("Tailoring resume..."):
            try:
                result = asyncio.run(
                    generate_resume_with_llm(
                        base, vacancy, role=role, conn=conn, profile=profile, options=GenerateOptions()
                    )
                )
            except GenerationError as exc:
                cli_error(f"Generation failed ({exc.code}): {exc}")

    console.print(
        Panel(
            f"Match score: [bold]{result.match_score_before}[/bold] -> "
            f"[bold green]{result.match_score_after}[/bold green]\n"
            f"Strategy: {result.strategy_key.value}\n"
            + _usage_line("Adaptation", result.adaptation)
            + "\n"
            + _usage_line("Scoring", result.scoring),
            title=f"{vacancy.company} / {vacancy.job_position or 'vacancy'}",
        )
    )
    if result.scoring_fallback_used:
        console.print("[yellow]Scoring fell back to keyword overlap.[/yellow]")
    console.print(_breakdown_table(result.score_breakdown))

    if out:
        save_resume(result.content, out)
        console.print(f"[green]Tailored resume written to[/green] {out}")


def score_details_command(
    before_path: Path = typer.Argument(..., help="Base resume (YAML or JSON)."),
    after_path: Path = typer.Argument(..., help="Tailored resume (YAML or JSON)."),
    vacancy_path: Path = typer.Argument(..., help="Vacancy (YAML or JSON)."),
    role: Role = typer.Option(Role.PUBLIC, "--role", "-r", help="Role used for routing."),
    attempts: int = typer.Option(1, "--attempts", help="Attempt budget (1-3)."),
    profile_path: Optional[Path] = typer.Option(None, "--profile", help="Candidate profile (YAML)."),
) -> None:
    """Signal-by-signal evidence for a tailored resume."""
    before = load_or_exit(load_resume, before_path)
    after = load_or_exit(load_resume, after_path)
    vacancy = load_or_exit(load_vacancy, vacancy_path)
    profile = _maybe_profile(profile_path)

    with db_connection() as conn:
        with console.status("Scoring details..."):
            try:
                result = asyncio.run(
                    generate_score_details_with_llm(
                        before,
                        after,
                        vacancy,
                        role=role,
                        conn=conn,
                        profile=profile,
                        options=ScoreDetailsOptions(max_attempts=attempts),
                    )
                )
            except ScoreDetailsError as exc:
                cli_error(f"Detailed scoring failed ({exc.code}): {exc}")

    details = result.details
    console.print(
        f"Score [bold]{details.summary.before}[/bold] -> [bold green]{details.summary.after}[/bold green] "
        f"(+{details.summary.improvement})"
    )
    if result.fallback_used:
        console.print("[yellow]Model output unusable, showing heuristic details.[/yellow]")

    table = Table(title="Signals")
    table.add_column("", width=2)
    table.add_column("Signal", style="cyan")
    table.add_column("Type")
    table.add_column("Weight", justify="right")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right")
    for mark, items in (("[green]+[/green]", details.matched), ("[red]-[/red]", details.gaps)):
        for item in items:
            table.add_row(
                mark,
                item.signal,
                item.signal_type.value,
                f"{item.weight:.2f}",
                f"{item.strength_before:.2f}",
                f"{item.strength_after:.2f}",
            )
    console.print(table)

    console.print("[bold]Recommendations[/bold]")
    for recommendation in details.recommendations:
        console.print(f"  - {recommendation}")
    console.print(_usage_line("Usage", result.usage))


def humanize_command(
    letter_path: Path = typer.Argument(..., help="Cover letter (markdown or text)."),
    subject: Optional[str] = typer.Option(None, "--subject", "-s", help="Subject line."),
    language: str = typer.Option("en", "--language", help="Letter locale."),
    market: str = typer.Option("default", "--market", help="Market style."),
    letter_type: CoverLetterType = typer.Option(CoverLetterType.LETTER, "--type", help="Letter or message."),
    tone: str = typer.Option("professional", "--tone", help="Tone."),
    character_limit: Optional[int] = typer.Option(None, "--limit", help="Character limit."),
    role: Role = typer.Option(Role.PUBLIC, "--role", "-r", help="Role used for routing."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Write the result here."),
) -> None:
    """Critique and rewrite a cover letter until it reads naturally."""
    content = load_or_exit(load_text, letter_path)
    try:
        runtime = load_runtime_config()
    except yaml.YAMLError as exc:
        cli_error(f"Could not load runtime config: {exc}")
    config = resolve_cover_letter_humanizer_config(runtime)
    settings = CoverLetterSettings(
        language=language,
        market=market,
        type=letter_type,
        tone=tone,
        character_limit=character_limit,
    )

    with db_connection() as conn:
        with console.status("Humanizing..."):
            result = asyncio.run(humanize(content, subject, settings, config, role=role, conn=conn))

    if result.quality:
        q = result.quality
        console.print(
            f"naturalness={q.naturalness_score} ai_risk={q.ai_pattern_risk_score} "
            f"specificity={q.specificity_score} locale_fit={q.locale_fit_score}"
        )
    verdict = "[green]accepted[/green]" if result.accepted else "[yellow]best effort[/yellow]"
    console.print(f"{verdict} after {result.passes_used} rewrite(s)")

    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        header = f"Subject: {result.subject_line}\n\n" if result.subject_line else ""
        out.write_text(header + result.content + "\n", encoding="utf-8")
        console.print(f"[green]Written to[/green] {out}")
    else:
        if result.subject_line:
            console.print(f"[bold]Subject:[/bold] {result.subject_line}")
        console.print(result.content)
