"""CLI shared utilities used across all commands."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, NoReturn, TypeVar

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from tailorcv.core.database import get_default_db_path, get_model, init_db, list_models
from tailorcv.core.models import LlmModel

console = Console()

_T = TypeVar("_T")


def cli_error(message: str) -> NoReturn:
    """Print a red error message and exit with code 1."""
    console.print(f"[red]{escape(message)}[/red]")
    raise typer.Exit(code=1)


@contextmanager
def db_connection():
    """Context manager for the default catalog connection."""
    conn = init_db(get_default_db_path())
    try:
        yield conn
    finally:
        conn.close()


def load_or_exit(loader: Callable[[Path], _T], path: Path) -> _T:
    """Run a document loader, turning file and validation errors into a CLI error."""
    if not path.exists():
        cli_error(f"File not found: {path}")
    try:
        return loader(path)
    except (ValueError, ValidationError, yaml.YAMLError) as exc:
        cli_error(f"Could not load {path}: {exc}")


def resolve_model(conn: sqlite3.Connection, model_id: str) -> LlmModel:
    """Resolve a catalog model by exact ID or prefix. Exits on ambiguous/not found."""
    model = get_model(conn, model_id)
    if model is not None:
        return model

    matches = [m for m in list_models(conn) if m.id.startswith(model_id)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        cli_error(f"Ambiguous ID: '{model_id}' matches {len(matches)} models.")
    cli_error(f"Model not found: '{model_id}'")
