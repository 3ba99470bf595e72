import logging
from importlib.metadata import version as pkg_version
from typing import Optional

import typer

from tailorcv.cli.generate_cmd import generate_command, humanize_command, score_details_command
from tailorcv.cli.models_cmd import models_app
from tailorcv.cli.routing_cmd import routing_app

app = typer.Typer(
    name="tailorcv",
    help="Tailor resumes and cover letters to job vacancies with LLMs.",
    no_args_is_help=True,
    invoke_without_command=True,
)

app.add_typer(models_app, name="models")
app.add_typer(routing_app, name="routing")

app.command("generate")(generate_command)
app.command("score-details")(score_details_command)
app.command("humanize")(humanize_command)


def version_callback(value: bool):
    if value:
        typer.echo(f"tailorcv {pkg_version('tailorcv')}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True,
        help="Show version and exit.",
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Enable debug logging.",
    ),
):
    """Tailor resumes and cover letters to job vacancies with LLMs."""
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=logging.WARNING, format="%(name)s %(levelname)s: %(message)s")
    logging.getLogger("tailorcv").setLevel(level)


if __name__ == "__main__":
    app()
