"""casemerge CLI — reconcile incoming test cases with your library.

Entry point registered in pyproject.toml:
    casemerge = "casemerge.cli:app"

Commands:
    casemerge import     — classify a batch against the pool (off/strict/smart)
    casemerge review     — decide pending merge conflicts interactively
    casemerge reconcile  — find duplicates already inside a pool

Usage:
    casemerge --help
    casemerge import new_cases.json --pool library.json --out result.json
    casemerge review result.json
"""

import logging

import typer

from casemerge.cli.batch import import_batch, reconcile
from casemerge.cli.review import review as review_command
from casemerge.config import settings

app = typer.Typer(
    name="casemerge",
    help="casemerge CLI — reconcile incoming test cases with your library",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine decisions at DEBUG level."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


app.command("import")(import_batch)
app.command("review")(review_command)
app.command()(reconcile)
