"""hdsbridge CLI for system introspection and store inspection."""
import logging

import typer
from rich.logging import RichHandler

from . import general, trace

app = typer.Typer()
app.add_typer(general.app, name="self")
app.command("trace")(trace.trace)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log store activity.")):
    """Inspect hierarchical data stores."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, format="%(message)s", handlers=[RichHandler()]
        )
