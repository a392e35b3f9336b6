"""Command line entry point for the Gemini key proxy."""

import typer

from gemini_key_proxy import __version__
from gemini_key_proxy.cli.commands import keys
from gemini_key_proxy.cli.commands.serve import serve


app = typer.Typer(
    name="gemini-key-proxy",
    help="OpenAI-compatible Gemini proxy with API key rotation",
    no_args_is_help=True,
)

app.command(name="serve")(serve)
app.add_typer(keys.app, name="keys")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"gemini-key-proxy {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Gemini key proxy command line."""


if __name__ == "__main__":
    app()
