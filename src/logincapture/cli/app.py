"""Unified CLI entry point for login capture.

Config precedence: settings.default.toml -> settings.local.toml -> env vars (LOGINCAPTURE_* with __) -> CLI flags.
"""

from __future__ import annotations

import typer

from logincapture.cli.cache_cmd import cache_app
from logincapture.cli.login_cmd import login
from logincapture.cli.session_cmd import session_app
from logincapture.cli.settings_cmd import settings_app

try:
    from importlib.metadata import version

    VERSION = version("logincapture")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "logincapture — sign in to X in an embedded browser and keep the session. "
    "Config precedence: settings.default.toml -> settings.local.toml -> env vars (LOGINCAPTURE_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)

app.command("login")(login)
app.add_typer(session_app, name="session")
app.add_typer(cache_app, name="cache")
app.add_typer(settings_app, name="settings")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context, version: bool = typer.Option(False, "--version", help="Show version and exit.")) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"logincapture {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


if __name__ == "__main__":
    app()
