"""`catalog-export` command line entry point."""

import typer

from catalog_export import __version__
from catalog_export.core.config import get_settings
from catalog_export.core.logging import setup_logging

app = typer.Typer(name="catalog-export", help="Resumable CSV exports of the product catalog")


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"catalog-export {__version__}")
        raise typer.Exit


@app.callback()
def _main_callback(
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show the version and exit"
    ),
) -> None:
    """Configure logging from settings before any command runs."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir, json_logs=settings.log_json)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Restart on source changes (development only)"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Serve the export API (streams exports over Server-Sent Events)."""
    import uvicorn

    # uvicorn has no SUCCESS level
    log_level = get_settings().log_level.lower().replace("success", "info")
    uvicorn.run(
        "catalog_export.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


def _register_subcommands() -> None:
    from catalog_export.cli.db_cmd import db_app
    from catalog_export.cli.export_cmd import export_app

    app.add_typer(db_app, name="db", help="Schema migration commands")
    app.add_typer(export_app, name="export", help="Create, run, resume and inspect export jobs")


_register_subcommands()
