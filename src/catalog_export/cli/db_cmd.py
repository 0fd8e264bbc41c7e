"""Schema migration commands (Alembic, driven programmatically)."""

from pathlib import Path

import typer
from loguru import logger

db_app = typer.Typer()

_CONFIG_OPTION = typer.Option(Path("alembic.ini"), "--config", "-c", help="Path to alembic.ini")


def _alembic_config(config_path: Path):  # type: ignore[no-untyped-def]
    from alembic.config import Config

    if not config_path.exists():
        typer.echo(f"Error: Alembic config not found: {config_path}", err=True)
        raise typer.Exit(code=1)
    return Config(str(config_path))


@db_app.command()
def upgrade(
    revision: str = typer.Argument("head", help="Target revision"),
    config_path: Path = _CONFIG_OPTION,
) -> None:
    """Create or migrate the products and export_jobs tables."""
    from alembic import command

    cfg = _alembic_config(config_path)
    logger.info(f"Migrating catalog schema up to {revision}")
    command.upgrade(cfg, revision)
    logger.info(f"Catalog schema at {revision}")


@db_app.command()
def downgrade(
    revision: str = typer.Argument("-1", help="Target revision"),
    config_path: Path = _CONFIG_OPTION,
) -> None:
    """Roll the catalog schema back to ``revision``."""
    from alembic import command

    cfg = _alembic_config(config_path)
    logger.warning(f"Rolling catalog schema back to {revision}")
    command.downgrade(cfg, revision)


@db_app.command()
def current(config_path: Path = _CONFIG_OPTION) -> None:
    """Print the revision the database is at."""
    from alembic import command

    command.current(_alembic_config(config_path), verbose=True)
