"""Maintenance CLI: sequence checks and seeding."""

import asyncio
import sys

import click
import structlog

from bookdragon.logging import setup_logging

logger = structlog.get_logger(__name__)


async def _check_sequence(force: bool) -> bool:
    from bookdragon.db.exceptions import SequenceGuardError
    from bookdragon.db.sequence_guard import SequenceGuard
    from bookdragon.db.session import dispose_engine, engine
    from bookdragon.services.categories import CATEGORY_SEQUENCE_TARGET

    guard = SequenceGuard(engine, CATEGORY_SEQUENCE_TARGET)
    try:
        result = await guard.inspect_and_repair(force=force)
    except SequenceGuardError as e:
        logger.error("Sequence check failed", target=str(CATEGORY_SEQUENCE_TARGET), error=str(e))
        return False
    finally:
        await dispose_engine()

    click.echo(
        f"{CATEGORY_SEQUENCE_TARGET}: {result.outcome.value}"
        f" (sequence={result.sequence_name}, max_id={result.max_id}, repaired_to={result.repaired_to})"
    )
    return True


async def _seed_categories() -> int:
    from bookdragon.db.session import dispose_engine, session_scope
    from bookdragon.services.categories import CategoryService

    try:
        async with session_scope() as session:
            return await CategoryService.for_session(session).seed_categories()
    finally:
        await dispose_engine()


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL (debug, info, warning, error).")
def cli(log_level: str | None) -> None:
    """BookDragon maintenance commands."""
    setup_logging(level=log_level)


@cli.command("check-sequence")
@click.option("--force", is_flag=True, help="Reset the sequence to max(Id) + 1 even if it looks healthy.")
def check_sequence(force: bool) -> None:
    """Check (and repair) the Categories primary-key sequence."""
    if not asyncio.run(_check_sequence(force)):
        sys.exit(1)


@cli.command("seed-categories")
def seed_categories() -> None:
    """Insert the default categories when the table is empty."""
    inserted = asyncio.run(_seed_categories())
    click.echo(f"Inserted {inserted} categories")
