"""Main CLI entry point."""

import click

from spendmetrics.config import Settings
from spendmetrics.cache.factories import create_sqlite_cache
from spendmetrics.database.factories import create_sqlite_database
from spendmetrics.domain.errors import DomainError
from spendmetrics.pipeline import MetricsPipeline
from spendmetrics.utils.clock import Clock
from spendmetrics.utils.logging_setup import configure_logging

# Import and register all commands at module level
from spendmetrics.cli.commands import account, expense, jobs, metrics


@click.group()
@click.option(
    "--db-path",
    type=click.Path(),
    help="Path to database file (overrides SPENDMETRICS_DB_PATH environment variable)",
    envvar="SPENDMETRICS_DB_PATH",
)
@click.option(
    "--log-level",
    help="Log level, e.g. INFO or DEBUG (overrides SPENDMETRICS_LOG_LEVEL)",
)
@click.pass_context
def cli(ctx, db_path: str | None, log_level: str | None):
    """Spendmetrics - expense metrics with cached snapshots.

    Record expenses per account and read day, week, month and year metrics.
    Changes schedule a debounced background refresh of the affected periods.
    """
    ctx.ensure_object(dict)

    # Initialize database connection only when actually running a command
    # (not when showing help)
    if ctx.invoked_subcommand is not None:
        try:
            settings = Settings.from_env()
        except DomainError as e:
            click.echo(f"Error: {e}", err=True)
            ctx.exit(1)
        configure_logging(log_level or settings.log_level)

        clock = Clock()
        db = create_sqlite_database(database_path=db_path)
        db.connect()
        db.initialize_schema()
        cache = create_sqlite_cache(database_path=db_path, clock=clock)
        ctx.obj["db"] = db
        ctx.obj["pipeline"] = MetricsPipeline.build(db, cache, settings=settings, clock=clock)


# Register all commands
account.register_commands(cli)
expense.register_commands(cli)
metrics.register_commands(cli)
jobs.register_commands(cli)


def main():
    """Main entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
