"""Metrics commands."""

import json

import click

from spendmetrics.cli.error_handling import handle_domain_error, resolve_account_or_exit
from spendmetrics.domain.entities import SUPPORTED_PERIODS
from spendmetrics.domain.errors import DomainError
from spendmetrics.domain.metrics import MetricsCalculator
from spendmetrics.utils.date_parser import parse_date

PERIOD_CHOICES = [period.value for period in SUPPORTED_PERIODS]


def _parse_dates_or_exit(ctx, values, today):
    try:
        return [parse_date(value, today=today) for value in values]
    except ValueError as e:
        click.echo(f"Error: Invalid date format: {e}", err=True)
        ctx.exit(1)


def _display_snapshot(snapshot: dict) -> None:
    """Print a snapshot as a short human-readable report."""
    metrics = snapshot["metrics"]
    trends = snapshot["trends"]
    date_range = snapshot["date_range"]

    click.echo(
        f"\n{snapshot['period'].capitalize()} metrics "
        f"({date_range['start']} to {date_range['end']})"
    )
    click.echo("-" * 60)
    if snapshot.get("error"):
        click.echo(f"Calculation failed: {snapshot['error']}")
    click.echo(f"Total:         ${metrics['total_amount']:,.2f}")
    click.echo(f"Transactions:  {metrics['transaction_count']}")
    click.echo(f"Average:       ${metrics['average_amount']:,.2f}")
    click.echo(f"Median:        ${metrics['median_amount']:,.2f}")
    click.echo(f"Merchants:     {metrics['unique_merchants']}")
    click.echo(f"Uncategorized: {metrics['uncategorized_count']}")

    direction = "up" if trends["is_increase"] else "down"
    click.echo(
        f"Previous:      ${trends['previous_period_total']:,.2f} "
        f"({direction} {abs(trends['amount_change']):.2f}%)"
    )

    if snapshot["category_breakdown"]:
        click.echo("\nBy category:")
        for entry in snapshot["category_breakdown"]:
            click.echo(
                f"  {entry['category']:20s} ${entry['total_amount']:>12,.2f}  "
                f"{entry['percentage_of_total']:6.2f}%  ({entry['transaction_count']})"
            )


@click.group()
def metrics_group():
    """Show and maintain cached expense metrics."""
    pass


@metrics_group.command("show")
@click.argument("account")
@click.option(
    "--period",
    type=click.Choice(PERIOD_CHOICES),
    default="month",
    show_default=True,
)
@click.option("--date", "date_str", help="Any date inside the period (default: today)")
@click.option("--force", is_flag=True, help="Ignore the cached snapshot")
@click.option("--json", "as_json", is_flag=True, help="Print the raw snapshot as JSON")
@click.pass_context
def show_metrics(ctx, account: str, period: str, date_str: str | None, force: bool, as_json: bool):
    """Show metrics for ACCOUNT (name or ID).

    Examples:
        spendmetrics metrics show Chase
        spendmetrics metrics show 1 --period week --date 2024-06-15
    """
    pipeline = ctx.obj["pipeline"]
    account_obj = resolve_account_or_exit(ctx, pipeline.accounts, account)
    reference_date = None
    if date_str:
        reference_date = _parse_dates_or_exit(ctx, [date_str], pipeline.clock.today())[0]

    try:
        calculator = MetricsCalculator(
            pipeline.db,
            pipeline.cache,
            account_obj,
            period=period,
            reference_date=reference_date,
            clock=pipeline.clock,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    snapshot = calculator.recalculate() if force else calculator.calculate()
    if as_json:
        click.echo(json.dumps(snapshot, indent=2, sort_keys=True))
    else:
        _display_snapshot(snapshot)


@metrics_group.command("refresh")
@click.argument("account")
@click.option(
    "--date",
    "dates",
    multiple=True,
    help="Affected date (repeatable). Pending dates are always included.",
)
@click.pass_context
def refresh_metrics(ctx, account: str, dates: tuple[str, ...]):
    """Run a metrics refresh for ACCOUNT now, bypassing the debounce window."""
    pipeline = ctx.obj["pipeline"]
    account_obj = resolve_account_or_exit(ctx, pipeline.accounts, account)
    affected = _parse_dates_or_exit(ctx, dates, pipeline.clock.today())

    try:
        result = pipeline.refresh_job.perform(account_obj.id, affected)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if result.skipped:
        click.echo(f"Another refresh is running for '{account_obj.name}'; skipped")
        return
    click.echo(f"Refreshed {len(result.pairs)} metric sets in {result.elapsed:.2f}s")
    for error in result.errors:
        click.echo(f"  failed: {error}", err=True)


@metrics_group.command("trigger")
@click.argument("account")
@click.option("--date", "dates", multiple=True, required=True, help="Affected date (repeatable)")
@click.pass_context
def trigger_refresh(ctx, account: str, dates: tuple[str, ...]):
    """Report changed dates for ACCOUNT and wait for the debounced refresh.

    All dates given here land in a single refresh run.
    """
    pipeline = ctx.obj["pipeline"]
    account_obj = resolve_account_or_exit(ctx, pipeline.accounts, account)
    affected = _parse_dates_or_exit(ctx, dates, pipeline.clock.today())

    scheduled = 0
    try:
        for day in affected:
            if pipeline.gate.trigger(account_obj.id, day) is not None:
                scheduled += 1
    except DomainError as e:
        handle_domain_error(ctx, e)

    if scheduled == 0:
        click.echo("A refresh is already pending for this account; dates were added to it")
        return

    click.echo(
        f"Refresh scheduled in {pipeline.settings.debounce_seconds}s "
        f"for {len(affected)} date(s); waiting..."
    )
    ran = pipeline.scheduler.run_until_idle()
    click.echo(f"Ran {ran} refresh job(s)")


@metrics_group.command("precalculate")
@click.argument("account", required=False)
@click.option("--period", type=click.Choice(PERIOD_CHOICES), help="Only this period")
@click.option("--date", "date_str", help="Reference date (default: today)")
@click.option("--force", is_flag=True, help="Clear cached snapshots first")
@click.pass_context
def precalculate(ctx, account: str | None, period: str | None, date_str: str | None, force: bool):
    """Warm the snapshot cache for ACCOUNT, or for every account."""
    pipeline = ctx.obj["pipeline"]
    reference_date = None
    if date_str:
        reference_date = _parse_dates_or_exit(ctx, [date_str], pipeline.clock.today())[0]

    if account is None:
        accounts = pipeline.accounts.list_accounts()
    else:
        accounts = [resolve_account_or_exit(ctx, pipeline.accounts, account)]

    for account_obj in accounts:
        try:
            result = pipeline.calculation_job.perform(
                account_obj.id, period=period, reference_date=reference_date, force_refresh=force
            )
        except DomainError as e:
            handle_domain_error(ctx, e)
        if result.skipped:
            click.echo(f"{account_obj.name}: skipped, another calculation is running")
        else:
            click.echo(
                f"{account_obj.name}: {result.calculated} calculated, "
                f"{result.failed} failed in {result.elapsed:.2f}s"
            )


@metrics_group.command("clear-cache")
@click.argument("account", required=False)
@click.pass_context
def clear_cache(ctx, account: str | None):
    """Delete cached snapshots for ACCOUNT, or for every account."""
    pipeline = ctx.obj["pipeline"]
    account_id = None
    if account is not None:
        account_id = resolve_account_or_exit(ctx, pipeline.accounts, account).id

    removed = MetricsCalculator.clear_cache(pipeline.cache, account_id)
    click.echo(f"Removed {removed} cached snapshot(s)")


def register_commands(cli):
    """Register metrics commands with main CLI."""
    cli.add_command(metrics_group, name="metrics")
