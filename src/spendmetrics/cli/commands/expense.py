"""Expense commands."""

import click

from spendmetrics.cli.error_handling import handle_domain_error, resolve_account_or_exit
from spendmetrics.domain.errors import DomainError
from spendmetrics.domain.expense import EXPENSE_STATUSES
from spendmetrics.utils.amount_parser import parse_amount
from spendmetrics.utils.date_parser import parse_date


def run_scheduled_refresh(pipeline, wait: bool) -> None:
    """Run the debounced refresh in this process, or tell the user it is pending."""
    if not pipeline.scheduler.pending():
        return
    if wait:
        pipeline.scheduler.run_until_idle()
        click.echo("Metrics refreshed")
    else:
        click.echo("Metrics refresh pending; run 'spendmetrics metrics refresh' to apply it")


@click.group()
def expense_group():
    """Record and update expenses."""
    pass


@expense_group.command("add")
@click.option("--account", required=True, help="Account name or ID")
@click.option(
    "--date",
    "date_str",
    required=True,
    help="Transaction date (YYYY-MM-DD or relative like 'today', 'yesterday')",
)
@click.option("--amount", required=True, help="Expense amount (e.g., 42.50)")
@click.option("--currency", default="USD", show_default=True, help="ISO currency code")
@click.option(
    "--status",
    type=click.Choice(EXPENSE_STATUSES),
    default="pending",
    show_default=True,
)
@click.option("--merchant", help="Merchant name")
@click.option("--category", help="Category name (created if it does not exist)")
@click.option("--description", help="Expense description")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Wait for the debounced metrics refresh to run before exiting",
)
@click.pass_context
def add_expense(
    ctx,
    account: str,
    date_str: str,
    amount: str,
    currency: str,
    status: str,
    merchant: str | None,
    category: str | None,
    description: str | None,
    wait: bool,
):
    """Add an expense.

    The change schedules a debounced metrics refresh for the account.

    Examples:
        spendmetrics expense add --account Chase --date today --amount 12.50 --category Food
        spendmetrics expense add --account 1 --date 2024-06-15 --amount 80 --merchant "Shell"
    """
    pipeline = ctx.obj["pipeline"]
    account_obj = resolve_account_or_exit(ctx, pipeline.accounts, account)

    try:
        txn_date = parse_date(date_str)
    except ValueError as e:
        click.echo(f"Error: Invalid date format: {e}", err=True)
        ctx.exit(1)

    try:
        txn_amount = parse_amount(amount)
    except ValueError as e:
        click.echo(f"Error: Invalid amount format: {e}", err=True)
        ctx.exit(1)

    try:
        expense_id = pipeline.expenses.add_expense(
            account_id=account_obj.id,
            amount=txn_amount,
            transaction_date=txn_date,
            currency=currency,
            status=status,
            merchant_name=merchant,
            category_name=category,
            description=description,
        )
    except DomainError as e:
        handle_domain_error(ctx, e)

    click.echo(f"Added expense {expense_id} to '{account_obj.name}' on {txn_date.isoformat()}")
    run_scheduled_refresh(pipeline, wait)


@expense_group.command("categorize")
@click.argument("expense_id", type=int)
@click.argument("category", required=False)
@click.option("--wait/--no-wait", default=True, help="Wait for the metrics refresh")
@click.pass_context
def categorize_expense(ctx, expense_id: int, category: str | None, wait: bool):
    """Set an expense's category, or clear it when CATEGORY is omitted."""
    pipeline = ctx.obj["pipeline"]
    try:
        pipeline.expenses.categorize_expense(expense_id, category)
    except DomainError as e:
        handle_domain_error(ctx, e)

    if category:
        click.echo(f"Expense {expense_id} categorized as '{category}'")
    else:
        click.echo(f"Expense {expense_id} is now uncategorized")
    run_scheduled_refresh(pipeline, wait)


@expense_group.command("status")
@click.argument("expense_id", type=int)
@click.argument("status", type=click.Choice(EXPENSE_STATUSES))
@click.option("--wait/--no-wait", default=True, help="Wait for the metrics refresh")
@click.pass_context
def update_status(ctx, expense_id: int, status: str, wait: bool):
    """Change an expense's status."""
    pipeline = ctx.obj["pipeline"]
    try:
        pipeline.expenses.update_status(expense_id, status)
    except DomainError as e:
        handle_domain_error(ctx, e)
    click.echo(f"Expense {expense_id} marked as {status}")
    run_scheduled_refresh(pipeline, wait)


@expense_group.command("list")
@click.option("--account", required=True, help="Account name or ID")
@click.option("--from", "start", help="Start date (inclusive)")
@click.option("--to", "end", help="End date (inclusive)")
@click.pass_context
def list_expenses(ctx, account: str, start: str | None, end: str | None):
    """List an account's expenses."""
    pipeline = ctx.obj["pipeline"]
    account_obj = resolve_account_or_exit(ctx, pipeline.accounts, account)

    try:
        start_date = parse_date(start) if start else None
        end_date = parse_date(end) if end else None
    except ValueError as e:
        click.echo(f"Error: Invalid date format: {e}", err=True)
        ctx.exit(1)

    expenses = pipeline.expenses.list_expenses(account_obj.id, start_date, end_date)
    if not expenses:
        click.echo("No expenses found.")
        return

    for exp in expenses:
        click.echo(
            f"{exp.id:5d} | {exp.transaction_date.isoformat()} | {exp.amount:>10} {exp.currency} | "
            f"{exp.status:10s} | {exp.category_name or '-':15s} | {exp.merchant_name or ''}"
        )


def register_commands(cli):
    """Register expense commands with main CLI."""
    cli.add_command(expense_group, name="expense")
