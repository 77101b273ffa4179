"""Background job monitoring commands."""

import json

import click


@click.group()
def jobs_group():
    """Inspect and maintain metrics background jobs."""
    pass


@jobs_group.command("status")
@click.option("--json", "as_json", is_flag=True, help="Print the full status as JSON")
@click.pass_context
def job_status(ctx, as_json: bool):
    """Show health, throughput and slow runs of the metrics jobs."""
    monitor = ctx.obj["pipeline"].monitor
    status = monitor.status()

    if as_json:
        click.echo(json.dumps(status, indent=2, sort_keys=True, default=str))
        return

    health = status["health"]
    click.echo(f"Health: {health['status'].upper()} - {health['message']}")
    click.echo("-" * 60)
    for label, key in (("Calculation", "calculation_jobs"), ("Refresh", "refresh_jobs")):
        job = status[key]
        click.echo(
            f"{label:12s} runs: {job['total_executions']:5d} | "
            f"success: {job['success_rate']:6.2f}% | "
            f"avg: {job['average_execution_time']:6.2f}s | "
            f"locks: {job['active_locks']} | status: {job['status']}"
        )
    click.echo(f"Debounced refreshes pending: {status['refresh_jobs']['debounced_count']}")

    if status["slow_jobs"]:
        click.echo("\nRecent slow jobs:")
        for entry in status["slow_jobs"]:
            click.echo(
                f"  {entry['timestamp']} {entry['job_type']} account {entry['account_id']}: "
                f"{entry['elapsed_time']:.2f}s (+{entry['exceeded_by']:.2f}s)"
            )

    if status["recommendations"]:
        click.echo("\nRecommendations:")
        for advice in status["recommendations"]:
            click.echo(f"  [{advice['type']}] {advice['message']}")


@jobs_group.command("clear-locks")
@click.pass_context
def clear_locks(ctx):
    """Delete locks left behind by crashed jobs (older than 10 minutes)."""
    cleared = ctx.obj["pipeline"].monitor.clear_stale_locks()
    click.echo(f"Cleared {cleared} stale lock(s)")


@jobs_group.command("recalculate-all")
@click.pass_context
def recalculate_all(ctx):
    """Force a fresh pre-calculation for every account."""
    pipeline = ctx.obj["pipeline"]
    queued = pipeline.monitor.force_recalculate_all()
    ran = pipeline.scheduler.run_until_idle()
    click.echo(f"Ran {ran} calculation job(s) for {queued} account(s)")
    for job in pipeline.scheduler.failed:
        click.echo(f"  account {job.payload['account_id']} failed: {job.last_error}", err=True)


def register_commands(cli):
    """Register job commands with main CLI."""
    cli.add_command(jobs_group, name="jobs")
