#!/usr/bin/env python3
"""Signal Engine - CLI Entry Point."""
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from __version__ import __version__

console = Console()


def _init_components(config_path=None, verbose=False):
    """Lazy initialization of config, logging and the database."""
    from utils.logger import setup_logging
    from config import load_config
    from models.database import Database

    config = load_config(config_path)
    log_cfg = config.get("logging", {})
    setup_logging("DEBUG" if verbose else log_cfg.get("level", "INFO"), log_cfg.get("file"))

    db = Database(config["database"]["path"])
    db.connect()

    return {"config": config, "db": db}


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="signalengine")
@click.pass_context
def cli(ctx, config_path, verbose):
    """Signal Engine - metric ingestion, threshold rules and notifications."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    ctx.call_on_close(lambda: _close_components(ctx))


def _get_components(ctx):
    if "_components" not in ctx.obj:
        ctx.obj["_components"] = _init_components(ctx.obj.get("config_path"), ctx.obj.get("verbose"))
    return ctx.obj["_components"]


def _close_components(ctx):
    components = ctx.obj.pop("_components", None)
    if components:
        components["db"].close()


def _summary_table(title, result):
    table = Table(title=title, show_header=True)
    table.add_column("Metric", style="dim")
    table.add_column("Value")
    for name, value in vars(result).items():
        if name == "duration":
            value = f"{value * 1000:.0f}ms"
        table.add_row(name.replace("_", " ").title(), str(value))
    console.print(table)


# ──────────────────────────────────────────────────────
# SETUP
# ──────────────────────────────────────────────────────
@cli.command()
@click.pass_context
def init(ctx):
    """Create the database schema and seed lookup codes."""
    c = _get_components(ctx)
    console.print("[bold cyan]Signal Engine - Init[/bold cyan]\n")
    console.print(f"[green]✓[/green] Database ready at {c['config']['database']['path']}")

    from config import STAGES
    for stage in STAGES:
        stage_cfg = c["config"][stage]
        state = "[green]enabled[/green]" if stage_cfg.get("enabled", True) else "[dim]disabled[/dim]"
        console.print(f"  {stage}: every {stage_cfg['tick_interval_seconds']}s ({state})")


@cli.command("import")
@click.argument("catalog", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_catalog(ctx, catalog):
    """Import tenants, assets and rules from a YAML CATALOG."""
    c = _get_components(ctx)
    from config.catalog import CatalogLoader

    try:
        counts = CatalogLoader(catalog).import_into(c["db"])
    except Exception as e:
        console.print(f"[red]Import failed: {escape(str(e))}[/red]")
        sys.exit(1)

    console.print(
        f"[green]✓[/green] Imported {counts['tenants']} tenants, {counts['assets']} assets, "
        f"{counts['metrics']} metrics, {counts['rules']} rules"
    )
    if counts["skipped"]:
        console.print(f"  [yellow]{counts['skipped']} invalid entries skipped (see log)[/yellow]")


# ──────────────────────────────────────────────────────
# PIPELINE
# ──────────────────────────────────────────────────────
@cli.command()
@click.pass_context
def run(ctx):
    """Run every enabled stage on its own schedule until interrupted."""
    c = _get_components(ctx)
    from service.worker import WorkerHost

    # Cycles open their own connections; the CLI one is not needed here.
    _close_components(ctx)

    console.print("[bold cyan]Signal Engine running[/bold cyan] [dim](Ctrl-C to stop)[/dim]")
    WorkerHost(c["config"]).run_forever()


@cli.command()
@click.option("--max-assets", default=None, type=int, help="Cap on assets this cycle")
@click.pass_context
def ingest(ctx, max_assets):
    """Run one ingestion cycle."""
    c = _get_components(ctx)
    from monitor.ingestion import MetricIngestionRunner
    from monitor.sources import SourceRegistry

    sources = SourceRegistry.from_config(c["config"])
    try:
        limit = max_assets or c["config"]["ingestion"].get("max_items_per_tick", 1000)
        result = MetricIngestionRunner(c["db"], sources).run(max_assets=limit)
    finally:
        sources.close()
    _summary_table("Ingestion Cycle", result)


@cli.command()
@click.pass_context
def evaluate(ctx):
    """Run one rule evaluation cycle."""
    c = _get_components(ctx)
    from alerts.engine import RuleEvaluationRunner

    result = RuleEvaluationRunner.from_config(c["db"], c["config"]).run()
    _summary_table("Evaluation Cycle", result)


@cli.command()
@click.pass_context
def dispatch(ctx):
    """Run one notification dispatch cycle."""
    c = _get_components(ctx)
    from alerts.channels import ChannelDispatcher
    from notifications.dispatcher import NotificationDispatchRunner

    dispatch_cfg = c["config"]["dispatch"]
    runner = NotificationDispatchRunner(c["db"], ChannelDispatcher.from_config(c["config"]))
    result = runner.run(
        max_notifications=dispatch_cfg.get("max_items_per_tick", 100),
        max_retry_count=dispatch_cfg.get("max_retry_count", 3),
    )
    _summary_table("Dispatch Cycle", result)


# ──────────────────────────────────────────────────────
# RULES
# ──────────────────────────────────────────────────────
@cli.group()
def rules():
    """Manage threshold rules."""
    pass


@rules.command("list")
@click.pass_context
def rules_list(ctx):
    """List all rules."""
    c = _get_components(ctx)
    all_rules = c["db"].list_rules()
    if not all_rules:
        console.print("[dim]No rules configured. Import a catalog first.[/dim]")
        return

    table = Table(title="Rules", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Condition")
    table.add_column("Severity")
    table.add_column("Breaches")
    table.add_column("Enabled")
    for rule in all_rules:
        table.add_row(
            str(rule.id), escape(rule.name),
            f"{rule.metric_name} {rule.operator} {rule.threshold}",
            rule.severity, str(rule.consecutive_breaches_required),
            "[green]Yes[/green]" if rule.is_active else "[red]No[/red]",
        )
    console.print(table)


def _set_rule_active(ctx, rule_id, active):
    c = _get_components(ctx)
    from models.errors import EntityNotFoundError

    try:
        c["db"].set_rule_active(rule_id, active)
    except EntityNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    c["db"].commit()
    console.print(f"[green]✓[/green] Rule {rule_id} {'enabled' if active else 'disabled'}")


@rules.command("disable")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_disable(ctx, rule_id):
    """Disable a rule."""
    _set_rule_active(ctx, rule_id, False)


@rules.command("enable")
@click.argument("rule_id", type=int)
@click.pass_context
def rules_enable(ctx, rule_id):
    """Re-enable a rule."""
    _set_rule_active(ctx, rule_id, True)


# ──────────────────────────────────────────────────────
# SIGNALS
# ──────────────────────────────────────────────────────
@cli.group()
def signals():
    """Inspect and resolve signals."""
    pass


@signals.command("list")
@click.option("--status", type=click.Choice(["OPEN", "RESOLVED"], case_sensitive=False), default=None)
@click.option("--limit", default=20, help="Number of signals")
@click.pass_context
def signals_list(ctx, status, limit):
    """Show recent signals."""
    c = _get_components(ctx)
    rows = c["db"].list_signals(status=status, limit=limit)
    if not rows:
        console.print("[dim]No signals.[/dim]")
        return

    table = Table(title="Signals", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Triggered", style="dim")
    table.add_column("Title")
    table.add_column("Value")
    table.add_column("Status")
    for s in rows:
        color = "red" if s.status == "OPEN" else "green"
        table.add_row(
            str(s.id), s.triggered_at.strftime("%Y-%m-%d %H:%M:%S"), escape(s.title),
            f"{s.trigger_value} / {s.threshold_value}", f"[{color}]{s.status}[/{color}]",
        )
    console.print(table)


@signals.command("resolve")
@click.argument("signal_id", type=int)
@click.option("--by", "resolved_by", required=True, help="Who resolved the signal")
@click.option("--notes", default=None, help="Resolution notes")
@click.pass_context
def signals_resolve(ctx, signal_id, resolved_by, notes):
    """Mark a signal resolved."""
    c = _get_components(ctx)
    from models.errors import EntityNotFoundError

    try:
        signal = c["db"].resolve_signal(signal_id, resolved_by, notes)
    except (EntityNotFoundError, ValueError) as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    c["db"].commit()
    console.print(f"[green]✓[/green] Signal {signal.id} resolved by {signal.resolution.resolved_by}")


# ──────────────────────────────────────────────────────
# NOTIFICATIONS
# ──────────────────────────────────────────────────────
@cli.group()
def notifications():
    """Inspect the notification queue."""
    pass


@notifications.command("list")
@click.option("--limit", default=20, help="Number of notifications")
@click.pass_context
def notifications_list(ctx, limit):
    """Show recent notifications and their delivery state."""
    c = _get_components(ctx)
    db = c["db"]
    rows = db.list_notifications(limit=limit)
    if not rows:
        console.print("[dim]No notifications.[/dim]")
        return

    table = Table(title="Notifications", show_header=True)
    table.add_column("ID", style="dim")
    table.add_column("Signal")
    table.add_column("Channel")
    table.add_column("Recipient")
    table.add_column("Sent")
    table.add_column("Retries")
    table.add_column("Last Error", style="dim")
    for n in rows:
        table.add_row(
            str(n.id), str(n.signal_id), db.resolve_lookup_code(n.channel_type_id), n.recipient,
            "[green]Yes[/green]" if n.is_sent else "[yellow]No[/yellow]",
            str(n.retry_count), escape(n.error_message or ""),
        )
    console.print(table)


if __name__ == "__main__":
    cli()
