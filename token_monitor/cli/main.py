"""
CLI interface for Token Monitor.

Provides command-line access to usage summaries, raw events, limits and
data reset.
"""

import logging
import sys
from datetime import datetime
from typing import Dict, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from token_monitor.config.loader import MonitorConfig, load_monitor_config
from token_monitor.core.limits import AlertLevel, LimitField
from token_monitor.core.monitor import DAY_MS, TokenMonitor, get_monitor
from token_monitor.storage.models import Aggregation, Summary, SummaryQuery

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

ALERT_STYLES = {
    AlertLevel.OK: "green",
    AlertLevel.WARNING: "yellow",
    AlertLevel.CRITICAL: "red",
    AlertLevel.EXCEEDED: "bold red",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Monitor and analyze AI model token usage."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("Token Monitor - Use --help to see available commands")


@app.command()
def summary(
    days: int = typer.Option(30, "--days", "-d", min=1, help="Number of days to include"),
    refresh: bool = typer.Option(False, "--refresh", "-r", help="Force refresh summary from raw data"),
    hourly: bool = typer.Option(False, "--hourly", help="Show hourly breakdown"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Show details for one provider"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to monitor YAML config"),
):
    """Show token usage summary."""
    try:
        monitor, _ = _load_monitor(config_path)
        since = _days_ago_midnight(monitor.now(), days)
        result = monitor.load_summary(SummaryQuery(since=since), force_refresh=refresh)

        if provider:
            _display_provider_details(result, provider)
        else:
            _display_summary(result)
            if hourly:
                _display_hourly(result)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error loading token usage summary:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def stats(
    days: int = typer.Option(7, "--days", "-d", min=1, help="Number of days to include"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Filter by provider"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Filter by model"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to monitor YAML config"),
):
    """Show detailed statistics computed from raw data."""
    try:
        monitor, _ = _load_monitor(config_path)
        query = SummaryQuery(
            since=monitor.now() - days * DAY_MS,
            provider=provider,
            model=model
        )
        result = monitor.generate_summary(query)

        _display_summary(result)
        _display_hourly(result, limit=48)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error generating statistics:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def events(
    days: int = typer.Option(1, "--days", "-d", min=1, help="Number of days to include"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Filter by provider"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Filter by model"),
    limit: int = typer.Option(20, "--limit", "-l", min=1, help="Maximum number of events to show"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to monitor YAML config"),
):
    """Show raw token usage events, newest first."""
    try:
        monitor, _ = _load_monitor(config_path)
        query = SummaryQuery(
            since=monitor.now() - days * DAY_MS,
            provider=provider,
            model=model
        )
        found = sorted(monitor.read_events(query), key=lambda e: e.timestamp, reverse=True)

        if not found:
            console.print("\n[dim]No events found.[/]\n")
            sys.exit(EXIT_CODE_PASS)

        table = Table(title="Raw Token Usage Events")
        for column in ("Time", "Provider", "Model", "Input", "Output", "Total", "Cost", "Session"):
            table.add_column(column, justify="right" if column in ("Input", "Output", "Total", "Cost") else "left")

        for event in found[:limit]:
            table.add_row(
                _format_time(event.timestamp),
                event.provider,
                event.model,
                _format_number(event.usage.input),
                _format_number(event.usage.output),
                _format_number(event.usage.resolved_total()),
                _format_currency(event.cost) if event.cost else "N/A",
                event.session_id or ""
            )
        console.print(table)

        if len(found) > limit:
            console.print(f"... and {len(found) - limit} more events.")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error loading events:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def reset(
    keep_days: Optional[int] = typer.Option(None, "--keep-days", "-k", min=1, help="Keep data for the last N days"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to monitor YAML config"),
):
    """Clear token usage monitoring data."""
    try:
        monitor, _ = _load_monitor(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not yes:
        message = (
            f"Delete token usage data older than {keep_days} days?"
            if keep_days
            else "Delete ALL token usage monitoring data?"
        )
        if not typer.confirm(message, default=False):
            console.print("Operation cancelled.")
            sys.exit(EXIT_CODE_PASS)

    try:
        monitor.reset(keep_days=keep_days)
    except Exception as e:
        console.print(f"[red]Error resetting token monitor:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if keep_days:
        console.print(f"[green]✓[/] Token usage data older than {keep_days} days has been cleared.")
    else:
        console.print("[green]✓[/] All token usage monitoring data has been cleared.")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def limits(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Path to monitor YAML config"),
    enforced: bool = typer.Option(False, "--enforced", "-e", help="Exit with error code if a limit is exceeded"),
):
    """Check configured usage limits."""
    try:
        monitor, config = _load_monitor(config_path)
        status = monitor.check_limits(config.limits)
        report = monitor.limit_usage(config.limits) if status is not None else []
    except Exception as e:
        console.print(f"[red]Error checking limits:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if status is None:
        console.print("[dim]No usage limits configured.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Usage Limits")
    for column in ("Period", "Field", "Current", "Limit", "Used", "Level"):
        table.add_column(column, justify="right" if column in ("Current", "Limit", "Used") else "left")
    for entry in report:
        level = config.alert_thresholds.classify(entry.percentage)
        style = ALERT_STYLES[level]
        table.add_row(
            entry.limit_type.value,
            entry.limit_field.value,
            _format_limit_value(entry.limit_field, entry.current),
            _format_limit_value(entry.limit_field, entry.limit),
            f"{entry.percentage:.1f}%",
            f"[{style}]{level.value}[/]"
        )
    console.print(table)

    if not status.is_limit_exceeded:
        console.print("[green]✓[/] All usage limits are within bounds")
        sys.exit(EXIT_CODE_PASS)

    console.print(
        f"[bold red]{status.limit_type.value.capitalize()} {status.limit_field.value} limit exceeded:[/] "
        f"{_format_limit_value(status.limit_field, status.current)} of "
        f"{_format_limit_value(status.limit_field, status.limit)} ({status.percentage:.1f}%)"
    )
    sys.exit(EXIT_CODE_FAIL if enforced else EXIT_CODE_PASS)


def _load_monitor(config_path: Optional[str]) -> Tuple[TokenMonitor, MonitorConfig]:
    """Load the YAML config, if given, and the monitor it describes."""
    config = load_monitor_config(config_path) if config_path else MonitorConfig()
    return get_monitor(config), config


def _format_limit_value(limit_field: LimitField, value: float) -> str:
    if limit_field == LimitField.COST:
        return _format_currency(value)
    return _format_number(int(value))


def _days_ago_midnight(now: int, days: int) -> int:
    """Local midnight ``days`` days before ``now``, stable within a day."""
    start = datetime.fromtimestamp((now - days * DAY_MS) / 1000)
    start = start.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(start.timestamp() * 1000)


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _format_number(value: int) -> str:
    return f"{value:,}"


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    if 0 < amount < 0.01:
        return f"${amount:.4f}"
    return f"${amount:,.2f}"


def _format_percent(value: float, total: float) -> str:
    if total == 0:
        return "0.0%"
    return f"{value / total * 100:.1f}%"


def _aggregation_table(title: str, label: str, rows: Dict[str, Aggregation], share_of: Optional[float] = None) -> Table:
    table = Table(title=title)
    table.add_column(label)
    for column in ("Input", "Output", "Cache Read", "Cache Write", "Total", "Cost", "Requests"):
        table.add_column(column, justify="right")
    if share_of is not None:
        table.add_column("Share", justify="right")

    for key, agg in rows.items():
        cells = [
            key,
            _format_number(agg.input),
            _format_number(agg.output),
            _format_number(agg.cache_read),
            _format_number(agg.cache_write),
            _format_number(agg.total),
            _format_currency(agg.cost),
            _format_number(agg.request_count),
        ]
        if share_of is not None:
            cells.append(_format_percent(agg.total, share_of))
        table.add_row(*cells)
    return table


def _sorted_by_total(rows: Dict[str, Aggregation]) -> Dict[str, Aggregation]:
    return dict(sorted(rows.items(), key=lambda item: item[1].total, reverse=True))


def _display_summary(result: Summary):
    """Display a usage summary."""
    console.print("\n[bold]Token Usage Summary[/bold]")
    console.print("-" * 40)
    console.print(f"Period: {_format_time(result.period_start)} - {_format_time(result.period_end)}")
    console.print(f"Updated: {_format_time(result.updated_at)}\n")

    console.print(_aggregation_table("Total Usage", "", {"All": result.total}))

    if result.by_provider:
        console.print(_aggregation_table(
            "Usage by Provider",
            "Provider",
            _sorted_by_total(result.by_provider),
            share_of=result.total.total
        ))

    if result.top_models:
        table = Table(title="Top Models (Overall)")
        table.add_column("#", justify="right")
        table.add_column("Model")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for rank, entry in enumerate(result.top_models, start=1):
            table.add_row(
                str(rank),
                f"{entry.provider}/{entry.model}",
                _format_number(entry.usage.total),
                _format_currency(entry.usage.cost)
            )
        console.print(table)

    if result.by_day:
        recent_days = dict(sorted(result.by_day.items(), reverse=True)[:7])
        console.print(_aggregation_table("Daily Usage (Last 7 Days)", "Day", recent_days))


def _display_hourly(result: Summary, limit: int = 24):
    """Display the most recent hourly buckets."""
    hours = sorted(result.by_hour.items(), reverse=True)[:limit]
    if not hours:
        console.print("\n[dim]No hourly data available.[/]\n")
        return
    console.print(_aggregation_table("Hourly Usage", "Hour", dict(hours)))


def _display_provider_details(result: Summary, provider: str):
    """Display one provider's usage broken down by model."""
    stats = result.by_provider.get(provider)
    if stats is None:
        console.print(f"\n[yellow]No data found for provider: {provider}[/]\n")
        return

    console.print(f"\n[bold]{provider} Detailed Usage[/bold]")
    console.print(_aggregation_table("Overall", "", {provider: stats}))
    console.print(_aggregation_table(
        "Models",
        "Model",
        _sorted_by_total(stats.models),
        share_of=stats.total
    ))


if __name__ == "__main__":
    app()
