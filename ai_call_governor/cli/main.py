"""
CLI interface for AI Call Governor.

Inspects and manages the persisted audit trail and the price table.
"""

import json
import logging
import sys
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ai_call_governor.config.loader import AppConfig, load_config
from ai_call_governor.core.audit_trail import AuditTrail
from ai_call_governor.core.ledger import summarize_records
from ai_call_governor.core.pricing import PRICING_TABLE, calculate_cost
from ai_call_governor.storage.models import AuditEventType, AuditLogEntry, CallRecord
from ai_call_governor.storage.repository import StorageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """AI Call Governor CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    try:
        ctx.obj = load_config(config) if config else AppConfig()
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("AI Call Governor - Use --help to see available commands")


def _open_trail(config: AppConfig) -> AuditTrail:
    """Open the persisted trail with synchronous writes."""
    audit = config.audit
    return AuditTrail(
        storage=StorageRepository(audit.db_path),
        storage_key=audit.storage_key,
        log_limit=audit.log_limit,
        download_threshold_kb=0,
        export_dir=audit.export_dir,
        flush_interval_s=0,
    )


def _latest_call_records(entries: List[AuditLogEntry]) -> List[CallRecord]:
    """Latest snapshot of every call found in newest-first entries."""
    latest: Dict[str, CallRecord] = {}
    for entry in entries:
        if entry.type != AuditEventType.API_CALL:
            continue
        call_id = entry.payload.get("id")
        if call_id in latest:
            continue
        try:
            latest[call_id] = CallRecord.from_dict(entry.payload)
        except ValueError:
            continue
    return list(latest.values())


def _format_currency(amount: float) -> str:
    return f"${amount:,.6f}"


def _describe(entry: AuditLogEntry) -> str:
    """One-line summary of an entry's payload."""
    payload = entry.payload
    if entry.type == AuditEventType.API_CALL:
        text = f"{payload.get('agentName')} / {payload.get('model')} / {payload.get('status')}"
        if payload.get("error"):
            text += f" ({payload['error']})"
        return text
    if entry.type == AuditEventType.SYSTEM_EVENT:
        return str(payload.get("event"))
    text = json.dumps(payload, default=str)
    return text if len(text) <= 80 else text[:77] + "..."


@app.command()
def init(ctx: typer.Context):
    """Initialize the AI Call Governor database."""
    try:
        initialize_schema(ctx.obj.audit.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Summarize API calls recorded in the audit trail."""
    try:
        trail = _open_trail(ctx.obj)
        records = _latest_call_records(trail.get_logs())

        if not records:
            console.print("\n[bold yellow]No API calls recorded yet[/]\n")
            sys.exit(EXIT_CODE_PASS)

        summary = summarize_records(records)
        table = Table(title="API Call Summary")
        table.add_column("Metric")
        table.add_column("Value", justify="right")
        table.add_row("Total Calls", str(summary.total_calls))
        table.add_row("Successful", str(summary.successful_calls))
        table.add_row("Failed", str(summary.failed_calls))
        table.add_row("Success Rate", f"{summary.success_rate:.1f}%")
        table.add_row("Total Tokens", f"{summary.total_tokens:,}")
        table.add_row("Est. Cost", _format_currency(summary.total_cost))
        if summary.average_duration is not None:
            table.add_row("Avg. Latency", f"{summary.average_duration:,.0f} ms")
        console.print(table)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def audit(
    ctx: typer.Context,
    event_type: Optional[str] = typer.Option(
        None,
        "--type",
        "-t",
        help="Only show entries of this type (e.g. API_CALL)"
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        help="Maximum number of entries to show"
    )
):
    """List audit trail entries, newest first."""
    try:
        if event_type is not None:
            try:
                event_type = AuditEventType(event_type.upper()).value
            except ValueError:
                valid_types = [t.value for t in AuditEventType]
                console.print(f"[red]Error:[/] --type must be one of: {valid_types}")
                sys.exit(EXIT_CODE_FAIL)

        entries = _open_trail(ctx.obj).get_logs(event_type)[:limit]
        if not entries:
            console.print("\n[dim]No audit log entries found.[/]")
            sys.exit(EXIT_CODE_PASS)

        table = Table(title="Audit Log")
        table.add_column("Timestamp", no_wrap=True)
        table.add_column("Type", no_wrap=True)
        table.add_column("Details")
        for entry in entries:
            table.add_row(entry.timestamp, entry.type.value, _describe(entry))
        console.print(table)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def export(ctx: typer.Context):
    """Export the audit trail to a chunk file and start a new one."""
    try:
        trail = _open_trail(ctx.obj)
        if not trail.get_logs():
            console.print("[dim]Audit log is empty, nothing to export.[/]")
            sys.exit(EXIT_CODE_PASS)

        location = trail.rotate()
        if location is None:
            console.print("[red]Error:[/] audit log export failed")
            sys.exit(EXIT_CODE_FAIL)
        console.print(f"[green]✓[/] Audit log exported to {location}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def clear(ctx: typer.Context):
    """Erase the persisted audit trail."""
    try:
        _open_trail(ctx.obj).clear()
        console.print("[green]✓[/] Audit log cleared")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def cost(
    model: str = typer.Argument(..., help="Model identifier"),
    prompt_tokens: int = typer.Argument(..., min=0, help="Input token count"),
    candidate_tokens: int = typer.Argument(..., min=0, help="Output token count")
):
    """Estimate the cost of a call."""
    estimate = calculate_cost(model, prompt_tokens, candidate_tokens)
    console.print(f"Estimated cost for {model}: {_format_currency(estimate)}")
    if not PRICING_TABLE.is_known(model):
        console.print("[dim]Unknown model, default pricing applied.[/]")


@app.command()
def pricing():
    """Show the per-million-token price table."""
    table = Table(title="Pricing (USD per 1M tokens)")
    table.add_column("Model")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    for model, prices in PRICING_TABLE.prices.items():
        table.add_row(model, f"{prices.input_cost_per_1m}", f"{prices.output_cost_per_1m}")
    console.print(table)


if __name__ == "__main__":
    app()
