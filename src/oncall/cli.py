"""CLI interface for the on-call engine."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape

from oncall.audit import AuditLog, export_audit_log, read_audit_log
from oncall.clock import SystemClock
from oncall.drill import run_drill
from oncall.engine import IncidentStateMachine
from oncall.errors import OncallError
from oncall.loader import (
    Registry,
    RegistryError,
    clear_cache,
    load_registry,
    validate_registry,
)
from oncall.logging_config import configure_logging
from oncall.notify import ConsoleSink, LogSink, Notifier
from oncall.output import (
    render_audit_entries,
    render_drill,
    render_drill_json,
    render_schedule_list,
    render_validation_errors,
    render_whois,
)
from oncall.resolver import whois
from oncall.scheduler import EscalationScheduler
from oncall.store import IncidentStore

console = Console()

app = typer.Typer(
    name="oncall",
    help="On-call incident engine: rotations, escalation policies, drills.",
    no_args_is_help=True,
)

audit_app = typer.Typer(help="Audit trail commands.")
app.add_typer(audit_app, name="audit")

RegistryOption = Annotated[
    Path, typer.Option("--registry", "-r", help="Path to registry directory.")
]
AtOption = Annotated[
    Optional[str],
    typer.Option("--at", help="ISO 8601 instant to evaluate (default: now)."),
]


def _load(registry_path: Path) -> Registry:
    clear_cache()
    registry = load_registry(registry_path)
    configure_logging(registry.settings.log_level, registry.settings.log_format)
    return registry


def _parse_at(value: str | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    try:
        at = datetime.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"'{value}' is not an ISO 8601 timestamp") from e
    if at.tzinfo is None:
        at = at.replace(tzinfo=UTC)
    return at


@app.command("schedules")
def schedules_cmd(
    registry: RegistryOption = Path("registry"),
    at: AtOption = None,
) -> None:
    """List schedules and who is on call for each."""
    when = _parse_at(at)
    try:
        reg = _load(registry)
        render_schedule_list(reg, when)
    except RegistryError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)


@app.command("whois")
def whois_cmd(
    schedule_id: Annotated[str, typer.Argument(help="Schedule ID to look up.")],
    registry: RegistryOption = Path("registry"),
    at: AtOption = None,
) -> None:
    """Show who is on call for a schedule."""
    when = _parse_at(at)
    try:
        reg = _load(registry)
        responder, schedule = whois(schedule_id, reg, when)
        render_whois(responder, schedule, when)
    except (RegistryError, OncallError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)


@app.command("validate")
def validate_cmd(
    registry: RegistryOption = Path("registry"),
) -> None:
    """Validate the registry for reference and coverage errors."""
    try:
        reg = _load(registry)
        errors = validate_registry(reg)
        render_validation_errors(errors)
        if errors:
            raise typer.Exit(code=1)
    except RegistryError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)


@app.command("drill")
def drill_cmd(
    schedule_id: Annotated[str, typer.Argument(help="Schedule ID to page.")],
    title: Annotated[str, typer.Option("--title", "-t", help="Incident title.")],
    registry: RegistryOption = Path("registry"),
    minutes: Annotated[
        float, typer.Option("--minutes", "-m", help="Simulated minutes to run.")
    ] = 30,
    ack_after: Annotated[
        Optional[float],
        typer.Option("--ack-after", help="Acknowledge this many minutes in."),
    ] = None,
    resolve_after: Annotated[
        Optional[float],
        typer.Option("--resolve-after", help="Resolve this many minutes in."),
    ] = None,
    escalate_after: Annotated[
        Optional[list[float]],
        typer.Option(
            "--escalate-after",
            help="Escalate manually this many minutes in (repeatable).",
        ),
    ] = None,
    severity: Annotated[
        str, typer.Option("--severity", help="low, medium or high.")
    ] = "medium",
    at: AtOption = None,
    echo: Annotated[
        bool,
        typer.Option("--echo", help="Print each notification as it is sent."),
    ] = False,
    as_json: Annotated[
        bool, typer.Option("--json", help="Output as JSON.")
    ] = False,
) -> None:
    """Replay an incident through the escalation policy on a simulated clock."""
    when = _parse_at(at)
    try:
        reg = _load(registry)
        result = run_drill(
            reg,
            schedule_id,
            title,
            minutes=minutes,
            ack_after=ack_after,
            resolve_after=resolve_after,
            escalate_after=escalate_after or (),
            start=when,
            severity=severity,
            sink=ConsoleSink(console) if echo else None,
            audit=AuditLog.from_settings(reg.settings.audit),
        )
        if as_json:
            render_drill_json(result)
        else:
            render_drill(result, reg)
    except (RegistryError, OncallError) as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)


@app.command("watch")
def watch_cmd(
    schedule_id: Annotated[str, typer.Argument(help="Schedule ID to page.")],
    title: Annotated[str, typer.Option("--title", "-t", help="Incident title.")],
    registry: RegistryOption = Path("registry"),
    seconds: Annotated[
        float, typer.Option("--seconds", help="How long to keep the scheduler up.")
    ] = 60,
    interval: Annotated[
        Optional[float],
        typer.Option("--interval", help="Override the tick interval in seconds."),
    ] = None,
    ack_after: Annotated[
        Optional[float],
        typer.Option("--ack-after", help="Acknowledge this many seconds in."),
    ] = None,
    severity: Annotated[
        str, typer.Option("--severity", help="low, medium or high.")
    ] = "medium",
) -> None:
    """Trigger a live incident and let the background scheduler escalate it."""
    try:
        reg = _load(registry)
    except RegistryError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    settings = reg.settings
    store = IncidentStore()
    notifier = Notifier(LogSink(), timeout=settings.notification_timeout_seconds)
    machine = IncidentStateMachine(
        store,
        reg,
        notifier,
        clock=SystemClock(),
        audit=AuditLog.from_settings(settings.audit),
    )
    scheduler = EscalationScheduler(
        machine,
        store,
        interval_seconds=interval or settings.tick_interval_seconds,
        max_levels_per_tick=settings.max_levels_per_tick,
    )

    try:
        incident = machine.trigger(title, schedule_id, severity=severity)
    except OncallError as exc:
        notifier.close()
        console.print(f"[red]Error:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)

    scheduler.start()
    console.print(
        f"[dim]Incident {incident.id} paged {incident.assigned_responder_id}; "
        f"scanning every {scheduler.interval_seconds:g}s for {seconds:g}s "
        f"(Ctrl+C to stop).[/dim]"
    )
    try:
        if ack_after is not None and ack_after < seconds:
            time.sleep(ack_after)
            machine.acknowledge(incident.id)
            time.sleep(seconds - ack_after)
        else:
            time.sleep(seconds)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.shutdown(wait=True)
        notifier.close()

    final = store.get(incident.id)
    steps = len(final.escalation_policy.steps)
    console.print(
        f"Incident {final.id}: {final.state}, level {final.escalation_level}/{steps}"
    )
    for record in final.escalation_history:
        console.print(
            f"  level {record.level} -> {record.responder_id} "
            f"({record.reason}) at {record.timestamp.isoformat()}"
        )
    report = scheduler.last_report
    if report is None:
        console.print("Scheduler stopped before its first tick.")
    else:
        console.print(
            f"Scheduler stopped. Last tick at {report.at.isoformat()}: "
            f"{report.scanned} scanned, {report.escalated} escalated, "
            f"{report.errors} error(s)."
        )


@audit_app.command("show")
def audit_show(
    path: Annotated[
        Path, typer.Option("--path", help="Path to audit log file.")
    ] = Path("./audit_logs/audit.jsonl"),
) -> None:
    """Show audit log entries."""
    entries = read_audit_log(audit_path=path)
    render_audit_entries(entries)


@audit_app.command("export")
def audit_export(
    fmt: Annotated[
        str, typer.Option("--format", "-f", help="Export format: json, csv or jsonl.")
    ] = "json",
    path: Annotated[
        Path, typer.Option("--path", help="Path to audit log file.")
    ] = Path("./audit_logs/audit.jsonl"),
) -> None:
    """Export audit log entries in JSON, CSV or JSONL format."""
    entries = read_audit_log(audit_path=path)
    if not entries:
        console.print("[dim]No audit entries to export.[/dim]")
        raise typer.Exit(code=0)
    output = export_audit_log(entries, fmt=fmt)
    console.print(output, markup=False, highlight=False, soft_wrap=True)
