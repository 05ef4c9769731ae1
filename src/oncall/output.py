"""Rich output formatting for CLI results."""

from __future__ import annotations

import json
from datetime import datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from oncall.drill import DrillResult
from oncall.loader import Registry
from oncall.models import Responder, Schedule
from oncall.resolver import current_responder

console = Console()

STATE_COLORS: dict[str, str] = {
    "triggered": "red bold",
    "acknowledged": "yellow",
    "resolved": "green",
}

SEVERITY_COLORS: dict[str, str] = {
    "high": "red bold",
    "medium": "yellow",
    "low": "green",
}


def _format_offset(offset: timedelta) -> str:
    total = int(offset.total_seconds())
    minutes, seconds = divmod(total, 60)
    return f"+{minutes}m{seconds:02d}s"


def render_schedule_list(registry: Registry, at: datetime) -> None:
    """Render a table of schedules with whoever is on call at ``at``.

    Args:
        registry: The loaded registry.
        at: The instant used to resolve the on-call responder.
    """
    table = Table(title="On-Call Schedules", show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Service")
    table.add_column("On Call")
    table.add_column("Levels", justify="right")

    for schedule in sorted(registry.schedules.values(), key=lambda s: s.id):
        responder = current_responder(schedule, at, registry)
        on_call = Text(responder.name) if responder else Text("nobody", style="red")
        service = registry.get_service(schedule.service_id)
        table.add_row(
            schedule.id,
            schedule.name,
            service.name if service else schedule.service_id,
            on_call,
            str(len(schedule.escalation_policy.steps)),
        )

    console.print(table)


def render_whois(responder: Responder, schedule: Schedule, at: datetime) -> None:
    """Render an on-call panel for a schedule.

    Args:
        responder: The responder currently on call.
        schedule: The schedule that was resolved.
        at: The instant that was resolved.
    """
    content = Text()
    content.append(responder.name, style="bold")
    content.append(f"  ({schedule.name})\n")
    content.append("  email", style="dim")
    content.append(f"  {responder.email}\n")
    if responder.phone:
        content.append("  phone", style="dim")
        content.append(f"  {responder.phone}\n")
    content.append(f"  as of {at.isoformat()}", style="dim")

    panel = Panel(content, title="On Call", border_style="cyan")
    console.print(panel)


def render_drill(result: DrillResult, registry: Registry) -> None:
    """Render a drill timeline as a Rich table inside a panel.

    Args:
        result: The completed drill.
        registry: Used to show responder names instead of ids.
    """
    incident = result.incident

    header_text = Text()
    header_text.append("Escalation Drill: ")
    header_text.append(result.schedule.name)
    header_text.append(" [")
    severity_style = SEVERITY_COLORS.get(incident.severity, "white")
    header_text.append(incident.severity, style=severity_style)
    header_text.append("]")

    table = Table(show_header=True, header_style="bold")
    table.add_column("At", justify="right", width=10)
    table.add_column("Action", min_width=12)
    table.add_column("Level", justify="center", width=7)
    table.add_column("Responder", min_width=18)
    table.add_column("State", width=14)
    table.add_column("Detail", min_width=20)

    for event in result.events:
        responder = (
            registry.get_responder(event.responder_id) if event.responder_id else None
        )
        if responder is not None:
            who = responder.name
        else:
            who = event.responder_id or "-"
        table.add_row(
            _format_offset(event.offset),
            event.action,
            str(event.level),
            who,
            Text(event.state, style=STATE_COLORS.get(event.state, "white")),
            event.detail,
        )

    panel = Panel(table, title=header_text, border_style="blue")
    console.print(panel)

    steps = len(incident.escalation_policy.steps)
    console.print(
        Text(
            f"  Final state: {incident.state}, level {incident.escalation_level}/{steps}, "
            f"{result.ticks} tick(s), started {result.started_at.isoformat()}",
            style="dim",
        )
    )


def render_drill_json(result: DrillResult) -> None:
    """Output a drill result as formatted JSON.

    Args:
        result: The completed drill.
    """
    data = {
        "schedule_id": result.schedule.id,
        "started_at": result.started_at.isoformat(),
        "ticks": result.ticks,
        "incident": result.incident.model_dump(mode="json"),
        "events": [
            {
                "offset_seconds": event.offset.total_seconds(),
                "action": event.action,
                "state": event.state,
                "level": event.level,
                "responder_id": event.responder_id,
                "detail": event.detail,
            }
            for event in result.events
        ],
    }
    console.print_json(json.dumps(data))


def render_validation_errors(errors: list[str]) -> None:
    """Render registry validation results.

    Args:
        errors: List of validation error messages. Empty means success.
    """
    if not errors:
        console.print(
            Text(
                "Registry validation passed, no errors found.",
                style="green bold",
            )
        )
        return

    console.print(
        Text(f"Validation failed with {len(errors)} error(s):", style="red bold")
    )
    for error in errors:
        console.print(Text(f"  • {error}", style="red"))


def render_audit_entries(entries: list[dict]) -> None:
    """Render audit log entries as a Rich table.

    Args:
        entries: List of audit entry dictionaries.
    """
    if not entries:
        console.print(Text("No audit entries found.", style="dim"))
        return

    table = Table(title="Audit Log", show_header=True, header_style="bold")
    table.add_column("Timestamp")
    table.add_column("Action")
    table.add_column("Incident")
    table.add_column("State")
    table.add_column("Level")
    table.add_column("User")

    for entry in entries:
        table.add_row(
            str(entry.get("timestamp", "")),
            str(entry.get("action", "")),
            str(entry.get("incident_id", "")),
            str(entry.get("state", "")),
            str(entry.get("escalation_level", "")),
            str(entry.get("user", "")),
        )

    console.print(table)
