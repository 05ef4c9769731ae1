"""Replay an incident against a schedule's escalation policy on a manual clock."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from oncall.audit import AuditLog
from oncall.clock import ManualClock
from oncall.engine import IncidentStateMachine
from oncall.errors import InvalidTransition, NoMoreLevels, NotFound
from oncall.loader import Registry
from oncall.models import Incident, Schedule, Severity
from oncall.notify import LogSink, NotificationSink, Notifier
from oncall.scheduler import EscalationScheduler
from oncall.store import IncidentStore


@dataclass
class DrillEvent:
    offset: timedelta
    action: str
    state: str
    level: int
    responder_id: str | None = None
    detail: str = ""


@dataclass
class DrillResult:
    schedule: Schedule
    incident: Incident
    started_at: datetime
    ticks: int = 0
    events: list[DrillEvent] = field(default_factory=list)


def run_drill(
    registry: Registry,
    schedule_id: str,
    title: str,
    minutes: float = 30,
    ack_after: float | None = None,
    resolve_after: float | None = None,
    escalate_after: Sequence[float] = (),
    start: datetime | None = None,
    severity: Severity = "medium",
    sink: NotificationSink | None = None,
    audit: AuditLog | None = None,
) -> DrillResult:
    """Trigger an incident and tick the scheduler until ``minutes`` have passed.

    The scheduler ticks every ``registry.settings.tick_interval_seconds`` of
    simulated time. Operator actions (``ack_after``, ``resolve_after``, in
    minutes after the trigger) and manual escalations (``escalate_after``,
    one entry per escalation) are applied before any tick at the same instant.

    Raises:
        NotFound: If the schedule does not exist.
        NoResponderAvailable: If nobody is on call at ``start``.
    """
    settings = registry.settings
    clock = ManualClock(start)
    started_at = clock.now()
    store = IncidentStore()
    notifier = Notifier(
        sink or LogSink(), timeout=settings.notification_timeout_seconds
    )
    machine = IncidentStateMachine(
        store, registry, notifier, clock=clock, audit=audit
    )
    scheduler = EscalationScheduler(
        machine,
        store,
        interval_seconds=settings.tick_interval_seconds,
        max_levels_per_tick=settings.max_levels_per_tick,
    )

    schedule = registry.get_schedule(schedule_id)
    if schedule is None:
        notifier.close()
        raise NotFound(f"Schedule '{schedule_id}' not found")

    try:
        incident = machine.trigger(title, schedule_id, severity=severity)
        result = DrillResult(
            schedule=schedule, incident=incident, started_at=started_at
        )
        result.events.append(
            DrillEvent(
                offset=timedelta(0),
                action="trigger",
                state=incident.state,
                level=incident.escalation_level,
                responder_id=incident.assigned_responder_id,
            )
        )

        actions: list[tuple[timedelta, str]] = []
        if ack_after is not None:
            actions.append((timedelta(minutes=ack_after), "acknowledge"))
        if resolve_after is not None:
            actions.append((timedelta(minutes=resolve_after), "resolve"))
        for minutes_in in escalate_after:
            actions.append((timedelta(minutes=minutes_in), "escalate"))
        actions.sort(key=lambda a: a[0])

        duration = timedelta(minutes=minutes)
        interval = timedelta(seconds=settings.tick_interval_seconds)
        offset = interval

        while offset <= duration:
            while actions and actions[0][0] <= offset:
                _operate(machine, clock, result, started_at, *actions.pop(0))
            clock.set(started_at + offset)
            _tick(scheduler, store, result, offset)
            offset += interval

        for action_offset, action in actions:
            if action_offset <= duration:
                _operate(machine, clock, result, started_at, action_offset, action)

        result.incident = store.get(incident.id)
        return result
    finally:
        notifier.close()


def _operate(
    machine: IncidentStateMachine,
    clock: ManualClock,
    result: DrillResult,
    started_at: datetime,
    offset: timedelta,
    action: str,
) -> None:
    clock.set(started_at + offset)
    before = machine.store.get(result.incident.id)
    try:
        if action == "acknowledge":
            incident = machine.acknowledge(result.incident.id)
        elif action == "escalate":
            incident = machine.escalate_manual(result.incident.id)
        else:
            incident = machine.resolve(result.incident.id)
    except (InvalidTransition, NoMoreLevels) as e:
        result.events.append(
            DrillEvent(
                offset=offset,
                action=action,
                state=before.state,
                level=before.escalation_level,
                detail=f"rejected: {e}",
            )
        )
        return

    if action == "escalate":
        result.events.extend(_escalation_events(before, incident, offset))
        return
    result.events.append(
        DrillEvent(
            offset=offset,
            action=action,
            state=incident.state,
            level=incident.escalation_level,
        )
    )


def _tick(
    scheduler: EscalationScheduler,
    store: IncidentStore,
    result: DrillResult,
    offset: timedelta,
) -> None:
    before = store.get(result.incident.id)
    scheduler.tick()
    result.ticks += 1
    after = store.get(result.incident.id)
    result.events.extend(_escalation_events(before, after, offset))


def _escalation_events(
    before: Incident, after: Incident, offset: timedelta
) -> list[DrillEvent]:
    """One event per level gained between two snapshots, in level order."""
    new_records = {
        r.level: r for r in after.escalation_history[len(before.escalation_history):]
    }
    events = []
    for level in range(before.escalation_level + 1, after.escalation_level + 1):
        record = new_records.get(level)
        if record is None:
            # the level advanced without a history entry: no directory match
            events.append(
                DrillEvent(
                    offset=offset,
                    action="escalate",
                    state=after.state,
                    level=level,
                    detail="target not in directory",
                )
            )
        else:
            events.append(
                DrillEvent(
                    offset=offset,
                    action="escalate",
                    state=after.state,
                    level=level,
                    responder_id=record.responder_id,
                    detail=record.reason,
                )
            )
    return events
