"""Incident lifecycle state machine.

States move ``triggered -> acknowledged -> resolved`` or straight from
``triggered`` to ``resolved``. ``resolved`` is terminal. Escalation never
changes the state; it advances ``escalation_level`` through the policy that
was bound to the incident when it was triggered.

Every mutation runs inside ``IncidentStore.transaction`` and every
precondition is checked after the lock is taken, so an operator acknowledge
and a scheduler escalation racing on the same incident apply in lock order
and the loser sees the winner's result.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import structlog
from pydantic import ValidationError

from oncall.audit import AuditLog
from oncall.clock import Clock, SystemClock
from oncall.errors import (
    InvalidIncident,
    InvalidTransition,
    NoMoreLevels,
    NoResponderAvailable,
    NotFound,
)
from oncall.loader import Registry
from oncall.models import EscalationRecord, Incident, Severity
from oncall.notify import Notifier
from oncall.resolver import current_responder
from oncall.store import IncidentStore

logger = structlog.get_logger(__name__)

REASON_MANUAL = "Manual escalation"
REASON_TIMEOUT = "Timeout"


class IncidentStateMachine:
    """Applies lifecycle transitions to incidents held in an ``IncidentStore``."""

    def __init__(
        self,
        store: IncidentStore,
        registry: Registry,
        notifier: Notifier,
        clock: Clock | None = None,
        audit: AuditLog | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.audit = audit

    def _record(
        self, action: str, incident: Incident, at: datetime, **details: object
    ) -> None:
        if self.audit is not None:
            self.audit.record(action, incident, at=at, **details)

    def trigger(
        self,
        title: str,
        schedule_id: str,
        description: str = "",
        service_id: str | None = None,
        severity: Severity = "medium",
    ) -> Incident:
        """Open a new incident and page whoever is on call for the schedule.

        Raises:
            InvalidIncident: If the title is empty or the severity unknown.
            NotFound: If the schedule does not exist.
            NoResponderAvailable: If nobody is on call right now.
        """
        schedule = self.registry.get_schedule(schedule_id)
        if schedule is None:
            raise NotFound(f"Schedule '{schedule_id}' not found")

        now = self.clock.now()
        responder = current_responder(schedule, now, self.registry)
        if responder is None:
            raise NoResponderAvailable(
                f"No one is currently on call for schedule '{schedule_id}'"
            )

        try:
            incident = Incident(
                id=str(uuid.uuid4()),
                title=title,
                description=description,
                service_id=service_id or schedule.service_id,
                schedule_id=schedule_id,
                severity=severity,
                state="triggered",
                triggered_at=now,
                assigned_responder_id=responder.id,
                escalation_policy=schedule.escalation_policy,
            )
        except ValidationError as e:
            raise InvalidIncident(f"Cannot trigger incident: {e}") from e

        # not yet shared, so no lock is needed until it is added
        receipt = self.notifier.send(
            responder,
            f"INCIDENT: {title} - {description or 'No description'}",
            incident.id,
        )
        incident.notifications.append(receipt)
        self.store.add(incident)

        logger.info(
            "incident_triggered",
            incident_id=incident.id,
            schedule_id=schedule_id,
            responder_id=responder.id,
            severity=severity,
        )
        self._record("trigger", incident, now)
        return incident.model_copy(deep=True)

    def acknowledge(self, incident_id: str) -> Incident:
        """Mark an incident as acknowledged, stopping automatic escalation.

        Acknowledging an already acknowledged incident changes nothing.

        Raises:
            NotFound: If the incident does not exist.
            InvalidTransition: If the incident is resolved.
        """
        with self.store.transaction(incident_id) as incident:
            if incident.state == "resolved":
                raise InvalidTransition(
                    f"Cannot acknowledge resolved incident '{incident_id}'"
                )
            if incident.state == "triggered":
                now = self.clock.now()
                incident.state = "acknowledged"
                incident.acknowledged_at = now
                logger.info("incident_acknowledged", incident_id=incident_id)
                self._record("acknowledge", incident, now)
            return incident.model_copy(deep=True)

    def resolve(self, incident_id: str) -> Incident:
        """Resolve an incident from ``triggered`` or ``acknowledged``.

        Resolving an already resolved incident keeps the original
        ``resolved_at``.

        Raises:
            NotFound: If the incident does not exist.
        """
        with self.store.transaction(incident_id) as incident:
            if incident.state != "resolved":
                now = self.clock.now()
                previous = incident.state
                incident.state = "resolved"
                incident.resolved_at = now
                logger.info(
                    "incident_resolved", incident_id=incident_id, previous=previous
                )
                self._record("resolve", incident, now, previous_state=previous)
            return incident.model_copy(deep=True)

    def escalate_manual(self, incident_id: str) -> Incident:
        """Move an open incident to the next escalation level on request.

        Raises:
            NotFound: If the incident does not exist.
            InvalidTransition: If the incident is resolved.
            NoMoreLevels: If every policy step has already been used.
        """
        with self.store.transaction(incident_id) as incident:
            if incident.state == "resolved":
                raise InvalidTransition(
                    f"Cannot escalate resolved incident '{incident_id}'"
                )
            if incident.levels_remaining <= 0:
                raise NoMoreLevels(
                    f"No more escalation levels available for incident '{incident_id}'"
                )
            self._escalate(
                incident, self.clock.now(), REASON_MANUAL, f"ESCALATED: {incident.title}"
            )
            return incident.model_copy(deep=True)

    def escalate_automatic(self, incident_id: str) -> Incident | None:
        """Escalate one level if the pending step's timeout has elapsed.

        Only the scheduler calls this. Eligibility is re-checked under the
        incident lock; an incident that was acknowledged, is out of levels or
        is not yet due is left alone and ``None`` is returned.

        Raises:
            NotFound: If the incident does not exist.
            InvalidTransition: If the incident is resolved.
        """
        with self.store.transaction(incident_id) as incident:
            if incident.state == "resolved":
                raise InvalidTransition(
                    f"Cannot escalate resolved incident '{incident_id}'"
                )
            if incident.state != "triggered" or incident.levels_remaining <= 0:
                return None

            now = self.clock.now()
            pending = incident.escalation_policy.steps[incident.escalation_level]
            if now - incident.triggered_at < pending.timeout:
                return None

            self._escalate(
                incident,
                now,
                REASON_TIMEOUT,
                f"ESCALATED: {incident.title} - No response from previous on-call",
            )
            return incident.model_copy(deep=True)

    def _escalate(
        self, incident: Incident, now: datetime, reason: str, message: str
    ) -> None:
        # caller holds the incident lock and has checked levels_remaining
        incident.escalation_level += 1
        level = incident.escalation_level
        step = incident.escalation_policy.step_for_level(level)
        responder = self.registry.get_responder(step.responder_id) if step else None

        if responder is None:
            # the level still counts; only the page and the history entry are lost
            logger.warning(
                "escalation_target_missing",
                incident_id=incident.id,
                level=level,
                responder_id=step.responder_id if step else None,
            )
            self._record("escalate", incident, now, reason=reason, notified=False)
            return

        receipt = self.notifier.send(responder, message, incident.id)
        incident.notifications.append(receipt)
        incident.escalation_history.append(
            EscalationRecord(
                level=level, responder_id=responder.id, timestamp=now, reason=reason
            )
        )
        logger.info(
            "incident_escalated",
            incident_id=incident.id,
            level=level,
            responder_id=responder.id,
            reason=reason,
            delivered=receipt.success,
        )
        self._record(
            "escalate",
            incident,
            now,
            reason=reason,
            responder_id=responder.id,
            notified=receipt.success,
        )
