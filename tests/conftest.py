"""Shared fixtures: a manual clock, a recording sink, and a small registry."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
import structlog

from oncall.clock import ManualClock
from oncall.engine import IncidentStateMachine
from oncall.loader import Registry
from oncall.models import (
    DeliveryReceipt,
    EngineSettings,
    EscalationPolicy,
    EscalationStep,
    Responder,
    RotationEntry,
    Schedule,
    Service,
)
from oncall.notify import Notifier
from oncall.store import IncidentStore

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

ALICE = Responder(id="alice", name="Alice Moreno", email="alice@example.com")
BOB = Responder(id="bob", name="Bob Okafor", email="bob@example.com")
CAROL = Responder(id="carol", name="Carol Zhang", email="carol@example.com")


class RecordingSink:
    """Collects notifications instead of sending them."""

    method = "recording"

    def __init__(self, fail_for: tuple[str, ...] = (), raise_for: tuple[str, ...] = ()):
        self.fail_for = fail_for
        self.raise_for = raise_for
        self.sent: list[tuple[str, str, str]] = []

    def notify(self, responder, message, incident_id):
        self.sent.append((responder.id, message, incident_id))
        if responder.id in self.raise_for:
            raise RuntimeError(f"gateway refused {responder.id}")
        return DeliveryReceipt(
            success=responder.id not in self.fail_for,
            method=self.method,
            timestamp=datetime.now(UTC),
            responder_id=responder.id,
        )

    def recipients(self) -> list[str]:
        return [r for r, _, _ in self.sent]


def make_policy(*steps: tuple[str, float]) -> EscalationPolicy:
    """Build a policy from ``(responder_id, timeout_minutes)`` pairs."""
    return EscalationPolicy(
        steps=[
            EscalationStep(level=i, responder_id=rid, timeout_minutes=minutes)
            for i, (rid, minutes) in enumerate(steps, start=1)
        ]
    )


def make_schedule(
    schedule_id: str = "primary",
    rotation: list[RotationEntry] | None = None,
    policy: EscalationPolicy | None = None,
) -> Schedule:
    if rotation is None:
        rotation = [
            RotationEntry(
                responder_id="alice",
                start=T0 - timedelta(days=1),
                end=T0 + timedelta(days=6),
            ),
            RotationEntry(
                responder_id="bob",
                start=T0 + timedelta(days=6),
                end=T0 + timedelta(days=13),
            ),
        ]
    if policy is None:
        policy = make_policy(("bob", 5), ("carol", 10))
    return Schedule(
        id=schedule_id,
        name="Primary On-Call",
        service_id="payments",
        rotation=rotation,
        escalation_policy=policy,
    )


def make_registry(
    schedules: list[Schedule] | None = None,
    responders: list[Responder] | None = None,
    settings: EngineSettings | None = None,
) -> Registry:
    return Registry(
        responders=responders if responders is not None else [ALICE, BOB, CAROL],
        services=[Service(id="payments", name="Payments API")],
        schedules=schedules if schedules is not None else [make_schedule()],
        settings=settings,
    )


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def registry() -> Registry:
    return make_registry()


@pytest.fixture
def store() -> IncidentStore:
    return IncidentStore()


@pytest.fixture
def notifier(sink):
    n = Notifier(sink, timeout=2.0)
    yield n
    n.close()


@pytest.fixture
def machine(store, registry, notifier, clock) -> IncidentStateMachine:
    return IncidentStateMachine(store, registry, notifier, clock=clock)
