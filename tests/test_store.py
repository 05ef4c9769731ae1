"""Tests for the in-memory incident store."""

from __future__ import annotations

import threading
import time

import pytest

from oncall.errors import NotFound
from oncall.models import Incident
from oncall.store import IncidentStore

from conftest import T0, make_policy


def _incident(incident_id: str = "inc-1", state: str = "triggered") -> Incident:
    return Incident(
        id=incident_id,
        title="Checkout latency",
        service_id="payments",
        schedule_id="primary",
        state=state,
        triggered_at=T0,
        assigned_responder_id="alice",
        escalation_policy=make_policy(("bob", 5)),
    )


def test_add_and_get_returns_snapshot():
    store = IncidentStore()
    store.add(_incident())

    snapshot = store.get("inc-1")
    snapshot.state = "resolved"
    snapshot.escalation_history.clear()

    assert store.get("inc-1").state == "triggered"


def test_get_unknown_raises_not_found():
    with pytest.raises(NotFound, match="inc-404"):
        IncidentStore().get("inc-404")


def test_transaction_unknown_raises_not_found():
    store = IncidentStore()
    with pytest.raises(NotFound):
        with store.transaction("inc-404"):
            pass


def test_duplicate_id_rejected():
    store = IncidentStore()
    store.add(_incident())

    with pytest.raises(ValueError, match="already exists"):
        store.add(_incident())


def test_list_in_trigger_order_and_contains():
    store = IncidentStore()
    for i in range(3):
        store.add(_incident(f"inc-{i}"))

    assert [i.id for i in store.list()] == ["inc-0", "inc-1", "inc-2"]
    assert len(store) == 3
    assert "inc-1" in store
    assert "inc-9" not in store


def test_open_ids_excludes_resolved():
    store = IncidentStore()
    store.add(_incident("a"))
    store.add(_incident("b", state="acknowledged"))
    store.add(_incident("c", state="resolved"))

    assert store.open_ids() == ["a", "b"]


def test_transaction_writes_are_visible_to_later_reads():
    store = IncidentStore()
    store.add(_incident())

    with store.transaction("inc-1") as incident:
        incident.escalation_level = 1

    assert store.get("inc-1").escalation_level == 1


def test_reads_wait_for_in_flight_transaction():
    """A reader never observes a half-applied transition."""
    store = IncidentStore()
    store.add(_incident())
    entered = threading.Event()
    seen: list[tuple[str, int]] = []

    def writer():
        with store.transaction("inc-1") as incident:
            entered.set()
            incident.state = "acknowledged"
            time.sleep(0.05)
            incident.escalation_level = 1

    def reader():
        entered.wait()
        snap = store.get("inc-1")
        seen.append((snap.state, snap.escalation_level))

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert seen == [("acknowledged", 1)]


def test_concurrent_transactions_do_not_lose_updates():
    store = IncidentStore()
    store.add(_incident())

    def bump():
        for _ in range(200):
            with store.transaction("inc-1") as incident:
                level = incident.escalation_level
                time.sleep(0)
                incident.escalation_level = level + 1

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("inc-1").escalation_level == 800
