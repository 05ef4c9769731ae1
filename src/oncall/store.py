"""Thread-safe in-memory incident store."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from oncall.errors import NotFound
from oncall.models import Incident


class IncidentStore:
    """Incidents keyed by id, with one lock per incident.

    ``_lock`` guards the two dicts only. Every read or write of an incident's
    fields happens while holding that incident's own lock, so transitions on
    the same incident never interleave and readers never see a half-applied
    transition. Readers get deep copies; the live records never leave the
    store except inside ``transaction``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._incidents: dict[str, Incident] = {}
        self._locks: dict[str, threading.Lock] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._incidents)

    def __contains__(self, incident_id: object) -> bool:
        with self._lock:
            return incident_id in self._incidents

    def add(self, incident: Incident) -> None:
        with self._lock:
            if incident.id in self._incidents:
                raise ValueError(f"Incident '{incident.id}' already exists")
            self._incidents[incident.id] = incident
            self._locks[incident.id] = threading.Lock()

    def _entry(self, incident_id: str) -> tuple[Incident, threading.Lock]:
        with self._lock:
            incident = self._incidents.get(incident_id)
            if incident is None:
                raise NotFound(f"Incident '{incident_id}' not found")
            return incident, self._locks[incident_id]

    @contextmanager
    def transaction(self, incident_id: str) -> Iterator[Incident]:
        """Hold ``incident_id``'s lock and yield the live record for mutation.

        Raises:
            NotFound: If the id is unknown.
        """
        incident, lock = self._entry(incident_id)
        with lock:
            yield incident

    def get(self, incident_id: str) -> Incident:
        """Return a consistent snapshot of one incident.

        Raises:
            NotFound: If the id is unknown.
        """
        incident, lock = self._entry(incident_id)
        with lock:
            return incident.model_copy(deep=True)

    def list(self) -> list[Incident]:
        """Snapshots of all incidents in insertion (trigger) order."""
        with self._lock:
            ids = list(self._incidents)
        return [self.get(incident_id) for incident_id in ids]

    def open_ids(self) -> list[str]:
        """Ids of incidents that are not resolved, in trigger order.

        The state is read under each incident's lock, but it may change right
        after; callers that act on the result must re-check under the lock.
        """
        with self._lock:
            entries = [(i, self._locks[i], inc) for i, inc in self._incidents.items()]
        open_ids = []
        for incident_id, lock, incident in entries:
            with lock:
                if incident.is_open:
                    open_ids.append(incident_id)
        return open_ids
