"""On-call rotation resolver logic."""

from __future__ import annotations

from datetime import datetime

from oncall.errors import NoResponderAvailable, NotFound
from oncall.loader import Registry
from oncall.models import Responder, RotationEntry, Schedule


def current_entry(schedule: Schedule, at: datetime) -> RotationEntry | None:
    """Return the first rotation entry covering ``at``.

    Entries are scanned in list order, so when two entries overlap the one
    listed first wins.
    """
    for entry in schedule.rotation:
        if entry.contains(at):
            return entry
    return None


def current_responder(
    schedule: Schedule, at: datetime, registry: Registry
) -> Responder | None:
    """Return the responder on call for ``schedule`` at ``at``, or ``None``.

    Args:
        schedule: The schedule whose rotation is consulted.
        at: The instant to resolve (timezone-aware).
        registry: Directory used to turn the entry's responder id into a record.

    Returns:
        The on-call ``Responder``, or ``None`` if no entry covers ``at`` or the
        covering entry names a responder the directory does not know.
    """
    entry = current_entry(schedule, at)
    if entry is None:
        return None
    return registry.get_responder(entry.responder_id)


def whois(
    schedule_id: str, registry: Registry, at: datetime
) -> tuple[Responder, Schedule]:
    """Look up who is on call for a schedule.

    Returns:
        A tuple of ``(responder, schedule)``.

    Raises:
        NotFound: If the schedule does not exist.
        NoResponderAvailable: If nobody is on call at ``at``.
    """
    schedule = registry.get_schedule(schedule_id)
    if schedule is None:
        available = ", ".join(sorted(registry.schedules.keys()))
        raise NotFound(
            f"Schedule '{schedule_id}' not found. Available schedules: {available}"
        )

    responder = current_responder(schedule, at, registry)
    if responder is None:
        raise NoResponderAvailable(
            f"No one is currently on call for schedule '{schedule_id}'"
        )
    return responder, schedule
