"""Exceptions raised by incident transitions and on-call lookups."""

from __future__ import annotations


class OncallError(Exception):
    """Base class for recoverable engine errors surfaced to callers."""


class NotFound(OncallError):
    """Raised when an incident or schedule id is unknown."""


class InvalidTransition(OncallError):
    """Raised when a transition is not allowed from the incident's state."""


class NoResponderAvailable(OncallError):
    """Raised when a schedule has nobody on call at the requested time."""


class NoMoreLevels(OncallError):
    """Raised when a manual escalation is requested past the last policy step."""


class InvalidIncident(OncallError):
    """Raised when trigger input cannot form an incident (empty title, bad severity)."""
