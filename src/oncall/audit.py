"""Audit logging for incident transitions."""

from __future__ import annotations

import csv
import getpass
import io
import json
import socket
import threading
from datetime import UTC, datetime
from pathlib import Path

import structlog

from oncall.models import AuditSettings, Incident

logger = structlog.get_logger(__name__)

DEFAULT_AUDIT_PATH = Path("./audit_logs/audit.jsonl")
AUDIT_FILENAME = "audit.jsonl"


def _get_user() -> str:
    """Return the current username, or 'unknown' on failure."""
    try:
        return getpass.getuser()
    except Exception:
        return "unknown"


def _get_hostname() -> str:
    """Return the current hostname, or 'unknown' on failure."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


class AuditLog:
    """Append-only JSONL trail of incident transitions."""

    def __init__(self, output_dir: Path, enabled: bool = True) -> None:
        self.output_dir = output_dir
        self.enabled = enabled
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: AuditSettings) -> AuditLog:
        return cls(Path(settings.output), enabled=settings.enabled)

    @property
    def path(self) -> Path:
        return self.output_dir / AUDIT_FILENAME

    def record(
        self,
        action: str,
        incident: Incident,
        at: datetime | None = None,
        **details: object,
    ) -> None:
        """Append an audit entry for a transition applied to ``incident``.

        Args:
            action: The transition (``trigger``, ``acknowledge``, ``resolve``,
                ``escalate``).
            incident: The incident after the transition.
            at: When the transition happened; defaults to now.
            details: Extra fields stored verbatim (e.g. ``reason``).
        """
        if not self.enabled:
            return

        entry = {
            "timestamp": (at or datetime.now(UTC)).isoformat(),
            "action": action,
            "incident_id": incident.id,
            "title": incident.title,
            "state": incident.state,
            "escalation_level": incident.escalation_level,
            "assigned_responder_id": incident.assigned_responder_id,
            "user": _get_user(),
            "hostname": _get_hostname(),
        }
        entry.update(details)

        with self._lock:
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a") as f:
                    f.write(json.dumps(entry, default=str) + "\n")
            except OSError as e:
                # the transition is already applied; losing the entry must not undo it
                logger.warning(
                    "audit_write_failed",
                    path=str(self.path),
                    action=action,
                    incident_id=incident.id,
                    error=str(e),
                )


def read_audit_log(audit_path: Path | None = None) -> list[dict]:
    """Read all entries from a JSONL audit log file.

    Args:
        audit_path: Path to the audit log file. Defaults to ``./audit_logs/audit.jsonl``.

    Returns:
        A list of audit entry dictionaries.
    """
    if audit_path is None:
        audit_path = DEFAULT_AUDIT_PATH

    if not audit_path.is_file():
        return []

    entries: list[dict] = []
    with open(audit_path) as f:
        for line in f:
            line = line.strip()
            if line:
                entries.append(json.loads(line))
    return entries


def export_audit_log(entries: list[dict], fmt: str = "json") -> str:
    """Export audit entries to a string in the given format.

    Args:
        entries: List of audit entry dictionaries.
        fmt: Output format, ``"json"``, ``"csv"``, or anything else for JSONL.

    Returns:
        The formatted string.
    """
    if fmt == "json":
        return json.dumps(entries, indent=2)

    if fmt == "csv":
        if not entries:
            return ""
        # entries carry action-specific fields, so take the union in first-seen order
        fieldnames: list[str] = []
        for entry in entries:
            for key in entry:
                if key not in fieldnames:
                    fieldnames.append(key)
        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=fieldnames, restval="")
        writer.writeheader()
        writer.writerows(entries)
        return output.getvalue()

    return "\n".join(json.dumps(e) for e in entries)
