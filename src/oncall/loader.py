"""YAML registry loader and validator."""

from __future__ import annotations

from pathlib import Path
from typing import TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from oncall.models import (
    EngineRegistry,
    EngineSettings,
    Responder,
    RespondersRegistry,
    Schedule,
    SchedulesRegistry,
    Service,
    ServicesRegistry,
)

_cache: dict[str, Registry] = {}

REQUIRED_FILES = ("responders.yaml", "services.yaml", "schedules.yaml")
ENGINE_FILE = "engine.yaml"

_M = TypeVar("_M", bound=BaseModel)


class RegistryError(Exception):
    """Exception raised for errors during registry loading or validation."""


class Registry:
    """Read-only responder directory and schedule repository."""

    def __init__(
        self,
        responders: list[Responder],
        services: list[Service],
        schedules: list[Schedule],
        settings: EngineSettings | None = None,
    ) -> None:
        self.responders = {r.id: r for r in responders}
        self.services = {s.id: s for s in services}
        self.schedules = {s.id: s for s in schedules}
        self.settings = settings or EngineSettings()

    def get_responder(self, responder_id: str) -> Responder | None:
        return self.responders.get(responder_id)

    def get_service(self, service_id: str) -> Service | None:
        return self.services.get(service_id)

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        return self.schedules.get(schedule_id)


def _load_file(path: Path, model: type[_M]) -> _M:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        return model.model_validate(data or {})
    except yaml.YAMLError as e:
        raise RegistryError(f"Malformed {path.name}: {e}") from e
    except ValidationError as e:
        raise RegistryError(f"Invalid {path.name}: {e}") from e


def load_registry(registry_path: Path = Path("registry")) -> Registry:
    """Load, parse, validate and cache the YAML registry.

    Args:
        registry_path: Path to the directory containing the registry YAML files.

    Returns:
        A fully loaded Registry instance.

    Raises:
        RegistryError: If files are missing or validation fails.
    """
    resolved = str(registry_path.resolve())

    if resolved in _cache:
        return _cache[resolved]

    missing = [f for f in REQUIRED_FILES if not (registry_path / f).is_file()]
    if missing:
        raise RegistryError(
            f"Missing registry files in {registry_path}: {', '.join(missing)}"
        )

    responders_reg = _load_file(registry_path / "responders.yaml", RespondersRegistry)
    services_reg = _load_file(registry_path / "services.yaml", ServicesRegistry)
    schedules_reg = _load_file(registry_path / "schedules.yaml", SchedulesRegistry)

    # engine.yaml is optional; defaults apply when it is absent
    engine_path = registry_path / ENGINE_FILE
    if engine_path.is_file():
        settings = _load_file(engine_path, EngineRegistry).engine
    else:
        settings = EngineSettings()

    registry = Registry(
        responders=responders_reg.responders,
        services=services_reg.services,
        schedules=schedules_reg.schedules,
        settings=settings,
    )

    _cache[resolved] = registry
    return registry


def clear_cache() -> None:
    """Clear the in-memory registry cache."""
    _cache.clear()


def validate_registry(registry: Registry) -> list[str]:
    """Validate cross-references and rotation coverage within a loaded registry.

    Overlaps and gaps are tolerated at runtime (the first matching entry wins
    and an uncovered instant has nobody on call) but are almost always data
    mistakes, so they are reported here.

    Returns a list of error messages. An empty list means the registry is clean.
    """
    errors: list[str] = []
    responder_ids = set(registry.responders.keys())
    service_ids = set(registry.services.keys())

    for schedule in registry.schedules.values():
        prefix = f"Schedule '{schedule.id}'"

        if schedule.service_id not in service_ids:
            errors.append(
                f"{prefix}: service_id '{schedule.service_id}' not found in services"
            )

        if not schedule.rotation:
            errors.append(f"{prefix}: rotation is empty")

        for entry in schedule.rotation:
            if entry.responder_id not in responder_ids:
                errors.append(
                    f"{prefix}: rotation references unknown responder "
                    f"'{entry.responder_id}'"
                )

        for step in schedule.escalation_policy.steps:
            if step.responder_id not in responder_ids:
                errors.append(
                    f"{prefix}: escalation level {step.level} references unknown "
                    f"responder '{step.responder_id}'"
                )

        ordered = sorted(schedule.rotation, key=lambda e: e.start)
        if ordered:
            covering = ordered[0]
            for nxt in ordered[1:]:
                if nxt.start < covering.end:
                    errors.append(
                        f"{prefix}: rotation entries for '{covering.responder_id}' "
                        f"and '{nxt.responder_id}' overlap at "
                        f"{nxt.start.isoformat()}"
                    )
                elif nxt.start > covering.end:
                    errors.append(
                        f"{prefix}: rotation gap between "
                        f"{covering.end.isoformat()} and {nxt.start.isoformat()}"
                    )
                if nxt.end > covering.end:
                    covering = nxt

    return errors
