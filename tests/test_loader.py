"""Tests for the registry loader and validator."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from oncall.loader import (
    RegistryError,
    clear_cache,
    load_registry,
    validate_registry,
)

REGISTRY_PATH = Path(__file__).parent.parent / "registry"


@pytest.fixture(autouse=True)
def _clear_loader_cache():
    """Clear the registry cache before and after every test."""
    clear_cache()
    yield
    clear_cache()


def _write_registry(
    path: Path,
    *,
    rotation: list[dict] | None = None,
    steps: list[dict] | None = None,
    service_id: str = "svc-a",
    engine: dict | None = None,
) -> None:
    """Write a minimal registry into ``path``."""
    if rotation is None:
        rotation = [
            {
                "responder_id": "alice",
                "start": "2026-03-01T00:00:00Z",
                "end": "2026-03-08T00:00:00Z",
            },
            {
                "responder_id": "bob",
                "start": "2026-03-08T00:00:00Z",
                "end": "2026-03-15T00:00:00Z",
            },
        ]
    if steps is None:
        steps = [{"level": 1, "responder_id": "bob", "timeout_minutes": 5}]

    (path / "responders.yaml").write_text(
        yaml.dump(
            {
                "responders": [
                    {"id": "alice", "name": "Alice", "email": "alice@co.com"},
                    {"id": "bob", "name": "Bob", "email": "bob@co.com"},
                ]
            }
        )
    )
    (path / "services.yaml").write_text(
        yaml.dump({"services": [{"id": "svc-a", "name": "Service A"}]})
    )
    (path / "schedules.yaml").write_text(
        yaml.dump(
            {
                "schedules": [
                    {
                        "id": "sched-a",
                        "name": "Schedule A",
                        "service_id": service_id,
                        "rotation": rotation,
                        "escalation_policy": {"steps": steps},
                    }
                ]
            }
        )
    )
    if engine is not None:
        (path / "engine.yaml").write_text(yaml.dump({"engine": engine}))


# ── Success tests using the real registry ──────────────────────────────────


def test_load_registry_success():
    """Load the sample registry and verify key records exist."""
    registry = load_registry(REGISTRY_PATH)

    assert "user-1" in registry.responders
    assert "schedule-1" in registry.schedules
    assert registry.get_service("service-1").name == "Payment API"
    assert registry.settings.tick_interval_seconds == 60


def test_load_registry_caching():
    """Loading the same path twice must return the exact same instance."""
    first = load_registry(REGISTRY_PATH)
    second = load_registry(REGISTRY_PATH)

    assert first is second


def test_sample_policy_matches_reference_timeouts():
    registry = load_registry(REGISTRY_PATH)
    steps = registry.get_schedule("schedule-1").escalation_policy.steps

    assert [(s.responder_id, s.timeout_minutes) for s in steps] == [
        ("user-2", 5),
        ("user-3", 10),
    ]


# ── Error tests using tmp_path ─────────────────────────────────────────────


def test_load_missing_directory(tmp_path: Path):
    """An empty directory must raise RegistryError about missing files."""
    with pytest.raises(RegistryError, match="Missing registry files"):
        load_registry(tmp_path)


def test_load_invalid_yaml(tmp_path: Path):
    """A schedule missing required fields must raise RegistryError."""
    _write_registry(tmp_path)
    (tmp_path / "schedules.yaml").write_text(
        yaml.dump({"schedules": [{"id": "bad-schedule"}]})
    )

    with pytest.raises(RegistryError, match="Invalid schedules.yaml"):
        load_registry(tmp_path)


def test_load_malformed_yaml(tmp_path: Path):
    _write_registry(tmp_path)
    (tmp_path / "responders.yaml").write_text("responders: [unclosed\n")

    with pytest.raises(RegistryError, match="Malformed responders.yaml"):
        load_registry(tmp_path)


def test_load_rejects_misnumbered_policy(tmp_path: Path):
    _write_registry(
        tmp_path,
        steps=[{"level": 2, "responder_id": "bob", "timeout_minutes": 5}],
    )

    with pytest.raises(RegistryError, match="levels must be 1-based"):
        load_registry(tmp_path)


def test_engine_file_is_optional(tmp_path: Path):
    _write_registry(tmp_path)

    registry = load_registry(tmp_path)

    assert registry.settings.tick_interval_seconds == 60
    assert registry.settings.max_levels_per_tick == 1
    assert registry.settings.audit.enabled is False


def test_engine_file_overrides_defaults(tmp_path: Path):
    _write_registry(
        tmp_path,
        engine={"tick_interval_seconds": 15, "max_levels_per_tick": 3, "log_format": "json"},
    )

    settings = load_registry(tmp_path).settings

    assert settings.tick_interval_seconds == 15
    assert settings.max_levels_per_tick == 3
    assert settings.log_format == "json"


# ── Validation tests ───────────────────────────────────────────────────────


def test_validate_registry_ok():
    """The sample registry should have no validation errors."""
    registry = load_registry(REGISTRY_PATH)
    errors = validate_registry(registry)

    assert errors == []


def test_validate_unknown_responder_in_policy(tmp_path: Path):
    _write_registry(
        tmp_path,
        steps=[{"level": 1, "responder_id": "ghost", "timeout_minutes": 5}],
    )

    errors = validate_registry(load_registry(tmp_path))

    assert any("escalation level 1" in e and "ghost" in e for e in errors)


def test_validate_unknown_service(tmp_path: Path):
    _write_registry(tmp_path, service_id="svc-missing")

    errors = validate_registry(load_registry(tmp_path))

    assert any("svc-missing" in e for e in errors)


def test_validate_rotation_overlap(tmp_path: Path):
    _write_registry(
        tmp_path,
        rotation=[
            {"responder_id": "alice", "start": "2026-03-01T00:00:00Z", "end": "2026-03-09T00:00:00Z"},
            {"responder_id": "bob", "start": "2026-03-08T00:00:00Z", "end": "2026-03-15T00:00:00Z"},
        ],
    )

    errors = validate_registry(load_registry(tmp_path))

    assert any("overlap" in e for e in errors)


def test_validate_rotation_gap(tmp_path: Path):
    _write_registry(
        tmp_path,
        rotation=[
            {"responder_id": "alice", "start": "2026-03-01T00:00:00Z", "end": "2026-03-07T00:00:00Z"},
            {"responder_id": "bob", "start": "2026-03-08T00:00:00Z", "end": "2026-03-15T00:00:00Z"},
        ],
    )

    errors = validate_registry(load_registry(tmp_path))

    assert any("rotation gap" in e for e in errors)


def test_validate_nested_shift_is_not_a_gap(tmp_path: Path):
    """A short shift inside a longer one overlaps but leaves no gap."""
    _write_registry(
        tmp_path,
        rotation=[
            {"responder_id": "alice", "start": "2026-03-01T00:00:00Z", "end": "2026-03-10T00:00:00Z"},
            {"responder_id": "bob", "start": "2026-03-02T00:00:00Z", "end": "2026-03-03T00:00:00Z"},
            {"responder_id": "bob", "start": "2026-03-10T00:00:00Z", "end": "2026-03-15T00:00:00Z"},
        ],
    )

    errors = validate_registry(load_registry(tmp_path))

    assert not any("gap" in e for e in errors)
    assert sum("overlap" in e for e in errors) == 1


def test_validate_empty_rotation(tmp_path: Path):
    _write_registry(tmp_path, rotation=[])

    errors = validate_registry(load_registry(tmp_path))

    assert any("rotation is empty" in e for e in errors)
