"""Pydantic models for responders, schedules, escalation policies, and incidents."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

IncidentState = Literal["triggered", "acknowledged", "resolved"]
Severity = Literal["low", "medium", "high"]


class Responder(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    phone: str = ""


class Service(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""


class RotationEntry(BaseModel):
    """One on-call shift covering the half-open interval ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    responder_id: str
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @model_validator(mode="after")
    def _check_order(self) -> RotationEntry:
        if self.end <= self.start:
            raise ValueError(
                f"rotation entry for '{self.responder_id}' ends before it starts"
            )
        return self

    def contains(self, at: datetime) -> bool:
        return self.start <= at < self.end


class EscalationStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1)
    responder_id: str
    timeout_minutes: float = Field(ge=0)

    @property
    def timeout(self) -> timedelta:
        """Time since the incident was triggered after which this step fires."""
        return timedelta(minutes=self.timeout_minutes)


class EscalationPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: list[EscalationStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_levels(self) -> EscalationPolicy:
        for idx, step in enumerate(self.steps, start=1):
            if step.level != idx:
                raise ValueError(
                    f"escalation step at position {idx} has level {step.level}; "
                    f"levels must be 1-based and follow list order"
                )
        return self

    def step_for_level(self, level: int) -> EscalationStep | None:
        """Return the step reached at ``level`` (1-based), if any."""
        if 1 <= level <= len(self.steps):
            return self.steps[level - 1]
        return None


class Schedule(BaseModel):
    id: str
    name: str
    service_id: str
    rotation: list[RotationEntry]
    escalation_policy: EscalationPolicy = Field(default_factory=EscalationPolicy)


class DeliveryReceipt(BaseModel):
    success: bool
    method: str
    timestamp: datetime
    responder_id: str | None = None
    error: str | None = None


class EscalationRecord(BaseModel):
    level: int
    responder_id: str
    timestamp: datetime
    reason: str


class Incident(BaseModel):
    id: str
    title: str = Field(min_length=1)
    description: str = ""
    service_id: str
    schedule_id: str
    severity: Severity = "medium"
    state: IncidentState = "triggered"
    triggered_at: datetime
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    assigned_responder_id: str
    escalation_level: int = 0
    escalation_policy: EscalationPolicy
    escalation_history: list[EscalationRecord] = Field(default_factory=list)
    notifications: list[DeliveryReceipt] = Field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.state != "resolved"

    @property
    def levels_remaining(self) -> int:
        return len(self.escalation_policy.steps) - self.escalation_level


class AuditSettings(BaseModel):
    enabled: bool = False
    output: str = "./audit_logs/"


class EngineSettings(BaseModel):
    tick_interval_seconds: float = Field(default=60, gt=0)
    max_levels_per_tick: int = Field(default=1, ge=1)
    notification_timeout_seconds: float = Field(default=10, gt=0)
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    audit: AuditSettings = Field(default_factory=AuditSettings)


class RespondersRegistry(BaseModel):
    responders: list[Responder]


class ServicesRegistry(BaseModel):
    services: list[Service]


class SchedulesRegistry(BaseModel):
    schedules: list[Schedule]


class EngineRegistry(BaseModel):
    engine: EngineSettings = Field(default_factory=EngineSettings)
