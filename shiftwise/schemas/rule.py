"""
Pydantic schemas for workflow automation rules.

A rule pairs one trigger with an ordered list of conditions and an ordered
list of actions. Triggers and actions are closed tagged unions keyed on
``type``; adding a new kind means adding a variant here and a handler in the
action executor, which refuses to start when a handler is missing.
"""

from __future__ import annotations

import uuid
from datetime import datetime, time, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .execution import ExecutionResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TriggerType(str, Enum):
    JOB_CREATED = "job_created"
    SHIFT_COMPLETED = "shift_completed"
    PAYMENT_PROCESSED = "payment_processed"
    USER_REGISTERED = "user_registered"
    SCHEDULE_TIME = "schedule_time"


EVENT_TRIGGER_TYPES = frozenset(t for t in TriggerType if t is not TriggerType.SCHEDULE_TIME)


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Schedule(BaseModel):
    """Recurrence for ``schedule_time`` triggers.

    ``days_of_week`` uses 0=Sunday .. 6=Saturday. Weekly schedules must name at
    least one day; daily schedules may use it to skip days. ``day_of_month``
    only applies to monthly schedules and is clamped to the month length.
    """

    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    time: str
    days_of_week: Optional[List[int]] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        try:
            parsed = datetime.strptime(value.strip(), "%H:%M").time()
        except (AttributeError, ValueError):
            raise ValueError("time must be HH:MM (24h)") from None
        return parsed.strftime("%H:%M")

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return None
        for day in value:
            if day < 0 or day > 6:
                raise ValueError("days_of_week entries must be 0 (Sunday) to 6 (Saturday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def _check_frequency(self) -> "Schedule":
        if self.frequency is Frequency.WEEKLY and not self.days_of_week:
            raise ValueError("weekly schedules require days_of_week")
        if self.day_of_month is not None and self.frequency is not Frequency.MONTHLY:
            raise ValueError("day_of_month only applies to monthly schedules")
        return self

    def time_of_day(self) -> time:
        return datetime.strptime(self.time, "%H:%M").time()


class EventTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["job_created", "shift_completed", "payment_processed", "user_registered"]


class ScheduleTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["schedule_time"] = "schedule_time"
    schedule: Schedule


Trigger = Annotated[Union[EventTrigger, ScheduleTrigger], Field(discriminator="type")]


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    EXISTS = "exists"


class Condition(BaseModel):
    """One field test against the event payload.

    Conditions are always ANDed. ``logical_operator`` is accepted for
    compatibility with stored rules but only ``"AND"`` is valid.
    """

    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any = None
    logical_operator: Optional[Literal["AND"]] = None


class ActionType(str, Enum):
    SEND_NOTIFICATION = "send_notification"
    ASSIGN_WORKER = "assign_worker"
    UPDATE_STATUS = "update_status"
    CREATE_TASK = "create_task"
    SEND_EMAIL = "send_email"
    WEBHOOK_CALL = "webhook_call"


class SendNotificationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    recipients: List[str] = Field(default_factory=list)
    message: str = ""
    title: str = "Automation Notification"
    template: Optional[str] = None
    priority: str = "medium"
    notification_type: str = "system_alert"


class AssignWorkerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    criteria: str = "best_match"
    notify_worker: bool = False


class UpdateStatusConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_type: Literal["job", "shift"]
    new_status: str = Field(min_length=1)
    entity_id: Optional[str] = None


class CreateTaskConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_type: str = Field(min_length=1)
    priority: str = "medium"
    assign_to: str = "system"


class SendEmailConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    to: str = Field(min_length=1)
    subject: str = ""
    body: str = ""


WEBHOOK_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}


class WebhookCallConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("url must be http(s)")
        return value

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.strip().upper()
        if method not in WEBHOOK_METHODS:
            raise ValueError(f"method must be one of {sorted(WEBHOOK_METHODS)}")
        return method


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Minutes to wait before running the action; None or 0 runs inline.
    delay: Optional[float] = Field(default=None, ge=0)


class SendNotificationAction(_ActionBase):
    type: Literal["send_notification"] = "send_notification"
    config: SendNotificationConfig = Field(default_factory=SendNotificationConfig)


class AssignWorkerAction(_ActionBase):
    type: Literal["assign_worker"] = "assign_worker"
    config: AssignWorkerConfig = Field(default_factory=AssignWorkerConfig)


class UpdateStatusAction(_ActionBase):
    type: Literal["update_status"] = "update_status"
    config: UpdateStatusConfig


class CreateTaskAction(_ActionBase):
    type: Literal["create_task"] = "create_task"
    config: CreateTaskConfig


class SendEmailAction(_ActionBase):
    type: Literal["send_email"] = "send_email"
    config: SendEmailConfig


class WebhookCallAction(_ActionBase):
    type: Literal["webhook_call"] = "webhook_call"
    config: WebhookCallConfig


Action = Annotated[
    Union[
        SendNotificationAction,
        AssignWorkerAction,
        UpdateStatusAction,
        CreateTaskAction,
        SendEmailAction,
        WebhookCallAction,
    ],
    Field(discriminator="type"),
]


class RuleMetrics(BaseModel):
    """Aggregate outcome counters for one rule, replaced after every run."""

    model_config = ConfigDict(frozen=True)

    success_count: int = 0
    error_count: int = 0
    partial_count: int = 0
    average_execution_time: float = 0.0
    success_rate: float = 0.0

    @property
    def execution_count(self) -> int:
        return self.success_count + self.error_count + self.partial_count

    def record(self, result: ExecutionResult, duration_ms: float) -> "RuleMetrics":
        success = self.success_count + (result is ExecutionResult.SUCCESS)
        error = self.error_count + (result is ExecutionResult.FAILED)
        partial = self.partial_count + (result is ExecutionResult.PARTIAL)
        total = success + error + partial
        average = self.average_execution_time + (duration_ms - self.average_execution_time) / total
        return RuleMetrics(
            success_count=success,
            error_count=error,
            partial_count=partial,
            average_execution_time=average,
            success_rate=success / total * 100.0,
        )


class RuleBase(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    trigger: Trigger
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(default_factory=list)
    is_active: bool = True
    organization_id: Optional[str] = None


class RuleCreate(RuleBase):
    id: str = Field(default_factory=lambda: f"rule-{uuid.uuid4().hex[:12]}", min_length=1)


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    trigger: Optional[Trigger] = None
    conditions: Optional[List[Condition]] = None
    actions: Optional[List[Action]] = None
    is_active: Optional[bool] = None
    organization_id: Optional[str] = None


class Rule(RuleBase):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    execution_count: int = 0
    last_executed: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    metrics: RuleMetrics = Field(default_factory=RuleMetrics)

    @property
    def schedule(self) -> Optional[Schedule]:
        if isinstance(self.trigger, ScheduleTrigger):
            return self.trigger.schedule
        return None
