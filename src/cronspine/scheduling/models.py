"""Scheduler data model.

``TaskDefinition`` and ``TaskInstance`` are pydantic models so that the
same validation applies to rows typed at the CLI, passed through the
Python API, or loaded back from the database. Identity and claim types
are small frozen dataclasses.

Example::

    definition = TaskDefinition(name="backup", handler="run_backup", max_time=600)
    instance = TaskInstance(task="backup", arguments={"target": "s3"}, frequency=3600)
    instance.arguments
    # '{"target":"s3"}'
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Any, NewType

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cronspine.core.timestamps import from_db
from cronspine.scheduling.calendar import parse_day_list

ClaimToken = NewType("ClaimToken", str)
"""Opaque identifier of the agent run that owns a set of claimed rows."""

INSTANCE_PLACEHOLDER = '"$cronInstance"'
"""Token in serialized arguments replaced by the instance number at run time."""


class InstanceStatus(IntEnum):
    """Lifecycle status of a schedule row."""

    IDLE = 0
    CLAIMED = 1
    RUNNING = 2
    PENDING_REMOVAL = 3


@dataclass(frozen=True, order=True)
class InstanceKey:
    """Composite identity of a task instance."""

    task: str
    arguments: str = ""
    instance: int = 1

    def __str__(self) -> str:
        args = f" {self.arguments}" if self.arguments else ""
        return f"{self.task}{args} #{self.instance}"


def canonical_json(value: Any) -> str:
    """Serialize arguments compactly; empty values become ``""``.

    Text is parsed and re-serialized, so equal arguments always share one
    identity. The quoted instance placeholder survives as a JSON string.
    """
    if isinstance(value, str):
        if not value.strip():
            return ""
        value = json.loads(value)
    if value is None or value == [] or value == {}:
        return ""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value) if value.strip() else None
    return value


class TaskDefinition(BaseModel):
    """A named unit of work (row of ``{prefix}tasks``)."""

    model_config = ConfigDict(validate_assignment=True)

    name: str = Field(min_length=1, max_length=100, description="Unique task name")
    handler: str = Field(
        min_length=1,
        max_length=255,
        description="Registry key of the handler, or method name when object_ref is set",
    )
    object_ref: str | None = Field(default=None, description="Registry key of an object factory")
    parameters: list[Any] | dict[str, Any] | None = Field(
        default=None, description="Factory arguments plus optional extra_methods chain"
    )
    allowed_returns: list[Any] | None = Field(
        default=None, description="Return values counted as success"
    )
    max_time: int = Field(default=3600, ge=1, description="Execution budget and hang threshold (s)")
    min_frequency: int = Field(default=3600, ge=0, description="Lowest allowed recurring frequency (s)")
    retry: int = Field(default=3600, ge=0, description="Reschedule delay after failure (s), 0 = global logic")
    enabled: bool = True
    system: bool = False
    description: str | None = None

    @field_validator("parameters", "allowed_returns", mode="before")
    @classmethod
    def _decode(cls, value: Any) -> Any:
        value = _decode_json(value)
        if value == [] or value == {}:
            return None
        return value

    @field_validator("object_ref", "description", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("max_time", "min_frequency", "retry", mode="before")
    @classmethod
    def _default_if_empty(cls, value: Any, info) -> Any:
        if value is None or value == "":
            return cls.model_fields[info.field_name].default
        return value

    def parameters_json(self) -> str | None:
        return json.dumps(self.parameters) if self.parameters is not None else None

    def allowed_returns_json(self) -> str | None:
        return json.dumps(self.allowed_returns) if self.allowed_returns is not None else None


class TaskInstance(BaseModel):
    """One schedulable occurrence of a task (row of ``{prefix}schedule``)."""

    model_config = ConfigDict(validate_assignment=False)

    task: str = Field(min_length=1, max_length=100)
    arguments: str = Field(default="", max_length=255, description="Canonical JSON text")
    instance: int = Field(default=1)
    frequency: int = Field(default=0, description="Seconds between runs, 0 = one-time")
    day_of_month: list[int] = Field(default_factory=list)
    day_of_week: list[int] = Field(default_factory=list)
    priority: int = Field(default=0)
    message: str | None = Field(default=None, max_length=100)
    enabled: bool = True
    system: bool = False
    status: InstanceStatus = InstanceStatus.IDLE
    run_by: str | None = None
    next_run: datetime | None = None
    last_run: datetime | None = None
    last_success: datetime | None = None
    last_error: datetime | None = None
    registered: datetime | None = None
    updated: datetime | None = None

    @field_validator("arguments", mode="before")
    @classmethod
    def _canonical_arguments(cls, value: Any) -> str:
        try:
            return canonical_json(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"arguments must be JSON-serializable or valid JSON text: {e}") from e

    @field_validator("instance", mode="before")
    @classmethod
    def _instance_at_least_one(cls, value: Any) -> int:
        if value is None or value == "":
            return 1
        return max(int(value), 1)

    @field_validator("frequency", mode="before")
    @classmethod
    def _frequency_non_negative(cls, value: Any) -> int:
        if value is None or value == "":
            return 0
        return max(int(value), 0)

    @field_validator("priority", mode="before")
    @classmethod
    def _clamp_priority(cls, value: Any) -> int:
        if value is None or value == "":
            return 0
        return min(max(int(value), 0), 255)

    @field_validator("day_of_month", mode="before")
    @classmethod
    def _month_days(cls, value: Any) -> list[int]:
        return parse_day_list(value, 31)

    @field_validator("day_of_week", mode="before")
    @classmethod
    def _week_days(cls, value: Any) -> list[int]:
        return parse_day_list(value, 7)

    @field_validator(
        "next_run", "last_run", "last_success", "last_error", "registered", "updated",
        mode="before",
    )
    @classmethod
    def _timestamps(cls, value: Any) -> datetime | None:
        if value is None or isinstance(value, (str, datetime)):
            return from_db(value)
        return value

    @field_validator("message", mode="before")
    @classmethod
    def _blank_message(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _one_time_not_system(self) -> TaskInstance:
        if self.frequency == 0 and self.system:
            raise ValueError("one-time instances (frequency 0) cannot be system instances")
        return self

    @property
    def key(self) -> InstanceKey:
        return InstanceKey(self.task, self.arguments, self.instance)

    @property
    def one_time(self) -> bool:
        return self.frequency == 0

    def day_of_month_json(self) -> str | None:
        return json.dumps(self.day_of_month) if self.day_of_month else None

    def day_of_week_json(self) -> str | None:
        return json.dumps(self.day_of_week) if self.day_of_week else None


@dataclass(frozen=True)
class ClaimedInstance:
    """A row claimed by the selector, in execution order."""

    key: InstanceKey
    score: float
    next_run: datetime
    frequency: int
    priority: int
    message: str | None = None


__all__ = [
    "ClaimToken",
    "ClaimedInstance",
    "INSTANCE_PLACEHOLDER",
    "InstanceKey",
    "InstanceStatus",
    "TaskDefinition",
    "TaskInstance",
    "canonical_json",
]
