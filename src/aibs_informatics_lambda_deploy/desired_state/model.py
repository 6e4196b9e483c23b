"""Desired-state models.

Event source bindings and schedule bindings as declared locally. Both accept
the PascalCase keys of the event source document as well as snake_case keys.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import marshmallow as mm
from aibs_informatics_core.models.base import (
    BooleanField,
    EnumField,
    IntegerField,
    ListField,
    RawField,
    SchemaModel,
    StringField,
    custom_field,
)

DEFAULT_BATCH_SIZE = 100

# ARN service segments whose mappings take a starting position
STREAM_SOURCE_SERVICES = ("kinesis", "kafka")


class StartingPosition(str, Enum):
    LATEST = "LATEST"
    TRIM_HORIZON = "TRIM_HORIZON"


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


@dataclass
class EventSourceBinding(SchemaModel):
    """Subscription of an event source (queue or stream) to the function.

    Attributes:
        source_arn: ARN of the event source. Identity key of the binding.
        enabled: Whether the mapping is active.
        batch_size: Maximum records per invocation.
        starting_position: Stream position to start reading from.
        remote_id: UUID of the mapping on the remote side, if it exists there.
    """

    source_arn: str = custom_field(mm_field=StringField())
    enabled: bool = custom_field(default=False, mm_field=BooleanField())
    batch_size: int = custom_field(default=DEFAULT_BATCH_SIZE, mm_field=IntegerField())
    starting_position: StartingPosition = custom_field(
        default=StartingPosition.LATEST, mm_field=EnumField(StartingPosition)
    )
    remote_id: Optional[str] = custom_field(default=None, mm_field=StringField())

    @property
    def is_stream_source(self) -> bool:
        # arn:<partition>:<service>:<region>:<account>:<resource>
        parts = self.source_arn.split(":", 5)
        if len(parts) < 6 or parts[0] != "arn":
            return False
        service, resource = parts[2], parts[5]
        return service in STREAM_SOURCE_SERVICES or (
            service == "dynamodb" and "/stream/" in resource
        )

    @classmethod
    @mm.pre_load
    def _parse_fields(cls, data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        parsed: Dict[str, Any] = {"source_arn": _pick(data, "source_arn", "EventSourceArn")}
        enabled = _pick(data, "enabled", "Enabled")
        if enabled is not None:
            parsed["enabled"] = enabled
        batch_size = _pick(data, "batch_size", "BatchSize")
        if batch_size is not None:
            parsed["batch_size"] = batch_size
        starting_position = _pick(data, "starting_position", "StartingPosition")
        if starting_position:
            parsed["starting_position"] = str(starting_position).upper()
        remote_id = _pick(data, "remote_id", "UUID")
        if remote_id is not None:
            parsed["remote_id"] = remote_id
        return parsed


@dataclass
class ScheduleBinding(SchemaModel):
    """Time based rule invoking the function.

    Attributes:
        rule_name: Name of the schedule rule. Upserted by name.
        schedule_expression: `rate(...)` or `cron(...)` expression.
        enabled: Whether the rule is enabled.
        target_input: Optional constant JSON passed to the function.
        description: Optional rule description.
    """

    rule_name: str = custom_field(mm_field=StringField())
    schedule_expression: str = custom_field(mm_field=StringField())
    enabled: bool = custom_field(default=False, mm_field=BooleanField())
    target_input: Optional[Any] = custom_field(default=None, mm_field=RawField(allow_none=True))
    description: Optional[str] = custom_field(default=None, mm_field=StringField())

    @property
    def state(self) -> str:
        return "ENABLED" if self.enabled else "DISABLED"

    @classmethod
    @mm.pre_load
    def _parse_fields(cls, data: Dict[str, Any], **kwargs) -> Dict[str, Any]:
        parsed: Dict[str, Any] = {
            "rule_name": _pick(data, "rule_name", "ScheduleName"),
            "schedule_expression": _pick(data, "schedule_expression", "ScheduleExpression"),
        }
        enabled = _pick(data, "enabled", "Enabled")
        state = _pick(data, "ScheduleState")
        if enabled is not None:
            parsed["enabled"] = enabled
        elif state is not None:
            parsed["enabled"] = str(state).upper() == "ENABLED"
        target_input = _pick(data, "target_input", "Input")
        if target_input is not None:
            parsed["target_input"] = target_input
        description = _pick(data, "description", "ScheduleDescription")
        if description is not None:
            parsed["description"] = description
        return parsed


@dataclass
class DesiredState(SchemaModel):
    event_source_bindings: List[EventSourceBinding] = custom_field(
        default_factory=list, mm_field=ListField(EventSourceBinding.as_mm_field())
    )
    schedule_bindings: List[ScheduleBinding] = custom_field(
        default_factory=list, mm_field=ListField(ScheduleBinding.as_mm_field())
    )

    @property
    def is_empty(self) -> bool:
        return not self.event_source_bindings and not self.schedule_bindings
