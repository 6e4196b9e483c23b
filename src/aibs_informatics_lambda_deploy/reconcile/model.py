"""Reconciliation models.

Defines the immutable deployment descriptor, the binding operations computed by
the diff and the per-region results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from aibs_informatics_core.models.base import (
    BooleanField,
    EnumField,
    ListField,
    RawField,
    SchemaModel,
    StringField,
    custom_field,
)

from aibs_informatics_lambda_deploy.common.config import DeployConfig
from aibs_informatics_lambda_deploy.desired_state.model import EventSourceBinding


@dataclass(frozen=True)
class VpcConfig:
    subnet_ids: List[str] = field(default_factory=list)
    security_group_ids: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeploymentDescriptor:
    """Everything needed to create or update the function. Built once per deploy.

    The same artifact bytes are shipped to every region.
    """

    function_name: str
    runtime: str
    handler: str
    role: str
    artifact: bytes = field(repr=False)
    memory_size: int = 128
    timeout: int = 3
    description: str = ""
    publish: bool = False
    vpc_config: Optional[VpcConfig] = None
    dead_letter_target_arn: Optional[str] = None
    tracing_mode: Optional[str] = None
    environment_variables: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_config(
        cls, config: DeployConfig, artifact: bytes, environment_variables: Dict[str, str]
    ) -> "DeploymentDescriptor":
        vpc_config = None
        if config.vpc_subnets and config.vpc_security_groups:
            vpc_config = VpcConfig(
                subnet_ids=list(config.vpc_subnets),
                security_group_ids=list(config.vpc_security_groups),
            )
        return cls(
            function_name=config.qualified_function_name,
            runtime=config.runtime,
            handler=config.handler,
            role=config.role,
            artifact=artifact,
            memory_size=config.memory_size,
            timeout=config.timeout,
            description=config.description,
            publish=config.publish,
            vpc_config=vpc_config,
            dead_letter_target_arn=config.dead_letter_target_arn,
            tracing_mode=config.tracing_mode,
            environment_variables=dict(environment_variables),
        )

    def configuration_params(self) -> Dict[str, Any]:
        """Parameters shared by CreateFunction and UpdateFunctionConfiguration."""
        params: Dict[str, Any] = {
            "FunctionName": self.function_name,
            "Runtime": self.runtime,
            "Handler": self.handler,
            "Role": self.role,
            "Description": self.description,
            "MemorySize": self.memory_size,
            "Timeout": self.timeout,
            "Environment": {"Variables": dict(self.environment_variables)},
            "VpcConfig": {
                "SubnetIds": list(self.vpc_config.subnet_ids) if self.vpc_config else [],
                "SecurityGroupIds": (
                    list(self.vpc_config.security_group_ids) if self.vpc_config else []
                ),
            },
        }
        if self.dead_letter_target_arn is not None:
            params["DeadLetterConfig"] = {"TargetArn": self.dead_letter_target_arn}
        if self.tracing_mode:
            params["TracingConfig"] = {"Mode": self.tracing_mode}
        return params

    def create_function_params(self) -> Dict[str, Any]:
        return {
            **self.configuration_params(),
            "Code": {"ZipFile": self.artifact},
            "Publish": self.publish,
        }

    def update_code_params(self) -> Dict[str, Any]:
        return {
            "FunctionName": self.function_name,
            "ZipFile": self.artifact,
            "Publish": self.publish,
        }

    def summary(self) -> Dict[str, Any]:
        """Loggable view of the descriptor. The artifact is reduced to its size."""
        summary = self.configuration_params()
        summary["Environment"] = {"Variables": sorted(self.environment_variables)}
        summary["Publish"] = self.publish
        summary["ArtifactSizeBytes"] = len(self.artifact)
        return summary


# ----------------------------------------------------------
# Binding operations
# ----------------------------------------------------------


class BindingAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class CreateBinding:
    binding: EventSourceBinding

    action = BindingAction.CREATE

    @property
    def source_arn(self) -> str:
        return self.binding.source_arn


@dataclass(frozen=True)
class UpdateBinding:
    binding: EventSourceBinding
    remote_id: str

    action = BindingAction.UPDATE

    @property
    def source_arn(self) -> str:
        return self.binding.source_arn


@dataclass(frozen=True)
class DeleteBinding:
    remote_id: str
    source_arn: str

    action = BindingAction.DELETE


BindingOperation = Union[CreateBinding, UpdateBinding, DeleteBinding]


# ----------------------------------------------------------
# Results
# ----------------------------------------------------------


@dataclass
class BindingOutcome(SchemaModel):
    """Result of one event source binding operation.

    Attributes:
        action: Which operation was applied.
        source_arn: Event source of the binding.
        remote_id: UUID of the mapping (known after create, given for update/delete).
        success: Whether the call succeeded.
        response: Raw response of the call, if it succeeded.
        error: Error text, if it failed.
    """

    action: BindingAction = custom_field(mm_field=EnumField(BindingAction))
    source_arn: str = custom_field(mm_field=StringField())
    success: bool = custom_field(mm_field=BooleanField())
    remote_id: Optional[str] = custom_field(default=None, mm_field=StringField())
    response: Optional[Any] = custom_field(default=None, mm_field=RawField(allow_none=True))
    error: Optional[str] = custom_field(default=None, mm_field=StringField())


@dataclass
class ScheduleOutcome(SchemaModel):
    """Result of one schedule upsert.

    Attributes:
        rule_name: Name of the schedule rule.
        success: Whether the upsert completed.
        skipped: True if not attempted because an earlier upsert failed.
        rule_arn: ARN of the rule, if it was written.
        error: Error text, if it failed.
    """

    rule_name: str = custom_field(mm_field=StringField())
    success: bool = custom_field(mm_field=BooleanField())
    skipped: bool = custom_field(default=False, mm_field=BooleanField())
    rule_arn: Optional[str] = custom_field(default=None, mm_field=StringField())
    error: Optional[str] = custom_field(default=None, mm_field=StringField())


@dataclass
class RegionResult(SchemaModel):
    """Outcome of reconciling a single region.

    Attributes:
        region: The region.
        created_or_updated: Whether the function was created or updated.
        function_arn: ARN of the function in this region.
        event_source_outcomes: One outcome per binding operation.
        schedule_outcomes: One outcome per declared schedule, in declared order.
        error: Set if the region failed before any binding work.
    """

    region: str = custom_field(mm_field=StringField())
    created_or_updated: bool = custom_field(default=False, mm_field=BooleanField())
    function_arn: Optional[str] = custom_field(default=None, mm_field=StringField())
    event_source_outcomes: List[BindingOutcome] = custom_field(
        default_factory=list, mm_field=ListField(BindingOutcome.as_mm_field())
    )
    schedule_outcomes: List[ScheduleOutcome] = custom_field(
        default_factory=list, mm_field=ListField(ScheduleOutcome.as_mm_field())
    )
    error: Optional[str] = custom_field(default=None, mm_field=StringField())

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def has_changes(self) -> bool:
        return self.created_or_updated or bool(
            self.event_source_outcomes or self.schedule_outcomes
        )

    def count(self, action: BindingAction) -> int:
        return sum(1 for outcome in self.event_source_outcomes if outcome.action == action)
