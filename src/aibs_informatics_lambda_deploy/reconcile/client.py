"""Asynchronous access to the Lambda and EventBridge APIs of one region.

boto3 is synchronous, so every call runs in a worker thread through
`asyncio.to_thread` and the calling task is suspended until it completes.
Transient failures are retried by botocore's retry policy.
"""

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from botocore.exceptions import ClientError

from aibs_informatics_lambda_deploy.common.aws import RegionContext
from aibs_informatics_lambda_deploy.common.logging import get_service_logger
from aibs_informatics_lambda_deploy.desired_state.model import EventSourceBinding, ScheduleBinding
from aibs_informatics_lambda_deploy.reconcile.model import DeploymentDescriptor

if TYPE_CHECKING:  # pragma: no cover
    from mypy_boto3_events import EventBridgeClient
    from mypy_boto3_lambda import LambdaClient
else:
    EventBridgeClient = object
    LambdaClient = object

logger = get_service_logger(__name__)

EVENTS_PRINCIPAL = "events.amazonaws.com"
ENABLED_MAPPING_STATES = ("Enabled", "Enabling", "Updating", "Creating")


def get_error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class LambdaPlatformClient:
    """Lambda and EventBridge operations used by the reconciler, bound to one region."""

    def __init__(
        self, region: str, lambda_client: LambdaClient, events_client: EventBridgeClient
    ):
        self.region = region
        self.lambda_client = lambda_client
        self.events_client = events_client

    @classmethod
    def from_context(cls, context: RegionContext) -> "LambdaPlatformClient":
        session = context.create_session()
        return cls(
            region=context.region,
            lambda_client=context.create_client("lambda", session=session),
            events_client=context.create_client("events", session=session),
        )

    # --------------------------------------------------------------------
    # Functions
    # --------------------------------------------------------------------

    async def get_function(self, function_name: str) -> Optional[Dict[str, Any]]:
        """Fetch the function, or None if it does not exist."""
        try:
            return await asyncio.to_thread(
                self.lambda_client.get_function, FunctionName=function_name
            )
        except ClientError as e:
            if get_error_code(e) == "ResourceNotFoundException":
                return None
            raise

    async def create_function(self, descriptor: DeploymentDescriptor) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self.lambda_client.create_function, **descriptor.create_function_params()
        )

    async def update_function(self, descriptor: DeploymentDescriptor) -> Dict[str, Any]:
        """Update the function's code, then its configuration.

        The configuration update only starts once the code update has settled.

        Returns:
            The UpdateFunctionConfiguration response.
        """
        await asyncio.to_thread(
            self.lambda_client.update_function_code, **descriptor.update_code_params()
        )
        await self.wait_until_updated(descriptor.function_name)
        return await asyncio.to_thread(
            self.lambda_client.update_function_configuration,
            **descriptor.configuration_params(),
        )

    async def wait_until_updated(self, function_name: str) -> None:
        waiter = self.lambda_client.get_waiter("function_updated")
        await asyncio.to_thread(
            waiter.wait, FunctionName=function_name, WaiterConfig={"Delay": 2, "MaxAttempts": 150}
        )

    # --------------------------------------------------------------------
    # Event source mappings
    # --------------------------------------------------------------------

    async def list_event_source_mappings(self, function_name: str) -> List[EventSourceBinding]:
        def _list() -> List[EventSourceBinding]:
            paginator = self.lambda_client.get_paginator("list_event_source_mappings")
            bindings = []
            for page in paginator.paginate(FunctionName=function_name):
                for mapping in page.get("EventSourceMappings", []):
                    bindings.append(
                        EventSourceBinding(
                            source_arn=mapping["EventSourceArn"],
                            enabled=mapping.get("State") in ENABLED_MAPPING_STATES,
                            batch_size=mapping.get("BatchSize", 0),
                            remote_id=mapping["UUID"],
                        )
                    )
            return bindings

        return await asyncio.to_thread(_list)

    async def create_event_source_mapping(
        self, function_name: str, binding: EventSourceBinding
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "FunctionName": function_name,
            "EventSourceArn": binding.source_arn,
            "Enabled": binding.enabled,
            "BatchSize": binding.batch_size,
        }
        # Queue sources reject a starting position
        if binding.is_stream_source:
            params["StartingPosition"] = binding.starting_position.value
        return await asyncio.to_thread(self.lambda_client.create_event_source_mapping, **params)

    async def update_event_source_mapping(
        self, function_name: str, binding: EventSourceBinding, remote_id: str
    ) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self.lambda_client.update_event_source_mapping,
            UUID=remote_id,
            FunctionName=function_name,
            Enabled=binding.enabled,
            BatchSize=binding.batch_size,
        )

    async def delete_event_source_mapping(self, remote_id: str) -> Dict[str, Any]:
        return await asyncio.to_thread(
            self.lambda_client.delete_event_source_mapping, UUID=remote_id
        )

    # --------------------------------------------------------------------
    # Schedules
    # --------------------------------------------------------------------

    async def put_schedule(self, function_arn: str, schedule: ScheduleBinding) -> str:
        """Create or update the schedule rule, allow it to invoke the function and target it.

        Returns:
            The rule ARN.
        """
        return await asyncio.to_thread(self._put_schedule, function_arn, schedule)

    def _put_schedule(self, function_arn: str, schedule: ScheduleBinding) -> str:
        rule_params: Dict[str, Any] = {
            "Name": schedule.rule_name,
            "ScheduleExpression": schedule.schedule_expression,
            "State": schedule.state,
        }
        if schedule.description:
            rule_params["Description"] = schedule.description
        rule_arn = self.events_client.put_rule(**rule_params)["RuleArn"]

        try:
            self.lambda_client.add_permission(
                FunctionName=function_arn,
                StatementId=schedule.rule_name,
                Action="lambda:InvokeFunction",
                Principal=EVENTS_PRINCIPAL,
                SourceArn=rule_arn,
            )
        except ClientError as e:
            if get_error_code(e) != "ResourceConflictException":
                raise
            logger.debug(f"Permission {schedule.rule_name} already exists on {function_arn}")

        target: Dict[str, Any] = {"Id": schedule.rule_name, "Arn": function_arn}
        if schedule.target_input is not None:
            target["Input"] = (
                schedule.target_input
                if isinstance(schedule.target_input, str)
                else json.dumps(schedule.target_input)
            )
        self.events_client.put_targets(Rule=schedule.rule_name, Targets=[target])
        return rule_arn
