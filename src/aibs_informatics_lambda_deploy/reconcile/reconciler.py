import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from aibs_informatics_lambda_deploy.common.aws import RegionContext
from aibs_informatics_lambda_deploy.common.exceptions import RegionDeployError
from aibs_informatics_lambda_deploy.common.logging import LoggingMixins
from aibs_informatics_lambda_deploy.desired_state.model import DesiredState, EventSourceBinding
from aibs_informatics_lambda_deploy.reconcile.client import LambdaPlatformClient
from aibs_informatics_lambda_deploy.reconcile.diff import diff_bindings
from aibs_informatics_lambda_deploy.reconcile.model import (
    BindingOperation,
    BindingOutcome,
    CreateBinding,
    DeleteBinding,
    DeploymentDescriptor,
    RegionResult,
    ScheduleOutcome,
    UpdateBinding,
)

AWS_ERRORS = (ClientError, BotoCoreError)

MAPPING_RESPONSE_KEYS = ("UUID", "State", "BatchSize", "EventSourceArn", "FunctionArn")


def summarize_mapping_response(response: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not response:
        return {}
    return {k: response[k] for k in MAPPING_RESPONSE_KEYS if k in response}


@dataclass
class RegionReconciler(LoggingMixins):
    """Brings one region's function, event source mappings and schedules in line
    with the deployment descriptor and desired state.

    The function is created or updated first. Only once that has completed are the
    event source mappings diffed and applied, all concurrently. Schedules are then
    upserted one at a time in declared order, stopping at the first failure.

    Failures while probing, creating, updating or listing fail the whole region and
    are reported on the result. Failures of single binding or schedule operations
    are reported on their outcomes.
    """

    context: RegionContext
    descriptor: DeploymentDescriptor
    desired: DesiredState
    client: LambdaPlatformClient

    @property
    def region(self) -> str:
        return self.context.region

    async def reconcile(self) -> RegionResult:
        result = RegionResult(region=self.region)
        try:
            function_arn, existing = await self.upsert_function()
        except RegionDeployError as e:
            self.logger.error(str(e), extra={"region": self.region})
            result.error = str(e)
            return result

        result.created_or_updated = True
        result.function_arn = function_arn

        operations = diff_bindings(self.desired.event_source_bindings, existing)
        result.event_source_outcomes = await self.apply_binding_operations(operations)
        result.schedule_outcomes = await self.apply_schedules(function_arn)
        return result

    # --------------------------------------------------------------------
    # Function
    # --------------------------------------------------------------------

    async def upsert_function(self) -> Tuple[str, List[EventSourceBinding]]:
        """Create or update the function.

        Raises:
            RegionDeployError: If any of the probe, create, update or list calls fail.

        Returns:
            The function ARN and the bindings that existed before this run.
        """
        function_name = self.descriptor.function_name
        try:
            current = await self.client.get_function(function_name)
        except AWS_ERRORS as e:
            raise RegionDeployError(self.region, "GetFunction", str(e)) from e

        if current is None:
            return await self.create_function(), []
        return await self.update_function()

    async def create_function(self) -> str:
        self.logger.info(
            f"Creating function {self.descriptor.function_name}",
            extra={"region": self.region, "descriptor": self.descriptor.summary()},
        )
        try:
            response = await self.client.create_function(self.descriptor)
        except AWS_ERRORS as e:
            raise RegionDeployError(self.region, "CreateFunction", str(e)) from e
        return response["FunctionArn"]

    async def update_function(self) -> Tuple[str, List[EventSourceBinding]]:
        function_name = self.descriptor.function_name
        self.logger.info(
            f"Updating function {function_name}",
            extra={"region": self.region, "descriptor": self.descriptor.summary()},
        )
        update_result, list_result = await asyncio.gather(
            self.client.update_function(self.descriptor),
            self.client.list_event_source_mappings(function_name),
            return_exceptions=True,
        )
        if isinstance(update_result, BaseException):
            raise RegionDeployError(
                self.region, "UpdateFunction", str(update_result)
            ) from update_result
        if isinstance(list_result, BaseException):
            raise RegionDeployError(
                self.region, "ListEventSourceMappings", str(list_result)
            ) from list_result
        return update_result["FunctionArn"], list_result

    # --------------------------------------------------------------------
    # Event source bindings
    # --------------------------------------------------------------------

    async def apply_binding_operations(
        self, operations: List[BindingOperation]
    ) -> List[BindingOutcome]:
        if not operations:
            return []
        self.logger.info(
            f"Applying {len(operations)} event source mapping operation(s)",
            extra={"region": self.region},
        )
        return list(await asyncio.gather(*[self.apply_binding(op) for op in operations]))

    async def apply_binding(self, operation: BindingOperation) -> BindingOutcome:
        function_name = self.descriptor.function_name
        remote_id = getattr(operation, "remote_id", None)
        try:
            if isinstance(operation, CreateBinding):
                response = await self.client.create_event_source_mapping(
                    function_name, operation.binding
                )
                remote_id = response.get("UUID")
            elif isinstance(operation, UpdateBinding):
                response = await self.client.update_event_source_mapping(
                    function_name, operation.binding, operation.remote_id
                )
            elif isinstance(operation, DeleteBinding):
                response = await self.client.delete_event_source_mapping(operation.remote_id)
            else:
                raise TypeError(f"Unknown binding operation {operation!r}")
        except AWS_ERRORS as e:
            self.logger.error(
                f"{operation.action.value} of event source mapping for "
                f"{operation.source_arn} failed: {e}",
                extra={"region": self.region},
            )
            return BindingOutcome(
                action=operation.action,
                source_arn=operation.source_arn,
                success=False,
                remote_id=remote_id,
                error=str(e),
            )
        return BindingOutcome(
            action=operation.action,
            source_arn=operation.source_arn,
            success=True,
            remote_id=remote_id,
            response=summarize_mapping_response(response),
        )

    # --------------------------------------------------------------------
    # Schedules
    # --------------------------------------------------------------------

    async def apply_schedules(self, function_arn: str) -> List[ScheduleOutcome]:
        outcomes: List[ScheduleOutcome] = []
        halted = False
        for schedule in self.desired.schedule_bindings:
            if halted:
                outcomes.append(
                    ScheduleOutcome(rule_name=schedule.rule_name, success=False, skipped=True)
                )
                continue
            try:
                rule_arn = await self.client.put_schedule(function_arn, schedule)
            except AWS_ERRORS as e:
                self.logger.error(
                    f"Schedule {schedule.rule_name} failed: {e}. "
                    "Remaining schedules will not be applied.",
                    extra={"region": self.region},
                )
                outcomes.append(
                    ScheduleOutcome(rule_name=schedule.rule_name, success=False, error=str(e))
                )
                halted = True
                continue
            outcomes.append(
                ScheduleOutcome(rule_name=schedule.rule_name, success=True, rule_arn=rule_arn)
            )
        return outcomes
