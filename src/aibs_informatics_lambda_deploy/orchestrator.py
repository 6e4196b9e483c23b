"""Multi-region deployment.

Builds the artifact once and reconciles every configured region concurrently.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Callable, List

from aibs_informatics_lambda_deploy.artifact.builder import ArtifactBuilder
from aibs_informatics_lambda_deploy.common.aws import RegionContext
from aibs_informatics_lambda_deploy.common.config import DeployConfig
from aibs_informatics_lambda_deploy.common.logging import LoggingMixins
from aibs_informatics_lambda_deploy.desired_state.loader import load_desired_state
from aibs_informatics_lambda_deploy.desired_state.model import DesiredState
from aibs_informatics_lambda_deploy.reconcile.client import LambdaPlatformClient
from aibs_informatics_lambda_deploy.reconcile.model import DeploymentDescriptor, RegionResult
from aibs_informatics_lambda_deploy.reconcile.reconciler import RegionReconciler

ClientFactory = Callable[[RegionContext], LambdaPlatformClient]


@dataclass
class DeployOrchestrator(LoggingMixins):
    """Fans a deployment out to all regions.

    Every region runs to completion regardless of the others. The result list holds
    exactly one entry per region, in region order.
    """

    contexts: List[RegionContext]
    descriptor: DeploymentDescriptor
    desired: DesiredState
    client_factory: ClientFactory = field(default=LambdaPlatformClient.from_context)

    async def deploy(self) -> List[RegionResult]:
        outcomes = await asyncio.gather(
            *[self.deploy_region(context) for context in self.contexts],
            return_exceptions=True,
        )
        results: List[RegionResult] = []
        for context, outcome in zip(self.contexts, outcomes):
            if isinstance(outcome, RegionResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            self.logger.error(
                f"Deployment to {context.region} failed unexpectedly: {outcome}",
                exc_info=outcome,
                extra={"region": context.region},
            )
            results.append(RegionResult(region=context.region, error=str(outcome)))
        self.report_results(results)
        return results

    async def deploy_region(self, context: RegionContext) -> RegionResult:
        self.logger.info(f"Deploying {self.descriptor.function_name} to {context.region}")
        reconciler = RegionReconciler(
            context=context,
            descriptor=self.descriptor,
            desired=self.desired,
            client=self.client_factory(context),
        )
        return await reconciler.reconcile()

    def report_results(self, results: List[RegionResult]) -> None:
        for result in results:
            if result.failed:
                self.logger.error(
                    f"Region {result.region} failed: {result.error}",
                    extra={"region": result.region},
                )
        if not any(result.has_changes for result in results):
            self.logger.debug("No changes were made in any region")
            return
        self.logger.info(
            "Deployment results:\n"
            + json.dumps([result.to_dict() for result in results], indent=2)
        )


async def deploy_async(config: DeployConfig) -> List[RegionResult]:
    config.validate()
    desired = load_desired_state(config.event_source_file)
    artifact = await ArtifactBuilder.from_config(config).build()
    descriptor = DeploymentDescriptor.from_config(
        config, artifact, config.load_environment_variables()
    )
    orchestrator = DeployOrchestrator(
        contexts=RegionContext.from_config(config),
        descriptor=descriptor,
        desired=desired,
    )
    return await orchestrator.deploy()


def deploy(config: DeployConfig) -> List[RegionResult]:
    """Validate, build once and deploy the function to every configured region.

    Args:
        config (DeployConfig): The deployment configuration.

    Raises:
        DeployValidationError: If the configuration is invalid.
        DesiredStateError: If the event source document cannot be loaded.
        ArtifactBuildError: If the artifact cannot be built.

    Returns:
        List[RegionResult]: One result per region, in region order. Region failures
            are reported here rather than raised.
    """
    return asyncio.run(deploy_async(config))
