"""Exceptions raised by the deployment toolchain.

Validation and build errors halt a deploy before any region is touched.
Region errors are captured into the region's result by the reconciler.
"""

from typing import Optional

from aibs_informatics_core.exceptions import ApplicationException


class DeployError(ApplicationException):
    """Base class for all deployment errors."""


class DeployValidationError(DeployError):
    """Configuration is invalid. Raised before any process or remote call."""


class DesiredStateError(DeployError):
    """The desired-state (event source) document could not be loaded."""


class ArtifactBuildError(DeployError):
    """The deployment artifact could not be built.

    Attributes:
        output: Captured stdout/stderr of the failing external process, if any.
    """

    def __init__(self, message: str, output: Optional[str] = None):
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)
        self.output = output


class RegionDeployError(DeployError):
    """A function probe, create or update call failed for a single region."""

    def __init__(self, region: str, stage: str, reason: str):
        super().__init__(f"[{region}] {stage} failed: {reason}")
        self.region = region
        self.stage = stage
        self.reason = reason
