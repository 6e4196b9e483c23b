"""Lambda context used when running a handler locally."""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.utilities.typing import LambdaContext
from aws_lambda_powertools.utilities.typing.lambda_client_context import LambdaClientContext
from aws_lambda_powertools.utilities.typing.lambda_cognito_identity import LambdaCognitoIdentity

from aibs_informatics_lambda_deploy.common.config import DEFAULT_REGION

# Local runs are capped at five minutes
MAX_LOCAL_TIMEOUT_SECONDS = 300
LOCAL_ACCOUNT_ID = "000000000000"


@dataclass
class LocalLambdaContext(LambdaContext):
    """Implementation of LambdaContext for running handlers on a workstation.

    Values are read from a context document (the `context.json` of a function
    project) where given and defaulted otherwise.

    Attributes:
        timeout_seconds: Configured function timeout. Capped at 300 seconds.
        callback_waits_for_empty_event_loop: If False, the process exits as soon as
            the handler returns, without waiting for outstanding threads.
    """

    _function_name: str = "local"
    _function_version: str = "$LATEST"
    _invoked_function_arn: str = ""
    _memory_limit_in_mb: int = 128
    _aws_request_id: str = ""
    _log_group_name: str = ""
    _log_stream_name: str = ""
    _identity: LambdaCognitoIdentity = field(default_factory=lambda: LambdaCognitoIdentity())
    _client_context: LambdaClientContext = field(default_factory=lambda: LambdaClientContext())
    timeout_seconds: int = 3
    callback_waits_for_empty_event_loop: bool = True
    _started_at: float = field(default_factory=time.monotonic, repr=False)

    def __post_init__(self):
        if not self._invoked_function_arn:
            region = get_env_var("AWS_REGION", default_value=DEFAULT_REGION)
            self._invoked_function_arn = (
                f"arn:aws:lambda:{region}:{LOCAL_ACCOUNT_ID}:function:{self._function_name}"
            )
        if not self._log_group_name:
            self._log_group_name = f"/aws/lambda/{self._function_name}"

    @property
    def timeout_millis(self) -> int:
        return min(self.timeout_seconds, MAX_LOCAL_TIMEOUT_SECONDS) * 1000

    def get_remaining_time_in_millis(self) -> int:  # type: ignore[override]
        elapsed = int((time.monotonic() - self._started_at) * 1000)
        return self.timeout_millis - elapsed

    @classmethod
    def from_document(
        cls,
        document: Optional[Dict[str, Any]],
        function_name: str = "local",
        timeout_seconds: int = 3,
    ) -> "LocalLambdaContext":
        """Build a context from a context document.

        Recognized keys are `functionName`, `functionVersion`, `invokedFunctionArn`,
        `memoryLimitInMB`, `awsRequestId`, `logGroupName`, `logStreamName` and
        `callbackWaitsForEmptyEventLoop`. Unknown keys are ignored.
        """
        document = document or {}
        return cls(
            _function_name=document.get("functionName") or function_name,
            _function_version=document.get("functionVersion") or "$LATEST",
            _invoked_function_arn=document.get("invokedFunctionArn") or "",
            _memory_limit_in_mb=int(document.get("memoryLimitInMB") or 128),
            _aws_request_id=document.get("awsRequestId") or "",
            _log_group_name=document.get("logGroupName") or "",
            _log_stream_name=document.get("logStreamName") or "",
            timeout_seconds=timeout_seconds,
            callback_waits_for_empty_event_loop=document.get(
                "callbackWaitsForEmptyEventLoop", True
            )
            is not False,
        )
