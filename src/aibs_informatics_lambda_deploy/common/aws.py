"""Per-region AWS client context.

Every region gets its own immutable `RegionContext` and its own boto3 session,
so concurrently deploying regions never share mutable client configuration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.client import BaseClient
from botocore.config import Config

from aibs_informatics_lambda_deploy.common.config import DeployConfig
from aibs_informatics_lambda_deploy.common.logging import get_service_logger

logger = get_service_logger(__name__)


@dataclass(frozen=True)
class AwsCredentials:
    """Credentials forwarded to boto3.

    A named profile takes precedence over an explicit key pair. When neither is
    given, boto3's default credential chain applies.
    """

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    profile: Optional[str] = None

    def session_kwargs(self) -> Dict[str, Any]:
        if self.profile:
            return {"profile_name": self.profile}
        kwargs: Dict[str, Any] = {}
        if self.access_key_id and self.secret_access_key:
            kwargs["aws_access_key_id"] = self.access_key_id
            kwargs["aws_secret_access_key"] = self.secret_access_key
        if self.session_token:
            kwargs["aws_session_token"] = self.session_token
        return kwargs


@dataclass(frozen=True)
class ClientSettings:
    """HTTP settings applied to every client of a region.

    Attributes:
        timeout_ms: Per-request connect/read timeout in milliseconds.
        proxy: HTTPS proxy endpoint.
        max_attempts: Total attempts allowed by botocore's standard retry mode.
    """

    timeout_ms: Optional[int] = None
    proxy: Optional[str] = None
    max_attempts: int = 5

    def to_botocore_config(self) -> Config:
        kwargs: Dict[str, Any] = {
            "retries": {"max_attempts": self.max_attempts, "mode": "standard"},
        }
        if self.timeout_ms:
            kwargs["connect_timeout"] = self.timeout_ms / 1000
            kwargs["read_timeout"] = self.timeout_ms / 1000
        if self.proxy:
            kwargs["proxies"] = {"https": self.proxy, "http": self.proxy}
        return Config(**kwargs)


@dataclass(frozen=True)
class RegionContext:
    region: str
    credentials: AwsCredentials = field(default_factory=AwsCredentials)
    settings: ClientSettings = field(default_factory=ClientSettings)

    def create_session(self) -> boto3.Session:
        return boto3.Session(region_name=self.region, **self.credentials.session_kwargs())

    def create_client(self, service: str, session: Optional[boto3.Session] = None) -> BaseClient:
        session = session or self.create_session()
        client = session.client(service, config=self.settings.to_botocore_config())
        client.meta.events.register(f"needs-retry.{service}", self._log_retry)
        return client

    def _log_retry(
        self, attempts: int = 0, operation=None, response=None, caught_exception=None, **kwargs
    ):
        # Only observes; the retry decision stays with botocore's handler.
        reason = None
        if caught_exception is not None:
            reason = str(caught_exception)
        elif response is not None:
            http_response, parsed = response
            if http_response.status_code >= 500 or http_response.status_code == 429:
                reason = parsed.get("Error", {}).get("Message") or str(http_response.status_code)
        if reason:
            operation_name = getattr(operation, "name", "unknown")
            logger.warning(
                f"{operation_name} attempt {attempts} failed: {reason}. "
                "Retrying if the retry policy allows.",
                extra={"region": self.region},
            )
        return None

    @classmethod
    def from_config(cls, config: DeployConfig) -> List["RegionContext"]:
        credentials = AwsCredentials(
            access_key_id=config.access_key_id,
            secret_access_key=config.secret_access_key,
            session_token=config.session_token,
            profile=config.profile,
        )
        settings = ClientSettings(
            timeout_ms=config.deploy_timeout,
            proxy=config.proxy,
            max_attempts=config.max_attempts,
        )
        return [
            cls(region=region, credentials=credentials, settings=settings)
            for region in config.regions
        ]
