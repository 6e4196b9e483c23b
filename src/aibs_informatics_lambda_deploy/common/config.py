"""Deployment configuration.

The configuration surface is resolved from environment variables (optionally
overridden by the command line) into a single `DeployConfig` model.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from aibs_informatics_core.models.base import (
    BooleanField,
    IntegerField,
    ListField,
    PathField,
    SchemaModel,
    StringField,
    custom_field,
)
from aibs_informatics_core.utils.os_operations import get_env_var
from dotenv import dotenv_values

from aibs_informatics_lambda_deploy.common.exceptions import DeployValidationError

SUPPORTED_RUNTIMES = (
    "python3.9",
    "python3.10",
    "python3.11",
    "python3.12",
    "python3.13",
)

DEFAULT_RUNTIME = "python3.12"
DEFAULT_HANDLER = "lambda_function.lambda_handler"
DEFAULT_REGION = "us-east-1"
DEFAULT_CODE_DIRECTORY = ".lambda"
DEFAULT_PACKAGE_DIRECTORY = "build"
DEFAULT_MAX_ATTEMPTS = 5

# Lambda function names only allow letters, digits, hyphens and underscores
INVALID_FUNCTION_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")

TRUE_VALUES = ("1", "true", "yes", "on")


def split_list(value: Optional[str], sep: str = ",") -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(sep) if item.strip()]


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in TRUE_VALUES


def parse_int(key: str, value: Optional[str], default: Optional[int]) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise DeployValidationError(f"{key} must be an integer, got {value!r}")


def sanitize_function_name(name: str) -> str:
    return INVALID_FUNCTION_NAME_CHARS.sub("_", name)


@dataclass
class DeployConfig(SchemaModel):
    """Configuration for building, packaging and deploying a Lambda function.

    Attributes:
        function_name: Base name of the function.
        environment: Optional environment suffix (e.g. "dev", "prod").
        function_version: Optional version suffix appended after the environment.
        handler: Handler reference, "<module>.<function>".
        runtime: Lambda runtime identifier. Must be one of `SUPPORTED_RUNTIMES`.
        role: IAM role ARN assumed by the function.
        regions: Regions to deploy to.
        config_file: dotenv file holding the function's environment variables.
        event_source_file: Desired-state document of event sources and schedules.
        deploy_timeout: Per-request HTTP timeout for AWS calls in milliseconds.
    """

    function_name: str = custom_field(mm_field=StringField())
    environment: str = custom_field(default="", mm_field=StringField())
    function_version: str = custom_field(default="", mm_field=StringField())
    handler: str = custom_field(default=DEFAULT_HANDLER, mm_field=StringField())
    runtime: str = custom_field(default=DEFAULT_RUNTIME, mm_field=StringField())
    role: str = custom_field(default="", mm_field=StringField())
    memory_size: int = custom_field(default=128, mm_field=IntegerField())
    timeout: int = custom_field(default=3, mm_field=IntegerField())
    description: str = custom_field(default="", mm_field=StringField())
    publish: bool = custom_field(default=False, mm_field=BooleanField())
    vpc_subnets: List[str] = custom_field(default_factory=list, mm_field=ListField(StringField()))
    vpc_security_groups: List[str] = custom_field(
        default_factory=list, mm_field=ListField(StringField())
    )
    dead_letter_target_arn: Optional[str] = custom_field(default=None, mm_field=StringField())
    tracing_mode: Optional[str] = custom_field(default=None, mm_field=StringField())
    regions: List[str] = custom_field(
        default_factory=lambda: [DEFAULT_REGION], mm_field=ListField(StringField())
    )
    access_key_id: Optional[str] = custom_field(default=None, mm_field=StringField())
    secret_access_key: Optional[str] = custom_field(default=None, mm_field=StringField())
    session_token: Optional[str] = custom_field(default=None, mm_field=StringField())
    profile: Optional[str] = custom_field(default=None, mm_field=StringField())
    deploy_timeout: Optional[int] = custom_field(default=None, mm_field=IntegerField())
    max_attempts: int = custom_field(default=DEFAULT_MAX_ATTEMPTS, mm_field=IntegerField())
    proxy: Optional[str] = custom_field(default=None, mm_field=StringField())
    docker_image: Optional[str] = custom_field(default=None, mm_field=StringField())
    exclude_globs: List[str] = custom_field(
        default_factory=list, mm_field=ListField(StringField())
    )
    config_file: Optional[Path] = custom_field(default=None, mm_field=PathField())
    event_source_file: Optional[Path] = custom_field(default=None, mm_field=PathField())
    source_directory: Path = custom_field(default=Path("."), mm_field=PathField())
    prebuilt_directory: Optional[Path] = custom_field(default=None, mm_field=PathField())
    deploy_zipfile: Optional[Path] = custom_field(default=None, mm_field=PathField())
    package_directory: Path = custom_field(
        default=Path(DEFAULT_PACKAGE_DIRECTORY), mm_field=PathField()
    )
    code_directory: Path = custom_field(
        default=Path(DEFAULT_CODE_DIRECTORY), mm_field=PathField()
    )

    @property
    def qualified_function_name(self) -> str:
        """Remote function name: base name plus environment and version suffixes, sanitized."""
        name = self.function_name
        if self.environment:
            name = f"{name}-{self.environment}"
        if self.function_version:
            name = f"{name}-{self.function_version}"
        return sanitize_function_name(name)

    @property
    def package_basename(self) -> str:
        if self.environment:
            return f"{self.function_name}-{self.environment}"
        return self.function_name

    def validate(self, require_role: bool = True) -> None:
        """Check the configuration before any process or remote call is made.

        Args:
            require_role (bool): Whether an IAM role is required (deploys only).

        Raises:
            DeployValidationError: If any value is missing or unsupported.
        """
        if self.runtime not in SUPPORTED_RUNTIMES:
            raise DeployValidationError(
                f"Runtime [{self.runtime}] is not supported. "
                f"Supported runtimes: {', '.join(SUPPORTED_RUNTIMES)}"
            )
        if not self.function_name:
            raise DeployValidationError("A function name must be provided")
        if not self.handler or "." not in self.handler:
            raise DeployValidationError(
                f"Handler [{self.handler}] must be of the form <module>.<function>"
            )
        if require_role and not self.role:
            raise DeployValidationError("An IAM role ARN must be provided to deploy")
        if not self.regions:
            raise DeployValidationError("At least one region must be provided")
        if bool(self.vpc_subnets) != bool(self.vpc_security_groups):
            raise DeployValidationError(
                "VPC subnets and security groups must be provided together"
            )
        if self.config_file is not None and not self.config_file.is_file():
            raise DeployValidationError(f"Config file {self.config_file} does not exist")
        if self.prebuilt_directory is not None and not self.prebuilt_directory.is_dir():
            raise DeployValidationError(
                f"Prebuilt directory {self.prebuilt_directory} is not a directory"
            )
        if self.prebuilt_directory is None and not self.source_directory.is_dir():
            raise DeployValidationError(
                f"Source directory {self.source_directory} is not a directory"
            )
        # The code directory is emptied before every build
        code_directory = self.code_directory.resolve()
        for input_directory in (self.source_directory, self.prebuilt_directory):
            if input_directory is None:
                continue
            if input_directory.resolve().is_relative_to(code_directory):
                raise DeployValidationError(
                    f"Code directory {self.code_directory} must not be {input_directory} "
                    "or one of its parent directories"
                )

    def load_environment_variables(self) -> Dict[str, str]:
        """Read the function's environment variables from the dotenv config file.

        Returns:
            The parsed variables. Empty if no config file is configured.
        """
        if self.config_file is None:
            return {}
        return {k: v or "" for k, v in dotenv_values(self.config_file).items()}

    @classmethod
    def from_env(cls) -> "DeployConfig":
        """Resolve a configuration from environment variables.

        Returns:
            A DeployConfig populated from the process environment.
        """

        def optional_path(key: str) -> Optional[Path]:
            value = get_env_var(key)
            return Path(value) if value else None

        regions = split_list(get_env_var("AWS_REGIONS") or get_env_var("AWS_REGION"))

        return cls(
            function_name=get_env_var("AWS_FUNCTION_NAME") or Path.cwd().name,
            environment=get_env_var("AWS_ENVIRONMENT") or "",
            function_version=get_env_var("AWS_FUNCTION_VERSION") or "",
            handler=get_env_var("AWS_HANDLER") or DEFAULT_HANDLER,
            runtime=get_env_var("AWS_RUNTIME") or DEFAULT_RUNTIME,
            role=get_env_var("AWS_ROLE_ARN") or "",
            memory_size=parse_int("AWS_MEMORY_SIZE", get_env_var("AWS_MEMORY_SIZE"), 128),
            timeout=parse_int("AWS_TIMEOUT", get_env_var("AWS_TIMEOUT"), 3),
            description=get_env_var("AWS_DESCRIPTION") or "",
            publish=parse_bool(get_env_var("AWS_PUBLISH")),
            vpc_subnets=split_list(get_env_var("AWS_VPC_SUBNETS")),
            vpc_security_groups=split_list(get_env_var("AWS_VPC_SECURITY_GROUPS")),
            dead_letter_target_arn=get_env_var("AWS_DLQ_TARGET_ARN") or None,
            tracing_mode=get_env_var("AWS_TRACING_CONFIG") or None,
            regions=regions or [DEFAULT_REGION],
            access_key_id=get_env_var("AWS_ACCESS_KEY_ID") or None,
            secret_access_key=get_env_var("AWS_SECRET_ACCESS_KEY") or None,
            session_token=get_env_var("AWS_SESSION_TOKEN") or None,
            profile=get_env_var("AWS_PROFILE") or None,
            deploy_timeout=parse_int(
                "AWS_DEPLOY_TIMEOUT", get_env_var("AWS_DEPLOY_TIMEOUT"), None
            ),
            max_attempts=parse_int(
                "AWS_DEPLOY_MAX_ATTEMPTS",
                get_env_var("AWS_DEPLOY_MAX_ATTEMPTS"),
                DEFAULT_MAX_ATTEMPTS,
            ),
            proxy=get_env_var("HTTPS_PROXY") or None,
            docker_image=get_env_var("DOCKER_IMAGE") or None,
            exclude_globs=split_list(get_env_var("EXCLUDE_GLOBS"), sep=" "),
            config_file=optional_path("CONFIG_FILE"),
            event_source_file=optional_path("EVENT_SOURCE_FILE"),
            source_directory=optional_path("SRC_DIRECTORY") or Path("."),
            prebuilt_directory=optional_path("PREBUILT_DIRECTORY"),
            deploy_zipfile=optional_path("DEPLOY_ZIPFILE"),
            package_directory=optional_path("PACKAGE_DIRECTORY")
            or Path(DEFAULT_PACKAGE_DIRECTORY),
        )
