"""Command line entry point.

Usage:
    lambda-deploy deploy --function-name my-function --role arn:aws:iam::...:role/x
    lambda-deploy package --package-directory build
    lambda-deploy run --handler lambda_function.lambda_handler --event-file event.json

Flags override the values resolved from the environment (see `DeployConfig.from_env`).
"""

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from aibs_informatics_lambda_deploy.artifact.builder import package_artifact
from aibs_informatics_lambda_deploy.common.config import DeployConfig, split_list
from aibs_informatics_lambda_deploy.common.exceptions import DeployError
from aibs_informatics_lambda_deploy.common.logging import (
    enable_library_logging,
    get_service_logger,
)
from aibs_informatics_lambda_deploy.invoke.runner import (
    ERROR_EXIT_CODE,
    InvokeRequest,
    run_local,
)
from aibs_informatics_lambda_deploy.orchestrator import deploy

logger = get_service_logger(__name__)

# (flag, DeployConfig attribute, type)
CONFIG_FLAGS = [
    ("--function-name", "function_name", str),
    ("--environment", "environment", str),
    ("--function-version", "function_version", str),
    ("--handler", "handler", str),
    ("--runtime", "runtime", str),
    ("--role", "role", str),
    ("--memory-size", "memory_size", int),
    ("--timeout", "timeout", int),
    ("--description", "description", str),
    ("--dead-letter-target-arn", "dead_letter_target_arn", str),
    ("--tracing-mode", "tracing_mode", str),
    ("--profile", "profile", str),
    ("--deploy-timeout", "deploy_timeout", int),
    ("--docker-image", "docker_image", str),
    ("--config-file", "config_file", Path),
    ("--event-source-file", "event_source_file", Path),
    ("--source-directory", "source_directory", Path),
    ("--prebuilt-directory", "prebuilt_directory", Path),
    ("--deploy-zipfile", "deploy_zipfile", Path),
    ("--package-directory", "package_directory", Path),
    ("--code-directory", "code_directory", Path),
]

# Comma separated flags
LIST_FLAGS = [
    ("--regions", "regions"),
    ("--vpc-subnets", "vpc_subnets"),
    ("--vpc-security-groups", "vpc_security_groups"),
]


def add_config_arguments(parser: argparse.ArgumentParser) -> None:
    for flag, dest, type_ in CONFIG_FLAGS:
        parser.add_argument(flag, dest=dest, type=type_, default=None)
    for flag, dest in LIST_FLAGS:
        parser.add_argument(flag, dest=dest, default=None, help="Comma separated list")
    parser.add_argument(
        "--exclude-globs",
        dest="exclude_globs",
        default=None,
        help="Space separated globs excluded from the artifact",
    )
    parser.add_argument("--publish", dest="publish", action="store_true", default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lambda-deploy",
        description="Build, package, deploy and locally run AWS Lambda functions",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Also log boto3 and botocore activity"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Deploy the function to every region")
    add_config_arguments(deploy_parser)

    package_parser = subparsers.add_parser("package", help="Write the artifact zip to disk")
    add_config_arguments(package_parser)

    run_parser = subparsers.add_parser("run", help="Run the handler locally")
    run_parser.add_argument("--handler", default=None)
    run_parser.add_argument("--event-file", type=Path, default=Path("event.json"))
    run_parser.add_argument("--context-file", type=Path, default=Path("context.json"))
    run_parser.add_argument("--config-file", type=Path, default=None)
    run_parser.add_argument("--source-directory", type=Path, default=Path("."))
    run_parser.add_argument("--timeout", type=int, default=None)
    run_parser.add_argument("--runtime", default=None)
    return parser


def resolve_config(args: argparse.Namespace) -> DeployConfig:
    """Environment-derived configuration with the given flags applied on top."""
    config = DeployConfig.from_env()
    for _, dest, _ in CONFIG_FLAGS:
        value = getattr(args, dest)
        if value is not None:
            setattr(config, dest, value)
    for _, dest in LIST_FLAGS:
        value = getattr(args, dest)
        if value is not None:
            setattr(config, dest, split_list(value))
    if args.exclude_globs is not None:
        config.exclude_globs = split_list(args.exclude_globs, sep=" ")
    if args.publish:
        config.publish = True
    return config


def run_deploy(args: argparse.Namespace) -> int:
    results = deploy(resolve_config(args))
    return 1 if any(result.failed for result in results) else 0


def run_package(args: argparse.Namespace) -> int:
    zip_path = package_artifact(resolve_config(args))
    print(f"Packaged artifact written to {zip_path}")
    return 0


def run_invoke(args: argparse.Namespace) -> int:
    config = DeployConfig.from_env()
    request = InvokeRequest(
        handler=args.handler or config.handler,
        event_file=args.event_file,
        context_file=args.context_file,
        config_file=args.config_file or config.config_file,
        source_directory=args.source_directory,
        timeout=args.timeout if args.timeout is not None else config.timeout,
        runtime=args.runtime or config.runtime,
    )
    return run_local(request)


COMMANDS = {
    "deploy": run_deploy,
    "package": run_package,
    "run": run_invoke,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        enable_library_logging(logger)
    try:
        return COMMANDS[args.command](args)
    except DeployError as e:
        logger.error(f"{args.command} failed: {e}")
        return ERROR_EXIT_CODE if args.command == "run" else 1


if __name__ == "__main__":
    sys.exit(main())
