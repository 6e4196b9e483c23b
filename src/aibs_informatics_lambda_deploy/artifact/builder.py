import asyncio
import os
import platform
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from aibs_informatics_core.utils.file_operations import remove_path

from aibs_informatics_lambda_deploy.artifact.archive import archive_directory
from aibs_informatics_lambda_deploy.artifact.file_copy import (
    MANIFEST_FILENAME,
    ExcludeRules,
    copy_filtered,
)
from aibs_informatics_lambda_deploy.common.config import DeployConfig
from aibs_informatics_lambda_deploy.common.exceptions import (
    ArtifactBuildError,
    DeployValidationError,
)
from aibs_informatics_lambda_deploy.common.logging import LoggingMixins

POST_INSTALL_SCRIPT = "post_install.sh"
CONTAINER_TASK_ROOT = "/var/task"
NATIVE_PLATFORMS = {("Linux", "x86_64"), ("Linux", "AMD64")}


async def run_process(*args: str, cwd: Optional[Path] = None) -> str:
    """Run an external process to completion without blocking the event loop.

    Args:
        *args (str): The command and its arguments.
        cwd (Optional[Path]): Working directory of the process.

    Raises:
        ArtifactBuildError: If the process cannot be started or exits nonzero.

    Returns:
        str: The combined stdout/stderr of the process.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=os.environ.copy(),
        )
    except OSError as e:
        raise ArtifactBuildError(f"Could not start `{' '.join(args)}`: {e}") from e
    stdout, stderr = await process.communicate()
    output = (
        f"stdout: {stdout.decode(errors='replace')} "
        f"stderr: {stderr.decode(errors='replace')}"
    )
    if process.returncode != 0:
        raise ArtifactBuildError(
            f"`{' '.join(args)}` exited with code {process.returncode}", output=output
        )
    return output


@dataclass
class ArtifactBuilder(LoggingMixins):
    """Builds the deployment zip of a Lambda function.

    The source tree is copied into `code_directory` under the exclude rules,
    production dependencies from `requirements.txt` are installed next to the code
    (optionally inside a container image), an optional `post_install.sh` hook runs
    and the result is zipped. The code directory belongs to a single build at a time.

    Attributes:
        source_directory: Root of the function's source tree.
        code_directory: Scratch directory the artifact is staged in. Emptied first.
        exclude_globs: Extra exclude globs on top of the defaults.
        docker_image: Image to run the dependency install in.
        environment: Environment name passed to the post-install hook.
        prebuilt_directory: Already built directory. Skips install and hook.
        deploy_zipfile: Precomputed archive used as-is when it exists.
    """

    source_directory: Path = field(default_factory=lambda: Path("."))
    code_directory: Path = field(default_factory=lambda: Path(".lambda"))
    exclude_globs: Sequence[str] = field(default_factory=list)
    docker_image: Optional[str] = None
    environment: str = ""
    prebuilt_directory: Optional[Path] = None
    deploy_zipfile: Optional[Path] = None

    @classmethod
    def from_config(cls, config: DeployConfig) -> "ArtifactBuilder":
        return cls(
            source_directory=config.source_directory,
            code_directory=config.code_directory,
            exclude_globs=list(config.exclude_globs),
            docker_image=config.docker_image,
            environment=config.environment,
            prebuilt_directory=config.prebuilt_directory,
            deploy_zipfile=config.deploy_zipfile,
        )

    async def build(self) -> bytes:
        """Produce the artifact bytes.

        Raises:
            DeployValidationError: If the code directory would contain the build inputs.
            ArtifactBuildError: If any step fails. No partial artifact is returned.

        Returns:
            bytes: The zip archive.
        """
        if self.deploy_zipfile is not None:
            if self.deploy_zipfile.is_file():
                return await self.read_archive(self.deploy_zipfile)
            self.logger.warning(
                f"Zip file {self.deploy_zipfile} does not exist. Building the artifact instead."
            )
        if self.prebuilt_directory is not None:
            return await self.build_prebuilt()
        return await self.build_from_source()

    async def read_archive(self, path: Path) -> bytes:
        self.logger.info(f"Reading precomputed archive {path}")
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise ArtifactBuildError(f"Could not read archive {path}: {e}") from e

    async def build_prebuilt(self) -> bytes:
        assert self.prebuilt_directory is not None
        await self.prepare_code_directory(self.prebuilt_directory)
        self.logger.info(f"Moving prebuilt files from {self.prebuilt_directory}")
        await self.stage(self.prebuilt_directory, include_manifest=False)
        return self.archive()

    async def build_from_source(self) -> bytes:
        self.warn_if_non_native_platform()
        await self.prepare_code_directory(self.source_directory)
        self.logger.info("Moving files to temporary directory")
        await self.stage(self.source_directory, include_manifest=True)
        await self.install_dependencies()
        await self.run_post_install_hook()
        return self.archive()

    def warn_if_non_native_platform(self) -> None:
        host = (platform.system(), platform.machine())
        if host not in NATIVE_PLATFORMS and not self.docker_image:
            self.logger.warning(
                f"You are building on a platform that is not 64-bit Linux ({'.'.join(host)}). "
                "If any of your dependencies include C-extensions, they may not work as "
                "expected in the Lambda environment. Consider setting a docker image."
            )

    async def prepare_code_directory(self, input_directory: Path) -> Path:
        if input_directory.resolve().is_relative_to(self.code_directory.resolve()):
            raise DeployValidationError(
                f"Code directory {self.code_directory} must not be {input_directory} "
                "or one of its parent directories"
            )

        def _clean() -> None:
            remove_path(self.code_directory, ignore_errors=False)
            self.code_directory.mkdir(parents=True)

        try:
            await asyncio.to_thread(_clean)
        except OSError as e:
            raise ArtifactBuildError(
                f"Could not prepare code directory {self.code_directory}: {e}"
            ) from e
        return self.code_directory

    def exclude_rules(self, source: Path, include_manifest: bool) -> ExcludeRules:
        extra_globs: List[str] = list(self.exclude_globs)
        # Never copy the code directory into itself
        code_directory = self.code_directory.resolve()
        source_root = source.resolve()
        if code_directory.is_relative_to(source_root) and code_directory != source_root:
            extra_globs.append(f"/{code_directory.relative_to(source_root).as_posix()}")
        return ExcludeRules.build(extra_globs, include_manifest=include_manifest)

    async def stage(self, source: Path, include_manifest: bool) -> Path:
        rules = self.exclude_rules(source, include_manifest)
        try:
            return await asyncio.to_thread(copy_filtered, source, self.code_directory, rules)
        except OSError as e:
            raise ArtifactBuildError(
                f"Could not copy {source} to {self.code_directory}: {e}"
            ) from e

    def install_command(self) -> List[str]:
        if self.docker_image:
            return [
                "docker",
                "run",
                "--rm",
                "-v",
                f"{self.code_directory.resolve()}:{CONTAINER_TASK_ROOT}",
                self.docker_image,
                "pip",
                "install",
                "--quiet",
                "--requirement",
                f"{CONTAINER_TASK_ROOT}/{MANIFEST_FILENAME}",
                "--target",
                CONTAINER_TASK_ROOT,
            ]
        return [
            sys.executable,
            "-m",
            "pip",
            "install",
            "--quiet",
            "--requirement",
            str(self.code_directory / MANIFEST_FILENAME),
            "--target",
            str(self.code_directory),
        ]

    async def install_dependencies(self) -> None:
        if not (self.code_directory / MANIFEST_FILENAME).is_file():
            self.logger.info(f"No {MANIFEST_FILENAME} found. Skipping dependency install.")
            return
        if self.docker_image:
            self.logger.info(f"Running pip install inside docker image {self.docker_image}")
        else:
            self.logger.info("Running pip install")
        await run_process(*self.install_command())

    async def run_post_install_hook(self) -> None:
        script = self.code_directory / POST_INSTALL_SCRIPT
        if not script.is_file():
            return
        if not os.access(script, os.X_OK):
            self.logger.warning(f"{POST_INSTALL_SCRIPT} is not executable. Skipping it.")
            return
        self.logger.info(f"Running post install script {POST_INSTALL_SCRIPT}")
        output = await run_process(
            str(script.resolve()), self.environment, cwd=self.code_directory
        )
        self.logger.info(output)

    def archive(self) -> bytes:
        self.logger.info("Zipping deployment package")
        try:
            return archive_directory(self.code_directory)
        except (OSError, ValueError) as e:
            raise ArtifactBuildError(f"Could not archive {self.code_directory}: {e}") from e


def build_artifact(config: DeployConfig) -> bytes:
    return asyncio.run(ArtifactBuilder.from_config(config).build())


def package_artifact(config: DeployConfig) -> Path:
    """Build the artifact and write it to the package directory.

    The zip is named after the function, suffixed with the environment when one is set.

    Args:
        config (DeployConfig): The deployment configuration.

    Raises:
        DeployValidationError: If the package directory path exists but is not a directory.
        ArtifactBuildError: If the build or the write fails.

    Returns:
        Path: Location of the written zip.
    """
    config.validate(require_role=False)
    package_directory = config.package_directory
    if package_directory.exists() and not package_directory.is_dir():
        raise DeployValidationError(f"{package_directory} is not a directory!")

    artifact = build_artifact(config)

    zip_path = package_directory / f"{config.package_basename}.zip"
    builder_logger = ArtifactBuilder.get_logger()
    builder_logger.info(f"Writing packaged zip to {zip_path}")
    try:
        package_directory.mkdir(parents=True, exist_ok=True)
        zip_path.write_bytes(artifact)
    except OSError as e:
        raise ArtifactBuildError(f"Could not write {zip_path}: {e}") from e
    return zip_path
