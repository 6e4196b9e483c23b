import asyncio
import io
import sys
import zipfile
from pathlib import Path
from test.base import BaseTest
from typing import List

from pytest import raises

from aibs_informatics_lambda_deploy.artifact.builder import (
    ArtifactBuilder,
    package_artifact,
    run_process,
)
from aibs_informatics_lambda_deploy.common.config import DeployConfig
from aibs_informatics_lambda_deploy.common.exceptions import (
    ArtifactBuildError,
    DeployValidationError,
)


def zip_names(artifact: bytes) -> List[str]:
    with zipfile.ZipFile(io.BytesIO(artifact)) as zf:
        return sorted(zf.namelist())


def test__run_process__returns_output():
    output = asyncio.run(run_process("sh", "-c", "echo hello"))

    assert "hello" in output


def test__run_process__nonzero_exit_carries_output():
    with raises(ArtifactBuildError) as exc_info:
        asyncio.run(run_process("sh", "-c", "echo out; echo err >&2; exit 3"))

    assert "exited with code 3" in str(exc_info.value)
    assert "out" in exc_info.value.output
    assert "err" in exc_info.value.output


def test__run_process__missing_executable():
    with raises(ArtifactBuildError, match="Could not start"):
        asyncio.run(run_process("definitely-not-a-real-executable-name"))


class ArtifactBuilderTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.source = self.tmp_path()
        self.code_directory = self.tmp_path() / "scratch"
        self.mock_run_process = self.create_patch(
            "aibs_informatics_lambda_deploy.artifact.builder.run_process"
        )
        self.mock_run_process.return_value = "stdout:  stderr: "

    def write(self, path: str, content: str = "x", executable: bool = False) -> Path:
        full_path = self.source / path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_text(content)
        if executable:
            full_path.chmod(0o755)
        return full_path

    def builder(self, **kwargs) -> ArtifactBuilder:
        values = dict(
            source_directory=self.source,
            code_directory=self.code_directory,
            environment="dev",
        )
        values.update(kwargs)
        return ArtifactBuilder(**values)

    def build(self, builder: ArtifactBuilder) -> bytes:
        return asyncio.run(builder.build())

    def test__build__stages_installs_and_archives(self):
        self.write("lambda_function.py")
        self.write("requirements.txt", "requests\n")
        self.write("pkg/util.py")
        self.write("debug.log")
        builder = self.builder()

        artifact = self.build(builder)

        self.assertEqual(
            zip_names(artifact), ["lambda_function.py", "pkg/util.py", "requirements.txt"]
        )
        self.mock_run_process.assert_called_once_with(*builder.install_command())
        self.assertEqual(
            builder.install_command()[:4], [sys.executable, "-m", "pip", "install"]
        )

    def test__build__empties_code_directory_first(self):
        self.write("lambda_function.py")
        self.code_directory.mkdir(parents=True)
        (self.code_directory / "stale.py").write_text("stale")

        artifact = self.build(self.builder())

        self.assertEqual(zip_names(artifact), ["lambda_function.py"])

    def test__build__skips_install_without_manifest(self):
        self.write("lambda_function.py")

        self.build(self.builder())

        self.mock_run_process.assert_not_called()

    def test__build__code_directory_inside_source_is_not_copied(self):
        self.write("lambda_function.py")
        builder = self.builder(code_directory=self.source / "scratch")

        artifact = self.build(builder)

        self.assertEqual(zip_names(artifact), ["lambda_function.py"])

    def test__build__rejects_source_as_code_directory(self):
        source_file = self.write("lambda_function.py")

        with self.assertRaises(DeployValidationError):
            self.build(self.builder(code_directory=self.source))

        self.assertTrue(source_file.exists())

    def test__build__rejects_code_directory_above_source(self):
        source_file = self.write("app/lambda_function.py")

        with self.assertRaises(DeployValidationError):
            self.build(
                self.builder(source_directory=self.source / "app", code_directory=self.source)
            )

        self.assertTrue(source_file.exists())

    def test__build__rejects_prebuilt_as_code_directory(self):
        prebuilt_file = self.write("dist/lambda_function.py")
        prebuilt = self.source / "dist"

        with self.assertRaises(DeployValidationError):
            self.build(self.builder(prebuilt_directory=prebuilt, code_directory=prebuilt))

        self.assertTrue(prebuilt_file.exists())

    def test__build__runs_executable_post_install_hook(self):
        self.write("lambda_function.py")
        script = self.write("post_install.sh", "#!/bin/sh\n", executable=True)
        builder = self.builder()

        artifact = self.build(builder)

        self.mock_run_process.assert_called_once_with(
            str((self.code_directory / script.name).resolve()),
            "dev",
            cwd=self.code_directory,
        )
        self.assertIn("post_install.sh", zip_names(artifact))

    def test__build__skips_non_executable_post_install_hook(self):
        self.write("lambda_function.py")
        script = self.write("post_install.sh", "#!/bin/sh\n")
        script.chmod(0o644)

        self.build(self.builder())

        self.mock_run_process.assert_not_called()

    def test__build__failing_post_install_hook_aborts(self):
        self.write("lambda_function.py")
        self.write("post_install.sh", "#!/bin/sh\nexit 1\n", executable=True)
        self.mock_run_process.side_effect = ArtifactBuildError("hook failed", output="stderr: x")

        with self.assertRaises(ArtifactBuildError):
            self.build(self.builder())

    def test__build__uses_existing_deploy_zipfile(self):
        zip_path = self.tmp_path() / "prebuilt.zip"
        zip_path.write_bytes(b"precomputed")

        artifact = self.build(self.builder(deploy_zipfile=zip_path))

        self.assertEqual(artifact, b"precomputed")
        self.mock_run_process.assert_not_called()

    def test__build__missing_deploy_zipfile_falls_back_to_build(self):
        self.write("lambda_function.py")

        artifact = self.build(self.builder(deploy_zipfile=self.tmp_path() / "missing.zip"))

        self.assertEqual(zip_names(artifact), ["lambda_function.py"])

    def test__build__prebuilt_directory_skips_install_and_hook(self):
        prebuilt = self.tmp_path()
        (prebuilt / "lambda_function.py").write_text("x")
        (prebuilt / "requirements.txt").write_text("requests\n")
        hook = prebuilt / "post_install.sh"
        hook.write_text("#!/bin/sh\n")
        hook.chmod(0o755)

        artifact = self.build(self.builder(prebuilt_directory=prebuilt))

        self.assertEqual(
            zip_names(artifact), ["lambda_function.py", "post_install.sh", "requirements.txt"]
        )
        self.mock_run_process.assert_not_called()

    def test__install_command__runs_in_docker_image(self):
        builder = self.builder(docker_image="public.ecr.aws/sam/build-python3.12")

        command = builder.install_command()

        self.assertEqual(command[:4], ["docker", "run", "--rm", "-v"])
        self.assertEqual(command[4], f"{self.code_directory.resolve()}:/var/task")
        self.assertEqual(command[5], "public.ecr.aws/sam/build-python3.12")
        self.assertIn("/var/task/requirements.txt", command)


class PackageArtifactTests(BaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.source = self.tmp_path()
        (self.source / "lambda_function.py").write_text("x")
        self.scratch = self.tmp_path()

    def config(self, **kwargs) -> DeployConfig:
        values = dict(
            function_name="my-function",
            source_directory=self.source,
            code_directory=self.scratch / ".lambda",
            package_directory=self.scratch / "build",
        )
        values.update(kwargs)
        return DeployConfig(**values)

    def test__package_artifact__writes_named_zip(self):
        zip_path = package_artifact(self.config(environment="staging"))

        self.assertEqual(zip_path, self.scratch / "build" / "my-function-staging.zip")
        self.assertEqual(zip_names(zip_path.read_bytes()), ["lambda_function.py"])

    def test__package_artifact__name_without_environment(self):
        zip_path = package_artifact(self.config())

        self.assertEqual(zip_path.name, "my-function.zip")

    def test__package_artifact__rejects_file_as_package_directory(self):
        not_a_directory = self.scratch / "build"
        not_a_directory.write_text("file")

        with self.assertRaises(DeployValidationError):
            package_artifact(self.config())
