"""Tests for the docker runtime provider."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from genoring.errors import RuntimeUnavailableError
from genoring.providers.base import ContainerState
from genoring.providers.docker import DockerRuntime, PodmanRuntime
from genoring.utils.process import CommandResult, ExecutionContext


@pytest.fixture
def runtime():
    return DockerRuntime()


@pytest.fixture
def context(tmp_path):
    return ExecutionContext(cwd=tmp_path)


class TestCheck:
    """Test runtime availability checks."""

    def test_missing_binary(self, runtime, context):
        with patch("genoring.providers.docker.shutil.which", return_value=None):
            with pytest.raises(RuntimeUnavailableError, match="not installed"):
                runtime.check(context)

    @pytest.mark.parametrize("version", ["2.24.6", "v2.5.0", "3.0.1-desktop.1"])
    def test_supported_compose(self, runtime, context, version):
        with patch("genoring.providers.docker.shutil.which", return_value="/usr/bin/docker"), \
                patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(returncode=0, stdout=f"{version}\n")
            runtime.check(context)
            assert mock_run.call_args[0][0] == ["docker", "compose", "version", "--short"]

    def test_old_compose(self, runtime, context):
        with patch("genoring.providers.docker.shutil.which", return_value="/usr/bin/docker"), \
                patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(returncode=0, stdout="1.29.2\n")
            with pytest.raises(RuntimeUnavailableError, match="too old"):
                runtime.check(context)

    def test_missing_compose_plugin(self, runtime, context):
        error = subprocess.CalledProcessError(1, ["docker", "compose"])
        error.stderr = "'compose' is not a docker command.\n"
        with patch("genoring.providers.docker.shutil.which", return_value="/usr/bin/docker"), \
                patch("genoring.providers.docker.run_command", side_effect=error):
            with pytest.raises(RuntimeUnavailableError, match="not a docker command"):
                runtime.check(context)


class TestCommands:
    """Test generated runtime commands."""

    def test_up_and_down(self, runtime, context):
        compose_file = Path("/srv/genoring/docker-compose.yml")
        with patch("genoring.providers.docker.run_command") as mock_run:
            runtime.up(compose_file, context)
            runtime.down(compose_file, context)

        up, down = [c[0][0] for c in mock_run.call_args_list]
        assert up == ["docker", "compose", "-f", str(compose_file), "up", "-d", "-y"]
        assert down == [
            "docker", "compose", "-f", str(compose_file), "--profile", "*", "down", "--remove-orphans",
        ]

    def test_ps(self, runtime, context):
        with patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(
                returncode=0,
                stdout="genoring running\ngenoring-proxy restarting\n\ngenoring-db\n",
            )
            containers = runtime.ps(Path("docker-compose.yml"), context)

        assert [(c.name, c.state) for c in containers] == [
            ("genoring", ContainerState.RUNNING),
            ("genoring-proxy", ContainerState.RESTARTING),
            ("genoring-db", ContainerState.NONE),
        ]

    def test_container_exact_name(self, runtime, context):
        """Test the substring name filter is narrowed to the exact name."""
        with patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(
                returncode=0,
                stdout="abc running genoring-proxy nginx\ndef exited genoring mariadb\n",
            )
            info = runtime.container("genoring", context)

        assert info.id == "def"
        assert info.state == ContainerState.EXITED
        assert info.image == "mariadb"

    def test_container_missing(self, runtime, context):
        with patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(returncode=0, stdout="")
            assert runtime.container("genoring", context) is None

    def test_exec(self, runtime, context):
        with patch("genoring.providers.docker.run_command") as mock_run:
            runtime.exec(
                "genoring",
                "ls /genoring",
                context,
                env_files=[Path("env/genoring_genoring.env")],
                env={"GENORING_PORT": "8080"},
            )

        assert mock_run.call_args[0][0] == [
            "docker", "exec",
            "--env-file", "env/genoring_genoring.env",
            "-e", "GENORING_PORT=8080",
            "-u", "0", "genoring", "sh", "-c", "ls /genoring",
        ]

    def test_build_with_platform(self, runtime, tmp_path):
        context = ExecutionContext(cwd=tmp_path, platform="linux/amd64")
        with patch("genoring.providers.docker.run_command") as mock_run:
            runtime.build("genoring", tmp_path / "src", context, build_args={"GENORING_UID": "1000"})

        assert mock_run.call_args[0][0] == [
            "docker", "build", "--platform", "linux/amd64",
            "--build-arg", "GENORING_UID=1000",
            "-t", "genoring", str(tmp_path / "src"),
        ]

    def test_image_exists(self, runtime, context):
        with patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(returncode=1)
            assert not runtime.image_exists("genoring", context)

    def test_remove_volume_failure_is_logged(self, runtime, context, caplog):
        with patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(returncode=1, stderr="volume is in use\n")
            runtime.remove_volume("genoring-data", context)

        assert "volume is in use" in caplog.text

    def test_logs_tail(self, runtime, context):
        with patch("genoring.providers.docker.run_command") as mock_run:
            mock_run.return_value = CommandResult(returncode=0, stdout="line\n")
            assert runtime.logs("genoring", context, tail=10) == "line"

        assert mock_run.call_args[0][0] == ["docker", "logs", "--tail", "10", "genoring"]

    def test_podman_command(self, context):
        with patch("genoring.providers.docker.run_command") as mock_run:
            PodmanRuntime().create_volume("genoring-data", context)
        assert mock_run.call_args[0][0] == ["podman", "volume", "create", "genoring-data"]
