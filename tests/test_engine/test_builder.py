"""Tests for local image builds."""

import pytest

from genoring.engine.builder import ImageBuilder
from genoring.engine.environment import EnvironmentManager, set_env_variable
from genoring.engine.registry import ModuleRegistry
from genoring.errors import ConfigurationError
from genoring.models.config import Settings
from genoring.utils.process import ExecutionContext


def make_builder(settings, runtime):
    return ImageBuilder(ModuleRegistry(settings), EnvironmentManager(settings), runtime, settings)


@pytest.fixture
def sources(project):
    source = project / "modules" / "genoring" / "src" / "genoring"
    source.mkdir(parents=True)
    (source / "Dockerfile").write_text("FROM php:8.2-fpm AS base\nRUN true\nFROM base\n")
    return source


class TestCompile:
    """Test compiling module sources."""

    def test_compile_single_service(self, settings, fake_runtime, sources):
        builder = make_builder(settings, fake_runtime)

        tag = builder.compile("genoring", None, ExecutionContext())

        assert tag == "genoring"
        assert fake_runtime.calls == [("rmi", "genoring"), ("build", "genoring", {})]

    def test_module_without_sources(self, settings, fake_runtime):
        with pytest.raises(ConfigurationError, match="does not have sources"):
            make_builder(settings, fake_runtime).compile("gigwa", None, ExecutionContext())

    def test_ambiguous_service(self, settings, fake_runtime, sources):
        (sources.parent / "genoring-proxy").mkdir()
        with pytest.raises(ConfigurationError, match="Missing service name"):
            make_builder(settings, fake_runtime).compile("genoring", None, ExecutionContext())

    def test_missing_dockerfile(self, settings, fake_runtime, sources):
        (sources / "Dockerfile").unlink()
        with pytest.raises(ConfigurationError, match="No Dockerfile"):
            make_builder(settings, fake_runtime).compile("genoring", "genoring", ExecutionContext())

    def test_platform_pins_from_lines(self, project, fake_runtime, sources):
        settings = Settings(project_dir=project, platform="linux/amd64")

        make_builder(settings, fake_runtime).compile("genoring", "genoring", ExecutionContext())

        assert (sources / "Dockerfile.default").read_text().startswith("FROM php:8.2-fpm AS base")
        assert (sources / "Dockerfile").read_text() == (
            "FROM --platform=linux/amd64 php:8.2-fpm AS base\n"
            "RUN true\n"
            "FROM --platform=linux/amd64 base\n"
        )

    def test_default_dockerfile_restored_without_platform(self, settings, fake_runtime, sources):
        (sources / "Dockerfile").rename(sources / "Dockerfile.default")

        make_builder(settings, fake_runtime).compile("genoring", "genoring", ExecutionContext())

        assert (sources / "Dockerfile").read_text().startswith("FROM php:8.2-fpm")

    def test_build_args_from_environment(self, settings, project, fake_runtime, sources):
        environment = EnvironmentManager(settings)
        environment.setup_module("genoring")
        set_env_variable(project / "env" / "genoring_genoring.env", "GENORING_UID", "1001")

        make_builder(settings, fake_runtime).compile("genoring", "genoring", ExecutionContext())

        assert fake_runtime.calls[-1] == ("build", "genoring", {"GENORING_UID": "1001"})

    def test_build_args_from_settings(self, project, fake_runtime):
        settings = Settings(project_dir=project, uid=1000, gid=100)
        assert make_builder(settings, fake_runtime).build_args() == {
            "GENORING_UID": "1000",
            "GENORING_GID": "100",
        }


class TestCompileMissing:
    """Test building images that do not exist yet."""

    def test_only_missing_images(self, settings, fake_runtime, sources):
        builder = make_builder(settings, fake_runtime)

        assert builder.compile_missing(ExecutionContext()) == ["genoring"]
        assert builder.compile_missing(ExecutionContext()) == []

    def test_disabled_module_sources_are_ignored(self, settings, project, fake_runtime):
        source = project / "modules" / "gigwa" / "src" / "genoring-gigwa"
        source.mkdir(parents=True)
        (source / "Dockerfile").write_text("FROM alpine\n")

        assert make_builder(settings, fake_runtime).compile_missing(ExecutionContext()) == []
