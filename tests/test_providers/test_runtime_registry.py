"""Tests for runtime registry."""

import pytest

from genoring.errors import ConfigurationError
from genoring.providers import get_runtime
from genoring.providers.docker import DockerRuntime, PodmanRuntime
from genoring.providers.registry import RuntimeRegistry


class TestRuntimeRegistry:
    """Test runtime registry."""

    def test_list_runtimes(self):
        assert RuntimeRegistry().list_runtimes() == ["docker", "podman"]

    def test_get_runtime(self):
        assert isinstance(get_runtime("docker"), DockerRuntime)
        assert isinstance(get_runtime("podman"), PodmanRuntime)

    def test_default_runtime(self):
        assert type(get_runtime()) is DockerRuntime

    def test_unknown_runtime(self):
        with pytest.raises(ConfigurationError, match="available: docker, podman"):
            get_runtime("containerd")
