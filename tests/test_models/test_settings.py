"""Tests for configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from genoring.models.config import ModuleConf, PlatformConfig, Settings


class TestPlatformConfig:
    """Test the persisted configuration document."""

    def test_defaults(self):
        config = PlatformConfig()
        assert config.project == "genoring"
        assert config.modules == {}
        assert config.no_exposed_volumes is False

    def test_load_document(self):
        config = PlatformConfig(**{
            "project": "myring",
            "no-exposed-volumes": "true",
            "modules": {"genoring": {"status": "disabled", "version": "1.2"}},
            "unknown": "ignored",
        })

        assert config.no_exposed_volumes is True
        assert config.modules["genoring"] == ModuleConf(status="disabled", version="1.2")

    def test_empty_modules(self):
        assert PlatformConfig(modules=None).modules == {}

    def test_dump_uses_aliases(self):
        data = PlatformConfig(no_exposed_volumes=True).model_dump(by_alias=True)
        assert data["no-exposed-volumes"] is True

    def test_invalid_status(self):
        with pytest.raises(ValidationError):
            ModuleConf(status="paused")


class TestSettings:
    """Test engine settings."""

    def test_defaults(self, tmp_path):
        settings = Settings(project_dir=tmp_path)

        assert settings.runtime == "docker"
        assert settings.wait_ready == 300
        assert settings.compose_file == tmp_path / "docker-compose.yml"
        assert settings.env_path == tmp_path / "env"
        assert settings.backups_path == tmp_path / "volumes" / "backups"

    def test_from_env(self):
        settings = Settings.from_env({
            "GENORING_DIR": "/srv/genoring",
            "COMPOSE_PROJECT_NAME": "MyRing",
            "GENORING_PORT": "9090",
            "GENORING_UID": "1000",
            "GENORING_RUNTIME": "",
        })

        assert settings.project_dir == Path("/srv/genoring")
        assert settings.project_name == "myring"
        assert settings.port == "9090"
        assert settings.uid == 1000
        assert settings.runtime == "docker"

    def test_overrides_win(self):
        settings = Settings.from_env(
            {"GENORING_RUNTIME": "docker", "GENORING_PLATFORM": "linux/arm64"},
            runtime="podman",
            platform=None,
            verbose=False,
        )

        assert settings.runtime == "podman"
        assert settings.platform == "linux/arm64"
        assert settings.verbose is False

    def test_log_level(self):
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError, match="Invalid log level"):
            Settings(log_level="LOUD")

    @pytest.mark.parametrize("name", ["", "my ring", "ring!"])
    def test_invalid_project_name(self, name):
        with pytest.raises(ValidationError):
            Settings(project_name=name)

    def test_wait_ready_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(wait_ready=0)
