import os
from unittest.mock import patch

from pydantic import ValidationError
import pytest

from labplatform.config import Settings


class TestSettings:
    def test_load_from_env(self):
        env = {
            "DATABASE_URL": "postgresql+asyncpg://lab:lab@db:5432/lab",
            "TERRAFORM_WORK_DIR": "/var/lib/labplatform/tf",
            "GITOPS_REQUIRED": "true",
            "STAGE_TIMEOUT_SECONDS": "900",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env):
            settings = Settings()

        assert settings.database_url == env["DATABASE_URL"]
        assert settings.terraform_work_dir == "/var/lib/labplatform/tf"
        assert settings.gitops_required is True
        assert settings.stage_timeout_seconds == 900
        assert settings.log_level == "DEBUG"

    def test_defaults(self):
        settings = Settings(database_url="sqlite+aiosqlite:///x.db")

        assert settings.terraform_binary == "terraform"
        assert settings.terragrunt_binary == "terragrunt"
        assert settings.stage_timeout_seconds is None
        assert settings.gitops_required is False
        assert settings.notification_webhook_url is None

    def test_missing_database_url(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(database_url="sqlite+aiosqlite:///x.db", log_level="LOUD")
