"""Unit tests for docvault.engine.config — docvault.yaml loading and defaults."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from docvault.engine.config import (
    DocVaultConfig,
    get_config,
    get_environment,
    load_config,
    reset_config,
    set_config,
)


class TestDefaults:
    def test_defaults(self):
        cfg = DocVaultConfig()
        assert cfg.environment == "dev"
        assert cfg.security.token_algorithm == "HS256"
        assert cfg.security.token_lifetime_days == 30
        assert cfg.rate_limits.sensitive.max_requests == 5
        assert cfg.rate_limits.sensitive.window_seconds == 900
        assert cfg.rate_limits.general.max_requests == 100
        assert cfg.uploads.default_max_file_size == 50 * 1024 * 1024
        assert cfg.audit.async_writes is True

    def test_invalid_environment(self):
        with pytest.raises(PydanticValidationError):
            DocVaultConfig(environment="qa")


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(str(tmp_path / "missing.yaml"))
        assert cfg == DocVaultConfig()

    def test_load_with_wrapper(self, tmp_path):
        path = tmp_path / "docvault.yaml"
        path.write_text(
            "docvault:\n"
            "  environment: staging\n"
            "  database:\n"
            "    url: sqlite:///vault.db\n"
            "  redis:\n"
            "    enabled: false\n"
            "  rate_limits:\n"
            "    sensitive:\n"
            "      max_requests: 3\n"
            "      window_seconds: 60\n",
            encoding="utf-8",
        )
        cfg = load_config(str(path))
        assert cfg.environment == "staging"
        assert cfg.database.url == "sqlite:///vault.db"
        assert cfg.redis.enabled is False
        assert cfg.rate_limits.sensitive.max_requests == 3
        assert cfg.rate_limits.general.max_requests == 100

    def test_load_without_wrapper(self, tmp_path):
        path = tmp_path / "docvault.yaml"
        path.write_text("environment: prod\nadmin_email: ops@example.com\n", encoding="utf-8")
        cfg = load_config(str(path))
        assert cfg.environment == "prod"
        assert cfg.admin_email == "ops@example.com"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "docvault.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(str(path)).environment == "dev"

    def test_auto_discovery(self, tmp_path, monkeypatch):
        (tmp_path / "docvault.yaml").write_text("environment: staging\n", encoding="utf-8")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)
        assert load_config().environment == "staging"


class TestGlobalConfig:
    def test_set_and_get(self):
        cfg = DocVaultConfig(environment="prod")
        set_config(cfg)
        assert get_config() is cfg
        assert get_environment() == "prod"

    def test_reset(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        set_config(DocVaultConfig(environment="prod"))
        reset_config()
        assert get_config().environment == "dev"
