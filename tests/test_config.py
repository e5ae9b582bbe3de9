"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from protos_dns_namecheap import config as config_module
from protos_dns_namecheap.config import (
    Config,
    _process_env_vars,
    _substitute_env_vars,
    config_from_env,
    load_config,
    load_config_auto,
    merge_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Isolate tests from the host environment and default config path."""
    for _, _, env_name in config_module.ENV_VARS:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")


class TestEnvVarSubstitution:
    """Tests for environment variable substitution."""

    def test_substitute_simple_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TEST_VAR", "hello")
        assert _substitute_env_vars("${TEST_VAR}") == "hello"

    def test_substitute_multiple_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NC_USER", "admin")
        monkeypatch.setenv("NC_KEY", "secret")
        assert _substitute_env_vars("${NC_USER}:${NC_KEY}") == "admin:secret"

    def test_substitute_missing_var_raises(self) -> None:
        with pytest.raises(ValueError, match="Environment variable 'NONEXISTENT'"):
            _substitute_env_vars("${NONEXISTENT}")

    def test_process_nested(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TOKEN", "abc123")
        data = {"key": "${TOKEN}", "nested": {"inner": ["${TOKEN}", 3]}, "flag": True}
        assert _process_env_vars(data) == {
            "key": "abc123",
            "nested": {"inner": ["abc123", 3]},
            "flag": True,
        }


class TestLoadConfig:
    """Tests for loading configuration from YAML."""

    def test_load_valid_config(self, sample_config_yaml: Path) -> None:
        config = load_config(sample_config_yaml)
        assert isinstance(config, Config)
        assert config.namecheap.domain == "example.com"
        assert config.protos.app_id == "test-appid"
        assert config.settings.interval == 60
        assert config.settings.verify_delay == 1.5

    def test_load_config_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            """
namecheap:
  username: u
  api_user: a
  token: t
  domain: example.com
protos:
  app_id: id
"""
        )

        config = load_config(config_file)

        assert config.settings.interval == 30
        assert config.settings.resolver == "8.8.8.8"
        assert config.settings.max_verify_attempts is None
        assert config.settings.verify_backoff == 1.0
        assert config.settings.health_port is None
        assert config.protos.url == "http://protos:8080/"
        assert config.namecheap.client_ip == "127.0.0.1"
        assert config.namecheap.sandbox is False

    def test_load_config_with_env_vars(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TEST_TOKEN", "my-secret-token")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            """
namecheap:
  username: u
  api_user: a
  token: "${TEST_TOKEN}"
  domain: example.com
protos:
  app_id: id
"""
        )

        assert load_config(config_file).namecheap.token == "my-secret-token"

    def test_missing_required_field(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("namecheap:\n  username: u\nprotos:\n  app_id: id\n")

        with pytest.raises(ValidationError):
            load_config(config_file)

    def test_load_config_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_load_config_not_a_mapping(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ValueError, match="mapping"):
            load_config(config_file)


class TestLoadConfigAuto:
    def test_env_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NAMECHEAP_USERNAME", "env-user")
        monkeypatch.setenv("NAMECHEAP_API_USER", "env-apiuser")
        monkeypatch.setenv("NAMECHEAP_TOKEN", "env-token")
        monkeypatch.setenv("NAMECHEAP_DOMAIN", "example.org")
        monkeypatch.setenv("PROTOS_APPID", "env-appid")
        monkeypatch.setenv("INTERVAL", "45")
        monkeypatch.setenv("MAX_VERIFY_ATTEMPTS", "12")

        config, source = load_config_auto()

        assert source == "environment"
        assert config.namecheap.username == "env-user"
        assert config.namecheap.domain == "example.org"
        assert config.settings.interval == 45
        assert config.settings.max_verify_attempts == 12

    def test_precedence(self, sample_config_yaml: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("INTERVAL", "90")
        monkeypatch.setenv("NAMECHEAP_DOMAIN", "env.example")

        config, source = load_config_auto(
            sample_config_yaml,
            {"namecheap": {"domain": "cli.example", "token": None}, "settings": {}},
        )

        assert source == f"{sample_config_yaml}+environment+command line"
        assert config.settings.interval == 90
        assert config.namecheap.domain == "cli.example"
        # None overrides leave the file value in place
        assert config.namecheap.token == "test-token"

    def test_missing_everything(self) -> None:
        with pytest.raises(ValidationError):
            load_config_auto()

    def test_default_path_used(self, sample_config_yaml: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", sample_config_yaml)

        config, source = load_config_auto()

        assert source == str(sample_config_yaml)
        assert config.namecheap.username == "test-user"


class TestHelpers:
    def test_config_from_env_skips_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NAMECHEAP_DOMAIN", "example.com")
        monkeypatch.setenv("PROTOS_URL", "")
        assert config_from_env() == {"namecheap": {"domain": "example.com"}}

    def test_merge_config(self) -> None:
        base = {"namecheap": {"username": "a", "domain": "x.com"}}
        merged = merge_config(base, {"namecheap": {"domain": "y.com"}, "protos": {"app_id": "z"}})
        assert merged == {
            "namecheap": {"username": "a", "domain": "y.com"},
            "protos": {"app_id": "z"},
        }
        # base is not mutated
        assert base["namecheap"]["domain"] == "x.com"
