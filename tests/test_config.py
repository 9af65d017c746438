"""Tests for configuration models, the loader and credentials."""

import pytest
from pydantic import ValidationError

from testsmith.config.credentials import CredentialError, CredentialManager
from testsmith.config.loader import (
    ConfigLoader,
    ConfigurationError,
    env_config,
    find_config_file,
    parse_env_value,
)
from testsmith.config.models import TestSmithConfig, deep_merge


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "TESTSMITH_GENERATION__MAX_ATTEMPTS",
        "TESTSMITH_AGENT__ENABLED",
        "TESTSMITH_PROVIDER",
        "TESTSMITH_CONTEXT",
        "TESTSMITH_CONCURRENCY",
        "TESTSMITH_API_KEY",
        "TESTSMITH_API_BASE",
        "OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "ANTHROPIC_API_KEY",
        "ANTHROPIC_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestModels:
    """Defaults and validation."""

    def test_defaults(self):
        config = TestSmithConfig()

        assert config.llm.provider == "openai"
        assert config.budget.context_fraction == 0.5
        assert config.budget.prompt_reserve == 768
        assert config.generation.max_attempts == 3
        assert config.generation.state_file == ".testsmith-state.json"
        assert not config.agent.enabled
        assert config.agent.max_tool_calls == 40

    def test_unknown_section_rejected(self):
        with pytest.raises(ValidationError):
            TestSmithConfig(unknown={})

    def test_bounds(self):
        with pytest.raises(ValidationError):
            TestSmithConfig(generation={"max_attempts": 0})
        with pytest.raises(ValidationError):
            TestSmithConfig(llm={"context_size": 512})

    def test_update_from_dict_merges(self):
        config = TestSmithConfig().update_from_dict({"agent": {"enabled": True}})

        assert config.agent.enabled
        assert config.agent.max_tool_calls == 40

    def test_deep_merge_does_not_mutate(self):
        base = {"a": {"b": 1, "c": 2}}

        merged = deep_merge(base, {"a": {"b": 3}})

        assert merged == {"a": {"b": 3, "c": 2}}
        assert base == {"a": {"b": 1, "c": 2}}


class TestConfigLoader:
    """Merging files, environment and CLI overrides."""

    def test_defaults_without_file(self, tmp_path):
        config = ConfigLoader(search_dir=tmp_path).load_config()

        assert config == TestSmithConfig()

    def test_toml_file_found_in_search_dir(self, tmp_path):
        (tmp_path / ".testsmith.toml").write_text(
            '[llm]\nprovider = "anthropic"\nmodel = "claude-sonnet-4-5"\n\n[generation]\nmax_attempts = 5\n',
            encoding="utf-8",
        )

        config = ConfigLoader(search_dir=tmp_path).load_config()

        assert config.llm.provider == "anthropic"
        assert config.generation.max_attempts == 5

    def test_toml_preferred_over_yaml(self, tmp_path):
        (tmp_path / "testsmith.yml").write_text("generation:\n  max_attempts: 2\n", encoding="utf-8")
        (tmp_path / ".testsmith.toml").write_text("[generation]\nmax_attempts = 4\n", encoding="utf-8")

        assert find_config_file(tmp_path) == tmp_path / ".testsmith.toml"
        assert ConfigLoader(search_dir=tmp_path).load_config().generation.max_attempts == 4

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("discovery:\n  include:\n    - 'src/**/*.ts'\n  min_lines: 3\n", encoding="utf-8")

        config = ConfigLoader(path).load_config()

        assert config.discovery.include == ["src/**/*.ts"]
        assert config.discovery.min_lines == 3

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "testsmith.yml"
        path.write_text("", encoding="utf-8")

        assert ConfigLoader(path).load_config() == TestSmithConfig()

    def test_precedence(self, tmp_path, monkeypatch):
        (tmp_path / "testsmith.yml").write_text("generation:\n  max_attempts: 2\n", encoding="utf-8")
        monkeypatch.setenv("TESTSMITH_GENERATION__MAX_ATTEMPTS", "4")
        monkeypatch.setenv("TESTSMITH_AGENT__ENABLED", "true")

        loader = ConfigLoader(search_dir=tmp_path)
        config = loader.load_config(cli_overrides={"generation": {"max_attempts": 6}})

        assert config.generation.max_attempts == 6
        assert config.agent.enabled

        env_only = loader.load_config(reload=True)
        assert env_only.generation.max_attempts == 4

    def test_env_shorthands(self, tmp_path):
        environ = {
            "TESTSMITH_PROVIDER": "anthropic",
            "TESTSMITH_CONTEXT": "16384",
            "TESTSMITH_CONCURRENCY": "3",
            "TESTSMITH_API_KEY": "sk-not-a-setting",
        }

        config = ConfigLoader(search_dir=tmp_path, environ=environ).load_config()

        assert config.llm.provider == "anthropic"
        assert config.llm.context_size == 16384
        assert config.generation.concurrency == 3

    def test_nested_variable_beats_shorthand(self):
        environ = {"TESTSMITH_CONCURRENCY": "3", "TESTSMITH_GENERATION__CONCURRENCY": "5"}

        assert env_config(environ) == {"generation": {"concurrency": 5}}

    def test_flat_variables_are_not_settings(self):
        assert env_config({"TESTSMITH_API_KEY": "sk", "TESTSMITH_API_BASE": "http://x", "HOME": "/root"}) == {}

    def test_cli_beats_shorthand(self, tmp_path):
        loader = ConfigLoader(search_dir=tmp_path, environ={"TESTSMITH_PROVIDER": "anthropic"})

        config = loader.load_config(cli_overrides={"llm": {"provider": "openai"}})

        assert config.llm.provider == "openai"

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[llm\nprovider=", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            ConfigLoader(path).load_config()

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "bad.yml"
        path.write_text("generation:\n  concurrency: 99\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="validation failed"):
            ConfigLoader(path).load_config()

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- llm\n- agent\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigLoader(path).load_config()

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{}", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Unsupported configuration file"):
            ConfigLoader(path).load_config()

    def test_explicit_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            ConfigLoader(tmp_path / "nope.toml").load_config()

    def test_cached(self, tmp_path):
        loader = ConfigLoader(search_dir=tmp_path)

        assert loader.load_config() is loader.load_config()

    def test_env_value_parsing(self):
        assert parse_env_value("on") is True
        assert parse_env_value("Off") is False
        assert parse_env_value("7") == 7
        assert parse_env_value("0.25") == 0.25
        assert parse_env_value("a, b") == ["a", "b"]
        assert parse_env_value("gpt-4.1-mini") == "gpt-4.1-mini"


class TestCredentials:
    """Per-provider key and endpoint resolution."""

    def test_openai_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", " sk-test ")
        monkeypatch.setenv("OPENAI_BASE_URL", "http://localhost:8080/v1")

        creds = CredentialManager().get_provider_credentials("openai")

        assert creds.source == "OPENAI_API_KEY"
        assert creds.client_kwargs() == {"api_key": "sk-test", "base_url": "http://localhost:8080/v1"}

    def test_testsmith_key_wins(self, monkeypatch):
        monkeypatch.setenv("TESTSMITH_API_KEY", "sk-tool")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")

        creds = CredentialManager().get_provider_credentials("openai")

        assert creds.api_key.get_secret_value() == "sk-tool"
        assert creds.source == "TESTSMITH_API_KEY"

    def test_injected_environment(self):
        manager = CredentialManager(
            environ={"ANTHROPIC_API_KEY": "sk-ant", "ANTHROPIC_BASE_URL": "http://proxy.local"}
        )

        creds = manager.get_provider_credentials("anthropic")

        assert creds.client_kwargs() == {"api_key": "sk-ant", "base_url": "http://proxy.local"}

    def test_missing_credentials(self):
        with pytest.raises(CredentialError, match="ANTHROPIC_API_KEY"):
            CredentialManager(environ={}).get_provider_credentials("anthropic")

    def test_missing_key_points_at_configured_provider(self):
        manager = CredentialManager(environ={"OPENAI_API_KEY": "sk-openai"})

        with pytest.raises(CredentialError, match="configured for: openai"):
            manager.get_provider_credentials("anthropic")
        assert manager.available_providers() == ["openai"]

    def test_unknown_provider(self):
        with pytest.raises(CredentialError, match="Unknown provider"):
            CredentialManager(environ={}).get_provider_credentials("llama")

    def test_overrides_used_without_env(self):
        manager = CredentialManager({"anthropic_api_key": "sk-ant"}, environ={})

        creds = manager.get_provider_credentials("anthropic")

        assert creds.client_kwargs() == {"api_key": "sk-ant"}
        assert creds.source == "config"

    def test_environment_beats_overrides(self):
        manager = CredentialManager({"openai_api_key": "sk-config"}, environ={"OPENAI_API_KEY": "sk-env"})

        assert manager.get_provider_credentials("openai").api_key.get_secret_value() == "sk-env"

    def test_resolved_credentials_are_cached(self):
        environ = {"OPENAI_API_KEY": "sk-first"}
        manager = CredentialManager(environ=environ)
        first = manager.get_provider_credentials("openai")
        environ["OPENAI_API_KEY"] = "sk-second"

        assert manager.get_provider_credentials("openai") is first

    def test_secret_not_in_repr(self):
        creds = CredentialManager(environ={"OPENAI_API_KEY": "sk-very-secret"}).get_provider_credentials("openai")

        assert "sk-very-secret" not in repr(creds)
        assert "sk-very-secret" not in str(creds)
