"""Tests for startup configuration validation."""

import pytest

from appointment_agent.config import Settings


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestValidateStartup:
    def test_claude_without_key_raises(self):
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            make_settings(llm_provider="claude", anthropic_api_key="").validate_startup()

    def test_claude_placeholder_key_raises(self):
        with pytest.raises(ValueError):
            make_settings(llm_provider="claude", anthropic_api_key="sk-ant-...").validate_startup()

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="LLM_PROVIDER"):
            make_settings(llm_provider="gpt").validate_startup()

    def test_ollama_needs_no_key(self):
        warnings = make_settings(llm_provider="ollama", backend_api_key="").validate_startup()
        assert any("BACKEND_API_KEY" in w for w in warnings)

    def test_bad_timezone_raises(self):
        cfg = make_settings(llm_provider="ollama", org_timezone="Mars/Olympus_Mons")
        with pytest.raises(ValueError, match="ORG_TIMEZONE"):
            cfg.validate_startup()

    def test_security_filter_needs_resk(self, monkeypatch):
        import appointment_agent.config as config

        monkeypatch.setattr(config.importlib.util, "find_spec", lambda name: None)
        cfg = make_settings(llm_provider="ollama", security_filter_enabled=True)
        with pytest.raises(ValueError, match="SECURITY_FILTER_ENABLED"):
            cfg.validate_startup()

    def test_clean_config_has_no_warnings(self):
        cfg = make_settings(
            llm_provider="claude",
            anthropic_api_key="sk-ant-real",
            backend_api_key="k",
            org_timezone="America/Chicago",
        )
        assert cfg.validate_startup() == []

    def test_non_positive_oracle_timeout_warns(self):
        cfg = make_settings(llm_provider="ollama", backend_api_key="k", oracle_timeout_seconds=0)
        assert any("ORACLE_TIMEOUT_SECONDS" in w for w in cfg.validate_startup())


class TestEnvironment:
    def test_reads_env_vars(self, monkeypatch):
        monkeypatch.setenv("ORG_TIMEZONE", "America/Denver")
        monkeypatch.setenv("DEFAULT_ORG_ID", "7")
        cfg = make_settings()
        assert cfg.org_timezone == "America/Denver"
        assert cfg.default_org_id == 7
