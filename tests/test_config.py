"""Tests for tutorbot.config module.

Covers:
- LLMSettings and PipelineSettings defaults and validation
- AppConfig environment variable support
- Configuration load/save to YAML
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from tutorbot.config import AppConfig, LLMSettings, PipelineSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's TUTORBOT_* variables out of these tests."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("TUTORBOT_"):
            monkeypatch.delenv(key)


# ============================================================================
# Settings models
# ============================================================================


class TestLLMSettings:
    def test_defaults(self):
        settings = LLMSettings()
        assert settings.model == "gpt-3.5-turbo"
        assert settings.timeout == 10.0
        assert settings.api_key is None
        assert settings.is_configured() is False

    def test_configured_with_key(self):
        assert LLMSettings(api_key="sk-test").is_configured() is True


class TestPipelineSettings:
    def test_defaults(self):
        settings = PipelineSettings()
        assert settings.trust_rules_threshold == 0.8
        assert settings.context_ttl_seconds == 300
        assert settings.timezone == "Asia/Taipei"
        assert settings.rules_path is None

    def test_threshold_range(self):
        with pytest.raises(ValidationError):
            PipelineSettings(trust_rules_threshold=1.5)

    def test_ttl_positive(self):
        with pytest.raises(ValidationError):
            PipelineSettings(context_ttl_seconds=0)


# ============================================================================
# AppConfig
# ============================================================================


class TestAppConfig:
    def test_defaults(self, tmp_path: Path):
        config = AppConfig(project_path=tmp_path)
        assert config.project_path == tmp_path
        assert config.data_path.name == "data"
        assert config.llm.endpoint == "https://api.openai.com"

    def test_nested_env_vars(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("TUTORBOT_LLM__API_KEY", "sk-env")
        monkeypatch.setenv("TUTORBOT_PIPELINE__TIMEZONE", "Asia/Tokyo")

        config = AppConfig()

        assert config.llm.api_key == "sk-env"
        assert config.pipeline.timezone == "Asia/Tokyo"

    def test_load_without_file(self, tmp_path: Path):
        config = AppConfig.load(tmp_path)
        assert config.pipeline.trust_rules_threshold == 0.8

    def test_load_from_yaml(self, tmp_path: Path):
        config_dir = tmp_path / ".tutorbot"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(
            "data_path: /srv/tutorbot\n"
            "llm:\n"
            "  model: gpt-4\n"
            "  timeout: 5\n"
            "pipeline:\n"
            "  trust_rules_threshold: 0.7\n",
            encoding="utf-8",
        )

        config = AppConfig.load(tmp_path)

        assert config.llm.model == "gpt-4"
        assert config.llm.timeout == 5
        assert config.pipeline.trust_rules_threshold == 0.7
        assert config.data_path == Path("/srv/tutorbot")

    def test_env_beats_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        config_dir = tmp_path / ".tutorbot"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text(
            "data_path: /srv/tutorbot\nllm:\n  model: gpt-4\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("TUTORBOT_LLM__MODEL", "local-model")
        monkeypatch.setenv("TUTORBOT_DATA_PATH", str(tmp_path / "env-data"))

        config = AppConfig.load(tmp_path)

        assert config.llm.model == "local-model"
        assert config.data_path == tmp_path / "env-data"

    def test_save_and_reload(self, tmp_path: Path):
        config = AppConfig(project_path=tmp_path, data_path=tmp_path / "data")
        config.llm = LLMSettings(model="gpt-4", api_key="sk-secret")
        config.pipeline = PipelineSettings(context_ttl_seconds=120)

        config.save()

        saved = (tmp_path / ".tutorbot" / "config.yaml").read_text(encoding="utf-8")
        assert "sk-secret" not in saved

        reloaded = AppConfig.load(tmp_path)
        assert reloaded.llm.model == "gpt-4"
        assert reloaded.llm.api_key is None
        assert reloaded.pipeline.context_ttl_seconds == 120
        assert reloaded.data_path == tmp_path / "data"
