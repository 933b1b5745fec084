"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from ledger_intake.config import (
    Config,
    ConfigValidationError,
    ImportConfig,
    LLMConfig,
    create_default_config,
    load_config,
)

ENV_VARS = (
    "INTAKE_LLM_ENABLED",
    "OLLAMA_URL",
    "OLLAMA_AUTH_HEADER",
    "OLLAMA_MODEL",
    "OLLAMA_VISION_MODEL",
    "OLLAMA_TIMEOUT",
    "INTAKE_UPLOAD_DIR",
    "INTAKE_STATE_DB",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """Tests for YAML loading and env overrides."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config.llm.enabled is True
        assert config.llm.ollama_url == "http://localhost:11434"
        assert config.imports.max_screenshots == 5
        assert config.imports.auto_confirm_threshold == 0.7
        assert config.state_db_path == Path("data/state.db")

    def test_default_file_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        create_default_config(path)

        config = load_config(path, strict=True)

        assert config == load_config(tmp_path / "absent.yaml")

    def test_yaml_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            """
llm:
  enabled: false
  text_model: "llama3.1:8b"
  max_retries: 5
imports:
  max_screenshots: 3
  import_email_domain: "in.example.test"
storage:
  upload_dir: "/srv/uploads"
state_db_path: "/srv/state.db"
"""
        )
        config = load_config(path)

        assert config.llm.enabled is False
        assert config.llm.text_model == "llama3.1:8b"
        assert config.llm.max_retries == 5
        assert config.imports.max_screenshots == 3
        assert config.imports.import_email_domain == "in.example.test"
        assert config.storage.upload_dir == Path("/srv/uploads")
        assert config.state_db_path == Path("/srv/state.db")

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("llm:\n  enabled: true\n  ollama_url: http://gpu-box:11434\n")
        monkeypatch.setenv("INTAKE_LLM_ENABLED", "false")
        monkeypatch.setenv("OLLAMA_URL", "http://other:11434")
        monkeypatch.setenv("OLLAMA_TIMEOUT", "30")
        monkeypatch.setenv("INTAKE_STATE_DB", str(tmp_path / "env.db"))

        config = load_config(path)

        assert config.llm.enabled is False
        assert config.llm.ollama_url == "http://other:11434"
        assert config.llm.timeout_seconds == 30
        assert config.state_db_path == tmp_path / "env.db"

    def test_unrecognized_bool_env_ignored(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INTAKE_LLM_ENABLED", "maybe")
        assert load_config(tmp_path / "absent.yaml").llm.enabled is True

    def test_strict_rejects_invalid(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("imports:\n  auto_confirm_threshold: 1.5\n  stuck_job_minutes: 0\n")

        assert load_config(path).imports.auto_confirm_threshold == 1.5
        with pytest.raises(ConfigValidationError, match="auto_confirm_threshold"):
            load_config(path, strict=True)


class TestValidate:
    """Tests for Config.validate."""

    def test_defaults_valid(self):
        assert Config().validate() == []

    def test_collects_every_error(self):
        config = Config(
            llm=LLMConfig(max_retries=0, backoff_base_seconds=5.0, backoff_cap_seconds=1.0),
            imports=ImportConfig(vision_confidence_floor=-0.1, max_screenshots=0),
        )
        errors = config.validate()

        assert "llm.max_retries must be >= 1" in errors
        assert "llm.backoff_cap_seconds must be >= backoff_base_seconds" in errors
        assert "imports.vision_confidence_floor must be between 0 and 1" in errors
        assert "imports.max_screenshots must be >= 1" in errors

    def test_url_required_when_enabled(self):
        assert Config(llm=LLMConfig(ollama_url="")).validate() == [
            "llm.ollama_url is required when LLM is enabled"
        ]
        assert Config(llm=LLMConfig(enabled=False, ollama_url="")).validate() == []

    def test_is_remote(self):
        assert not LLMConfig(ollama_url="http://localhost:11434").is_remote()
        assert LLMConfig(ollama_url="https://ollama.example.com").is_remote()
