"""Tests for settings resolution, local CLI defaults and env hydration."""
from __future__ import annotations

import json
import os

import pytest

from luskui.engine import env as env_module
from luskui.engine.config import Settings, load_settings, load_yaml_settings, normalize_effort
from luskui.engine.env import hydrate_env, load_claude_credentials, load_env_file
from luskui.engine.local_config import read_codex_defaults, read_vibe_config

_ENV_VARS = (
    "REPO_ROOT", "HOST", "PORT", "CODEX_CONFIG", "CODEX_AUTH",
    "LUSKUI_BACKEND", "LUSKUI_MODEL", "LUSKUI_EFFORT", "LUSKUI_CLAUDE_MODEL",
    "LUSKUI_MISTRAL_MODEL", "LUSKUI_MODEL_CACHE_MS", "LUSKUI_MODEL_FETCH_TIMEOUT_MS",
    "LUSKUI_SKIP_GIT_CHECK", "LUSKUI_LOG", "LUSKUI_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    # Point the Codex config somewhere empty so the host's real one is not read.
    monkeypatch.setenv("CODEX_CONFIG", str(tmp_path / "no-codex.toml"))
    return monkeypatch


def test_normalize_effort():
    assert normalize_effort(" High ") == "high"
    assert normalize_effort("extreme") is None
    assert normalize_effort(3) is None


def test_load_yaml_settings(tmp_path):
    assert load_yaml_settings(None) == {}
    assert load_yaml_settings(tmp_path / "missing.yaml") == {}
    bad = tmp_path / "bad.yaml"
    bad.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_yaml_settings(bad) == {}


def test_defaults(clean_env, tmp_path):
    clean_env.setenv("REPO_ROOT", str(tmp_path))
    settings = Settings.from_env()
    assert settings.backend == "codex"
    assert settings.port == 7860
    assert settings.codex_model is None
    assert settings.claude_model == "claude-sonnet-4-5-20250929"
    assert settings.mistral_model == "mistral-large-latest"
    # Not a git checkout.
    assert settings.skip_git_repo_check is True


def test_env_overrides_yaml(clean_env, tmp_path):
    (tmp_path / ".git").mkdir()
    yaml_data = {
        "server": {"host": "127.0.0.1", "port": 9000, "repo_root": str(tmp_path)},
        "backend": "claude",
        "models": {
            "cache_ttl_seconds": 10,
            "codex": {"model": "o3", "effort": "low"},
            "extra": {"claude": ["claude-custom"]},
        },
    }
    clean_env.setenv("PORT", "9100")
    clean_env.setenv("LUSKUI_EFFORT", "HIGH")
    clean_env.setenv("LUSKUI_MODEL_FETCH_TIMEOUT_MS", "2500")

    settings = Settings.from_env(yaml_data)

    assert settings.host == "127.0.0.1"
    assert settings.port == 9100
    assert settings.backend == "claude"
    assert settings.codex_model == "o3"
    assert settings.codex_effort == "high"
    assert settings.model_cache_ttl_seconds == 10
    assert settings.model_fetch_timeout_seconds == pytest.approx(2.5)
    assert settings.extra_models == {"claude": ["claude-custom"]}
    assert settings.skip_git_repo_check is False


def test_codex_and_vibe_toml_defaults(clean_env, tmp_path):
    codex = tmp_path / "codex.toml"
    codex.write_text('model = "gpt-5-codex"\nmodel_reasoning_effort = "minimal"\n', encoding="utf-8")
    (tmp_path / ".vibe").mkdir()
    (tmp_path / ".vibe" / "config.toml").write_text(
        'active_model = "devstral"\n[models]\nfast = { id = "mistral-small" }\n',
        encoding="utf-8",
    )
    clean_env.setenv("CODEX_CONFIG", str(codex))
    clean_env.setenv("REPO_ROOT", str(tmp_path))

    settings = Settings.from_env()

    assert settings.codex_model == "gpt-5-codex"
    assert settings.codex_effort == "minimal"
    assert settings.mistral_model == "devstral"
    assert settings.extra_models["mistral"] == ["mistral-small"]


def test_local_config_readers_tolerate_garbage(tmp_path):
    bad = tmp_path / "config.toml"
    bad.write_text("model = [unterminated", encoding="utf-8")
    assert read_codex_defaults(bad).model is None
    assert read_vibe_config(tmp_path / "nowhere").models == []


def test_load_settings_discovers_repo_yaml(clean_env, tmp_path):
    (tmp_path / ".luskui").mkdir()
    (tmp_path / ".luskui" / "luskui.yaml").write_text("backend: mistral\n", encoding="utf-8")
    clean_env.setenv("REPO_ROOT", str(tmp_path))
    assert load_settings().backend == "mistral"


class TestEnvHydration:
    def test_env_file_does_not_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LUSKUI_TEST_EXISTING", "from-env")
        monkeypatch.delenv("LUSKUI_TEST_NEW", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("LUSKUI_TEST_EXISTING=from-file\nLUSKUI_TEST_NEW=new\n", encoding="utf-8")

        load_env_file(env_file)

        assert os.environ["LUSKUI_TEST_EXISTING"] == "from-env"
        assert os.environ["LUSKUI_TEST_NEW"] == "new"
        monkeypatch.delenv("LUSKUI_TEST_NEW")

    def test_claude_credentials_nested_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
        creds = tmp_path / ".credentials.json"
        creds.write_text(json.dumps({"credentials": {"api_key": " sk-nested "}}), encoding="utf-8")

        load_claude_credentials(creds)

        assert os.environ["ANTHROPIC_API_KEY"] == "sk-nested"
        assert os.environ["CLAUDE_API_KEY"] == "sk-nested"
        monkeypatch.delenv("ANTHROPIC_API_KEY")
        monkeypatch.delenv("CLAUDE_API_KEY")

    def test_hydrate_env_reads_home(self, monkeypatch, tmp_path):
        monkeypatch.setattr(env_module, "_hydrated", False)
        monkeypatch.delenv("VIBE_CONFIG_DIR", raising=False)
        monkeypatch.delenv("MISTRAL_API_KEY", raising=False)
        (tmp_path / ".vibe").mkdir()
        (tmp_path / ".vibe" / ".env").write_text("MISTRAL_API_KEY=vibe-key\n", encoding="utf-8")

        hydrate_env(home=tmp_path)

        assert os.environ["MISTRAL_API_KEY"] == "vibe-key"
        monkeypatch.delenv("MISTRAL_API_KEY")


def test_non_numeric_yaml_timings_fall_back(clean_env, tmp_path, caplog):
    clean_env.setenv("REPO_ROOT", str(tmp_path))
    yaml_data = {"models": {"cache_ttl_seconds": "soon", "fetch_timeout_seconds": [5]}}

    settings = Settings.from_env(yaml_data)

    assert settings.model_cache_ttl_seconds == 300.0
    assert settings.model_fetch_timeout_seconds == 5.0
    assert "cache_ttl_seconds='soon'" in caplog.text
