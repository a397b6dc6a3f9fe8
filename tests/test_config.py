"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from knowledge_chat.config import (
    CONFIG_FILENAME,
    KnowledgeChatConfig,
    ServerConfig,
    load_config,
)


@pytest.fixture(autouse=True)
def _isolate(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep the real CWD and home directory out of config discovery."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(Path, "home", lambda: tmp_path / "home")
    monkeypatch.delenv("KNOWLEDGE_CHAT_BASE_URL", raising=False)
    monkeypatch.delenv("KNOWLEDGE_CHAT_API_PREFIX", raising=False)


class TestServerConfig:
    def test_defaults(self):
        cfg = ServerConfig()
        assert cfg.base_url == "http://localhost:8090"
        assert cfg.stream_read_timeout is None

    @pytest.mark.parametrize("prefix, expected", [
        ("/api/v1", "/api/v1/ollama/models"),
        ("api/v1/", "/api/v1/ollama/models"),
        ("", "/ollama/models"),
        ("/", "/ollama/models"),
    ])
    def test_url_for(self, prefix: str, expected: str):
        assert ServerConfig(api_prefix=prefix).url_for("/ollama/models") == expected


class TestLoadConfig:
    def test_defaults_when_no_file(self):
        config, path = load_config()
        assert path is None
        assert config == KnowledgeChatConfig()

    def test_cwd_file(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text(
            "server:\n"
            "  base_url: http://kb.internal:9000\n"
            "chat:\n"
            "  default_model: deepseek-r1\n"
            "  show_reasoning: false\n"
        )
        config, path = load_config()
        assert path == (tmp_path / CONFIG_FILENAME).resolve()
        assert config.server.base_url == "http://kb.internal:9000"
        assert config.server.api_prefix == "/api/v1"
        assert config.chat.default_model == "deepseek-r1"
        assert config.chat.show_reasoning is False

    def test_home_file(self, tmp_path: Path):
        home_dir = tmp_path / "home" / ".knowledge_chat"
        home_dir.mkdir(parents=True)
        (home_dir / CONFIG_FILENAME).write_text("log_level: DEBUG\n")
        config, path = load_config()
        assert path == (home_dir / CONFIG_FILENAME).resolve()
        assert config.log_level == "DEBUG"

    def test_explicit_path(self, tmp_path: Path):
        cfg_file = tmp_path / "custom.yaml"
        cfg_file.write_text("server:\n  api_prefix: /v2\n")
        config, path = load_config(cfg_file)
        assert path == cfg_file.resolve()
        assert config.server.api_prefix == "/v2"

    def test_explicit_missing_path(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text("")
        config, _ = load_config()
        assert config == KnowledgeChatConfig()

    def test_env_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        (tmp_path / CONFIG_FILENAME).write_text("server:\n  base_url: http://from-file\n")
        monkeypatch.setenv("KNOWLEDGE_CHAT_BASE_URL", "http://from-env:8090")
        monkeypatch.setenv("KNOWLEDGE_CHAT_API_PREFIX", "/api/v9")
        config, _ = load_config()
        assert config.server.base_url == "http://from-env:8090"
        assert config.server.api_prefix == "/api/v9"
