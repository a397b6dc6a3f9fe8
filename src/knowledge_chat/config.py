"""Configuration management for knowledge-chat."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

_logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    base_url: str = "http://localhost:8090"
    api_prefix: str = "/api/v1"
    request_timeout: float = 15.0  # non-streaming lookups
    connect_timeout: float = 30.0
    stream_read_timeout: float | None = None  # None = wait as long as the backend needs
    headers: dict[str, str] = Field(default_factory=dict)

    def url_for(self, path: str) -> str:
        """Join the API prefix and *path* into a URL relative to ``base_url``."""
        prefix = "/" + self.api_prefix.strip("/") if self.api_prefix.strip("/") else ""
        return f"{prefix}/{path.lstrip('/')}"


class ChatConfig(BaseModel):
    default_model: str | None = None
    default_rag_tag: str | None = None
    show_reasoning: bool = True


class KnowledgeChatConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    log_level: str = "WARNING"


CONFIG_FILENAME = "knowledge_chat.yaml"

# Environment variables applied on top of whatever file was loaded
_ENV_OVERRIDES = {
    "KNOWLEDGE_CHAT_BASE_URL": "base_url",
    "KNOWLEDGE_CHAT_API_PREFIX": "api_prefix",
}


def _apply_env(config: KnowledgeChatConfig) -> KnowledgeChatConfig:
    updates: dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            updates[field_name] = value
    if not updates:
        return config
    _logger.debug("Environment overrides: %s", sorted(updates))
    server = config.server.model_copy(update=updates)
    return config.model_copy(update={"server": server})


def load_config(
    config_path: str | Path | None = None,
) -> tuple[KnowledgeChatConfig, Path | None]:
    """Load configuration from YAML file.

    Returns (config, resolved_path).  *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.

    Search order (first match wins):
      1. Explicit ``--config`` path
      2. Current working directory: ``./knowledge_chat.yaml``
      3. User config dir: ``~/.knowledge_chat/knowledge_chat.yaml``
    """
    if config_path is None:
        for d in (Path.cwd(), Path.home() / ".knowledge_chat"):
            candidate = d / CONFIG_FILENAME
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return _apply_env(KnowledgeChatConfig()), None

    resolved = Path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    _logger.info("Loading config from %s", resolved)
    with open(resolved) as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}
    config = KnowledgeChatConfig.model_validate(raw)
    return _apply_env(config), resolved.resolve()
