"""Process configuration — env-driven.

Centralized settings using pydantic-settings.  Reads from a ``.env`` file
and ``FLOWGATE_*`` environment variables.  The core never reads the
environment itself; it consumes the already-parsed values from here.
"""

from __future__ import annotations

import json
import os
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from flowgate.core.credential_gate import DEFAULT_CREDENTIAL_PATTERN
from flowgate.models.config import RunnerConfig
from flowgate.models.tool_servers import ToolServer


class FlowgateSettings(BaseSettings):
    """Process settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export FLOWGATE_GROQ_API_KEY=gsk_...
        export FLOWGATE_LOG_LEVEL=DEBUG
        export FLOWGATE_TOOL_SERVERS='[{"id": "docs", "endpoint": "https://docs.example/mcp"}]'

    Or via .env file::

        FLOWGATE_REGISTRY_ENABLED=false
        FLOWGATE_MAX_TOOL_ROUNDS=2
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FLOWGATE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime
    log_level: str = "INFO"

    # Model capability
    groq_api_key: str = ""
    credential_pattern: str = DEFAULT_CREDENTIAL_PATTERN
    model_base_url: str = "https://api.groq.com/openai/v1"
    model_name: str = "llama-3.3-70b-versatile"
    system_prompt: str = "You are a helpful assistant. Use tools only when they are needed."

    # Tool servers.  ``None`` means the stock catalogue.
    registry_enabled: bool = True
    tool_servers: list[ToolServer] | None = None

    # Runner limits (seconds)
    max_tool_rounds: int = 3
    model_timeout: float | None = 60.0
    tool_timeout: float | None = 30.0
    approval_timeout: float | None = None
    probe_timeout: float = 10.0

    @field_validator("tool_servers", mode="before")
    @classmethod
    def _parse_servers(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value) if value.strip() else None
        return value

    def resolved_api_key(self) -> str:
        """The configured key, falling back to the bare ``GROQ_API_KEY``."""
        return self.groq_api_key or os.environ.get("GROQ_API_KEY", "")

    def runner_config(self) -> RunnerConfig:
        return RunnerConfig(
            max_tool_rounds=self.max_tool_rounds,
            model_timeout=self.model_timeout,
            tool_timeout=self.tool_timeout,
            approval_timeout=self.approval_timeout,
            system_prompt=self.system_prompt,
        )


# Module-level singleton; import as `from flowgate.config import settings`
settings = FlowgateSettings()
