"""Configuration management for the tool relay."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _parse_intervals(raw: Optional[str], default: Tuple[float, ...]) -> Tuple[float, ...]:
    if not raw:
        return default
    return tuple(float(part) for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI service configuration."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI (or OpenAI-compatible) endpoint configuration."""

    api_key: str
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    max_concurrent: int = 50


@dataclass(frozen=True)
class ExecutorConfig:
    concurrent_limit: int = 3
    session_limit: int = 25
    timeout_ms: int = 30000


@dataclass(frozen=True)
class HealthConfig:
    check_interval_s: float = 30.0
    backoff_intervals_ms: Tuple[float, ...] = (1000.0, 5000.0, 15000.0)


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    openai: Optional[OpenAIConfig] = None
    azure_openai: Optional[AzureOpenAIConfig] = None
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    max_turns: int = 5
    chat_timeout_s: float = 120.0
    log_level: str = "INFO"
    environment: str = "development"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        openai_config = None
        openai_key = os.getenv("OPENAI_API_KEY")
        if openai_key:
            openai_config = OpenAIConfig(
                api_key=openai_key,
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                max_concurrent=int(os.getenv("OPENAI_MAX_CONCURRENT", "50")),
            )

        azure_config = None
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if azure_key and azure_endpoint:
            azure_config = AzureOpenAIConfig(
                api_key=azure_key,
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT", "gpt-4"),
                max_concurrent=int(os.getenv("AZURE_OPENAI_MAX_CONCURRENT", "50")),
            )

        executor = ExecutorConfig(
            concurrent_limit=int(os.getenv("TOOLRELAY_CONCURRENT_LIMIT", "3")),
            session_limit=int(os.getenv("TOOLRELAY_SESSION_LIMIT", "25")),
            timeout_ms=int(os.getenv("TOOLRELAY_TOOL_TIMEOUT_MS", "30000")),
        )
        health = HealthConfig(
            check_interval_s=float(os.getenv("TOOLRELAY_HEALTH_INTERVAL_S", "30")),
            backoff_intervals_ms=_parse_intervals(
                os.getenv("TOOLRELAY_HEALTH_BACKOFF_MS"), HealthConfig.backoff_intervals_ms
            ),
        )

        return cls(
            openai=openai_config,
            azure_openai=azure_config,
            executor=executor,
            health=health,
            max_turns=int(os.getenv("TOOLRELAY_MAX_TURNS", "5")),
            chat_timeout_s=float(os.getenv("TOOLRELAY_CHAT_TIMEOUT_S", "120")),
            log_level=os.getenv("TOOLRELAY_LOG_LEVEL", "INFO"),
            environment=os.getenv("ENVIRONMENT", "development"),
        )


# Global config instance
config = Config.from_env()
