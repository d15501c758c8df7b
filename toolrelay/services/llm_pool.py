"""LLM client pool for shared model access with concurrency control."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI

from toolrelay.config import AzureOpenAIConfig, OpenAIConfig
from toolrelay.core.logger import get_logger


logger = get_logger(__name__)

ClientConfig = Union[OpenAIConfig, AzureOpenAIConfig]


class LLMPool:
    """Manages shared OpenAI-family clients with per-model concurrency limits."""

    def __init__(self) -> None:
        self._configs: Dict[str, ClientConfig] = {}
        self._clients: Dict[str, Any] = {}
        self._semaphores: Dict[str, asyncio.Semaphore] = {}

    def register_openai(self, name: str, config: OpenAIConfig) -> None:
        """Register an OpenAI (or OpenAI-compatible) model configuration."""
        self._register(name, config)

    def register_azure_openai(self, name: str, config: AzureOpenAIConfig) -> None:
        """Register an Azure OpenAI model configuration."""
        self._register(name, config)

    def register_client(self, name: str, client: Any, max_concurrent: int = 50) -> None:
        """Register an already-constructed client."""
        self._clients[name] = client
        self._semaphores[name] = asyncio.Semaphore(max_concurrent)

    def models(self) -> List[str]:
        return sorted(set(self._configs) | set(self._clients))

    def _register(self, name: str, config: ClientConfig) -> None:
        self._configs[name] = config
        self._clients.pop(name, None)
        self._semaphores[name] = asyncio.Semaphore(config.max_concurrent)

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Acquire access to a model client with concurrency control."""
        if model_name not in self._semaphores:
            raise KeyError(f"Model '{model_name}' not registered in LLM pool")

        semaphore = self._semaphores[model_name]
        async with semaphore:
            # Lazy initialization on first use
            if model_name not in self._clients:
                self._clients[model_name] = self._create_client(self._configs[model_name])
                logger.debug("Initialized LLM client for %s", model_name)
            yield self._clients[model_name]

    @staticmethod
    def _create_client(config: ClientConfig) -> Any:
        if isinstance(config, AzureOpenAIConfig):
            return AsyncAzureOpenAI(
                api_key=config.api_key,
                api_version=config.api_version,
                azure_endpoint=config.endpoint,
            )
        return AsyncOpenAI(api_key=config.api_key, base_url=config.base_url)
