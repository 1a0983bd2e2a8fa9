"""
Build a ChatClient from settings.

Credentials and endpoint overrides come from the environment, never from
the YAML file:

    OPENAI_API_KEY, OPENAI_BASE_URL
    ANTHROPIC_API_KEY
    GEMINI_API_KEY
    OLLAMA_HOST

``llm.base_url`` in the settings wins over the environment.
"""

import os
from collections.abc import Mapping

import structlog

from agentwire.clients.anthropic import AnthropicClient
from agentwire.clients.base import ChatClient
from agentwire.clients.gemini import GeminiClient
from agentwire.clients.ollama import OllamaClient
from agentwire.clients.openai import OpenAIClient
from agentwire.errors import ConfigurationError, MissingCredentialsError
from agentwire.schema import LLMSettings
from agentwire.tools.registry import ToolRegistry

CLIENTS: dict[str, type[ChatClient]] = {
    "ollama": OllamaClient,
    "openai": OpenAIClient,
    "anthropic": AnthropicClient,
    "gemini": GeminiClient,
}

API_KEY_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

BASE_URL_VARS = {
    "openai": "OPENAI_BASE_URL",
    "ollama": "OLLAMA_HOST",
}


def _ollama_url(host: str) -> str:
    # OLLAMA_HOST is often set as host:port without a scheme
    if "://" not in host:
        return f"http://{host}"
    return host


def create_client(
    settings: LLMSettings,
    registry: ToolRegistry | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
    env: Mapping[str, str] | None = None,
) -> ChatClient:
    """
    Create the adapter selected by ``settings.backend``.

    Args:
        settings: Backend settings
        registry: Tools to offer the model
        logger: structlog logger
        env: Environment to read credentials from (defaults to os.environ)

    Returns:
        Configured ChatClient

    Raises:
        MissingCredentialsError: The backend needs an API key that is not set
        ConfigurationError: Unknown backend
    """
    env = os.environ if env is None else env

    client_cls = CLIENTS.get(settings.backend)
    if client_cls is None:
        raise ConfigurationError(setting=f"llm.backend={settings.backend}")

    api_key = None
    key_var = API_KEY_VARS.get(settings.backend)
    if key_var is not None:
        api_key = env.get(key_var)
        if not api_key:
            raise MissingCredentialsError(setting="llm.backend", env_var=key_var)

    base_url = settings.base_url
    url_var = BASE_URL_VARS.get(settings.backend)
    if base_url is None and url_var is not None and env.get(url_var):
        base_url = env[url_var]
        if settings.backend == "ollama":
            base_url = _ollama_url(base_url)

    return client_cls(
        model=settings.model,
        base_url=base_url,
        api_key=api_key,
        max_tokens=settings.max_tokens,
        thinking=settings.thinking,
        timeout_seconds=settings.timeout_seconds,
        stream=settings.stream,
        registry=registry,
        logger=logger,
    )
