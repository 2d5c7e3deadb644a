"""Registry mapping the configured provider name to an endpoint client."""

import logging
from typing import Dict, Optional, Type

import httpx

from core.config import MonitorSettings
from core.errors import ConfigError
from .anthropic import AnthropicClient
from .base import EndpointClient
from .openai import OpenAIClient

logger = logging.getLogger(__name__)

PROVIDERS: Dict[str, Type[EndpointClient]] = {
    "anthropic": AnthropicClient,
    "openai": OpenAIClient,
}


def create_client(
    settings: MonitorSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EndpointClient:
    """Create the endpoint client for ``settings.provider``."""
    if settings.provider not in PROVIDERS:
        available = ", ".join(PROVIDERS.keys())
        raise ConfigError(f"Unknown provider: {settings.provider}. Available: {available}")

    if settings.provider == "anthropic" and not settings.api_key:
        logger.warning(f"API key not found in {settings.api_key_env}; requests will fail")

    client = PROVIDERS[settings.provider](settings, transport=transport)
    logger.info(f"Created {settings.provider} client for model {settings.model_id}")
    return client
