"""Streaming endpoint clients for the monitored model."""

from .base import EndpointClient, ExecutionResult, StreamChunk, hash_output
from .anthropic import AnthropicClient
from .openai import OpenAIClient
from .factory import PROVIDERS, create_client

__all__ = [
    "EndpointClient",
    "ExecutionResult",
    "StreamChunk",
    "hash_output",
    "AnthropicClient",
    "OpenAIClient",
    "PROVIDERS",
    "create_client",
]
