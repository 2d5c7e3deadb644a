"""Anthropic Messages API streaming client."""

import json
import logging
from typing import AsyncIterator, Dict, Optional

from core.errors import EndpointError
from .base import EndpointClient, StreamChunk

logger = logging.getLogger(__name__)


async def iter_sse_data(response) -> AsyncIterator[str]:
    """Yield the payload of each ``data:`` line of a server-sent event stream."""
    async for line in response.aiter_lines():
        if line.startswith("data:"):
            yield line[len("data:"):].strip()


class AnthropicClient(EndpointClient):
    """Streams /v1/messages and decodes content_block_delta events."""

    default_base_url = "https://api.anthropic.com"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "Content-Type": "application/json",
            "anthropic-version": "2023-06-01",
        }

    async def _stream(
        self,
        prompt_text: str,
        max_tokens: int,
        temperature: float,
        top_p: Optional[float],
    ) -> AsyncIterator[StreamChunk]:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt_text}],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": True,
        }
        if top_p is not None:
            payload["top_p"] = top_p

        async with self.client.stream("POST", "/v1/messages", json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                response.raise_for_status()

            async for data in iter_sse_data(response):
                if not data:
                    continue
                event = json.loads(data)
                event_type = event.get("type")

                if event_type == "message_start":
                    yield StreamChunk(request_id=event.get("message", {}).get("id"))
                elif event_type == "content_block_delta":
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield StreamChunk(text=delta["text"])
                elif event_type == "message_delta":
                    stop_reason = event.get("delta", {}).get("stop_reason")
                    if stop_reason:
                        yield StreamChunk(finish_reason=stop_reason)
                elif event_type == "error":
                    error = event.get("error", {})
                    raise EndpointError(f"{error.get('type', 'error')}: {error.get('message', data)}")
                elif event_type == "message_stop":
                    break
