"""OpenAI-compatible chat completions streaming client (self-hosted endpoints)."""

import json
import logging
from typing import AsyncIterator, Dict, Optional

from core.errors import EndpointError
from .anthropic import iter_sse_data
from .base import EndpointClient, StreamChunk

logger = logging.getLogger(__name__)


class OpenAIClient(EndpointClient):
    """Streams /v1/chat/completions; each non-empty content delta is one chunk."""

    default_base_url = "https://api.openai.com"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

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

        async with self.client.stream("POST", "/v1/chat/completions", json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                response.raise_for_status()

            async for data in iter_sse_data(response):
                if not data:
                    continue
                if data == "[DONE]":
                    break
                event = json.loads(data)
                if "error" in event:
                    raise EndpointError(str(event["error"].get("message", event["error"])))

                request_id = event.get("id")
                for choice in event.get("choices", []):
                    delta = choice.get("delta") or {}
                    yield StreamChunk(
                        text=delta.get("content") or None,
                        request_id=request_id,
                        finish_reason=choice.get("finish_reason"),
                    )
