"""Endpoint client contract and the shared streaming measurement loop."""

import asyncio
import hashlib
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Dict, Any, Optional

import httpx
from pydantic import BaseModel

from core.config import MonitorSettings

logger = logging.getLogger(__name__)

MAX_RETRY_CAP = 5


class StreamChunk(BaseModel):
    """One decoded event from a provider stream."""
    text: Optional[str] = None
    request_id: Optional[str] = None
    finish_reason: Optional[str] = None


class ExecutionResult(BaseModel):
    """Measured outcome of one prompt execution. Only the hash is durable by default."""
    output: str = ""
    ttft: Optional[float] = None
    total_latency: float = 0.0
    output_tokens: int = 0
    tokens_per_sec: float = 0.0
    finish_reason: Optional[str] = None
    request_id: str
    output_hash: str
    error: Optional[str] = None


def hash_output(output: str) -> str:
    return hashlib.sha256(output.encode("utf-8")).hexdigest()


def add_nonce(prompt_text: str) -> str:
    """Append a unique, non-semantic nonce so upstream caches cannot serve the prompt."""
    return f"{prompt_text}\n\n[nonce: {uuid.uuid4().hex}]"


def failed_result(error: str, total_latency: float = 0.0) -> ExecutionResult:
    return ExecutionResult(
        total_latency=total_latency,
        request_id=f"error_{uuid.uuid4().hex[:12]}",
        output_hash=hash_output(""),
        error=error,
    )


class EndpointClient(ABC):
    """Executes single prompts against a model endpoint and measures the stream."""

    def __init__(
        self,
        settings: MonitorSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.settings = settings
        self.provider_name = self.__class__.__name__.replace("Client", "").lower()
        self.model = settings.model_id
        self.api_key = settings.api_key
        self._clock = clock
        self._sleep = sleep
        self.client = httpx.AsyncClient(
            base_url=settings.base_url or self.default_base_url,
            headers=self._headers(),
            timeout=settings.request_timeout,
            transport=transport,
        )

    default_base_url = ""

    @abstractmethod
    def _headers(self) -> Dict[str, str]:
        """Static request headers, including authentication."""

    @abstractmethod
    def _stream(
        self,
        prompt_text: str,
        max_tokens: int,
        temperature: float,
        top_p: Optional[float],
    ) -> AsyncIterator[StreamChunk]:
        """Dispatch the request and yield decoded chunks until the stream ends."""

    async def execute(
        self,
        prompt_text: str,
        max_tokens: int,
        cache_busting: bool = False,
        settings: Optional[MonitorSettings] = None,
    ) -> ExecutionResult:
        """Run one prompt. Transport and API failures come back as a failed result.

        ``settings`` carries per-run sampling overrides; the client's own settings
        are used when it is omitted.
        """
        final_prompt = add_nonce(prompt_text) if cache_busting else prompt_text
        sampling = settings or self.settings
        temperature = sampling.temperature
        top_p = sampling.top_p

        start = self._clock()
        ttft: Optional[float] = None
        parts = []
        output_tokens = 0
        request_id = ""
        finish_reason: Optional[str] = None

        try:
            async for chunk in self._stream(final_prompt, max_tokens, temperature, top_p):
                if chunk.request_id and not request_id:
                    request_id = chunk.request_id
                if chunk.finish_reason:
                    finish_reason = chunk.finish_reason
                if chunk.text:
                    if ttft is None:
                        ttft = self._clock() - start
                    parts.append(chunk.text)
                    output_tokens += 1
        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP {e.response.status_code}: {e.response.text}"
            logger.error(f"{self.provider_name} API error: {error_msg}")
            return failed_result(error_msg, self._clock() - start)
        except Exception as e:
            error_msg = f"{self.provider_name} client error: {e}"
            logger.error(error_msg)
            return failed_result(error_msg, self._clock() - start)

        total_latency = self._clock() - start
        output = "".join(parts)
        return ExecutionResult(
            output=output,
            ttft=ttft,
            total_latency=total_latency,
            output_tokens=output_tokens,
            tokens_per_sec=output_tokens / total_latency if total_latency > 0 else 0.0,
            finish_reason=finish_reason,
            request_id=request_id or f"req_{uuid.uuid4().hex[:12]}",
            output_hash=hash_output(output),
        )

    async def execute_with_retry(
        self,
        prompt_text: str,
        max_tokens: int,
        cache_busting: bool = False,
        max_retries: int = 0,
        settings: Optional[MonitorSettings] = None,
    ) -> ExecutionResult:
        """Execute with exponential backoff (2 ** attempt seconds), capped attempts."""
        max_retries = max(0, min(max_retries, MAX_RETRY_CAP))
        result = None

        for attempt in range(max_retries + 1):
            result = await self.execute(prompt_text, max_tokens, cache_busting, settings=settings)
            if result.error is None:
                return result
            logger.warning(f"Attempt {attempt + 1} failed: {result.error}")

            if attempt < max_retries:
                await self._sleep(2 ** attempt)

        result.error = f"Failed after {max_retries + 1} attempts. Last error: {result.error}"
        return result

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
