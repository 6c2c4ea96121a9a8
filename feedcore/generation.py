"""
Content generation: an Ollama-compatible HTTP client and a seeded mock.

The real client retries transport errors, timeouts, 408 and 5xx responses
with capped exponential backoff; any other failure raises GenerationError
and the caller decides on a fallback.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Optional

import httpx
from aiolimiter import AsyncLimiter
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from feedcore.constants import (
    GENERATION_TIMEOUT,
    LLM_HTTP_CONNECT_TIMEOUT,
    LLM_HTTP_POOL_TIMEOUT,
    LLM_HTTP_READ_TIMEOUT,
    LLM_HTTP_WRITE_TIMEOUT,
    LLM_MAX_RETRIES,
    LLM_MIN_REQUEST_INTERVAL,
    LLM_RETRY_BACKOFF_BASE,
    LLM_RETRY_BACKOFF_MAX,
    MOCK_QUALITY_BASE,
    MOCK_QUALITY_SPREAD,
    OLLAMA_BASE_URL,
    OLLAMA_DEFAULT_MODEL,
    OLLAMA_HEALTH_TIMEOUT,
)
from feedcore.llm_utils import build_payload, parse_posts
from feedcore.mock_data import MOCK_CONTENT_ITEMS, MOCK_TOPIC_SNIPPETS
from feedcore.models import ContentItem

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 500, 502, 503, 504}


class GenerationError(RuntimeError):
    """Raised when content generation fails and retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationRetryableError(GenerationError):
    """Raised for transient generation failures (network, timeout, 5xx)."""


def _extract_error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip()
    if isinstance(data, dict):
        for key in ("error", "message"):
            msg = data.get(key)
            if isinstance(msg, str):
                return msg.strip()
    return resp.text.strip()


class GenerationClient:
    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = OLLAMA_DEFAULT_MODEL,
        max_retries: int = LLM_MAX_RETRIES,
        timeout: float = GENERATION_TIMEOUT,
        backoff_base: float = LLM_RETRY_BACKOFF_BASE,
        backoff_max: float = LLM_RETRY_BACKOFF_MAX,
        limiter: Optional[AsyncLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self._wait = wait_random_exponential(multiplier=backoff_base, max=backoff_max)
        self._limiter = limiter or AsyncLimiter(1, max(0.1, float(LLM_MIN_REQUEST_INTERVAL)))
        self._transport = transport
        self._http_timeout = httpx.Timeout(
            connect=LLM_HTTP_CONNECT_TIMEOUT,
            read=LLM_HTTP_READ_TIMEOUT,
            write=LLM_HTTP_WRITE_TIMEOUT,
            pool=LLM_HTTP_POOL_TIMEOUT,
        )

    def _client(self, timeout: httpx.Timeout | float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=self._transport
        )

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        return self._wait(retry_state)

    async def _chat(self, prompt: str, options: dict[str, object] | None) -> str:
        payload = build_payload(self.model, prompt, {"format": "json", **(options or {})})
        async with self._client(self._http_timeout) as client:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_retries),
                retry=retry_if_exception_type(GenerationRetryableError),
                wait=self._retry_wait,
                reraise=True,
            ):
                with attempt:
                    n = attempt.retry_state.attempt_number
                    if n > 1:
                        logger.warning(
                            "Retrying generation (%d/%d)", n, self.max_retries
                        )
                    try:
                        async with self._limiter:
                            resp = await client.post("/api/chat", json=payload)
                    except httpx.HTTPError as e:
                        raise GenerationRetryableError(str(e) or type(e).__name__) from e

                    if resp.status_code == 200:
                        try:
                            data = resp.json()
                            return str(data["message"]["content"])
                        except (ValueError, KeyError, TypeError) as e:
                            raise GenerationError(f"Malformed chat response: {e}") from e

                    error_msg = _extract_error_message(resp)
                    if resp.status_code in RETRYABLE_STATUS:
                        raise GenerationRetryableError(
                            f"Ollama error {resp.status_code}: {error_msg}",
                            status_code=resp.status_code,
                        )
                    logger.error(f"Ollama error {resp.status_code}: {error_msg}")
                    raise GenerationError(
                        f"Ollama error {resp.status_code}: {error_msg}",
                        status_code=resp.status_code,
                    )
        raise GenerationError("Generation did not complete")

    async def generate(
        self,
        prompt: str,
        count: int = 3,
        options: dict[str, object] | None = None,
    ) -> list[ContentItem]:
        """Generate up to count items; raises GenerationError on failure."""
        try:
            text = await asyncio.wait_for(self._chat(prompt, options), self.timeout)
        except TimeoutError as e:
            raise GenerationRetryableError(
                f"Generation timed out after {self.timeout:.0f}s"
            ) from e

        posts = parse_posts(text)
        if not posts:
            raise GenerationError("Model reply contained no usable posts")

        now = datetime.now(UTC)
        stamp = int(now.timestamp() * 1000)
        items = [
            ContentItem(
                id=f"ollama_{stamp}_{i}_{uuid.uuid4().hex[:6]}",
                content=str(post["content"]),
                hashtags=list(post["hashtags"]),
                topics=list(post["topics"]),
                generated_at=now,
                metadata={"source": "ollama", "model": self.model},
            )
            for i, post in enumerate(posts[:count])
        ]
        logger.info(f"Generated {len(items)} items with {self.model}")
        return items

    async def health_check(self) -> bool:
        try:
            async with self._client(OLLAMA_HEALTH_TIMEOUT) as client:
                resp = await client.get("/api/tags")
        except httpx.HTTPError as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False
        return resp.status_code == 200


class MockGenerator:
    """Seeded synthetic generator over the built-in catalog."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock
        self._seq = itertools.count(1)

    def generate(
        self, count: int = 3, interests: Optional[list[str]] = None, prefix: str = "mock"
    ) -> list[ContentItem]:
        if count <= 0:
            return []
        now = datetime.fromtimestamp(self._clock(), tz=UTC)
        stamp = int(now.timestamp() * 1000)
        wanted = [i.lower() for i in interests or [] if i.lower() in MOCK_TOPIC_SNIPPETS]

        items: list[ContentItem] = []
        catalog = list(MOCK_CONTENT_ITEMS)
        self._rng.shuffle(catalog)
        for i in range(count):
            if wanted:
                topic = wanted[i % len(wanted)]
                content = self._rng.choice(MOCK_TOPIC_SNIPPETS[topic])
                hashtags = [f"#{topic}"]
                topics = [topic]
            else:
                base = catalog[i % len(catalog)]
                content, hashtags, topics = base.content, list(base.hashtags), list(base.topics)
            items.append(
                ContentItem(
                    id=f"{prefix}_{stamp}_{next(self._seq)}",
                    content=content,
                    hashtags=hashtags,
                    topics=topics,
                    quality_score=MOCK_QUALITY_BASE + self._rng.randrange(MOCK_QUALITY_SPREAD),
                    generated_at=now,
                    metadata={"source": prefix},
                )
            )
        return items
