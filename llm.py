"""
Gemini generateContent client with exponential-backoff retries.

post_with_retry() is the only retried operation in the pipeline:
429/502/503 are retried with delay = base_delay * 2**attempt (no jitter),
quota exhaustion fails at once, any other non-2xx fails immediately.
"""

import asyncio
import logging
from typing import Any, Protocol

import httpx

from config import Settings, Stage
from errors import OverloadError, QuotaExhaustedError, UpstreamError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 502, 503})


class TextGenerator(Protocol):
    """Anything that turns a prompt into a generateContent-shaped response."""

    async def generate(self, prompt: str, *, temperature: float, max_output_tokens: int) -> dict[str, Any]: ...


def _error_message(response: httpx.Response) -> str:
    """Best-effort error message from a Gemini error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return response.text[:500] or response.reason_phrase


async def post_with_retry(
    client: httpx.AsyncClient,
    url: str,
    payload: dict[str, Any],
    *,
    params: dict[str, str] | None = None,
    max_retries: int = 3,
    base_delay: float = 3.0,
    timeout: float | None = None,
) -> httpx.Response:
    """POST JSON, retrying overload statuses with exponential backoff.

    Raises QuotaExhaustedError for a 429 that reports quota exhaustion,
    OverloadError once max_retries retries are spent, UpstreamError for any
    other non-2xx status.
    """
    for attempt in range(max_retries + 1):
        response = await client.post(url, json=payload, params=params, timeout=timeout)

        if response.is_success:
            return response

        status = response.status_code
        message = _error_message(response)

        if status == 429 and "quota" in message.lower():
            raise QuotaExhaustedError(
                f"Gemini quota exhausted ({status}): {message}",
                status=status,
                context={"attempt": attempt + 1},
            )

        if status in RETRYABLE_STATUSES:
            if attempt == max_retries:
                raise OverloadError(
                    f"Gemini overloaded after {max_retries + 1} attempts ({status}): {message}",
                    status=status,
                    context={"attempts": max_retries + 1},
                )
            wait = base_delay * 2**attempt
            logger.warning(f"Gemini overloaded ({status}). Retrying in {wait:.1f}s (attempt {attempt + 1})")
            await asyncio.sleep(wait)
            continue

        raise UpstreamError(f"Gemini API error {status}: {message}", status=status)

    raise AssertionError("unreachable")


class GeminiClient:
    """Thin async client for a Gemini model's generateContent endpoint."""

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        max_retries: int = 3,
        retry_base_delay: float = 3.0,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.timeout = timeout
        self._http_client = http_client

    @classmethod
    def for_stage(
        cls, settings: Settings, stage: Stage, http_client: httpx.AsyncClient | None = None
    ) -> "GeminiClient":
        """Build a client gated by the stage's own API key (ConfigurationError if missing)."""
        return cls(
            settings.api_key_for(stage),
            model=settings.gemini_model,
            base_url=settings.gemini_base_url,
            max_retries=settings.max_retries,
            retry_base_delay=settings.retry_base_delay,
            timeout=settings.request_timeout,
            http_client=http_client,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    @staticmethod
    def build_payload(prompt: str, temperature: float, max_output_tokens: int) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
                "responseMimeType": "application/json",
            },
        }

    async def generate(self, prompt: str, *, temperature: float, max_output_tokens: int) -> dict[str, Any]:
        """Send one prompt and return the decoded response body."""
        payload = self.build_payload(prompt, temperature, max_output_tokens)
        params = {"key": self.api_key}

        if self._http_client is not None:
            response = await post_with_retry(
                self._http_client,
                self.endpoint,
                payload,
                params=params,
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                timeout=self.timeout,
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await post_with_retry(
                    client,
                    self.endpoint,
                    payload,
                    params=params,
                    max_retries=self.max_retries,
                    base_delay=self.retry_base_delay,
                    timeout=self.timeout,
                )

        try:
            body = response.json()
        except ValueError:
            logger.warning("  Gemini returned a non-JSON body")
            return {}
        return body if isinstance(body, dict) else {}
