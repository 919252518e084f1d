# shared/llm_client.py
"""
Centralized LLM client with retry logic and automatic provider fallback.
Talks to Google Gemini and OpenAI over plain HTTPS with httpx.
"""

import asyncio
import logging
import os
import random
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"

DEFAULT_MODELS = {
    "gemini": "gemini-2.0-flash",
    "openai": "gpt-4o-mini",
}

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504, 529}


class LLMError(Exception):
    """Base exception for LLM client errors"""

    def __init__(
        self, message: str, provider: str = None, status_code: int = None, retry_after: int = None
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after

    @property
    def is_rate_limit(self) -> bool:
        """True when the provider throttled us"""
        if self.status_code == 429:
            return True
        message = str(self).lower()
        return "rate limit" in message or "resource_exhausted" in message


class LLMClient:
    """
    LLM client with retry and fallback.

    Transient errors (408, 429, 5xx) move on to the next provider after a
    short backoff. Each HTTP call is bounded by ``timeout`` seconds.
    """

    def __init__(
        self,
        gemini_key: Optional[str] = None,
        openai_key: Optional[str] = None,
        timeout: float = 30.0,
        max_retry_delay: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.gemini_key = gemini_key if gemini_key is not None else os.getenv("GEMINI_API_KEY")
        self.openai_key = openai_key if openai_key is not None else os.getenv("OPENAI_API_KEY")
        self.timeout = timeout
        self.max_retry_delay = max_retry_delay
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.gemini_key or self.openai_key)

    async def generate_completion(
        self,
        prompt: str,
        parameters: Optional[dict] = None,
        primary_provider: str = "gemini",
    ) -> tuple[str, dict]:
        """
        Generate completion with automatic retry and fallback logic.

        Args:
            prompt: The prompt to send to the LLM
            parameters: max_tokens / temperature / top_p overrides
            primary_provider: Provider tried first when its key is configured

        Returns:
            Tuple[str, Dict]: (completion_text, generation_metadata)

        Raises:
            LLMError: When all providers and retries are exhausted
        """
        start_time = time.time()
        parameters = parameters or {}
        providers_to_try = self._build_provider_list(primary_provider)

        if not providers_to_try:
            raise LLMError("No LLM provider configured")

        last_error: Optional[LLMError] = None

        for attempt_num, (provider, model_id) in enumerate(providers_to_try):
            try:
                logger.info(
                    f"🤖 LLM_CLIENT: Attempt {attempt_num + 1}/{len(providers_to_try)} - {provider}/{model_id}"
                )
                completion, usage_data = await self._make_api_call(
                    provider, model_id, prompt, parameters
                )

                return completion, {
                    "provider": provider,
                    "model_id": model_id,
                    "tokens_used": usage_data,
                    "generation_time_ms": int((time.time() - start_time) * 1000),
                    "was_fallback": attempt_num > 0,
                    "attempt_number": attempt_num + 1,
                }

            except LLMError as e:
                last_error = e
                logger.warning(f"❌ LLM_CLIENT: {provider}/{model_id} failed: {e}")

                if not self._is_retryable_error(e):
                    break

                if attempt_num < len(providers_to_try) - 1:
                    retry_delay = self._calculate_retry_delay(attempt_num, e.retry_after)
                    if retry_delay > 0:
                        await asyncio.sleep(retry_delay)

        raise LLMError(
            f"All LLM providers failed. Last error: {last_error}",
            provider=last_error.provider,
            status_code=last_error.status_code,
            retry_after=last_error.retry_after,
        )

    def _build_provider_list(self, primary_provider: str) -> list[tuple[str, str]]:
        """Ordered (provider, model) pairs, restricted to configured keys"""
        order = [primary_provider] + [p for p in DEFAULT_MODELS if p != primary_provider]
        return [(p, DEFAULT_MODELS[p]) for p in order if self._has_provider_key(p)]

    def _has_provider_key(self, provider: str) -> bool:
        if provider == "gemini":
            return bool(self.gemini_key)
        elif provider == "openai":
            return bool(self.openai_key)
        return False

    async def _make_api_call(
        self, provider: str, model_id: str, prompt: str, parameters: dict
    ) -> tuple[str, dict]:
        """Make the actual API call to the specified provider"""
        max_tokens = parameters.get("max_tokens", 1000)
        temperature = parameters.get("temperature", 0.8)
        top_p = parameters.get("top_p", 0.9)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                if provider == "gemini":
                    return await self._call_gemini(
                        client, model_id, prompt, max_tokens, temperature, top_p
                    )
                elif provider == "openai":
                    return await self._call_openai(
                        client, model_id, prompt, max_tokens, temperature, top_p
                    )
                else:
                    raise LLMError(f"Unsupported provider: {provider}", provider=provider)

        except httpx.TimeoutException:
            raise LLMError(f"Timeout calling {provider} API", provider=provider, status_code=408)
        except httpx.ConnectError:
            raise LLMError(
                f"Connection error to {provider} API", provider=provider, status_code=503
            )
        except httpx.HTTPError as e:
            raise LLMError(
                f"Transport error calling {provider} API: {e}", provider=provider, status_code=503
            )

    async def _call_gemini(
        self,
        client: httpx.AsyncClient,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        top_p: float,
    ) -> tuple[str, dict]:
        response = await client.post(
            GEMINI_URL.format(model=model_id),
            params={"key": self.gemini_key},
            headers={"Content-Type": "application/json"},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "maxOutputTokens": max_tokens,
                    "temperature": temperature,
                    "topP": top_p,
                },
            },
        )

        if response.status_code == 200:
            result = self._json_body("gemini", response)
            try:
                content = result["candidates"][0]["content"]["parts"][0]["text"].strip()
            except (KeyError, IndexError, TypeError) as e:
                raise LLMError(f"Invalid Gemini response structure: {e}", provider="gemini")

            usage = result.get("usageMetadata", {})
            usage_data = {
                "prompt_tokens": usage.get("promptTokenCount", 0),
                "completion_tokens": usage.get("candidatesTokenCount", 0),
                "total_tokens": usage.get("totalTokenCount", 0),
            }
            return content, usage_data

        raise self._error_from_response("gemini", response)

    async def _call_openai(
        self,
        client: httpx.AsyncClient,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        top_p: float,
    ) -> tuple[str, dict]:
        response = await client.post(
            OPENAI_URL,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.openai_key}",
            },
            json={
                "model": model_id,
                "max_completion_tokens": max_tokens,
                "temperature": temperature,
                "top_p": top_p,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

        if response.status_code == 200:
            result = self._json_body("openai", response)
            try:
                content = result["choices"][0]["message"]["content"].strip()
            except (KeyError, IndexError, TypeError) as e:
                raise LLMError(f"Invalid OpenAI response structure: {e}", provider="openai")

            usage = result.get("usage", {})
            usage_data = {
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            }
            return content, usage_data

        raise self._error_from_response("openai", response)

    def _json_body(self, provider: str, response: httpx.Response) -> dict:
        """Decode a 200 response; a body that is not a JSON object is a provider failure"""
        try:
            result = response.json()
        except ValueError as e:
            raise LLMError(f"Invalid JSON from {provider} API: {e}", provider=provider)

        if not isinstance(result, dict):
            raise LLMError(f"Unexpected {provider} response body", provider=provider)
        return result

    def _error_from_response(self, provider: str, response: httpx.Response) -> LLMError:
        """Build an LLMError from a non-200 provider response"""
        try:
            error_data = response.json()
            error_message = error_data.get("error", {}).get("message", response.text)
        except (ValueError, KeyError, TypeError, AttributeError):
            error_message = f"Failed to parse error response: {response.text}"

        retry_after = None
        if response.status_code == 429:
            try:
                retry_after = int(response.headers.get("retry-after", 60))
            except (ValueError, TypeError):
                retry_after = 60

        return LLMError(
            f"{provider} API error {response.status_code}: {error_message}",
            provider=provider,
            status_code=response.status_code,
            retry_after=retry_after,
        )

    def _is_retryable_error(self, error: LLMError) -> bool:
        """Determine if an error should trigger a retry/fallback"""
        if not error.status_code:
            return True  # Network errors, malformed responses
        return error.status_code in RETRYABLE_STATUS_CODES

    def _calculate_retry_delay(self, attempt_num: int, retry_after: Optional[int] = None) -> float:
        """Exponential backoff with jitter, capped at max_retry_delay"""
        if retry_after:
            return min(retry_after, self.max_retry_delay)

        base_delay = min(2**attempt_num, self.max_retry_delay)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)
