"""Universal LiteLLM client implementing the ProviderClient interface.

Routes generation requests to any provider through LiteLLM's unified API.
Handles token tracking, cost calculation from catalog pricing, timeouts,
and retry with exponential backoff for transient vendor errors.
"""

from __future__ import annotations

import asyncio
import logging
import os

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from cascade.errors import ProviderCallError
from cascade.providers.base import ProviderClient
from cascade.schemas.context import CallerRequest
from cascade.schemas.execution import GenerationResult
from cascade.schemas.provider import Provider

logger = logging.getLogger(__name__)

# Max tries for transient failures within a single attempt
_MAX_RETRIES = 2
_BASE_BACKOFF = 0.5  # seconds


def short_error_reason(error: Exception) -> str:
    """Extract a short, user-friendly reason from a LiteLLM error.

    Maps error types and status codes to concise descriptions instead
    of dumping full JSON error payloads.
    """
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "500" in error_str or "internal" in error_str:
        return "server error"
    if "connection" in error_str:
        return "connection error"
    return str(error)[:80]


class LiteLLMClient(ProviderClient):
    """Provider client powered by litellm.acompletion().

    API keys are resolved per call from the provider's ``api_key_env``
    so keys loaded after construction are still picked up.
    """

    def __init__(self, max_retries: int = _MAX_RETRIES) -> None:
        self._max_retries = max(1, max_retries)

    async def generate(
        self,
        provider: Provider,
        request: CallerRequest,
        *,
        timeout: float,
    ) -> GenerationResult:
        """Send a completion request via LiteLLM and return a GenerationResult.

        Raises:
            TimeoutError: If every try times out.
            ProviderCallError: On authentication/bad-request errors, or when
                transient errors persist after all retries.
        """
        kwargs = self._build_completion_kwargs(provider, request, timeout)
        response = await self._call_with_retry(provider, kwargs)

        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0

        return GenerationResult(
            content=self._extract_content(response),
            model=getattr(response, "model", None) or provider.model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=provider.calculate_cost(prompt_tokens, completion_tokens),
        )

    def _build_completion_kwargs(
        self,
        provider: Provider,
        request: CallerRequest,
        timeout: float,
    ) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": provider.model,
            "messages": self.build_messages(request),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "timeout": float(timeout),
        }

        api_key = os.environ.get(provider.api_key_env, "") if provider.api_key_env else ""
        if api_key:
            kwargs["api_key"] = api_key

        if provider.api_base:
            kwargs["api_base"] = provider.api_base

        return kwargs

    async def _call_with_retry(self, provider: Provider, kwargs: dict):
        """Call litellm.acompletion with exponential backoff retry.

        Retries on transient errors (rate limits, server errors, timeouts).
        Non-retryable errors (auth, invalid request) are raised immediately.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                return await litellm.acompletion(**kwargs)
            except (TimeoutError, litellm.Timeout):
                last_error = TimeoutError(
                    f"Call to {provider.model} timed out after {kwargs.get('timeout')}s "
                    f"(try {attempt + 1}/{self._max_retries})"
                )
            except litellm.AuthenticationError:
                raise ProviderCallError(
                    provider.id,
                    f"authentication failed, check that {provider.api_key_env} is set",
                ) from None
            except litellm.BadRequestError as e:
                raise ProviderCallError(provider.id, f"bad request: {e}") from e
            except (
                litellm.RateLimitError,
                litellm.ServiceUnavailableError,
                litellm.InternalServerError,
                litellm.APIConnectionError,
            ) as e:
                last_error = e

            if attempt < self._max_retries - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Retry %d/%d for %s (%s, backoff: %.1fs)",
                    attempt + 1,
                    self._max_retries,
                    provider.name,
                    short_error_reason(last_error),
                    backoff,
                )
                await asyncio.sleep(backoff)

        if isinstance(last_error, TimeoutError):
            raise last_error
        raise ProviderCallError(
            provider.id, short_error_reason(last_error),
        ) from last_error

    @staticmethod
    def _extract_content(response) -> str:
        """Extract text content from a LiteLLM response."""
        if not response.choices:
            return ""
        message = response.choices[0].message
        return (message.content or "") if message else ""
