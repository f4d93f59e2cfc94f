"""
LLMGateway: ordered fallback across providers.

Providers are tried strictly in the configured order. The first success wins
and later providers are never called. A failure is recorded and the next
provider is tried; when the list is exhausted AllProvidersExhausted carries
every recorded call so the caller can persist the metrics.
"""

import logging
from typing import Optional, Sequence

from ..exceptions import AllProvidersExhausted
from .base import BaseLLMService
from .types import LLMResponse, ProviderError

logger = logging.getLogger(__name__)


class LLMGateway:

    def __init__(self, providers: Sequence[BaseLLMService], timeout: float):
        self.providers = list(providers)
        self.timeout = timeout

    @property
    def provider_names(self) -> list:
        return [p.name for p in self.providers]

    def invoke(self, prompt: str, timeout: Optional[float] = None) -> LLMResponse:
        """
        Return the first successful provider response.

        Raises:
            AllProvidersExhausted: every provider failed (or none configured);
                `.calls` lists one ProviderCall per attempt, in order
        """
        per_call_timeout = timeout if timeout is not None else self.timeout
        failures = []
        for provider in self.providers:
            try:
                response = provider.complete(prompt, per_call_timeout)
            except ProviderError as exc:
                failures.append(exc.call)
                logger.warning(
                    "[LLM] provider=%s failed (%s) after %dms, trying next",
                    exc.call.provider, exc.call.error_type, exc.call.latency_ms,
                )
                continue

            response.fallback_calls = failures
            logger.info(
                "[LLM] provider=%s model=%s answered in %dms tokens=%d fallbacks=%d",
                response.provider, response.model, response.latency_ms,
                response.total_tokens, len(failures),
            )
            return response

        logger.error("[LLM] all providers failed: %s", [c.provider for c in failures])
        raise AllProvidersExhausted(calls=failures)
