"""
Standard structures for the LLM layer.

Every provider's complete() returns an LLMResponse. The business layer only
knows this shape; it never sees which vendor produced it.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ProviderCall:
    """Metrics for one provider call, successful or not. Persisted as LLMValidationLog."""

    provider: str
    model: str
    succeeded: bool
    latency_ms: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    error_type: Optional[str] = None


@dataclass
class LLMResponse:
    provider: str          # registry name that answered: anthropic / grok / openai
    model: str             # concrete model name
    content: str           # raw text, parsed later by response.parse_llm_response
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    # failed calls made before this provider answered, in invocation order
    fallback_calls: list = field(default_factory=list)

    def as_call(self) -> ProviderCall:
        return ProviderCall(
            provider=self.provider,
            model=self.model,
            succeeded=True,
            latency_ms=self.latency_ms,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.total_tokens,
        )

    @property
    def calls(self) -> list:
        """Every call of this invocation: the failures, then the one that answered."""
        return [*self.fallback_calls, self.as_call()]


class ProviderError(Exception):
    """
    A single provider failed (timeout, transport, auth, rate limit, empty body).

    `call` holds the metrics for the failed attempt. The gateway catches only
    this type, so anything else (cancellation included) propagates unchanged.
    """

    def __init__(self, call: ProviderCall, message: str = ''):
        self.call = call
        super().__init__(message or f'{call.provider} failed: {call.error_type}')


class ProviderNotConfigured(ProviderError):
    """Provider has no credentials; counts as a failure and the gateway moves on."""
