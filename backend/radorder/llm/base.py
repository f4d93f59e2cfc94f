"""
BaseLLMService: abstract base for every provider adapter.

Adding a provider:
1. subclass BaseLLMService
2. implement complete()
3. register one line in factory._build_registry

The validation pipeline never knows which vendor is behind the gateway.
"""

from abc import ABC, abstractmethod

from .types import LLMResponse


class BaseLLMService(ABC):

    name: str = ''

    @abstractmethod
    def complete(self, prompt: str, timeout: float) -> LLMResponse:
        """
        Send one prompt to the provider and return a standard LLMResponse.

        Args:
            prompt:  fully built, already sanitized validation prompt
            timeout: per-call ceiling in seconds; the SDK's own retries are off

        Returns:
            LLMResponse with content and token/latency metrics

        Raises:
            ProviderError: any vendor-side failure, with metrics on `.call`
        """
