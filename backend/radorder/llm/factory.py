"""
Provider names -> adapter classes, and the configured fallback gateway.

The names here are the values accepted in LLM_PROVIDER_ORDER.
"""

from django.conf import settings

from .base import BaseLLMService
from .gateway import LLMGateway


def _build_registry() -> dict[str, type[BaseLLMService]]:
    # services imports the vendor SDKs
    from .services import ClaudeService, GrokService, OpenAIService

    return {
        'anthropic': ClaudeService,
        'grok':      GrokService,
        'openai':    OpenAIService,
    }


def get_llm_service(provider: str) -> BaseLLMService:
    """
    Return the adapter registered under `provider`.

    Raises:
        ValueError: unknown provider name
    """
    registry = _build_registry()
    service_cls = registry.get(provider)

    if service_cls is None:
        raise ValueError(
            f'Unknown LLM provider: {provider!r}. '
            f'Known providers: {list(registry.keys())}'
        )

    return service_cls()


def get_llm_gateway() -> LLMGateway:
    """LLMGateway trying providers in settings.LLM_PROVIDER_ORDER."""
    order = getattr(settings, 'LLM_PROVIDER_ORDER', ['anthropic', 'grok', 'openai'])
    providers = [get_llm_service(name) for name in order]
    return LLMGateway(providers, timeout=settings.LLM_TIMEOUT_SECONDS)
