from .factory import get_llm_gateway, get_llm_service
from .gateway import LLMGateway
from .types import LLMResponse, ProviderCall, ProviderError

__all__ = [
    'get_llm_gateway',
    'get_llm_service',
    'LLMGateway',
    'LLMResponse',
    'ProviderCall',
    'ProviderError',
]
