"""
Concrete provider adapters.

Registered providers:
  anthropic - ClaudeService   (claude-sonnet-4-20250514)
  grok      - GrokService     (grok-3, OpenAI-compatible endpoint at api.x.ai)
  openai    - OpenAIService   (gpt-4o)

Each adapter turns every vendor failure into ProviderError so the gateway can
record it and move on to the next provider.
"""

import logging
import time
from abc import abstractmethod

from django.conf import settings

from .base import BaseLLMService
from .types import LLMResponse, ProviderCall, ProviderError, ProviderNotConfigured

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    'You are a radiology ordering assistant that checks imaging orders against '
    'appropriate use criteria. Respond only with the requested JSON object.'
)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class _SDKService(BaseLLMService):
    """Shared credential check, timing and error wrapping."""

    api_key_setting = ''
    model_setting = ''

    @property
    def model(self) -> str:
        return getattr(settings, self.model_setting)

    def _api_key(self) -> str:
        api_key = getattr(settings, self.api_key_setting, '')
        if not api_key:
            raise ProviderNotConfigured(
                ProviderCall(provider=self.name, model=self.model, succeeded=False,
                             error_type='not_configured'),
                f'{self.api_key_setting} is not set',
            )
        return api_key

    def _failure(self, started: float, exc: Exception) -> ProviderError:
        call = ProviderCall(
            provider=self.name,
            model=self.model,
            succeeded=False,
            latency_ms=_elapsed_ms(started),
            error_type=type(exc).__name__,
        )
        return ProviderError(call, f'{self.name} call failed: {type(exc).__name__}')

    def complete(self, prompt: str, timeout: float) -> LLMResponse:
        api_key = self._api_key()
        started = time.monotonic()
        try:
            response = self._call(api_key, prompt, timeout)
        except Exception as exc:  # SDK raises a wide family of transport / API errors
            raise self._failure(started, exc) from exc
        response.latency_ms = _elapsed_ms(started)
        if not response.content or not response.content.strip():
            raise self._failure(started, ValueError('empty response body'))
        return response

    @abstractmethod
    def _call(self, api_key: str, prompt: str, timeout: float) -> LLMResponse:
        """One SDK request; may raise anything, complete() wraps it."""


# ── ClaudeService ──────────────────────────────────────────────────────────
#
# Anthropic SDK. Settings: ANTHROPIC_API_KEY, ANTHROPIC_MODEL

class ClaudeService(_SDKService):

    name = 'anthropic'
    api_key_setting = 'ANTHROPIC_API_KEY'
    model_setting = 'ANTHROPIC_MODEL'

    def _call(self, api_key: str, prompt: str, timeout: float) -> LLMResponse:
        import anthropic

        client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        response = client.messages.create(
            model=self.model,
            max_tokens=settings.LLM_MAX_TOKENS,
            system=SYSTEM_PROMPT,
            messages=[{'role': 'user', 'content': prompt}],
        )
        text = ''.join(
            block.text for block in response.content if getattr(block, 'type', '') == 'text'
        )
        usage = response.usage
        return LLMResponse(
            provider=self.name,
            model=self.model,
            content=text,
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            total_tokens=usage.input_tokens + usage.output_tokens,
        )


# ── OpenAIService ──────────────────────────────────────────────────────────
#
# OpenAI SDK. Settings: OPENAI_API_KEY, OPENAI_MODEL

class OpenAIService(_SDKService):

    name = 'openai'
    api_key_setting = 'OPENAI_API_KEY'
    model_setting = 'OPENAI_MODEL'
    base_url = None

    def _client(self, api_key: str, timeout: float):
        import openai

        return openai.OpenAI(api_key=api_key, base_url=self.base_url, timeout=timeout, max_retries=0)

    def _call(self, api_key: str, prompt: str, timeout: float) -> LLMResponse:
        client = self._client(api_key, timeout)
        response = client.chat.completions.create(
            model=self.model,
            max_tokens=settings.LLM_MAX_TOKENS,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user',   'content': prompt},
            ],
        )
        usage = response.usage
        return LLMResponse(
            provider=self.name,
            model=self.model,
            content=response.choices[0].message.content or '',
            prompt_tokens=getattr(usage, 'prompt_tokens', 0) or 0,
            completion_tokens=getattr(usage, 'completion_tokens', 0) or 0,
            total_tokens=getattr(usage, 'total_tokens', 0) or 0,
        )


# ── GrokService ────────────────────────────────────────────────────────────
#
# xAI exposes an OpenAI-compatible API, so this reuses the OpenAI SDK with a
# different base URL. Settings: GROK_API_KEY, GROK_MODEL, GROK_BASE_URL

class GrokService(OpenAIService):

    name = 'grok'
    api_key_setting = 'GROK_API_KEY'
    model_setting = 'GROK_MODEL'

    @property
    def base_url(self):
        return settings.GROK_BASE_URL
