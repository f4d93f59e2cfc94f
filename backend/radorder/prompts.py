"""
Prompt templates and prompt construction.

A template is stored text with three placeholders:
  {{DICTATION_TEXT}}    sanitized clinical text, always inserted whole
  {{DATABASE_CONTEXT}}  reference context, truncated to the word limit
  {{WORD_LIMIT}}        the limit itself, for the model's feedback length
"""

import logging

from django.conf import settings

from .exceptions import TemplateMissing
from .models import PromptTemplate

logger = logging.getLogger(__name__)

DICTATION_PLACEHOLDER = '{{DICTATION_TEXT}}'
CONTEXT_PLACEHOLDER = '{{DATABASE_CONTEXT}}'
WORD_LIMIT_PLACEHOLDER = '{{WORD_LIMIT}}'

TRUNCATION_MARKER = '[context truncated]'
MARKER_WORDS = len(TRUNCATION_MARKER.split())

OVERRIDE_INSTRUCTIONS = """

IMPORTANT: This is an OVERRIDE VALIDATION request. The physician has reviewed
earlier validation feedback and added a justification to the dictation.
Treat that justification as clinically authoritative context supplied by the
ordering physician. Do not re-validate the order from scratch or dismiss the
justification; assess whether, taken together with it, the requested imaging
is appropriate, and return the same JSON structure as for any other request.
"""


def get_active_prompt_template():
    """
    The active default template with the highest version.

    Raises:
        TemplateMissing: no active default template is stored
    """
    template = (
        PromptTemplate.objects
        .filter(active=True, is_default=True)
        .order_by('-version', '-id')
        .first()
    )
    if template is None:
        raise TemplateMissing('No active default prompt template is configured')
    return template


def truncate_words(text, word_limit):
    """
    Keep `text` within `word_limit` whitespace-separated words.

    The truncation marker counts toward the limit and is dropped when the
    limit is too small to hold it.
    """
    words = text.split()
    if word_limit is None or len(words) <= word_limit:
        return text
    if word_limit < MARKER_WORDS:
        return ' '.join(words[:max(word_limit, 0)])
    kept = words[:word_limit - MARKER_WORDS]
    return ' '.join([*kept, TRUNCATION_MARKER])


def build_prompt(template, sanitized_text, reference_context, word_limit, is_override=False):
    """
    Fill the template. Pure: no database or network access.

    `template` is either a PromptTemplate or its raw content string.
    `word_limit` caps only the reference context; the clinical text is never cut.
    If the template has no context placeholder the context is appended after it.
    """
    content = getattr(template, 'content_template', template)
    if not content:
        raise TemplateMissing('Prompt template has no content')
    if word_limit is None:
        word_limit = settings.VALIDATION_CONTEXT_WORD_LIMIT

    context = truncate_words(reference_context or '', word_limit)

    prompt = content.replace(WORD_LIMIT_PLACEHOLDER, str(word_limit))
    if CONTEXT_PLACEHOLDER in prompt:
        prompt = prompt.replace(CONTEXT_PLACEHOLDER, context)
    elif context:
        prompt = f'{prompt}\n\nREFERENCE CONTEXT:\n{context}'

    # dictation last, so text inside it that looks like a placeholder is left alone
    if DICTATION_PLACEHOLDER in prompt:
        prompt = prompt.replace(DICTATION_PLACEHOLDER, sanitized_text)
    else:
        prompt = f'{prompt}\n\nCLINICAL DICTATION:\n{sanitized_text}'

    if is_override:
        prompt += OVERRIDE_INSTRUCTIONS
    return prompt
