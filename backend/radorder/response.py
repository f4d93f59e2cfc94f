"""
Parser for the provider's validation answer.

Expected shape (inside a ```json fence or as the first {...} object):

    {
      "validationStatus": "appropriate",
      "complianceScore": 85,
      "feedback": "...",
      "suggestedICD10Codes": [{"code": "M54.5", "description": "...", "isPrimary": true}],
      "suggestedCPTCodes":   [{"code": "72148", "description": "..."}],
      "internalReasoning": "..."            // optional
    }

Anything missing or out of range raises MalformedLLMOutput; nothing is defaulted.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from .exceptions import MalformedLLMOutput
from .models import ValidationStatus

logger = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100

_FENCE_RE = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```', re.IGNORECASE)
_OBJECT_RE = re.compile(r'\{[\s\S]*\}')

# snake_case spellings some models return instead of camelCase
_FIELD_ALIASES = {
    'validation_status': 'validationStatus',
    'compliance_score': 'complianceScore',
    'suggested_icd10_codes': 'suggestedICD10Codes',
    'suggestedIcd10Codes': 'suggestedICD10Codes',
    'suggested_cpt_codes': 'suggestedCPTCodes',
    'suggestedCptCodes': 'suggestedCPTCodes',
    'internal_reasoning': 'internalReasoning',
    'is_primary': 'isPrimary',
}

# `override` is only ever recorded by lifecycle.override_validation
PROVIDER_STATUSES = (
    ValidationStatus.APPROPRIATE, ValidationStatus.NEEDS_CLARIFICATION, ValidationStatus.INAPPROPRIATE,
)

REQUIRED_FIELDS = (
    'validationStatus', 'complianceScore', 'feedback', 'suggestedICD10Codes', 'suggestedCPTCodes',
)


@dataclass(frozen=True)
class CodeSuggestion:
    code: str
    description: str = ''
    is_primary: bool = False
    confidence: Optional[float] = None

    def to_dict(self):
        data = {'code': self.code, 'description': self.description}
        if self.is_primary:
            data['isPrimary'] = True
        if self.confidence is not None:
            data['confidence'] = self.confidence
        return data


@dataclass(frozen=True)
class ValidationResult:
    validation_status: str
    compliance_score: float
    feedback: str
    suggested_icd10_codes: tuple
    suggested_cpt_codes: tuple
    internal_reasoning: str = ''

    @property
    def primary_icd10(self):
        return next(c for c in self.suggested_icd10_codes if c.is_primary)

    @property
    def is_passing(self):
        return self.validation_status == ValidationStatus.APPROPRIATE

    def to_dict(self):
        return {
            'validationStatus': self.validation_status,
            'complianceScore': self.compliance_score,
            'feedback': self.feedback,
            'suggestedICD10Codes': [c.to_dict() for c in self.suggested_icd10_codes],
            'suggestedCPTCodes': [c.to_dict() for c in self.suggested_cpt_codes],
            'internalReasoning': self.internal_reasoning,
        }


def extract_json(raw_content):
    """Pull the JSON document out of the raw text and decode it."""
    if not raw_content or not raw_content.strip():
        raise MalformedLLMOutput('Empty response from validation provider')

    fenced = _FENCE_RE.search(raw_content)
    if fenced:
        candidate = fenced.group(1)
    else:
        obj = _OBJECT_RE.search(raw_content)
        candidate = obj.group(0) if obj else raw_content

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedLLMOutput(f'Response is not valid JSON: {exc.msg}') from exc
    if not isinstance(data, dict):
        raise MalformedLLMOutput('Response JSON must be an object')
    return data


def _normalize_keys(data):
    return {_FIELD_ALIASES.get(k, k): v for k, v in data.items()}


def _parse_codes(field, entries, errors, primary_flag):
    if not isinstance(entries, list) or not entries:
        errors.append(f'{field} must be a non-empty list')
        return ()

    codes = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            errors.append(f'{field}[{i}] must be an object')
            continue
        entry = _normalize_keys(entry)
        code = entry.get('code')
        if not isinstance(code, str) or not code.strip():
            errors.append(f'{field}[{i}].code is required')
            continue
        is_primary = entry.get('isPrimary', False)
        if not isinstance(is_primary, bool):
            errors.append(f'{field}[{i}].isPrimary must be a boolean')
            continue
        confidence = entry.get('confidence')
        if confidence is not None and (isinstance(confidence, bool) or not isinstance(confidence, (int, float))):
            errors.append(f'{field}[{i}].confidence must be a number')
            continue
        codes.append(CodeSuggestion(
            code=code.strip(),
            description=str(entry.get('description') or ''),
            is_primary=is_primary if primary_flag else False,
            confidence=confidence,
        ))
    return tuple(codes)


def parse_llm_response(raw_content):
    """
    Parse and validate the provider's answer into a ValidationResult.

    Raises:
        MalformedLLMOutput: unparseable JSON, missing field, unknown status,
            score outside 0..100, no ICD-10 / CPT codes, or not exactly one
            primary ICD-10 code. `detail['errors']` lists every problem found.
    """
    data = _normalize_keys(extract_json(raw_content))

    errors = [f'{name} is required' for name in REQUIRED_FIELDS if data.get(name) is None]
    if errors:
        raise MalformedLLMOutput('Validation response is incomplete', detail={'errors': errors})

    status = data['validationStatus']
    if status not in PROVIDER_STATUSES:
        errors.append(f'validationStatus {status!r} is not one of {[s.value for s in PROVIDER_STATUSES]}')

    score = data['complianceScore']
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        errors.append('complianceScore must be a number')
    elif not SCORE_MIN <= score <= SCORE_MAX:
        errors.append(f'complianceScore must be between {SCORE_MIN} and {SCORE_MAX}')

    feedback = data['feedback']
    if not isinstance(feedback, str) or not feedback.strip():
        errors.append('feedback must be a non-empty string')

    icd10 = _parse_codes('suggestedICD10Codes', data['suggestedICD10Codes'], errors, primary_flag=True)
    cpt = _parse_codes('suggestedCPTCodes', data['suggestedCPTCodes'], errors, primary_flag=False)

    if icd10:
        primaries = sum(1 for c in icd10 if c.is_primary)
        if primaries != 1:
            errors.append(f'exactly one ICD-10 code must be primary, found {primaries}')

    if errors:
        logger.warning("[Parser] rejected validation response: %d problem(s)", len(errors))
        raise MalformedLLMOutput('Validation response failed checks', detail={'errors': errors})

    return ValidationResult(
        validation_status=status,
        compliance_score=score,
        feedback=feedback.strip(),
        suggested_icd10_codes=icd10,
        suggested_cpt_codes=cpt,
        internal_reasoning=str(data.get('internalReasoning') or ''),
    )
