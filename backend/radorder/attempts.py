"""
Validation attempt tracker.

Writes one ValidationAttempt per completed validation plus one LLMValidationLog
per provider call. Writing is best-effort: a database error is logged and
returned in the result object, never raised, so a broken audit trail cannot
fail a validation that otherwise succeeded.

Callers must hold the order's row lock (select_for_update inside
transaction.atomic) so attempt numbers stay gap-free under concurrent writers.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from django.db import DatabaseError, transaction
from django.db.models import Max

from .models import LLMValidationLog, ValidationAttempt, ValidationStatus

logger = logging.getLogger(__name__)

FAILING_OUTCOMES = (ValidationStatus.NEEDS_CLARIFICATION, ValidationStatus.INAPPROPRIATE)


@dataclass
class AttemptLogResult:
    attempt: Optional[ValidationAttempt] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def next_attempt_number(order) -> int:
    current = ValidationAttempt.objects.filter(order=order).aggregate(n=Max('attempt_number'))['n']
    return (current or 0) + 1


def failing_attempt_count(order) -> int:
    return ValidationAttempt.objects.filter(order=order, validation_outcome__in=FAILING_OUTCOMES).count()


def latest_attempt(order):
    return ValidationAttempt.objects.filter(order=order).order_by('-attempt_number').first()


def _call_rows(calls, order, attempt):
    return [
        LLMValidationLog(
            order=order,
            validation_attempt=attempt,
            provider=call.provider,
            model=call.model,
            succeeded=call.succeeded,
            error_type=call.error_type or '',
            prompt_tokens=call.prompt_tokens,
            completion_tokens=call.completion_tokens,
            total_tokens=call.total_tokens,
            latency_ms=call.latency_ms,
        )
        for call in calls
    ]


def log_llm_calls(calls, order=None, attempt=None) -> AttemptLogResult:
    """Persist provider-call metrics (also for exhausted chains). Best-effort."""
    if not calls:
        return AttemptLogResult()
    try:
        with transaction.atomic():
            LLMValidationLog.objects.bulk_create(_call_rows(calls, order, attempt))
    except DatabaseError as exc:
        logger.error(
            "[Attempts] failed to log %d provider call(s) for order %s: %s",
            len(calls), getattr(order, 'id', None), type(exc).__name__,
        )
        return AttemptLogResult(error=exc)
    return AttemptLogResult()


def record_attempt(order, input_text, result, user_id, llm_response=None) -> AttemptLogResult:
    """
    Append the next ValidationAttempt for `order` and the provider-call logs.

    Runs in its own savepoint: on DatabaseError only this write is rolled back,
    the surrounding transaction carries on.
    """
    try:
        with transaction.atomic():
            attempt = ValidationAttempt.objects.create(
                order=order,
                attempt_number=next_attempt_number(order),
                validation_input_text=input_text,
                validation_outcome=result.validation_status,
                generated_icd10_codes=json.dumps([c.code for c in result.suggested_icd10_codes]),
                generated_cpt_codes=json.dumps([c.code for c in result.suggested_cpt_codes]),
                generated_feedback_text=result.feedback,
                generated_compliance_score=int(round(result.compliance_score)),
                user_id=user_id,
            )
            if llm_response is not None:
                LLMValidationLog.objects.bulk_create(_call_rows(llm_response.calls, order, attempt))
    except DatabaseError as exc:
        logger.error(
            "[Attempts] failed to record attempt for order %s: %s",
            getattr(order, 'id', None), type(exc).__name__,
        )
        return AttemptLogResult(error=exc)

    logger.info(
        "[Attempts] order=%s attempt=%d outcome=%s",
        getattr(order, 'id', None), attempt.attempt_number, attempt.validation_outcome,
    )
    return AttemptLogResult(attempt=attempt)
