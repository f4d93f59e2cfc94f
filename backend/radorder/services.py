import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from django.utils import timezone

from . import attempts
from .context import generate_reference_context
from .exceptions import AllProvidersExhausted, MalformedLLMOutput, NotFound, Unauthorized
from .keywords import extract_keywords
from .lifecycle import (
    VALIDATABLE_STATUSES,
    apply_validation_outcome,
    lock_order,
    mark_validation_failed,
    require_org,
    require_status,
    unit_of_work,
)
from .llm import get_llm_gateway
from .models import Order, OrderHistory, OrderStatus, Patient, ValidationAttempt
from .phi import redaction_counts, sanitize
from .prompts import build_prompt, get_active_prompt_template
from .response import parse_llm_response

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    order: Order
    result: object                      # response.ValidationResult
    attempt: Optional[ValidationAttempt] = None


def prepare_prompt(text, is_override=False):
    """sanitize -> keywords -> template -> reference context -> prompt"""
    sanitized = sanitize(text)
    logger.info("[Validation] redactions=%s", redaction_counts(text))

    keywords = extract_keywords(sanitized)
    template = get_active_prompt_template()
    reference_context = generate_reference_context(keywords)
    logger.info("[Validation] keywords=%d template=%s v%s", len(keywords), template.name, template.version)

    return build_prompt(template, sanitized, reference_context, template.word_limit, is_override)


def run_validation(text, is_override=False, gateway=None):
    """
    Stateless validation: nothing is written.

    Returns (ValidationResult, LLMResponse).
    Raises TemplateMissing, AllProvidersExhausted, MalformedLLMOutput.
    """
    gateway = gateway or get_llm_gateway()
    prompt = prepare_prompt(text, is_override)
    llm_response = gateway.invoke(prompt)
    return parse_llm_response(llm_response.content), llm_response


def _order_number():
    return f"ORD-{timezone.now():%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def create_draft_order(request):
    """New draft order for a first-time validation, with its `created` history row."""
    patient = None
    patient_id = (request.patient_info or {}).get('id')
    if patient_id is not None:
        patient = Patient.objects.filter(id=patient_id, organization_id=request.org_id).first()
        if patient is None:
            raise NotFound(message='Patient not found', code='PATIENT_NOT_FOUND', detail={'patient_id': patient_id})

    with unit_of_work('create_draft_order', None):
        order = Order.objects.create(
            order_number=_order_number(),
            patient=patient,
            referring_organization_id=request.org_id,
            radiology_organization_id=request.radiology_organization_id,
            original_dictation=request.dictation_text,
            created_by_user_id=request.user_id,
            status=OrderStatus.DRAFT,
        )
        OrderHistory.objects.create(
            order=order,
            user_id=request.user_id,
            event_type='created',
            new_status=order.status,
        )
    logger.info("[Validation] draft order %s created by user %s", order.id, request.user_id)
    return order


def _load_for_validation(request):
    try:
        order = Order.objects.get(id=request.order_id)
    except Order.DoesNotExist:
        raise NotFound(message='Order not found', code='ORDER_NOT_FOUND', detail={'order_id': request.order_id})
    require_org(order, request.org_id, 'referring_organization_id')
    require_status(order, VALIDATABLE_STATUSES, OrderStatus.VALIDATED)
    return order


def handle_validation_request(request, gateway=None):
    """
    Validate a dictation against an order, creating a draft order when the
    request carries no orderId.

    Provider-call metrics are logged for every call, including failed chains.
    The attempt row and the status change are written together under the
    order's row lock; the attempt write itself is best-effort.
    """
    gateway = gateway or get_llm_gateway()

    existing = _load_for_validation(request) if request.order_id is not None else None
    prompt = prepare_prompt(request.dictation_text, request.is_override_validation)
    order = existing or create_draft_order(request)

    try:
        llm_response = gateway.invoke(prompt)
    except AllProvidersExhausted as exc:
        attempts.log_llm_calls(exc.calls, order=order)
        raise

    try:
        result = parse_llm_response(llm_response.content)
    except MalformedLLMOutput:
        attempts.log_llm_calls(llm_response.calls, order=order)
        mark_validation_failed(order.id, request.user_id, 'provider response could not be parsed')
        raise

    with unit_of_work('record_validation', order.id):
        order = lock_order(order.id)
        require_status(order, VALIDATABLE_STATUSES, OrderStatus.VALIDATED)
        changed = []
        if order.original_dictation != request.dictation_text:
            order.original_dictation = request.dictation_text
            changed.append('original_dictation')
        radiology_org = request.radiology_organization_id
        if radiology_org is not None and order.radiology_organization_id != radiology_org:
            order.radiology_organization_id = radiology_org
            changed.append('radiology_organization_id')
        if changed:
            order.save(update_fields=[*changed, 'updated_at'])
        logged = attempts.record_attempt(order, request.dictation_text, result, request.user_id, llm_response)
        apply_validation_outcome(order, result, request.user_id)

    logger.info(
        "[Validation] order %s outcome=%s provider=%s attempt_logged=%s",
        order.id, result.validation_status, llm_response.provider, logged.ok,
    )
    return ValidationOutcome(order=order, result=result, attempt=logged.attempt)


def get_order_detail(order_id, org_id):
    """Order visible to its referring or radiology organization."""
    try:
        order = Order.objects.select_related('patient').get(id=order_id)
    except Order.DoesNotExist:
        raise NotFound(message='Order not found', code='ORDER_NOT_FOUND', detail={'order_id': order_id})
    if org_id is None or org_id not in (order.referring_organization_id, order.radiology_organization_id):
        raise Unauthorized(message='Your organization is not permitted to view this order',
                           detail={'order_id': order_id})
    return order
