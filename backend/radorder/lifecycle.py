"""
Order lifecycle state machine.

    draft ──> validated ──> pending_admin ──> pending_radiology ──> scheduled ──> completed
      │  ^        │                                    │                            ^
      │  │        v                                    └────────────────────────────┘
      └──┴─> validation_failed ──(override / successful re-validation)──> validated

    cancelled is reachable from every non-terminal state.
    completed and cancelled are terminal.

Every transition runs in one transaction and starts by locking the order row
(SELECT ... FOR UPDATE). Existence, authorization and state checks all happen
before the first write, so a rejected transition leaves the order row and its
history untouched. A DatabaseError rolls everything back and surfaces as
PersistenceFailure.
"""

import logging
from contextlib import contextmanager

from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from . import attempts
from .exceptions import InvalidState, MissingRequiredData, NotFound, PersistenceFailure, Unauthorized
from .models import (
    InformationRequest,
    Order,
    OrderHistory,
    OrderStatus,
    QueueStatus,
    ValidationStatus,
)
from .notifications import notify
from .patients import create_temporary_patient
from .uploads import decode_signature, process_signature

logger = logging.getLogger(__name__)

S = OrderStatus

TRANSITIONS = {
    S.DRAFT: {S.VALIDATED, S.VALIDATION_FAILED, S.PENDING_ADMIN, S.CANCELLED},
    S.VALIDATED: {S.VALIDATION_FAILED, S.PENDING_ADMIN, S.CANCELLED},
    S.VALIDATION_FAILED: {S.VALIDATED, S.CANCELLED},
    S.PENDING_ADMIN: {S.PENDING_RADIOLOGY, S.CANCELLED},
    S.PENDING_RADIOLOGY: {S.SCHEDULED, S.COMPLETED, S.CANCELLED},
    S.SCHEDULED: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

TERMINAL_STATUSES = frozenset({S.COMPLETED, S.CANCELLED})
VALIDATABLE_STATUSES = frozenset({S.DRAFT, S.VALIDATED, S.VALIDATION_FAILED})
FINALIZABLE_STATUSES = frozenset({S.DRAFT, S.VALIDATED})
RADIOLOGY_STATUSES = frozenset({S.PENDING_RADIOLOGY, S.SCHEDULED})

_QUEUE_STATUS = {
    S.PENDING_RADIOLOGY: QueueStatus.PENDING_REVIEW,
    S.SCHEDULED: QueueStatus.IN_PROGRESS,
    S.COMPLETED: QueueStatus.COMPLETED,
    S.CANCELLED: QueueStatus.CANCELLED,
}

PATIENT_REQUIRED_FIELDS = ('address_line1', 'city', 'state', 'zip_code', 'phone_number')
INSURANCE_REQUIRED_FIELDS = ('insurer_name', 'policy_number')


def can_transition(current, target):
    return target in TRANSITIONS.get(current, set())


def queue_status_for(order_status):
    """Queue-facing status for a lifecycle status; None for orders not yet with radiology."""
    return _QUEUE_STATUS.get(order_status)


# ── plumbing ────────────────────────────────────────────────────────────────

@contextmanager
def unit_of_work(operation, order_id):
    """One transaction per transition; DatabaseError -> PersistenceFailure after rollback."""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.error("[Lifecycle] %s on order %s rolled back: %s", operation, order_id, type(exc).__name__)
        raise PersistenceFailure(
            message=f'Could not complete {operation}; no changes were saved',
            detail={'order_id': order_id},
        ) from exc


def lock_order(order_id):
    """Fetch the order with a row lock. Must run inside a transaction."""
    try:
        return Order.objects.select_for_update().get(id=order_id)
    except Order.DoesNotExist:
        raise NotFound(message='Order not found', code='ORDER_NOT_FOUND', detail={'order_id': order_id})


def require_org(order, org_id, *allowed_fields):
    allowed = [getattr(order, f) for f in allowed_fields]
    if org_id is None or org_id not in allowed:
        raise Unauthorized(
            message='Your organization is not permitted to act on this order',
            detail={'order_id': order.id},
        )


def require_status(order, allowed, attempted):
    if order.status not in allowed:
        raise InvalidState(
            message=f'Order {order.id} cannot move from {order.status} to {attempted}',
            current_status=order.status,
            attempted_status=attempted,
            code='INVALID_TRANSITION',
        )


def _require_edge(order, target):
    if not can_transition(order.status, target):
        raise InvalidState(
            message=f'Order {order.id} cannot move from {order.status} to {target}',
            current_status=order.status,
            attempted_status=target,
            code='INVALID_TRANSITION',
        )


def _append_history(order, user_id, event_type, previous_status, details=''):
    return OrderHistory.objects.create(
        order=order,
        user_id=user_id,
        event_type=event_type,
        previous_status=previous_status,
        new_status=order.status,
        details=details,
    )


def _move(order, target, user_id, event_type, details='', update_fields=()):
    """Write the new status (plus `update_fields`) and append the history row."""
    previous = order.status
    order.status = target
    order.updated_by_user_id = user_id
    order.save(update_fields=['status', 'updated_by_user_id', 'updated_at', *update_fields])
    _append_history(order, user_id, event_type, previous, details)
    logger.info("[Lifecycle] order %s %s -> %s (%s) by user %s", order.id, previous, target, event_type, user_id)
    return order


# ── validation outcome ──────────────────────────────────────────────────────

def apply_validation_outcome(order, result, user_id):
    """
    Move a locked order according to a parsed validation result.

    appropriate -> validated, anything else -> validation_failed.
    Re-applying the current status is a no-op (no history row).
    """
    target = S.VALIDATED if result.is_passing else S.VALIDATION_FAILED
    if order.status == target:
        return order
    _require_edge(order, target)
    updates = ['validated_at'] if target == S.VALIDATED else []
    if target == S.VALIDATED:
        order.validated_at = timezone.now()
    return _move(
        order, target, user_id, event_type=target.value,
        details=f'outcome={result.validation_status} score={result.compliance_score}',
        update_fields=updates,
    )


def mark_validation_failed(order_id, user_id, reason):
    """Used when the provider's answer could not be parsed."""
    with unit_of_work('mark_validation_failed', order_id):
        order = lock_order(order_id)
        if order.status == S.VALIDATION_FAILED:
            return order
        _require_edge(order, S.VALIDATION_FAILED)
        return _move(order, S.VALIDATION_FAILED, user_id, 'validation_failed', details=reason)


# ── override ────────────────────────────────────────────────────────────────

def override_validation(order_id, justification, user_id, org_id):
    """
    Physician override of a failing validation.

    Needs a non-empty justification and at least OVERRIDE_MIN_FAILED_ATTEMPTS
    attempts with a failing outcome. Reclassifies the latest attempt as
    `override` and moves the order validation_failed -> validated.
    """
    with unit_of_work('override_validation', order_id):
        order = lock_order(order_id)
        require_org(order, org_id, 'referring_organization_id')
        require_status(order, {S.VALIDATION_FAILED}, S.VALIDATED)

        justification = (justification or '').strip()
        if not justification:
            raise MissingRequiredData('An override needs a justification', ['override_justification'])

        required = settings.OVERRIDE_MIN_FAILED_ATTEMPTS
        failed = attempts.failing_attempt_count(order)
        if failed < required:
            raise InvalidState(
                message=f'Override needs {required} failed validation attempts, order has {failed}',
                current_status=order.status,
                attempted_status=S.VALIDATED,
                code='OVERRIDE_NOT_ALLOWED',
                detail={'failed_attempts': failed, 'required_attempts': required},
            )

        latest = attempts.latest_attempt(order)
        latest.validation_outcome = ValidationStatus.OVERRIDE
        latest.save(update_fields=['validation_outcome'])

        order.overridden = True
        order.override_justification = justification
        order.final_validation_status = ValidationStatus.OVERRIDE
        order.validated_at = timezone.now()
        return _move(
            order, S.VALIDATED, user_id, 'override',
            details=f'attempt {latest.attempt_number} overridden',
            update_fields=['overridden', 'override_justification', 'final_validation_status', 'validated_at'],
        )


# ── finalize ────────────────────────────────────────────────────────────────

def finalize_order(order_id, payload, user_id, org_id):
    """
    Physician signs the order: draft/validated -> pending_admin.

    `payload` is a FinalizeOrderRequest; only the fields it carries are written.
    """
    with unit_of_work('finalize_order', order_id):
        order = lock_order(order_id)
        require_org(order, org_id, 'referring_organization_id')
        require_status(order, FINALIZABLE_STATUSES, S.PENDING_ADMIN)

        updates = payload.order_updates()
        # an override recorded by override_validation cannot be cleared here
        overridden = order.overridden or updates.get('overridden', False)
        if 'overridden' in updates:
            updates['overridden'] = overridden
        justification = updates.get('override_justification', order.override_justification)

        missing = []
        if not updates.get('final_cpt_code', order.final_cpt_code):
            missing.append('final_cpt_code')
        if not updates.get('final_icd10_codes', order.final_icd10_codes):
            missing.append('final_icd10_codes')
        if order.patient_id is None and not payload.is_temporary_patient:
            missing.append('patient')
        if overridden and not (justification or '').strip():
            missing.append('override_justification')
        if missing:
            raise MissingRequiredData('Order cannot be signed with missing fields', missing)

        if overridden and not order.overridden:
            has_history = order.validation_attempts.filter(
                validation_outcome__in=(*attempts.FAILING_OUTCOMES, ValidationStatus.OVERRIDE),
            ).exists()
            if not has_history:
                raise InvalidState(
                    message='Override requires at least one failed validation attempt',
                    current_status=order.status,
                    attempted_status=S.PENDING_ADMIN,
                    code='OVERRIDE_NOT_ALLOWED',
                )

        signature = decode_signature(payload.signature_data) if payload.signature_data else None

        # checks done; writes start here
        if payload.is_temporary_patient:
            order.patient = create_temporary_patient(order.referring_organization_id, payload.patient_info)

        for name, value in updates.items():
            setattr(order, name, value)
        if 'override_justification' in updates:
            order.override_justification = justification.strip()

        order.signed_by_user_id = user_id
        order.signature_date = timezone.now()
        if signature is not None:
            order.signature_file_key = process_signature(order, signature, user_id)

        event = 'override' if order.overridden else 'signed'
        _move(
            order, S.PENDING_ADMIN, user_id, event,
            update_fields=[
                'patient', *updates.keys(), 'signed_by_user_id', 'signature_date', 'signature_file_key',
            ],
        )
        notify(order, 'order_signed')
        return order


# ── radiology hand-off ──────────────────────────────────────────────────────

def _missing_for_radiology(order):
    missing = []
    patient = order.patient
    if patient is None:
        missing.append('patient')
    else:
        missing.extend(f'patient.{f}' for f in PATIENT_REQUIRED_FIELDS if not getattr(patient, f))

        insurance = patient.insurance.filter(is_primary=True).order_by('-id').first()
        if insurance is None:
            missing.append('insurance.primary')
        else:
            missing.extend(f'insurance.{f}' for f in INSURANCE_REQUIRED_FIELDS if not getattr(insurance, f))

    if order.radiology_organization_id is None:
        missing.append('radiology_organization_id')
    return missing


def send_to_radiology(order_id, user_id, org_id=None):
    """
    Admin staff hand the order to radiology: pending_admin -> pending_radiology.

    Every missing patient / insurance field is reported in one MissingRequiredData.
    """
    with unit_of_work('send_to_radiology', order_id):
        order = lock_order(order_id)
        if org_id is not None:
            require_org(order, org_id, 'referring_organization_id')
        require_status(order, {S.PENDING_ADMIN}, S.PENDING_RADIOLOGY)

        missing = _missing_for_radiology(order)
        if missing:
            raise MissingRequiredData('Order is missing data required by radiology', missing)

        insurance = order.patient.insurance.filter(is_primary=True).order_by('-id').first()
        order.insurance_provider = insurance.insurer_name
        order.insurance_policy_number = insurance.policy_number
        _move(
            order, S.PENDING_RADIOLOGY, user_id, 'sent_to_radiology',
            details=f'radiology_organization_id={order.radiology_organization_id}',
            update_fields=['insurance_provider', 'insurance_policy_number'],
        )
        notify(order, 'sent_to_radiology')
        return order


def update_order_status(order_id, new_status, user_id, org_id, notes=''):
    """Radiology moves its orders along: pending_radiology / scheduled -> scheduled / completed / cancelled."""
    with unit_of_work('update_order_status', order_id):
        order = lock_order(order_id)
        require_org(order, org_id, 'radiology_organization_id')
        require_status(order, RADIOLOGY_STATUSES, new_status)
        _require_edge(order, new_status)

        _move(order, S(new_status), user_id, 'status_changed', details=notes)
        notify(order, 'status_updated')
        return order


def request_information(order_id, info_type, details, user_id, org_id):
    """Radiology asks the referring organization for more information; status is unchanged."""
    with unit_of_work('request_information', order_id):
        order = lock_order(order_id)
        require_org(order, org_id, 'radiology_organization_id')
        if order.status not in RADIOLOGY_STATUSES:
            raise InvalidState(
                message=f'Order {order.id} is not with radiology',
                current_status=order.status,
                code='INVALID_STATE',
            )

        info_request = InformationRequest.objects.create(
            order=order,
            requested_by_user_id=user_id,
            requesting_organization_id=org_id,
            target_organization_id=order.referring_organization_id,
            requested_info_type=info_type,
            requested_info_details=details,
        )
        _append_history(order, user_id, 'information_requested', order.status, details=info_type)
        notify(order, 'information_requested')
        return info_request


def cancel_order(order_id, user_id, org_id, reason=''):
    """Either party may cancel a non-terminal order."""
    with unit_of_work('cancel_order', order_id):
        order = lock_order(order_id)
        require_org(order, org_id, 'referring_organization_id', 'radiology_organization_id')
        if order.status in TERMINAL_STATUSES:
            raise InvalidState(
                message=f'Order {order.id} is already {order.status}',
                current_status=order.status,
                attempted_status=S.CANCELLED,
                code='INVALID_TRANSITION',
            )
        _move(order, S.CANCELLED, user_id, 'cancelled', details=reason)
        notify(order, 'order_cancelled')
        return order
