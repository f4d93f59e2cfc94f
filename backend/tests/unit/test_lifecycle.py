"""
Unit tests for the order lifecycle (radorder.lifecycle).

Covers:
- transition table and queue-status mapping
- finalize: authorization, allowed states, patch semantics, temporary patient,
  signature storage, history event signed / override
- send_to_radiology: state check with unchanged row + history on rejection,
  every missing field reported at once, insurance snapshot
- update_order_status / request_information / cancel_order
- override gate: 2 failing attempts rejected, 3 accepted
- DatabaseError -> PersistenceFailure with full rollback
- notifications queued on commit
"""
import base64
from unittest.mock import patch

import pytest
from django.db import DatabaseError

from radorder import lifecycle
from radorder.exceptions import (
    InvalidState,
    MissingRequiredData,
    NotFound,
    PersistenceFailure,
    Unauthorized,
    ValidationError,
)
from radorder.intake import get_parser
from radorder.models import InformationRequest, Order, OrderHistory, OrderStatus, ValidationAttempt
from tests.conftest import (
    ADMIN_ID,
    PHYSICIAN_ID,
    RADIOLOGY_ORG,
    RADIOLOGY_USER_ID,
    REFERRING_ORG,
    OrderFactory,
    PatientFactory,
    PatientInsuranceFactory,
    ValidationAttemptFactory,
)

OTHER_ORG = 999


def _snapshot(order_id):
    """Order row plus its history, for before/after comparisons."""
    row = Order.objects.filter(id=order_id).values().get()
    history = list(OrderHistory.objects.filter(order_id=order_id).values())
    return row, history


def _finalize_payload(body):
    return get_parser('finalize', body).process()


# ===================================================================
# Transition table
# ===================================================================

class TestTransitionTable:

    @pytest.mark.parametrize('current,target', [
        ('draft', 'validated'),
        ('draft', 'pending_admin'),
        ('validated', 'pending_admin'),
        ('validation_failed', 'validated'),
        ('pending_admin', 'pending_radiology'),
        ('pending_radiology', 'scheduled'),
        ('scheduled', 'completed'),
        ('pending_radiology', 'cancelled'),
    ])
    def test_legal(self, current, target):
        assert lifecycle.can_transition(current, target)

    @pytest.mark.parametrize('current,target', [
        ('draft', 'pending_radiology'),
        ('validation_failed', 'pending_admin'),
        ('pending_radiology', 'pending_radiology'),
        ('completed', 'cancelled'),
        ('cancelled', 'draft'),
        ('scheduled', 'pending_radiology'),
    ])
    def test_illegal(self, current, target):
        assert not lifecycle.can_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for status in lifecycle.TERMINAL_STATUSES:
            assert lifecycle.TRANSITIONS[status] == set()

    def test_every_non_terminal_state_can_cancel(self):
        for status, targets in lifecycle.TRANSITIONS.items():
            if status not in lifecycle.TERMINAL_STATUSES:
                assert OrderStatus.CANCELLED in targets


class TestQueueStatus:

    @pytest.mark.parametrize('order_status,queue_status', [
        ('pending_radiology', 'pending_review'),
        ('scheduled', 'in_progress'),
        ('completed', 'completed'),
        ('cancelled', 'cancelled'),
    ])
    def test_mapped(self, order_status, queue_status):
        assert lifecycle.queue_status_for(order_status) == queue_status

    @pytest.mark.parametrize('order_status', ['draft', 'validated', 'validation_failed', 'pending_admin'])
    def test_not_yet_queued(self, order_status):
        assert lifecycle.queue_status_for(order_status) is None


# ===================================================================
# finalize
# ===================================================================

@pytest.mark.django_db
class TestFinalizeOrder:

    def test_draft_to_pending_admin(self, sample_finalize_payload):
        order = OrderFactory(status='draft')

        result = lifecycle.finalize_order(order.id, _finalize_payload(sample_finalize_payload),
                                          PHYSICIAN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert result.status == order.status == 'pending_admin'
        assert order.final_cpt_code == '72148'
        assert order.final_icd10_codes == ['M54.50']
        assert order.final_compliance_score == 85
        assert order.signed_by_user_id == PHYSICIAN_ID
        assert order.signature_date is not None
        event = order.history.last()
        assert (event.event_type, event.previous_status, event.new_status) == ('signed', 'draft', 'pending_admin')

    def test_validated_allowed(self, sample_finalize_payload):
        order = OrderFactory(status='validated')
        lifecycle.finalize_order(order.id, _finalize_payload(sample_finalize_payload), PHYSICIAN_ID, REFERRING_ORG)
        order.refresh_from_db()
        assert order.status == 'pending_admin'

    @pytest.mark.parametrize('status', ['validation_failed', 'pending_admin', 'pending_radiology', 'cancelled'])
    def test_wrong_state_rejected(self, status, sample_finalize_payload):
        order = OrderFactory(status=status)
        before = _snapshot(order.id)

        with pytest.raises(InvalidState) as exc_info:
            lifecycle.finalize_order(order.id, _finalize_payload(sample_finalize_payload),
                                     PHYSICIAN_ID, REFERRING_ORG)

        assert exc_info.value.detail['current_status'] == status
        assert _snapshot(order.id) == before

    def test_other_organization_unauthorized(self, sample_finalize_payload):
        order = OrderFactory(status='draft')
        before = _snapshot(order.id)

        with pytest.raises(Unauthorized):
            lifecycle.finalize_order(order.id, _finalize_payload(sample_finalize_payload), PHYSICIAN_ID, OTHER_ORG)
        assert _snapshot(order.id) == before

    def test_unknown_order(self, sample_finalize_payload):
        with pytest.raises(NotFound):
            lifecycle.finalize_order(987654, _finalize_payload(sample_finalize_payload), PHYSICIAN_ID, REFERRING_ORG)

    def test_absent_fields_keep_stored_values(self):
        order = OrderFactory(status='validated', final_cpt_code='72148', final_icd10_codes=['M54.50'],
                             clinical_indication='kept')

        lifecycle.finalize_order(order.id, _finalize_payload({'finalComplianceScore': 70}),
                                 PHYSICIAN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert order.clinical_indication == 'kept'
        assert order.final_compliance_score == 70

    def test_missing_coding_reported_together(self):
        order = OrderFactory(status='draft', patient=None)

        with pytest.raises(MissingRequiredData) as exc_info:
            lifecycle.finalize_order(order.id, _finalize_payload({}), PHYSICIAN_ID, REFERRING_ORG)

        assert exc_info.value.missing_fields == ['final_cpt_code', 'final_icd10_codes', 'patient']

    def test_temporary_patient_created(self, sample_finalize_payload):
        order = OrderFactory(status='draft', patient=None)
        body = dict(sample_finalize_payload, isTemporaryPatient=True,
                    patientInfo={'first_name': 'Walk', 'last_name': 'In', 'date_of_birth': '1960-02-03'})

        lifecycle.finalize_order(order.id, _finalize_payload(body), PHYSICIAN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert order.patient.is_temporary
        assert order.patient.organization_id == REFERRING_ORG
        assert str(order.patient.date_of_birth) == '1960-02-03'

    @patch('radorder.uploads.default_storage')
    def test_signature_stored(self, mock_storage, sample_finalize_payload):
        mock_storage.save.return_value = 'signatures/order_1.png'
        order = OrderFactory(status='validated')
        image = 'data:image/png;base64,' + base64.b64encode(b'\x89PNG fake').decode()

        lifecycle.finalize_order(order.id, _finalize_payload(dict(sample_finalize_payload, signatureData=image)),
                                 PHYSICIAN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert order.signature_file_key == 'signatures/order_1.png'
        name, content = mock_storage.save.call_args[0]
        assert name.startswith('signatures/order_')
        assert content.read() == b'\x89PNG fake'

    def test_bad_signature_rejected_before_writes(self, sample_finalize_payload):
        order = OrderFactory(status='validated')
        before = _snapshot(order.id)

        with pytest.raises(ValidationError):
            lifecycle.finalize_order(order.id, _finalize_payload(dict(sample_finalize_payload, signatureData='%%%')),
                                     PHYSICIAN_ID, REFERRING_ORG)
        assert _snapshot(order.id) == before

    def test_overridden_order_writes_override_event(self, sample_finalize_payload):
        order = OrderFactory(status='validated', overridden=True, override_justification='known mets')
        ValidationAttemptFactory(order=order, attempt_number=1, validation_outcome='override')

        lifecycle.finalize_order(order.id, _finalize_payload(sample_finalize_payload), PHYSICIAN_ID, REFERRING_ORG)

        assert order.history.last().event_type == 'override'

    def test_payload_override_needs_failed_attempt(self, sample_finalize_payload):
        order = OrderFactory(status='draft')
        body = dict(sample_finalize_payload, overridden=True, overrideJustification='clinical judgement')

        with pytest.raises(InvalidState) as exc_info:
            lifecycle.finalize_order(order.id, _finalize_payload(body), PHYSICIAN_ID, REFERRING_ORG)
        assert exc_info.value.code == 'OVERRIDE_NOT_ALLOWED'

    def test_payload_cannot_clear_recorded_override(self, sample_finalize_payload):
        order = OrderFactory(status='validated', overridden=True, override_justification='known mets')
        ValidationAttemptFactory(order=order, attempt_number=1, validation_outcome='override')

        lifecycle.finalize_order(order.id, _finalize_payload(dict(sample_finalize_payload, overridden=False)),
                                 PHYSICIAN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert order.overridden is True


# ===================================================================
# send_to_radiology
# ===================================================================

@pytest.mark.django_db
class TestSendToRadiology:

    def test_success(self, ready_patient):
        order = OrderFactory(status='pending_admin', patient=ready_patient)

        lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        order.refresh_from_db()
        insurance = ready_patient.insurance.get()
        assert order.status == 'pending_radiology'
        assert order.insurance_provider == 'Blue Cross'
        assert order.insurance_policy_number == insurance.policy_number
        event = order.history.last()
        assert (event.event_type, event.previous_status, event.new_status) == \
            ('sent_to_radiology', 'pending_admin', 'pending_radiology')

    def test_org_optional(self, ready_patient):
        order = OrderFactory(status='pending_admin', patient=ready_patient)
        lifecycle.send_to_radiology(order.id, ADMIN_ID)
        order.refresh_from_db()
        assert order.status == 'pending_radiology'

    @pytest.mark.parametrize('status', ['draft', 'validated', 'pending_radiology', 'scheduled', 'completed'])
    def test_wrong_state_leaves_row_and_history_unchanged(self, status, ready_patient):
        order = OrderFactory(status=status, patient=ready_patient)
        before = _snapshot(order.id)

        with pytest.raises(InvalidState) as exc_info:
            lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        assert exc_info.value.detail == {'current_status': status, 'attempted_status': 'pending_radiology'}
        assert _snapshot(order.id) == before

    def test_all_missing_fields_listed(self):
        patient = PatientFactory(address_line1='', city='', phone_number='')
        PatientInsuranceFactory(patient=patient, policy_number='')
        order = OrderFactory(status='pending_admin', patient=patient, radiology_organization_id=None)
        before = _snapshot(order.id)

        with pytest.raises(MissingRequiredData) as exc_info:
            lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        assert exc_info.value.missing_fields == [
            'patient.address_line1',
            'patient.city',
            'patient.phone_number',
            'insurance.policy_number',
            'radiology_organization_id',
        ]
        assert _snapshot(order.id) == before

    def test_no_primary_insurance(self):
        patient = PatientFactory()
        PatientInsuranceFactory(patient=patient, is_primary=False)
        order = OrderFactory(status='pending_admin', patient=patient)

        with pytest.raises(MissingRequiredData) as exc_info:
            lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)
        assert exc_info.value.missing_fields == ['insurance.primary']

    def test_other_organization_unauthorized(self, ready_patient):
        order = OrderFactory(status='pending_admin', patient=ready_patient)
        with pytest.raises(Unauthorized):
            lifecycle.send_to_radiology(order.id, ADMIN_ID, OTHER_ORG)


# ===================================================================
# radiology-side transitions
# ===================================================================

@pytest.mark.django_db
class TestUpdateOrderStatus:

    def test_schedule_then_complete(self):
        order = OrderFactory(status='pending_radiology')

        lifecycle.update_order_status(order.id, 'scheduled', RADIOLOGY_USER_ID, RADIOLOGY_ORG)
        lifecycle.update_order_status(order.id, 'completed', RADIOLOGY_USER_ID, RADIOLOGY_ORG, notes='read')

        order.refresh_from_db()
        assert order.status == 'completed'
        assert [h.new_status for h in order.history.all()] == ['scheduled', 'completed']

    def test_referring_org_cannot_update(self):
        order = OrderFactory(status='pending_radiology')
        with pytest.raises(Unauthorized):
            lifecycle.update_order_status(order.id, 'scheduled', PHYSICIAN_ID, REFERRING_ORG)

    def test_not_with_radiology(self):
        order = OrderFactory(status='pending_admin')
        with pytest.raises(InvalidState):
            lifecycle.update_order_status(order.id, 'scheduled', RADIOLOGY_USER_ID, RADIOLOGY_ORG)

    def test_backwards_edge_rejected(self):
        order = OrderFactory(status='scheduled')
        before = _snapshot(order.id)
        with pytest.raises(InvalidState):
            lifecycle.update_order_status(order.id, 'scheduled', RADIOLOGY_USER_ID, RADIOLOGY_ORG)
        assert _snapshot(order.id) == before


@pytest.mark.django_db
class TestRequestInformation:

    def test_creates_request_without_status_change(self):
        order = OrderFactory(status='pending_radiology')

        info = lifecycle.request_information(order.id, 'labs', 'recent creatinine', RADIOLOGY_USER_ID, RADIOLOGY_ORG)

        order.refresh_from_db()
        assert order.status == 'pending_radiology'
        assert InformationRequest.objects.get(id=info.id).target_organization_id == REFERRING_ORG
        event = order.history.last()
        assert (event.event_type, event.previous_status, event.new_status) == \
            ('information_requested', 'pending_radiology', 'pending_radiology')

    def test_only_radiology_org(self):
        order = OrderFactory(status='pending_radiology')
        with pytest.raises(Unauthorized):
            lifecycle.request_information(order.id, 'labs', '', PHYSICIAN_ID, REFERRING_ORG)


@pytest.mark.django_db
class TestCancelOrder:

    @pytest.mark.parametrize('org_id', [REFERRING_ORG, RADIOLOGY_ORG])
    def test_either_party_can_cancel(self, org_id):
        order = OrderFactory(status='pending_admin')
        lifecycle.cancel_order(order.id, ADMIN_ID, org_id, reason='duplicate')
        order.refresh_from_db()
        assert order.status == 'cancelled'
        assert order.history.last().details == 'duplicate'

    @pytest.mark.parametrize('status', ['completed', 'cancelled'])
    def test_terminal_rejected(self, status):
        order = OrderFactory(status=status)
        with pytest.raises(InvalidState):
            lifecycle.cancel_order(order.id, ADMIN_ID, REFERRING_ORG)

    def test_stranger_unauthorized(self):
        order = OrderFactory(status='draft')
        with pytest.raises(Unauthorized):
            lifecycle.cancel_order(order.id, ADMIN_ID, OTHER_ORG)


# ===================================================================
# override
# ===================================================================

def _failed_order(n_attempts, outcome='needs_clarification'):
    order = OrderFactory(status='validation_failed')
    for i in range(n_attempts):
        ValidationAttemptFactory(order=order, attempt_number=i + 1, validation_outcome=outcome)
    return order


@pytest.mark.django_db
class TestOverrideValidation:

    def test_three_failures_allow_override(self):
        order = _failed_order(3)

        lifecycle.override_validation(order.id, 'history of known metastatic disease', PHYSICIAN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert order.status == 'validated'
        assert order.overridden is True
        assert order.override_justification == 'history of known metastatic disease'
        outcomes = list(ValidationAttempt.objects.filter(order=order).values_list('validation_outcome', flat=True))
        assert outcomes == ['needs_clarification', 'needs_clarification', 'override']
        assert order.history.last().event_type == 'override'

    def test_mixed_failing_outcomes_count(self):
        order = OrderFactory(status='validation_failed')
        ValidationAttemptFactory(order=order, attempt_number=1, validation_outcome='inappropriate')
        ValidationAttemptFactory(order=order, attempt_number=2, validation_outcome='needs_clarification')
        ValidationAttemptFactory(order=order, attempt_number=3, validation_outcome='inappropriate')

        lifecycle.override_validation(order.id, 'justified', PHYSICIAN_ID, REFERRING_ORG)
        order.refresh_from_db()
        assert order.status == 'validated'

    def test_two_failures_rejected(self):
        order = _failed_order(2)
        before = _snapshot(order.id)

        with pytest.raises(InvalidState) as exc_info:
            lifecycle.override_validation(order.id, 'history of known metastatic disease',
                                          PHYSICIAN_ID, REFERRING_ORG)

        assert exc_info.value.code == 'OVERRIDE_NOT_ALLOWED'
        assert exc_info.value.detail['failed_attempts'] == 2
        assert _snapshot(order.id) == before

    @pytest.mark.parametrize('justification', ['', '   ', None])
    def test_empty_justification_rejected(self, justification):
        order = _failed_order(3)
        with pytest.raises(MissingRequiredData) as exc_info:
            lifecycle.override_validation(order.id, justification, PHYSICIAN_ID, REFERRING_ORG)
        assert exc_info.value.missing_fields == ['override_justification']

    def test_min_attempts_from_settings(self, settings):
        settings.OVERRIDE_MIN_FAILED_ATTEMPTS = 2
        order = _failed_order(2)
        lifecycle.override_validation(order.id, 'ok', PHYSICIAN_ID, REFERRING_ORG)
        order.refresh_from_db()
        assert order.status == 'validated'

    def test_requires_validation_failed_state(self):
        order = OrderFactory(status='validated')
        for i in range(3):
            ValidationAttemptFactory(order=order, attempt_number=i + 1)
        with pytest.raises(InvalidState):
            lifecycle.override_validation(order.id, 'ok', PHYSICIAN_ID, REFERRING_ORG)

    def test_other_organization(self):
        order = _failed_order(3)
        with pytest.raises(Unauthorized):
            lifecycle.override_validation(order.id, 'ok', PHYSICIAN_ID, OTHER_ORG)


# ===================================================================
# rollback and notifications
# ===================================================================

@pytest.mark.django_db
class TestRollback:

    def test_history_failure_rolls_back_status(self, ready_patient):
        order = OrderFactory(status='pending_admin', patient=ready_patient)
        before = _snapshot(order.id)

        with patch('radorder.lifecycle.OrderHistory.objects.create', side_effect=DatabaseError('boom')):
            with pytest.raises(PersistenceFailure):
                lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        assert _snapshot(order.id) == before


@pytest.mark.django_db
class TestNotifications:

    @patch('radorder.tasks.send_order_notification.delay')
    def test_queued_after_commit(self, mock_delay, ready_patient, django_capture_on_commit_callbacks):
        order = OrderFactory(status='pending_admin', patient=ready_patient)

        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        mock_delay.assert_called_once_with(order.id, 'sent_to_radiology')

    @patch('radorder.tasks.send_order_notification.delay', side_effect=ConnectionError('broker down'))
    def test_dispatch_failure_does_not_block(self, mock_delay, ready_patient, django_capture_on_commit_callbacks):
        order = OrderFactory(status='pending_admin', patient=ready_patient)

        with django_capture_on_commit_callbacks(execute=True):
            lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        order.refresh_from_db()
        assert order.status == 'pending_radiology'

    @patch('radorder.tasks.send_order_notification.delay')
    def test_not_queued_when_rejected(self, mock_delay, django_capture_on_commit_callbacks):
        order = OrderFactory(status='draft')

        with django_capture_on_commit_callbacks(execute=True):
            with pytest.raises(InvalidState):
                lifecycle.send_to_radiology(order.id, ADMIN_ID, REFERRING_ORG)

        mock_delay.assert_not_called()
