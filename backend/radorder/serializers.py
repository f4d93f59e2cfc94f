"""
Response serializers: ORM objects / result structs -> JSON-able dicts.

Output formatting only. Request parsing and checks live in radorder/intake/.
"""

from .lifecycle import queue_status_for


def _iso(value):
    return value.isoformat() if value else None


def serialize_validation_response(outcome):
    """Body for POST /api/orders/validate/."""
    return {
        'success': True,
        'orderId': outcome.order.id,
        'status': outcome.order.status,
        'attemptNumber': outcome.attempt.attempt_number if outcome.attempt else None,
        'validationResult': outcome.result.to_dict(),
    }


def serialize_transition(order, message):
    """Body for every lifecycle transition endpoint."""
    return {
        'success': True,
        'orderId': order.id,
        'status': order.status,
        'message': message,
    }


def serialize_information_request(info_request):
    return {
        'success': True,
        'orderId': info_request.order_id,
        'requestId': info_request.id,
        'requestedInfoType': info_request.requested_info_type,
        'status': info_request.status,
    }


def serialize_order_detail(order):
    """Order detail; queueStatus is only present once radiology has the order."""
    response = {
        'orderId': order.id,
        'orderNumber': order.order_number,
        'status': order.status,
        'priority': order.priority,
        'referringOrganizationId': order.referring_organization_id,
        'radiologyOrganizationId': order.radiology_organization_id,
        'clinicalIndication': order.clinical_indication,
        'finalCPTCode': order.final_cpt_code,
        'finalCPTCodeDescription': order.final_cpt_code_description,
        'finalICD10Codes': order.final_icd10_codes,
        'finalICD10CodeDescriptions': order.final_icd10_code_descriptions,
        'finalValidationStatus': order.final_validation_status,
        'finalComplianceScore': order.final_compliance_score,
        'overridden': order.overridden,
        'createdAt': _iso(order.created_at),
        'updatedAt': _iso(order.updated_at),
        'signatureDate': _iso(order.signature_date),
    }

    queue_status = queue_status_for(order.status)
    if queue_status is not None:
        response['queueStatus'] = queue_status.value

    if order.patient is not None:
        response['patient'] = {
            'id': order.patient.id,
            'name': f"{order.patient.first_name} {order.patient.last_name}",
            'mrn': order.patient.mrn,
            'isTemporary': order.patient.is_temporary,
        }

    response['history'] = [
        {
            'eventType': h.event_type,
            'previousStatus': h.previous_status,
            'newStatus': h.new_status,
            'userId': h.user_id,
            'createdAt': _iso(h.created_at),
        }
        for h in order.history.all()
    ]
    return response
