"""
Thin DRF views: identity -> intake parser -> service -> serializer.

Errors are never handled here; radorder.exception_handler formats every
BaseAppException into the unified error body.
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import lifecycle, services
from .exceptions import Unauthorized
from .intake import get_parser
from .serializers import (
    serialize_information_request,
    serialize_order_detail,
    serialize_transition,
    serialize_validation_response,
)


def caller_identity(request):
    """(user_id, org_id) from the headers set by the upstream auth layer."""
    try:
        user_id = int(request.headers['X-User-Id'])
        org_id = int(request.headers['X-Organization-Id'])
    except (KeyError, ValueError):
        raise Unauthorized(
            message='Caller identity headers are missing or invalid',
            code='MISSING_IDENTITY',
        )
    return user_id, org_id


class ValidateOrderView(APIView):
    """POST /api/orders/validate/"""

    def post(self, request):
        user_id, org_id = caller_identity(request)
        payload = get_parser('validate', request.body, user_id=user_id, org_id=org_id).process()
        outcome = services.handle_validation_request(payload)
        return Response(serialize_validation_response(outcome), status=status.HTTP_200_OK)


class OrderDetailView(APIView):
    """GET /api/orders/<order_id>/"""

    def get(self, request, order_id):
        _user_id, org_id = caller_identity(request)
        order = services.get_order_detail(order_id, org_id)
        return Response(serialize_order_detail(order))


class FinalizeOrderView(APIView):
    """POST /api/orders/<order_id>/finalize/"""

    def post(self, request, order_id):
        user_id, org_id = caller_identity(request)
        payload = get_parser('finalize', request.body).process()
        order = lifecycle.finalize_order(order_id, payload, user_id, org_id)
        return Response(serialize_transition(order, 'Order signed and sent for admin review'))


class OverrideValidationView(APIView):
    """POST /api/orders/<order_id>/override/"""

    def post(self, request, order_id):
        user_id, org_id = caller_identity(request)
        payload = get_parser('override', request.body).process()
        order = lifecycle.override_validation(order_id, payload.justification, user_id, org_id)
        return Response(serialize_transition(order, 'Validation overridden'))


class SendToRadiologyView(APIView):
    """POST /api/orders/<order_id>/send-to-radiology/"""

    def post(self, request, order_id):
        user_id, org_id = caller_identity(request)
        order = lifecycle.send_to_radiology(order_id, user_id, org_id)
        return Response(serialize_transition(order, 'Order sent to radiology'))


class UpdateOrderStatusView(APIView):
    """POST /api/orders/<order_id>/status/"""

    def post(self, request, order_id):
        user_id, org_id = caller_identity(request)
        payload = get_parser('status', request.body).process()
        order = lifecycle.update_order_status(order_id, payload.new_status, user_id, org_id, payload.notes)
        return Response(serialize_transition(order, f'Order status updated to {order.status}'))


class RequestInformationView(APIView):
    """POST /api/orders/<order_id>/request-info/"""

    def post(self, request, order_id):
        user_id, org_id = caller_identity(request)
        payload = get_parser('request_info', request.body).process()
        info_request = lifecycle.request_information(
            order_id, payload.requested_info_type, payload.details, user_id, org_id,
        )
        return Response(serialize_information_request(info_request), status=status.HTTP_201_CREATED)


class CancelOrderView(APIView):
    """POST /api/orders/<order_id>/cancel/"""

    def post(self, request, order_id):
        user_id, org_id = caller_identity(request)
        payload = get_parser('cancel', request.body).process()
        order = lifecycle.cancel_order(order_id, user_id, org_id, payload.reason)
        return Response(serialize_transition(order, 'Order cancelled'))
