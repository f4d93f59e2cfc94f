import logging

from django.db import transaction

logger = logging.getLogger(__name__)


def _dispatch(order_id, event):
    from radorder.tasks import send_order_notification

    try:
        send_order_notification.delay(order_id, event)
    except Exception as exc:  # broker down, serialization, ...; never block the transition
        logger.error("[Notify] could not queue %s for order %s: %s", event, order_id, type(exc).__name__)


def notify(order, event):
    """Queue a notification once the current transaction commits. Fire-and-forget."""
    order_id = order.id
    transaction.on_commit(lambda: _dispatch(order_id, event))
