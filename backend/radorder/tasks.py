import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

EVENT_SUBJECTS = {
    'order_signed': 'Order {number} signed and awaiting admin review',
    'sent_to_radiology': 'New imaging order {number} received',
    'status_updated': 'Order {number} is now {status}',
    'information_requested': 'Radiology requested more information for order {number}',
    'order_cancelled': 'Order {number} was cancelled',
}


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=10,
    acks_late=True,
    reject_on_worker_lost=True,
)
def send_order_notification(self, order_id, event):
    """
    Mail the configured radiology inbox about a lifecycle `event` on an order.

    SMTP failures back off from default_retry_delay, doubling per retry. Once
    max_retries is spent the failure is only logged: notifications never
    change order state.
    """
    from radorder.models import Order

    logger.info("[Celery][send_order_notification] order_id=%s event=%s (attempt %d/%d)",
                order_id, event, self.request.retries + 1, self.max_retries + 1)

    try:
        order = Order.objects.get(id=order_id)
    except Order.DoesNotExist:
        logger.error("[Celery] order_id=%s not found, notification dropped (%s)", order_id, event)
        return

    recipient = settings.RADIOLOGY_NOTIFICATION_EMAIL
    if not recipient:
        logger.info("[Celery] no notification recipient configured, skipping order_id=%s", order_id)
        return

    subject = EVENT_SUBJECTS.get(event, 'Order {number} updated').format(
        number=order.order_number, status=order.status,
    )
    # ids and status only; no patient data in mail bodies
    body = f'Order {order.order_number} (id {order.id}) status: {order.status}. Event: {event}.'

    try:
        send_mail(subject, body, settings.NOTIFICATION_FROM_EMAIL, [recipient])
    except Exception as exc:
        if self.request.retries < self.max_retries:
            countdown = self.default_retry_delay * (2 ** self.request.retries)
            logger.warning("[Celery] order_id=%s notification failed, retrying in %ds: %s",
                           order_id, countdown, type(exc).__name__)
            raise self.retry(exc=exc, countdown=countdown)
        logger.error("[Celery] order_id=%s notification failed after %d retries",
                     order_id, self.max_retries)
        return

    logger.info("[Celery] order_id=%s notification sent (%s)", order_id, event)
