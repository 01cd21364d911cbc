# pharmorder/services/notification_service.py
from typing import Any, Dict

import requests

from pharmorder.celery_worker import celery_app
from pharmorder.utils.logging import get_logger
from pharmorder.utils.retry import http_retry
from pharmorder.utils.settings import NOTIFY_TIMEOUT_SECONDS, NOTIFY_WEBHOOK_URL

logger = get_logger(__name__)


class NotificationService:
    """
    Wysyłka powiadomień (email/SMS/admin) przez Celery.
    notify() nigdy nie blokuje odpowiedzi - tylko kolejkuje task.
    """

    def notify(self, event_type: str, order=None, user=None, extra: Dict[str, Any] | None = None) -> None:
        payload = build_payload(event_type, order, user, extra)
        send_notification_task.delay(event_type, payload)
        logger.info(f"Notification {event_type} queued for order {payload.get('order_number')}")


def build_payload(event_type: str, order=None, user=None, extra=None) -> Dict[str, Any]:
    # tylko typy serializowalne do JSON (Decimal -> str)
    payload: Dict[str, Any] = {"event_type": event_type}

    if order is not None:
        payload.update(
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "payment_status": order.payment_status,
                "total": str(order.total),
                "due_amount": str(order.due_amount),
            }
        )

    if user is not None:
        payload.update(
            {
                "user_id": user.id,
                "name": user.full_name,
                "email": user.email,
                "phone": user.phone,
            }
        )

    if extra:
        payload["extra"] = {k: v if isinstance(v, (int, bool, type(None))) else str(v) for k, v in extra.items()}

    return payload


@http_retry()
def _post(url: str, payload: Dict[str, Any]) -> int:
    response = requests.post(url, json=payload, timeout=NOTIFY_TIMEOUT_SECONDS)
    response.raise_for_status()
    return response.status_code


@celery_app.task(name="pharmorder.services.notification_service.send_notification_task")
def send_notification_task(event_type: str, payload: Dict[str, Any]):
    """
    Bez NOTIFY_WEBHOOK_URL tylko logujemy; z adresem - POST z retry.
    """
    if not NOTIFY_WEBHOOK_URL:
        logger.info(f"[NOTIFICATION] {event_type}: {payload}")
        return {"event_type": event_type, "status": "logged"}

    try:
        code = _post(NOTIFY_WEBHOOK_URL, payload)
    except requests.RequestException as e:
        logger.error(f"Notification {event_type} delivery failed: {e}")
        return {"event_type": event_type, "status": "failed"}

    logger.info(f"Notification {event_type} delivered ({code})")
    return {"event_type": event_type, "status": "sent"}
