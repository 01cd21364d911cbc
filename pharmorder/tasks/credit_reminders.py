# pharmorder/tasks/credit_reminders.py
from datetime import timedelta

from sqlalchemy import select

from pharmorder.celery_worker import celery_app
from pharmorder.data.database import SessionLocal
from pharmorder.data.models.order import OrderModel
from pharmorder.domain.order_status import OrderStatus, PaymentStatus
from pharmorder.services.notification_service import NotificationService
from pharmorder.utils.clock import utc_now
from pharmorder.utils.logging import get_logger
from pharmorder.utils.settings import CREDIT_REMINDER_DAYS_AHEAD

logger = get_logger(__name__)

# kredyt jeszcze nie spłacony
OPEN_CREDIT_STATUSES = (PaymentStatus.CREDIT.value, PaymentStatus.PARTIAL.value)


def credit_orders_due(db, today, days_ahead: int = CREDIT_REMINDER_DAYS_AHEAD):
    """Zamówienia kredytowe z terminem do today + days_ahead (w tym przeterminowane)."""
    return db.execute(
        select(OrderModel).where(
            OrderModel.is_credit.is_(True),
            OrderModel.is_deleted.is_(False),
            OrderModel.due_amount > 0,
            OrderModel.payment_status.in_(OPEN_CREDIT_STATUSES),
            OrderModel.status != OrderStatus.CANCELLED.value,
            OrderModel.credit_due_date <= today + timedelta(days=days_ahead),
        ).order_by(OrderModel.credit_due_date)
    ).scalars().all()


def send_credit_reminders(db, notifier, now=None) -> int:
    today = (now or utc_now()).date()
    sent = 0
    for order in credit_orders_due(db, today):
        event_type = "credit_overdue" if order.credit_due_date < today else "credit_due_reminder"
        try:
            notifier.notify(
                event_type,
                order,
                order.user,
                {"credit_due_date": order.credit_due_date.isoformat(), "due_amount": order.due_amount},
            )
            sent += 1
        except Exception:
            logger.exception(f"Failed to send {event_type} for order {order.order_number}")
    return sent


@celery_app.task(name="pharmorder.tasks.credit_reminders.credit_due_reminders_task")
def credit_due_reminders_task():
    logger.info("Credit due reminders task started")

    db = SessionLocal()
    try:
        sent = send_credit_reminders(db, NotificationService())
        logger.info(f"Sent {sent} credit reminders")
        return sent
    finally:
        db.close()
