# pharmorder/services/payment_service.py
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pharmorder.data.models.doctor import DoctorModel
from pharmorder.data.models.order import OrderModel
from pharmorder.data.models.payment import PaymentModel
from pharmorder.domain.errors import (
    BusinessRuleError,
    ConcurrencyConflict,
    InvalidSignature,
    NotFoundError,
    PaymentExceedsDue,
    RefundNotAllowed,
)
from pharmorder.domain.order_status import OrderStatus, PaymentRecordStatus, PaymentStatus
from pharmorder.repos.order_repo import OrderRepo
from pharmorder.repos.payment_repo import PaymentRepo
from pharmorder.services import payhere_service as payhere
from pharmorder.services.order_status_service import OrderStatusService, TransitionContext
from pharmorder.services.payhere_service import PayHereService
from pharmorder.utils.clock import Clock, utc_now
from pharmorder.utils.logging import get_logger
from pharmorder.utils.money import ZERO, money

logger = get_logger(__name__)

CANCEL_REASONS = {
    payhere.CANCELLED: "Payment cancelled by customer",
    payhere.FAILED: "Payment failed",
    payhere.CHARGEDBACK: "Payment charged back",
}


@dataclass
class NotifyOutcome:
    """Wynik obsługi notyfikacji bramki - router odpowiada body jako text/plain."""

    body: str
    processed: bool = False
    duplicate: bool = False
    message: str | None = None


class PaymentService:
    """
    Uzgadnianie płatności: wpłaty ręczne, zwroty, notyfikacje PayHere.
    Każda operacja = jedna transakcja, wiersze zamówienia/lekarza zablokowane.
    """

    def __init__(
        self,
        db: Session,
        notifier=None,
        auditor=None,
        payhere_service: PayHereService | None = None,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.orders = OrderRepo(db)
        self.repo = PaymentRepo(db)
        self.payhere = payhere_service or PayHereService()
        self.status_service = OrderStatusService(db, notifier=notifier, auditor=auditor, clock=clock)
        self.notifier = notifier
        self.auditor = auditor
        self.clock = clock

    # query
    def list_payments(self, order_id: int):
        if not self.orders.get_order(order_id):
            raise NotFoundError("Order not found")
        return self.repo.list_for_order(order_id)

    def verify_order_payment(self, order_number: str, user_id: int) -> Dict[str, Any]:
        order = self.orders.get_by_number(order_number)
        if not order or order.user_id != user_id:
            raise NotFoundError("Order not found")

        return {
            "order_number": order.order_number,
            "status": order.status,
            "payment_status": order.payment_status,
            "payment_method": order.payment_method,
            "total": order.total,
            "paid_amount": order.paid_amount,
            "due_amount": order.due_amount,
            "item_count": order.item_count,
            "payments": self.repo.list_for_order(order.id),
            "created_at": order.created_at,
        }

    # commands
    def add_payment(
        self,
        order_id: int,
        amount,
        method: str,
        transaction_id: str | None = None,
        notes: str | None = None,
        actor_id: int | None = None,
    ):
        amount = money(amount)
        if amount <= ZERO:
            raise BusinessRuleError("Payment amount must be greater than 0")

        try:
            order = self.orders.get_order(order_id, lock=True)
            if not order:
                raise NotFoundError("Order not found")

            if amount > money(order.due_amount):
                raise PaymentExceedsDue(
                    f"Payment amount cannot exceed due amount ({money(order.due_amount)})"
                )

            if transaction_id and self.repo.get_by_transaction_id(transaction_id):
                raise ConcurrencyConflict(f"Payment with transaction id {transaction_id} already exists")

            payment = self.repo.add(
                PaymentModel(
                    order_id=order.id,
                    amount=amount,
                    method=method,
                    transaction_id=transaction_id,
                    status=PaymentRecordStatus.COMPLETED.value,
                    provider="manual",
                    notes=notes,
                    processed_by=actor_id,
                    processed_at=self.clock(),
                )
            )
            self._apply_received(order, amount)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConcurrencyConflict(f"Payment with transaction id {transaction_id} already exists")
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Payment {payment.id} of {amount} recorded for order {order.order_number}")

        self._audit(actor_id, "create", payment.id, after={"order_id": order.id, "amount": amount, "method": method})
        self._notify("payment_received", order, {"amount": amount, "method": method})
        return payment, order

    def process_refund(
        self,
        payment_id: int,
        amount=None,
        reason: str | None = None,
        actor_id: int | None = None,
    ):
        try:
            original = self.repo.get_payment(payment_id, lock=True)
            if not original:
                raise NotFoundError("Payment not found")

            if original.status != PaymentRecordStatus.COMPLETED.value or money(original.amount) <= ZERO:
                raise RefundNotAllowed("Only completed payments can be refunded")

            refund_amount = money(original.amount) if amount is None else money(amount)
            if refund_amount <= ZERO:
                raise RefundNotAllowed("Refund amount must be greater than 0")
            if refund_amount > money(original.amount):
                raise RefundNotAllowed("Refund amount cannot exceed original payment")

            order = self.orders.get_order(original.order_id, lock=True)
            if not order:
                raise NotFoundError("Order not found")

            refund = self.repo.add(
                PaymentModel(
                    order_id=order.id,
                    amount=-refund_amount,
                    method="refund",
                    transaction_id=f"REF-{original.transaction_id or original.id}",
                    status=PaymentRecordStatus.COMPLETED.value,
                    refunded_payment_id=original.id,
                    refund_reason=reason,
                    provider=original.provider,
                    notes=reason,
                    processed_by=actor_id,
                    processed_at=self.clock(),
                )
            )

            original.refunded_amount = money(original.refunded_amount) + refund_amount
            if original.refunded_amount >= money(original.amount):
                original.status = PaymentRecordStatus.REFUNDED.value
            else:
                original.status = PaymentRecordStatus.PARTIAL_REFUND.value

            order.paid_amount = money(order.paid_amount) - refund_amount
            order.due_amount = money(order.total) - order.paid_amount
            if order.paid_amount <= ZERO:
                order.payment_status = PaymentStatus.REFUNDED.value
            else:
                order.payment_status = PaymentStatus.PARTIAL.value

            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConcurrencyConflict(f"Payment {payment_id} is already being refunded")
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Refund {refund.id} of {refund_amount} for payment {payment_id} (order {order.order_number})")

        self._audit(
            actor_id,
            "refund",
            refund.id,
            after={"original_payment_id": payment_id, "amount": refund_amount, "reason": reason},
        )
        self._notify("payment_refunded", order, {"amount": refund_amount, "reason": reason})
        return refund

    def handle_gateway_notify(self, payload: Dict[str, Any]) -> NotifyOutcome:
        """
        Notyfikacja PayHere (IPN). Podpis i zamówienie sprawdzane przed
        jakąkolwiek zmianą; dalej każdy błąd kończy się rollbackiem i "Error".
        """
        data = {k: "" if v is None else str(v) for k, v in payload.items()}

        if not self.payhere.verify_ipn_hash(
            data.get("merchant_id", ""),
            data.get("order_id", ""),
            data.get("payhere_amount", ""),
            data.get("payhere_currency", ""),
            data.get("status_code", ""),
            data.get("md5sig", ""),
        ):
            logger.error(f"PayHere notification hash verification failed for order {data.get('order_id')}")
            raise InvalidSignature("Invalid Hash")

        order_number = data.get("order_id", "")
        status_code = data.get("status_code", "").strip()
        logger.info(f"PayHere notification for order {order_number}, status_code {status_code}")

        try:
            order = self.orders.get_by_number(order_number, lock=True)
            if not order:
                raise NotFoundError("Order not found")

            # powtórzona notyfikacja (dowolny status_code) nie zmienia już niczego
            transaction_id = data.get("payment_id") or None
            if transaction_id and self.repo.get_by_transaction_id(transaction_id):
                logger.info(f"PayHere payment {transaction_id} already processed, status_code {status_code}")
                outcome = NotifyOutcome(body="OK", duplicate=True)
            elif status_code == payhere.SUCCESS:
                outcome = self._notify_success(order, data)
            elif status_code == payhere.PENDING:
                order.payment_status = PaymentStatus.PENDING.value
                outcome = NotifyOutcome(body="OK", processed=True)
            elif status_code in CANCEL_REASONS:
                outcome = self._notify_failure(order, status_code)
            else:
                logger.warning(f"Unknown PayHere status_code {status_code} for order {order_number}")
                outcome = NotifyOutcome(body="OK", message="Ignored")

            self.db.commit()
        except NotFoundError:
            self.db.rollback()
            logger.error(f"Order not found for PayHere notification {order_number}")
            raise
        except IntegrityError:
            # równoległa notyfikacja z tym samym payment_id wygrała wyścig
            self.db.rollback()
            logger.warning(f"PayHere payment {data.get('payment_id')} already recorded (concurrent)")
            return NotifyOutcome(body="OK", duplicate=True)
        except Exception:
            self.db.rollback()
            logger.exception(f"PayHere notification processing failed for order {order_number}")
            return NotifyOutcome(body="Error", message="Processing failed")

        if outcome.processed and not outcome.duplicate:
            self._audit(
                None,
                "gateway_notify",
                order.id,
                after={"status_code": status_code, "payment_id": data.get("payment_id")},
                entity_type="order",
            )
        return outcome

    # internals
    def _notify_success(self, order: OrderModel, data: Dict[str, str]) -> NotifyOutcome:
        transaction_id = data.get("payment_id") or None
        amount = money(data.get("payhere_amount") or 0)

        if amount > money(order.due_amount):
            # do ręcznego uzgodnienia - zamówienie bez zmian
            self.repo.add(
                PaymentModel(
                    order_id=order.id,
                    amount=amount,
                    method=data.get("method") or "payhere",
                    transaction_id=transaction_id,
                    status=PaymentRecordStatus.PENDING.value,
                    provider="payhere",
                    provider_response=data,
                    notes=f"Amount exceeds due amount ({money(order.due_amount)}), manual reconciliation required",
                )
            )
            logger.warning(
                f"PayHere amount {amount} exceeds due {order.due_amount} for order {order.order_number}"
            )
            return NotifyOutcome(body="OK", processed=True, message="Manual reconciliation required")

        self.repo.add(
            PaymentModel(
                order_id=order.id,
                amount=amount,
                method=data.get("method") or "payhere",
                transaction_id=transaction_id,
                status=PaymentRecordStatus.COMPLETED.value,
                provider="payhere",
                provider_response=data,
                notes="Paid via PayHere",
                processed_at=self.clock(),
            )
        )
        self._apply_received(order, amount)

        if order.due_amount <= ZERO and order.status == OrderStatus.PENDING.value:
            self.status_service.apply_transition(
                order,
                OrderStatus.CONFIRMED,
                TransitionContext(notes="Payment received via PayHere", meta={"payment_id": transaction_id}),
            )
        return NotifyOutcome(body="OK", processed=True)

    def _notify_failure(self, order: OrderModel, status_code: str) -> NotifyOutcome:
        order.payment_status = PaymentStatus.FAILED.value

        if order.status == OrderStatus.PENDING.value:
            reason = CANCEL_REASONS[status_code]
            self.status_service.apply_transition(
                order,
                OrderStatus.CANCELLED,
                TransitionContext(
                    reason=reason,
                    notes=reason,
                    meta={"status_code": status_code},
                    tolerate_release_errors=True,
                ),
            )
        return NotifyOutcome(body="OK", processed=True)

    def _apply_received(self, order: OrderModel, amount: Decimal) -> None:
        order.paid_amount = money(order.paid_amount) + amount
        order.due_amount = money(order.total) - order.paid_amount
        order.payment_status = (
            PaymentStatus.PAID.value if order.due_amount <= ZERO else PaymentStatus.PARTIAL.value
        )

        if order.is_credit and order.doctor_id:
            doctor = self.db.execute(
                select(DoctorModel)
                .where(DoctorModel.id == order.doctor_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if doctor:
                doctor.current_credit = max(money(doctor.current_credit) - amount, ZERO)

    def _notify(self, event_type: str, order: OrderModel, extra: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event_type, order, order.user, extra)
        except Exception:
            logger.exception(f"Failed to send {event_type} for order {order.order_number}")

    def _audit(self, actor_id, action: str, entity_id, after: Dict[str, Any], entity_type: str = "payment") -> None:
        if self.auditor is None:
            return
        try:
            self.auditor.log(actor_id, action, entity_type, entity_id, after=after)
        except Exception:
            logger.exception(f"Failed to write audit log {action} for {entity_type} {entity_id}")
