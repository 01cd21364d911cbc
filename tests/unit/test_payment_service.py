# tests/unit/test_payment_service.py
from decimal import Decimal

import pytest

from pharmorder.data.models import OrderItemModel, PaymentModel, ProductModel
from pharmorder.domain.errors import (
    BusinessRuleError,
    ConcurrencyConflict,
    InvalidSignature,
    NotFoundError,
    PaymentExceedsDue,
    RefundNotAllowed,
)
from pharmorder.domain.order_status import OrderStatus
from pharmorder.services.payment_service import PaymentService
from tests.helpers import fixed_clock, payhere_notification


@pytest.fixture
def payments(db, notifier, auditor):
    return PaymentService(db, notifier=notifier, auditor=auditor, clock=fixed_clock)


def _reserved(db, product_id):
    product = db.get(ProductModel, product_id)
    db.refresh(product)
    return product.reserved_quantity


# manual payments
def test_partial_then_full_payment(db, place_order, payments):
    order = place_order()

    _, order = payments.add_payment(order.id, "100.00", "bank_transfer", transaction_id="BT-1", actor_id=1)
    assert (order.paid_amount, order.due_amount, order.payment_status) == (
        Decimal("100.00"),
        Decimal("150.00"),
        "partial",
    )

    payment, order = payments.add_payment(order.id, "150.00", "cash", actor_id=1)
    assert payment.status == "completed"
    assert payment.provider == "manual"
    assert (order.paid_amount, order.due_amount, order.payment_status) == (
        Decimal("250.00"),
        Decimal("0.00"),
        "paid",
    )
    assert len(payments.list_payments(order.id)) == 2


def test_payment_above_due_is_rejected(db, place_order, payments):
    order = place_order()

    with pytest.raises(PaymentExceedsDue):
        payments.add_payment(order.id, "250.01", "cash")

    assert db.query(PaymentModel).count() == 0


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_non_positive_payment_is_rejected(place_order, payments, amount):
    order = place_order()

    with pytest.raises(BusinessRuleError):
        payments.add_payment(order.id, amount, "cash")


def test_duplicate_transaction_id(place_order, payments):
    order = place_order()
    payments.add_payment(order.id, "50.00", "bank_transfer", transaction_id="BT-7")

    with pytest.raises(ConcurrencyConflict):
        payments.add_payment(order.id, "50.00", "bank_transfer", transaction_id="BT-7")


def test_payment_for_missing_order(payments):
    with pytest.raises(NotFoundError):
        payments.add_payment(404, "10.00", "cash")
    with pytest.raises(NotFoundError):
        payments.list_payments(404)


def test_payment_on_credit_order_restores_credit(db, make_user, make_doctor, make_address, make_product, make_cart, order_service, payments):
    user = make_user()
    doctor = make_doctor(user, credit_limit="1000", current_credit="200")
    make_cart(user, [(make_product(price="500.00"), 1)], shipping_address=make_address(user))
    order = order_service.create_order(user.id, "credit", use_credit=True).order

    payments.add_payment(order.id, "300.00", "bank_transfer")

    db.refresh(doctor)
    assert doctor.current_credit == Decimal("400.00")


# refunds
def test_refund_cannot_exceed_original(place_order, payments):
    order = place_order()
    payment, _ = payments.add_payment(order.id, "100.00", "cash")

    with pytest.raises(RefundNotAllowed):
        payments.process_refund(payment.id, "150.00")


def test_full_refund(db, place_order, payments, auditor):
    order = place_order()
    payment, _ = payments.add_payment(order.id, "250.00", "cash", transaction_id="CASH-1")

    refund = payments.process_refund(payment.id, reason="Damaged goods", actor_id=1)

    assert refund.amount == Decimal("-250.00")
    assert refund.transaction_id == "REF-CASH-1"
    assert refund.refunded_payment_id == payment.id
    db.refresh(payment)
    db.refresh(order)
    assert payment.status == "refunded"
    assert payment.refunded_amount == Decimal("250.00")
    assert order.payment_status == "refunded"
    assert order.paid_amount == Decimal("0.00")
    assert order.due_amount == Decimal("250.00")
    assert auditor.log.call_args.args[1] == "refund"

    with pytest.raises(RefundNotAllowed):
        payments.process_refund(payment.id)


def test_partial_refund(db, place_order, payments):
    order = place_order()
    payment, _ = payments.add_payment(order.id, "250.00", "cash")

    payments.process_refund(payment.id, "50.00")

    db.refresh(payment)
    db.refresh(order)
    assert payment.status == "partial_refund"
    assert order.payment_status == "partial"
    assert order.paid_amount == Decimal("200.00")
    assert order.due_amount == Decimal("50.00")


def test_refund_of_unknown_payment(payments):
    with pytest.raises(NotFoundError):
        payments.process_refund(123)


# PayHere notifications
def test_gateway_success_pays_and_confirms(db, place_order, payments, auditor):
    order = place_order(payment_method="payhere")

    outcome = payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00"))

    assert (outcome.body, outcome.processed, outcome.duplicate) == ("OK", True, False)
    db.refresh(order)
    assert order.payment_status == "paid"
    assert order.status == "confirmed"
    assert order.paid_amount == Decimal("250.00")
    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert (payment.transaction_id, payment.provider, payment.method) == ("320025071234", "payhere", "VISA")
    assert auditor.log.call_args.args[1] == "gateway_notify"


def test_gateway_replay_is_ignored(db, place_order, payments):
    order = place_order(payment_method="payhere")
    form = payhere_notification(order.order_number, "250.00")
    payments.handle_gateway_notify(form)

    outcome = payments.handle_gateway_notify(form)

    assert (outcome.body, outcome.duplicate) == ("OK", True)
    assert db.query(PaymentModel).filter_by(order_id=order.id).count() == 1
    db.refresh(order)
    assert order.paid_amount == Decimal("250.00")


@pytest.mark.parametrize("replayed_code", ["0", "-1", "-2", "-3"])
def test_gateway_replay_with_other_status_keeps_paid_order(db, place_order, payments, auditor, replayed_code):
    order = place_order(payment_method="payhere")
    payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00"))
    auditor.reset_mock()

    outcome = payments.handle_gateway_notify(
        payhere_notification(order.order_number, "250.00", status_code=replayed_code)
    )

    assert (outcome.body, outcome.processed, outcome.duplicate) == ("OK", False, True)
    db.refresh(order)
    assert (order.status, order.payment_status) == ("confirmed", "paid")
    assert order.paid_amount == Decimal("250.00")
    auditor.log.assert_not_called()


def test_gateway_partial_amount_keeps_order_pending(db, place_order, payments):
    order = place_order(payment_method="payhere")

    payments.handle_gateway_notify(payhere_notification(order.order_number, "100.00"))

    db.refresh(order)
    assert order.payment_status == "partial"
    assert order.status == "pending"
    assert order.due_amount == Decimal("150.00")


def test_gateway_overpayment_needs_manual_reconciliation(db, place_order, payments):
    order = place_order(payment_method="payhere")

    outcome = payments.handle_gateway_notify(payhere_notification(order.order_number, "300.00"))

    assert outcome.body == "OK"
    payment = db.query(PaymentModel).filter_by(order_id=order.id).one()
    assert payment.status == "pending"
    assert "manual reconciliation" in payment.notes
    db.refresh(order)
    assert order.paid_amount == Decimal("0.00")
    assert order.status == "pending"


def test_gateway_invalid_hash(db, place_order, payments):
    order = place_order(payment_method="payhere")
    form = payhere_notification(order.order_number, "250.00", secret="wrong-secret")

    with pytest.raises(InvalidSignature):
        payments.handle_gateway_notify(form)

    db.refresh(order)
    assert order.payment_status == "pending"
    assert db.query(PaymentModel).count() == 0


def test_gateway_tampered_amount(place_order, payments):
    order = place_order(payment_method="payhere")
    form = payhere_notification(order.order_number, "1.00")
    form["payhere_amount"] = "250.00"

    with pytest.raises(InvalidSignature):
        payments.handle_gateway_notify(form)


def test_gateway_unknown_order(payments):
    with pytest.raises(NotFoundError):
        payments.handle_gateway_notify(payhere_notification("ORD0000000000", "10.00"))


def test_gateway_failure_cancels_pending_order(db, place_order, payments):
    order = place_order(payment_method="payhere")
    product_ids = [item.product_id for item in order.items]

    outcome = payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00", status_code="-2"))

    assert outcome.body == "OK"
    db.refresh(order)
    assert order.status == "cancelled"
    assert order.payment_status == "failed"
    assert order.cancel_reason == "Payment failed"
    assert [_reserved(db, pid) for pid in product_ids] == [0, 0]
    items = db.query(OrderItemModel).filter_by(order_id=order.id).all()
    assert {i.status for i in items} == {"cancelled"}


def test_gateway_cancel_on_confirmed_order_only_flags_payment(db, place_order, payments):
    order = place_order(payment_method="payhere")
    payments.status_service.update_status(order.id, "confirmed", actor_id=1)

    payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00", status_code="-1"))

    db.refresh(order)
    assert order.status == "confirmed"
    assert order.payment_status == "failed"
    assert _reserved(db, order.items[0].product_id) == 2


def test_gateway_pending_status(db, place_order, payments):
    order = place_order(payment_method="payhere")

    outcome = payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00", status_code="0"))

    assert outcome.body == "OK"
    db.refresh(order)
    assert order.payment_status == "pending"
    assert order.status == "pending"


def test_gateway_unknown_status_code_is_ignored(db, place_order, payments):
    order = place_order(payment_method="payhere")

    outcome = payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00", status_code="7"))

    assert (outcome.body, outcome.processed) == ("OK", False)
    db.refresh(order)
    assert order.status == "pending"


def test_gateway_processing_error_rolls_back(db, place_order, payments, monkeypatch):
    order = place_order(payment_method="payhere")

    def explode(*args, **kwargs):
        raise RuntimeError("state machine down")

    monkeypatch.setattr(payments.status_service, "apply_transition", explode)

    outcome = payments.handle_gateway_notify(payhere_notification(order.order_number, "250.00"))

    assert outcome.body == "Error"
    db.refresh(order)
    assert order.status == OrderStatus.PENDING.value
    assert order.paid_amount == Decimal("0.00")
    assert db.query(PaymentModel).count() == 0


def test_verify_order_payment(place_order, payments, make_user):
    order = place_order()
    payments.add_payment(order.id, "100.00", "cash")

    summary = payments.verify_order_payment(order.order_number, order.user_id)

    assert summary["payment_status"] == "partial"
    assert summary["due_amount"] == Decimal("150.00")
    assert len(summary["payments"]) == 1

    stranger = make_user(email="stranger@example.com")
    with pytest.raises(NotFoundError):
        payments.verify_order_payment(order.order_number, stranger.id)
